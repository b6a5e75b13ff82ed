"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Request validation failures
- Host allowlist denials

SECURITY: Ensures user-supplied data is sanitized before logging.
"""

import logging
import json
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass, field as dataclass_field

from text_utils import sanitize_for_logging

# (request_id, source_ip) of the request being served; each request runs in its own context
_request_context: ContextVar[Tuple[str, str]] = ContextVar("security_request_context", default=("", ""))


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., VALIDATION_FAILED, ACCESS_DENIED
    severity: str  # WARNING, ERROR, CRITICAL
    field_name: str = ""  # Field that triggered the event
    error_code: str = ""
    sanitized_input: str = ""  # First 50 chars, sanitized
    source: str = ""  # Module/function that detected the event
    request_id: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'field': self.field_name,
            'error_code': self.error_code,
            'sanitized_input': self.sanitized_input,
            'source': self.source,
            'request_id': self.request_id,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityLogger:
    """Handles security event logging with structured output

    Features:
    - Separate security.log file
    - JSON-formatted events for easy parsing
    - Automatic sanitization of request data
    - Request ID correlation
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.WARNING,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize security logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to security.log file
        """
        self.log_dir = Path(log_dir)

        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()

        formatter = logging.Formatter(
            '%(asctime)s - SECURITY - %(levelname)s - %(message)s'
        )

        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_dir / "security.log", encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        Returns:
            The request ID being used (auto-generated if None)
        """
        request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        _request_context.set((request_id, source_ip))
        return request_id

    def clear_request_context(self) -> None:
        """Clear the current request context"""
        _request_context.set(("", ""))

    @property
    def request_id(self) -> str:
        return _request_context.get()[0]

    @property
    def source_ip(self) -> str:
        return _request_context.get()[1]

    def _sanitize_input(self, text: str, max_length: int = 50) -> str:
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize every value in a context dictionary

        Numbers, booleans and None pass through; nested dicts are sanitized
        recursively; anything else is stringified and sanitized.
        """
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item), max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value), max_length=200)

        return sanitized

    def _emit(self, event: SecurityEvent) -> None:
        if event.severity == "CRITICAL":
            self.logger.critical(event.to_json())
        elif event.severity == "ERROR":
            self.logger.error(event.to_json())
        else:
            self.logger.warning(event.to_json())

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: str,
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a validation failure event

        Args:
            field: Field name that failed validation
            error_code: Error code for the failure
            input_value: The input that failed (will be sanitized)
            source: Source module/function
            additional_context: Additional context data (will be sanitized)
        """
        self._emit(SecurityEvent(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            request_id=self.request_id,
            source_ip=self.source_ip,
            additional_context=self._sanitize_context(additional_context)
        ))

    def log_access_denied(
        self,
        host: str,
        path: str,
        source_ip: str = "",
        source: str = "HostAllowlistMiddleware"
    ) -> None:
        """Log a request rejected by the host allowlist

        Args:
            host: The Host header that was rejected (will be sanitized)
            path: Requested path (will be sanitized)
            source_ip: Client address if known
            source: Component that denied the request
        """
        self._emit(SecurityEvent(
            event_type="ACCESS_DENIED",
            severity="WARNING",
            field_name="host",
            error_code="HOST_NOT_ALLOWED",
            sanitized_input=self._sanitize_input(host),
            source=source,
            request_id=self.request_id,
            source_ip=source_ip or self.source_ip,
            additional_context=self._sanitize_context({"path": path})
        ))


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> SecurityLogger:
    """Get or create the global security logger instance

    Args:
        log_dir: Directory for log files
        enable_console: Also output to console
        enable_file: Write to security.log file

    Returns:
        SecurityLogger instance
    """
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    _security_logger = None
