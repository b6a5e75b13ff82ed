"""
FastAPI Middleware for the Postcode Hierarchy API

Provides CORS configuration, host allowlisting, request logging, and
global error handling.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    AlreadyExistsError,
    ParentNotFoundError,
    ReferentialConflictError,
)
from database.postcode_service import PostcodeFormatError
from lookup_client import UpstreamLookupError
from security_logger import get_security_logger
from text_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]


def setup_cors(app: FastAPI, allowed_origins: List[str]) -> None:
    """Configure CORS middleware for the application.

    Args:
        app: The application
        allowed_origins: Origins from the api.cors_origins config section
    """
    allow_all = "*" in allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else allowed_origins,
        # Browsers reject credentials with a wildcard origin
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )


class HostAllowlistMiddleware(BaseHTTPMiddleware):
    """Rejects requests whose Host header names none of the allowed hosts.

    An empty allowlist disables the check. Requests without a Host header
    are let through.
    """

    def __init__(self, app, allowed_hosts: Optional[List[str]] = None):
        super().__init__(app)
        self.allowed_hosts = [h for h in (allowed_hosts or []) if h]

    async def dispatch(self, request: Request, call_next: Callable):
        host = request.headers.get("host", "")
        if self.allowed_hosts and host and not any(a in host for a in self.allowed_hosts):
            get_security_logger().log_access_denied(
                host=host,
                path=str(request.url.path),
                source_ip=request.client.host if request.client else "",
            )
            return create_error_response(
                code="ACCESS_DENIED",
                message=(
                    f"Access denied! Requested Host: {sanitize_for_logging(host, 100)}, "
                    f"Allowed Host(s): {', '.join(self.allowed_hosts)}"
                ),
                status_code=403,
            )
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs.

    Follows security patterns from security_logger.py.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time

        security = get_security_logger()
        security.set_request_context(
            request_id, request.client.host if request.client else ""
        )

        # Sanitize path to prevent log injection
        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            security.clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


# Status code and error code per repository error, most specific first
REPOSITORY_ERROR_MAP = [
    (EntityNotFoundError, 404, "NOT_FOUND"),
    (ParentNotFoundError, 404, "PARENT_NOT_FOUND"),
    (AlreadyExistsError, 409, "ALREADY_EXISTS"),
    (ReferentialConflictError, 409, "REFERENTIAL_CONFLICT"),
]


async def repository_exception_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Map mutation gateway errors to 404/409 responses."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code, code = 500, "REPOSITORY_ERROR"
    for error_type, mapped_status, mapped_code in REPOSITORY_ERROR_MAP:
        if isinstance(exc, error_type):
            status_code, code = mapped_status, mapped_code
            break

    logger.warning(
        "Repository error: code=%s entity=%s message=%s request_id=%s",
        code,
        exc.entity,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if status_code == 500:
        return create_error_response(
            code=code,
            message="A storage error occurred. Please try again later.",
            status_code=status_code,
        )
    return create_error_response(code=code, message=str(exc), status_code=status_code)


async def postcode_format_exception_handler(request: Request, exc: PostcodeFormatError) -> JSONResponse:
    """Handler for postcodes that cannot be split into outcode and incode."""
    get_security_logger().log_validation_failure(
        field="postcode",
        error_code="INVALID_POSTCODE",
        input_value=exc.value,
        source="postcode_codec",
    )
    return create_error_response(
        code="INVALID_POSTCODE",
        message=str(exc),
        status_code=422,
        field="postcode",
        suggestion="Use a postcode such as 'SW1A 1AA' or 'SW1A1AA'",
    )


async def upstream_exception_handler(request: Request, exc: UpstreamLookupError) -> JSONResponse:
    """Handler for failures of the external detail lookup."""
    return create_error_response(
        code="UPSTREAM_ERROR",
        message="Error fetching data",
        status_code=502,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request bodies and parameters rejected by pydantic."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location) or None
    message = first.get("msg", "Invalid request")

    get_security_logger().log_validation_failure(
        field=field or "",
        error_code="VALIDATION_ERROR",
        input_value=str(first.get("input", "")),
        source=str(request.url.path),
        additional_context={"error_count": len(errors)},
    )

    return create_error_response(
        code="VALIDATION_ERROR",
        message=message,
        status_code=422,
        field=field,
    )


async def configuration_exception_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """Handler for invalid service configuration."""
    logger.error("Configuration error: %s", sanitize_for_logging(str(exc)))
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handler for HTTP exceptions.

    Args:
        request: FastAPI request object
        exc: HTTPException that was raised

    Returns:
        Standardized error response
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RepositoryError, repository_exception_handler)
    app.add_exception_handler(PostcodeFormatError, postcode_format_exception_handler)
    app.add_exception_handler(UpstreamLookupError, upstream_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
