"""
Shared text utilities for the Postcode Hierarchy Service

Helpers for handling untrusted request text before it reaches a log line.
"""

import re


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text
        max_length: Maximum length to keep

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:max_length]
