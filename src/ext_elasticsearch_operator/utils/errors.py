"""Error sanitization utilities to prevent credential leakage."""

import re


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"(https?://)[^/\s:@]+:[^/\s@]+(?=@)",
    r"(authorization[:\s]+basic\s+)[A-Za-z0-9+/=]+",
    r"(authorization[:\s]+apikey\s+)[A-Za-z0-9+/=]+",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "password",
    "elasticsearch_password",
    "token",
    "api_key",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1[REDACTED]", sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"(['\"]?{field}['\"]?)([:=]\s*)(['\"]?)[^\s,;\)'\"}}]+",
            r"\1\2\3[REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))
