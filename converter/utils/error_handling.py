"""
Centralized error handling for the conversion gateway.

This module provides the error taxonomy (error codes and the exception
classes raised by every stage of a conversion), standardized JSON error
responses and the helpers that keep filesystem paths out of anything sent
back to a client.
"""

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized, machine-checkable error codes."""

    # Intake errors
    NO_FILE_PROVIDED = "NO_FILE_PROVIDED"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    TYPE_MISMATCH = "TYPE_MISMATCH"

    # Request parameter errors
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_PARAMETER = "INVALID_PARAMETER"

    # Dispatch / conversion errors
    UNSUPPORTED_CONVERSION = "UNSUPPORTED_CONVERSION"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    CONVERSION_FAILED = "CONVERSION_FAILED"

    # Download errors
    NOT_FOUND = "NOT_FOUND"

    # Server errors
    INTERNAL_IO_ERROR = "INTERNAL_IO_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorSeverity(str, Enum):
    """Error severity levels for logging and response handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Error code to HTTP status code mapping
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    # 4xx Client Errors
    ErrorCode.NO_FILE_PROVIDED: 400,
    ErrorCode.MISSING_PARAMETER: 400,
    ErrorCode.INVALID_PARAMETER: 400,
    ErrorCode.UNSUPPORTED_CONVERSION: 400,
    ErrorCode.UNSUPPORTED_FORMAT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.UNSUPPORTED_TYPE: 415,
    ErrorCode.TYPE_MISMATCH: 415,

    # 5xx Server Errors
    ErrorCode.CONVERSION_FAILED: 500,
    ErrorCode.INTERNAL_IO_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Error code to severity mapping
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.INTERNAL_IO_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.CONVERSION_FAILED: ErrorSeverity.HIGH,
    ErrorCode.TYPE_MISMATCH: ErrorSeverity.MEDIUM,
    ErrorCode.UNSUPPORTED_TYPE: ErrorSeverity.MEDIUM,
    ErrorCode.PAYLOAD_TOO_LARGE: ErrorSeverity.MEDIUM,
    ErrorCode.UNSUPPORTED_CONVERSION: ErrorSeverity.LOW,
    ErrorCode.UNSUPPORTED_FORMAT: ErrorSeverity.LOW,
    ErrorCode.NO_FILE_PROVIDED: ErrorSeverity.LOW,
    ErrorCode.MISSING_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.INVALID_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.NOT_FOUND: ErrorSeverity.LOW,
}


# ===== EXCEPTIONS =====

class GatewayError(Exception):
    """
    Base class for every error surfaced to a client.

    Subclasses pin the error code; the message is meant for humans and the
    optional details carry diagnostics (for example an external tool's
    stderr). Both are scrubbed of filesystem paths before leaving the process.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP.get(self.code, 500)


class NoFileProvided(GatewayError):
    code = ErrorCode.NO_FILE_PROVIDED


class MissingParameter(GatewayError):
    code = ErrorCode.MISSING_PARAMETER


class InvalidParameter(GatewayError):
    code = ErrorCode.INVALID_PARAMETER


class PayloadTooLarge(GatewayError):
    code = ErrorCode.PAYLOAD_TOO_LARGE


class UnsupportedType(GatewayError):
    code = ErrorCode.UNSUPPORTED_TYPE


class TypeMismatch(GatewayError):
    code = ErrorCode.TYPE_MISMATCH


class UnsupportedConversion(GatewayError):
    code = ErrorCode.UNSUPPORTED_CONVERSION


class UnsupportedFormat(GatewayError):
    code = ErrorCode.UNSUPPORTED_FORMAT


class ConversionFailed(GatewayError):
    code = ErrorCode.CONVERSION_FAILED


class NotFound(GatewayError):
    code = ErrorCode.NOT_FOUND


class InternalIOError(GatewayError):
    code = ErrorCode.INTERNAL_IO_ERROR


# ===== PATH SCRUBBING =====

# Two or more absolute path segments, e.g. /tmp/converter-gateway/intake/abc
_ABSOLUTE_PATH_RE = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}[\\/]?")


def scrub_paths(text: Optional[str]) -> Optional[str]:
    """
    Replace absolute filesystem paths in a message with a placeholder.

    Args:
        text: Message or diagnostic text, possibly None

    Returns:
        The text with every absolute path replaced by ``<path>``
    """
    if not text:
        return text
    return _ABSOLUTE_PATH_RE.sub("<path>", str(text))


# ===== RESPONSES =====

def create_error_response(
    error_code: Union[ErrorCode, str],
    message: str,
    details: Optional[str] = None,
    status_code: Optional[int] = None,
    **kwargs: Any
) -> JSONResponse:
    """
    Create a consistent JSON error response across all endpoints.

    Args:
        error_code: Error code from ErrorCode enum or custom string
        message: Human readable error message
        details: Additional error details (will be truncated to 1000 chars)
        status_code: Override the default HTTP status code
        **kwargs: Additional fields to include in the error response

    Returns:
        JSONResponse with standardized error format
    """
    if isinstance(error_code, ErrorCode):
        code_value = error_code.value
        if status_code is None:
            status_code = ERROR_STATUS_MAP.get(error_code, 500)
        severity = ERROR_SEVERITY_MAP.get(error_code, ErrorSeverity.MEDIUM)
    else:
        code_value = str(error_code)
        if status_code is None:
            status_code = 500
        severity = ErrorSeverity.MEDIUM

    error_data: Dict[str, Any] = {
        "error": scrub_paths(message),
        "code": code_value,
        "timestamp": datetime.now().isoformat() + "Z",
        "status_code": status_code,
        "severity": severity.value
    }

    if details:
        error_data["details"] = scrub_paths(str(details)[:1000])

    error_data.update(kwargs)

    log_message = f"Error response: {error_data}"
    if severity == ErrorSeverity.CRITICAL:
        logger.critical(log_message)
    elif severity == ErrorSeverity.HIGH:
        logger.error(log_message)
    elif severity == ErrorSeverity.MEDIUM:
        logger.warning(log_message)
    else:
        logger.info(log_message)

    return JSONResponse(status_code=status_code, content=error_data)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """FastAPI exception handler turning a GatewayError into an error response."""
    return create_error_response(exc.code, exc.message, details=exc.details)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler; never echoes the raw exception text."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return create_error_response(ErrorCode.INTERNAL_ERROR, "Internal server error")


def validate_format_parameter(
    format_value: Optional[str],
    param_name: str,
    min_length: int = 2,
    max_length: int = 7
) -> str:
    """
    Validate a format-like request parameter and return it normalized.

    Args:
        format_value: The raw parameter value
        param_name: Name of the parameter for error messages
        min_length: Minimum allowed length
        max_length: Maximum allowed length

    Returns:
        The lowercased, stripped value

    Raises:
        MissingParameter: If the value is absent or blank
        InvalidParameter: If validation fails
    """
    if format_value is None or not str(format_value).strip():
        raise MissingParameter(f"{param_name} is required")

    value = str(format_value).strip().lower()

    if not (min_length <= len(value) <= max_length):
        raise InvalidParameter(
            f"{param_name} must be {min_length}-{max_length} characters, got {len(value)}"
        )

    if not value.isalnum() or not value.isascii():
        raise InvalidParameter(f"{param_name} must contain only alphanumeric characters")

    return value
