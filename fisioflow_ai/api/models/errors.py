"""Error envelope returned by every failing endpoint."""

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    message: str
    type: str
    param: str | None = None
    code: str | None = None


class ErrorResponse(BaseModel):
    """Wrapper: ``{"error": {...}}``."""

    error: ErrorDetail


ERROR_TYPE_INVALID_REQUEST = "invalid_request_error"
ERROR_TYPE_NOT_FOUND = "not_found_error"
ERROR_TYPE_SERVER = "server_error"


def create_error_response(
    message: str,
    error_type: str,
    param: str | None = None,
    code: str | None = None,
) -> ErrorResponse:
    """Create an error response.

    Args:
        message: Human-readable error message
        error_type: Type of error (see ERROR_TYPE_* constants)
        param: Field that caused the error (optional)
        code: Machine-readable error code (optional)
    """
    return ErrorResponse(
        error=ErrorDetail(message=message, type=error_type, param=param, code=code)
    )


def invalid_request_error(message: str, param: str | None = None) -> ErrorResponse:
    return create_error_response(
        message, ERROR_TYPE_INVALID_REQUEST, param=param, code="validation_error"
    )


def not_found_error(message: str, param: str | None = None) -> ErrorResponse:
    return create_error_response(message, ERROR_TYPE_NOT_FOUND, param=param, code="not_found")


def server_error(message: str = "Internal server error") -> ErrorResponse:
    return create_error_response(message, ERROR_TYPE_SERVER, code="internal_error")
