# ABOUTME: API error taxonomy
# ABOUTME: HTTPException subclasses carrying the {"code", "message"} error payload

from fastapi import HTTPException


class APIError(HTTPException):
    """Base error rendered as {"code": ..., "message": ...}."""
    status_code = 500
    code = "ERROR"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message or self.default_message}
        )


class BadRequest(APIError):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class Unauthorized(APIError):
    status_code = 401
    code = "INVALID_API_KEY"
    default_message = "API key is missing or invalid"


class Forbidden(APIError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You are not allowed to access this resource"


class NotFound(APIError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class InternalError(APIError):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"


class UnvalidatedQueryError(TypeError):
    """Raised when a query plan is composed from an unguarded filter or an unscoped projection."""
