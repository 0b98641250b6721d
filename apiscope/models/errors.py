# ABOUTME: Error response models and OpenAPI response examples
# ABOUTME: Pydantic models for API error responses and shared response schemas

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""
    code: str
    message: str


def _error_example(code: str, message: str) -> dict:
    """Builds a single OpenAPI response entry with an error example."""
    return {"model": ErrorResponse, "content": {"application/json": {"example": {"code": code, "message": message}}}}


# Reusable OpenAPI response fragments for route decorators
AUTH_REQUIRED = {
    401: {
        "description": "API key missing or invalid",
        **_error_example("INVALID_API_KEY", "API key is missing or invalid"),
    }
}

ADMIN_REQUIRED = {
    **AUTH_REQUIRED,
    403: {
        "description": "Admin privileges required",
        **_error_example("FORBIDDEN", "Admin privileges required"),
    },
}

SCOPED_RESOURCE = {
    **AUTH_REQUIRED,
    400: {
        "description": "Malicious query input or malformed resource name",
        **_error_example("BAD_REQUEST", "Query contains a forbidden SQL pattern"),
    },
    403: {
        "description": "API key may not read this resource or record",
        **_error_example("FORBIDDEN", "You are not allowed to read widgets"),
    },
    404: {
        "description": "Unknown resource, association, or record",
        **_error_example("NOT_FOUND", "Resource 'gadgets' not found"),
    },
}
