# ABOUTME: Health check endpoint
# ABOUTME: Returns API health status and environment without authentication

from fastapi import APIRouter

from apiscope.config import get_settings

router = APIRouter()


@router.get("/health", responses={
    200: {"description": "API is healthy", "content": {"application/json": {"example": {
        "status": "ok", "environment": "production"
    }}}}
})
async def health_check():
    """Returns API health status."""
    return {"status": "ok", "environment": get_settings().environment}
