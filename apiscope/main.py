# ABOUTME: FastAPI application entry point
# ABOUTME: Configures logging, error handlers, audit middleware, and routers

import importlib
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from apiscope.api import health, admin, resources
from apiscope.config import get_settings
from apiscope.database import SessionLocal
from apiscope.exceptions import InternalError
from apiscope.middleware.audit import AuditMiddleware
from apiscope.services.audit import AuditRecorder

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="apiscope",
    description="Permission-scoped REST API over registered database resources",
    version="0.1.0",
)

for module_name in settings.resource_modules:
    importlib.import_module(module_name)

app.state.audit_recorder = AuditRecorder(SessionLocal, async_enabled=settings.audit_async)

# Add middleware
app.add_middleware(AuditMiddleware)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom exception handler to format error responses."""
    # If detail is a dict, use it directly (for our custom error format)
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail
        )
    # Otherwise, wrap it in standard format
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": "ERROR", "message": exc.detail}
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    """Persistence failures surface as a generic 500 without internal detail."""
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=InternalError().detail
    )


# Register routers; the catch-all resource routes go last
app.include_router(health.router)
app.include_router(admin.router)
app.include_router(resources.router)
