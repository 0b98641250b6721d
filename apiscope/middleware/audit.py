# ABOUTME: Audit middleware for request/response tracking
# ABOUTME: Assigns request ids and hands every finalized response to the audit recorder

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from apiscope.config import get_settings
from apiscope.exceptions import InternalError
from apiscope.services.audit import request_snapshot, response_snapshot

logger = logging.getLogger(__name__)


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Middleware recording every request and its response.

    This middleware:
    - Assigns a request UUID (request.state.request_uuid, X-Request-Id header)
    - Buffers the finalized response body
    - Passes both snapshots and the caller's key id (set by verify_api_key)
      to app.state.audit_recorder once the response is complete
    """

    async def dispatch(self, request: Request, call_next):
        request_uuid = str(uuid.uuid4())
        request.state.request_uuid = request_uuid

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error for request %s", request_uuid)
            response = JSONResponse(
                status_code=500,
                content=InternalError().detail
            )

        body = b"".join([chunk async for chunk in response.body_iterator]) \
            if hasattr(response, "body_iterator") else response.body

        final = Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )
        final.headers["X-Request-Id"] = request_uuid

        settings = get_settings()
        recorder = getattr(request.app.state, "audit_recorder", None)
        if settings.audit_enabled and recorder is not None:
            recorder.record(
                final,
                getattr(request.state, "api_key_id", None),
                request_snapshot(
                    request,
                    request_uuid,
                    redacted_headers=settings.audit_redacted_headers,
                    trust_proxy_headers=settings.trust_proxy_headers,
                ),
                response_snapshot(final.status_code, body, settings.audit_redacted_body_fields),
            )

        return final
