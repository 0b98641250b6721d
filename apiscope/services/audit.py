# ABOUTME: Request/response audit recording
# ABOUTME: Best-effort persistence of audit records, in the background with a synchronous fallback

import json
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set

from sqlalchemy.orm import Session
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.requests import Request
from starlette.responses import Response

from apiscope.models.database import AuditRecord

logger = logging.getLogger(__name__)

_REDACTED_VALUE = "[REDACTED]"


def request_snapshot(
    request: Request,
    request_uuid: str,
    redacted_headers: Iterable[str] = (),
    trust_proxy_headers: bool = False,
) -> Dict[str, Any]:
    """UUID, URL, method, headers (credentials redacted) and client IP of a request."""
    redacted = {name.lower() for name in redacted_headers}
    headers = {
        name: (_REDACTED_VALUE if name.lower() in redacted else value)
        for name, value in request.headers.items()
    }

    ip_address = request.client.host if request.client else None
    forwarded_for = request.headers.get("x-forwarded-for")
    if trust_proxy_headers and forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()

    return {
        "uuid": request_uuid,
        "url": str(request.url),
        "method": request.method,
        "headers": headers,
        "ip": ip_address,
    }


def redact_fields(value: Any, redacted: Set[str]) -> Any:
    """Replace the values of named keys anywhere in a parsed JSON body."""
    if isinstance(value, dict):
        return {
            key: (_REDACTED_VALUE if str(key).lower() in redacted else redact_fields(item, redacted))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_fields(item, redacted) for item in value]
    return value


def response_snapshot(status_code: int, body: bytes, redacted_fields: Iterable[str] = ()) -> Dict[str, Any]:
    """Status and body of a response. JSON bodies are stored parsed with secret fields redacted, empty bodies as ""."""
    if not body:
        return {"status": status_code, "body": ""}
    text = body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text)
    except ValueError:
        return {"status": status_code, "body": text}
    return {"status": status_code, "body": redact_fields(parsed, {name.lower() for name in redacted_fields})}


class AuditRecorder:
    """
    Writes one AuditRecord per request without ever failing the request.

    Writes are handed to a background task on the finalized response. When
    that is unavailable the record is written synchronously; when that fails
    too the error is logged and dropped.
    """

    def __init__(self, session_factory: Callable[[], Session], async_enabled: bool = True):
        self.session_factory = session_factory
        self.async_enabled = async_enabled

    def write(self, api_key_id: Optional[int], request_data: Dict[str, Any], response_data: Dict[str, Any]) -> None:
        db = self.session_factory()
        try:
            db.add(AuditRecord(
                api_key_id=api_key_id,
                request_uuid=request_data["uuid"],
                payload={"request": request_data, "response": response_data},
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def write_quietly(self, api_key_id: Optional[int], request_data: Dict[str, Any], response_data: Dict[str, Any]) -> None:
        try:
            self.write(api_key_id, request_data, response_data)
        except Exception:
            logger.exception("Background audit write failed for request %s", request_data.get("uuid"))

    def dispatch_async(
        self,
        response: Response,
        api_key_id: Optional[int],
        request_data: Dict[str, Any],
        response_data: Dict[str, Any],
    ) -> bool:
        """Queue the write to run after response is sent. Returns False when background work is disabled."""
        if not self.async_enabled:
            return False

        task = BackgroundTask(self.write_quietly, api_key_id, request_data, response_data)
        if response.background is None:
            response.background = task
        else:
            response.background = BackgroundTasks(tasks=[response.background, task])
        return True

    def record(
        self,
        response: Response,
        api_key_id: Optional[int],
        request_data: Dict[str, Any],
        response_data: Dict[str, Any],
    ) -> Optional[str]:
        """
        Record a finalized request/response pair.

        Returns "async", "sync", or None when the record could not be written.
        """
        try:
            if self.dispatch_async(response, api_key_id, request_data, response_data):
                return "async"
        except Exception:
            logger.warning("Background audit dispatch failed, writing synchronously", exc_info=True)

        try:
            self.write(api_key_id, request_data, response_data)
            return "sync"
        except Exception:
            logger.exception("Audit write failed for request %s", request_data.get("uuid"))
            return None
