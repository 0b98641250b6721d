# ABOUTME: FastAPI dependency injection utilities
# ABOUTME: Provides database sessions, API key auth, injection guarding, and the request context

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from fastapi import Header, Depends, Request
from sqlalchemy.orm import Session
from typing import Annotated, Optional

from apiscope.context import RequestContext
from apiscope.database import get_db
from apiscope.exceptions import Unauthorized
from apiscope.models.database import APIKey
from apiscope.services.authorization import Ability
from apiscope.services.filters import parse_filter
from apiscope.services.identity import extract_token, resolve_identity
from apiscope.services.injection_guard import guard_filter, guard_value, GuardedFilter
from apiscope.services.resources import registry


async def verify_api_key(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: Session = Depends(get_db)
) -> APIKey:
    """
    Verify API key from Authorization header.

    Returns the APIKey model if valid.
    Raises Unauthorized (401) if missing or invalid; nothing else runs before this.
    """
    api_key = resolve_identity(db, extract_token(authorization))
    if api_key is None:
        raise Unauthorized()

    api_key.last_used_at = datetime.now(timezone.utc)
    db.commit()

    # Read by the audit middleware once the response is finalized
    request.state.api_key_id = api_key.id

    return api_key


@dataclass(frozen=True)
class GuardedQuery:
    """Query parameters that passed the injection guard."""
    filter: GuardedFilter
    include: Optional[str] = None
    select: Optional[str] = None
    sort: Optional[str] = None


async def guard_query_params(
    api_key: APIKey = Depends(verify_api_key),
    q: Optional[str] = None,
    include: Optional[str] = None,
    select: Optional[str] = None,
    sort: Optional[str] = None,
) -> GuardedQuery:
    """
    Reject structured query input carrying SQL injection signatures.

    Runs after authentication and before resource resolution or authorization.
    """
    for raw in (include, select, sort):
        guard_value(raw)

    parsed = parse_filter(q)
    # JSON filters are screened per key and leaf by guard_filter below
    if parsed.source == "flat":
        guard_value(q)
    return GuardedQuery(
        filter=guard_filter(parsed.tree, source=parsed.source),
        include=include,
        select=select,
        sort=sort,
    )


def get_request_context(
    request: Request,
    api_key: APIKey = Depends(verify_api_key),
) -> RequestContext:
    """Build the explicit per-request context handed to every pipeline component."""
    return RequestContext(
        request_uuid=getattr(request.state, "request_uuid", None) or str(uuid.uuid4()),
        url=str(request.url),
        api_key=api_key,
        ability=Ability(api_key),
        registry=registry,
    )
