# ABOUTME: Admin API endpoints
# ABOUTME: Provides administrative functions like key management and audit review

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from apiscope.database import get_db
from apiscope.dependencies import verify_api_key
from apiscope.exceptions import Forbidden
from apiscope.models.database import APIKey as APIKeyModel, AuditRecord, PermissionRule
from apiscope.models.errors import ADMIN_REQUIRED
from apiscope.services.authorization import ACTIONS
from apiscope.services.identity import generate_token, hash_token

router = APIRouter(prefix="/admin", tags=["admin"])


class PermissionRuleSpec(BaseModel):
    """One grant within a new API key's scope."""
    action: str = "read"
    resource: str
    conditions: Optional[dict] = None
    columns: Optional[List[str]] = None
    includes: Optional[List[str]] = None

    @field_validator("action")
    @classmethod
    def action_is_known(cls, value: str) -> str:
        if value not in ACTIONS:
            raise ValueError(f"action must be one of {', '.join(ACTIONS)}")
        return value


class CreateAPIKeyRequest(BaseModel):
    """Request body for creating a new API key."""
    owner_email: str
    owner_name: str
    is_admin: bool = False
    notes: Optional[str] = None
    rules: List[PermissionRuleSpec] = Field(default_factory=list)


class CreateAPIKeyResponse(BaseModel):
    """Response containing the newly created API key."""
    id: int
    api_key: str
    key_prefix: str
    owner_email: str
    owner_name: str
    is_admin: bool
    rules: List[PermissionRuleSpec]


def verify_admin_api_key(
    api_key: APIKeyModel = Depends(verify_api_key)
) -> APIKeyModel:
    """Verify that the API key has admin privileges."""
    if not api_key.is_admin:
        raise Forbidden("Admin privileges required")
    return api_key


def create_key(db: Session, request: CreateAPIKeyRequest) -> tuple:
    """
    Create an API key and its permission rules.

    Returns (APIKey, plaintext token). Only the SHA-256 hash is stored.
    """
    plaintext_key = generate_token()
    new_api_key = APIKeyModel(
        key_hash=hash_token(plaintext_key),
        key_prefix=plaintext_key[:8],
        owner_email=request.owner_email,
        owner_name=request.owner_name,
        is_admin=request.is_admin,
        notes=request.notes,
        permission_rules=[PermissionRule(**rule.model_dump()) for rule in request.rules],
    )

    db.add(new_api_key)
    db.commit()
    db.refresh(new_api_key)
    return new_api_key, plaintext_key


@router.post("/keys", status_code=201, response_model=CreateAPIKeyResponse, responses=ADMIN_REQUIRED)
async def create_api_key(
    request: CreateAPIKeyRequest,
    db: Session = Depends(get_db),
    admin_key: APIKeyModel = Depends(verify_admin_api_key)
):
    """
    Create a new API key (admin only).

    The API key is generated securely and returned only once.
    """
    new_api_key, plaintext_key = create_key(db, request)

    return CreateAPIKeyResponse(
        id=new_api_key.id,
        api_key=plaintext_key,
        key_prefix=new_api_key.key_prefix,
        owner_email=new_api_key.owner_email,
        owner_name=new_api_key.owner_name,
        is_admin=new_api_key.is_admin,
        rules=request.rules,
    )


@router.get("/audit", responses=ADMIN_REQUIRED)
async def list_audit_records(
    api_key_id: Optional[int] = Query(default=None),
    request_uuid: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin_key: APIKeyModel = Depends(verify_admin_api_key)
):
    """Returns audit records, most recent first (admin only)."""
    query = db.query(AuditRecord)
    if api_key_id is not None:
        query = query.filter(AuditRecord.api_key_id == api_key_id)
    if request_uuid is not None:
        query = query.filter(AuditRecord.request_uuid == request_uuid)

    total = query.count()
    records = query.order_by(AuditRecord.id.desc()).limit(limit).offset(offset).all()

    return {
        "data": [
            {
                "id": record.id,
                "api_key_id": record.api_key_id,
                "request_uuid": record.request_uuid,
                "created_at": record.created_at,
                **record.payload,
            }
            for record in records
        ],
        "meta": {
            "total": total,
            "limit": limit,
            "offset": offset
        }
    }
