# ABOUTME: SQLAlchemy database models
# ABOUTME: Defines tables for api_keys, permission_rules, and audit_records

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class APIKey(Base):
    """API key identifying a caller; its permission rules define what it can see."""
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True)
    key_hash = Column(Text, unique=True, nullable=False, index=True)
    key_prefix = Column(String(20), nullable=False)
    owner_email = Column(Text)
    owner_name = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_used_at = Column(DateTime)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
    notes = Column(Text)

    permission_rules = relationship(
        "PermissionRule", back_populates="api_key", cascade="all, delete-orphan"
    )
    audit_records = relationship("AuditRecord", back_populates="api_key")


class PermissionRule(Base):
    """
    One grant of an API key's permission scope.

    conditions restricts visible rows ({"column": value} or {"column": [values]}),
    columns and includes restrict visible fields. NULL means unrestricted.
    A key's rules combine independently: rows are the union of each rule's
    conditions and fields are the union of each rule's columns and includes,
    so fields granted by one rule show on rows selected by another.
    """
    __tablename__ = "permission_rules"

    id = Column(Integer, primary_key=True)
    api_key_id = Column(Integer, ForeignKey("api_keys.id"), nullable=False, index=True)
    action = Column(String(20), nullable=False, default="read")  # read | manage
    resource = Column(Text, nullable=False)  # registered resource name or "*"
    conditions = Column(JSON)
    columns = Column(JSON)
    includes = Column(JSON)

    api_key = relationship("APIKey", back_populates="permission_rules")


class AuditRecord(Base):
    """Append-only snapshot of one request and the response sent for it."""
    __tablename__ = "audit_records"

    id = Column(Integer, primary_key=True)
    api_key_id = Column(Integer, ForeignKey("api_keys.id"), nullable=True, index=True)
    request_uuid = Column(String(36), nullable=False, index=True)
    payload = Column(JSON, nullable=False)  # {"request": {...}, "response": {...}}
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    api_key = relationship("APIKey", back_populates="audit_records")
