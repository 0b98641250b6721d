# ABOUTME: Pytest fixtures and configuration
# ABOUTME: Provides test database, client, API key helpers, and sample resource data

import hashlib
from decimal import Decimal
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from apiscope.main import app
from apiscope.models.database import Base, APIKey, PermissionRule
from apiscope.database import get_db
from apiscope.services.audit import AuditRecorder
from tests.sample_models import Owner, Widget, Part


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for tests."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_test_api_key(db_session, key="test_key_12345", rules=None, is_active=True, is_admin=False):
    """Helper to create a test API key with permission rules in the database."""
    api_key = APIKey(
        key_hash=hashlib.sha256(key.encode()).hexdigest(),
        key_prefix=key[:8] if len(key) >= 8 else key,
        owner_email="test@example.com",
        owner_name="Test User",
        is_active=is_active,
        is_admin=is_admin,
        permission_rules=[PermissionRule(**rule) for rule in (rules or [])],
    )
    db_session.add(api_key)
    db_session.commit()
    db_session.refresh(api_key)
    return api_key


def make_key(key, rules=None, is_admin=False, is_active=True):
    """Creates an API key in a fresh session and returns its id."""
    db = TestingSessionLocal()
    try:
        return create_test_api_key(db, key=key, rules=rules, is_admin=is_admin, is_active=is_active).id
    finally:
        db.close()


def auth(key):
    return {"Authorization": f"Bearer {key}"}


def seed_widgets(widget_count=5):
    """
    Inserts two owners, widget_count widgets alternating open/closed, and parts for widget 1.

    Widget n is named "Widget n", is open when n is odd, and belongs to the
    "eu" owner when n is odd, else the "us" owner.
    """
    db = TestingSessionLocal()
    try:
        eu = Owner(id=1, name="Alice", region="eu", email="alice@example.com")
        us = Owner(id=2, name="Bob", region="us", email="bob@example.com")
        db.add_all([eu, us])
        for n in range(1, widget_count + 1):
            db.add(Widget(
                id=n,
                name=f"Widget {n}",
                status="open" if n % 2 else "closed",
                price=float(n * 10),
                is_public=n != 2,
                secret_code=f"S-{n}",
                owner_id=1 if n % 2 else 2,
            ))
        db.add_all([
            Part(id=1, name="Bolt", kind="metal", weight=Decimal("1.50"), widget_id=1),
            Part(id=2, name="Gear", kind="metal", weight=Decimal("2.25"), widget_id=1),
            Part(id=3, name="Spring", kind="wire", weight=Decimal("0.75"), widget_id=1),
        ])
        db.commit()
    finally:
        db.close()


@pytest.fixture(scope="function", autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provides a database session for tests."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def audit_recorder():
    """Audit recorder writing to the test database."""
    return AuditRecorder(TestingSessionLocal)


@pytest.fixture
def client(setup_database, audit_recorder):
    """Provides a FastAPI test client with test database."""
    original_recorder = app.state.audit_recorder
    app.dependency_overrides[get_db] = override_get_db
    app.state.audit_recorder = audit_recorder
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        app.state.audit_recorder = original_recorder
