"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session per test, shared with the app through get_db
- User, call and API key factories
- Outbound email and SMS captured instead of delivered
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.app import app
from app.core.auth import create_access_token, get_password_hash
from app.core.api_key import generate_api_key, hash_api_key
from app.db import models  # noqa: F401
from app.db.database import Base, get_db
from app.db.base_crud import create_user, create_call, update_user
from app.db.models import UserRole, AccountStatus, CallStatus
from app.services.email_service import email_service
from app.services.sms_service import sms_service

DEFAULT_PASSWORD = "motdepasse123"


def auth_headers_for(user):
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# =============================================================================
# Outbound messages
# =============================================================================

@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Every SMTP email the code tries to send, as (to, subject, html)."""
    outbox = []

    def fake_send_email(to_address, subject, html, text=None, from_name="SpeedAI"):
        outbox.append((to_address, subject, html))

    monkeypatch.setattr(email_service, "send_email", fake_send_email)
    return outbox


@pytest.fixture(autouse=True)
def sent_sms(monkeypatch):
    """Every SMS the code tries to send, as (to, body)."""
    outbox = []

    async def fake_send_sms(to_number, body):
        outbox.append((to_number, body))
        return f"SM{len(outbox):032d}"

    monkeypatch.setattr(sms_service, "send_sms", fake_send_sms)
    return outbox


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db):
    def _make_user(email="client@restaurant.fr", password=DEFAULT_PASSWORD, **overrides):
        data = {
            "email": email,
            "password_hash": get_password_hash(password),
            "role": UserRole.USER,
            "is_verified": True,
            "account_status": AccountStatus.ACTIVE,
            "subscription_status": "active",
            "subscription_current_period_end": datetime.utcnow() + timedelta(days=20),
        }
        data.update(overrides)
        return create_user(db, data)
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@speedai.fr", role=UserRole.ADMIN)


@pytest.fixture
def auth_headers(user):
    return auth_headers_for(user)


@pytest.fixture
def headers_for():
    """Bearer headers for any user."""
    return auth_headers_for


@pytest.fixture
def api_key(db, user):
    key = generate_api_key()
    update_user(db, user.id, {"api_key_hash": hash_api_key(key)})
    return key


@pytest.fixture
def make_call(db, user):
    def _make_call(owner=None, **overrides):
        data = {
            "phone_number": "+33612345678",
            "start_time": datetime.utcnow() - timedelta(minutes=5),
            "status": CallStatus.COMPLETED,
            "duration": 120,
        }
        data.update(overrides)
        return create_call(db, (owner or user).id, data)
    return _make_call
