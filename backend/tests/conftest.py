"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import secrets
import sys
import time
import uuid
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Generator, Optional
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time, so pin them before importing the app
WEBHOOK_SECRET = "whsec_test_secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["SITE_URL"] = "http://localhost:3000"
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.user import User
from app.models.survey import Survey, Question
from app.services.stripe_service import CheckoutSessionResult, StripeGateway, get_payment_gateway


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeStripeGateway(StripeGateway):
    """Records checkout sessions instead of calling Stripe; webhook verification is the real one"""

    def __init__(self):
        super().__init__(secret_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)
        self.sessions = []
        self.fail_with: Optional[Exception] = None

    def create_unlock_session(self, survey_id, owner_id, success_url, cancel_url):
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "survey_id": survey_id,
            "owner_id": owner_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        return CheckoutSessionResult(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256 over 't.payload')"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(
    survey_id: Optional[str],
    owner_id=None,
    event_id: Optional[str] = None,
    event_type: str = "checkout.session.completed",
    payment_status: Optional[str] = "paid"
) -> dict:
    metadata = {}
    if survey_id is not None:
        metadata["survey_id"] = survey_id
    if owner_id is not None:
        metadata["owner_id"] = str(owner_id)
    session = {"id": "cs_test_1", "object": "checkout.session", "metadata": metadata}
    if payment_status is not None:
        session["payment_status"] = payment_status
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex}",
        "object": "event",
        "type": event_type,
        "data": {"object": session},
    }


def post_webhook(client: TestClient, event: dict, signature: Optional[str] = None):
    payload = json.dumps(event).encode()
    headers = {"Content-Type": "application/json", "Stripe-Signature": signature or sign_payload(payload)}
    return client.post("/api/stripe/webhook", content=payload, headers=headers)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, fake_gateway) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and a fake Stripe gateway"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    try:
        with patch("app.core.otel.initialize_otel", return_value=False):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


def _create_user(db: Session, email: str) -> User:
    user = User(email=email)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    return _create_user(db_session, "owner@example.com")


@pytest.fixture(scope="function")
def two_users(db_session: Session) -> tuple[User, User]:
    """Create two users for ownership tests"""
    return (
        _create_user(db_session, "user1@example.com"),
        _create_user(db_session, "user2@example.com"),
    )


@pytest.fixture(scope="function")
def login(mock_redis):
    """Return a function that authenticates the client as the given user"""

    def _login(client: TestClient, user: User) -> str:
        session_id = secrets.token_urlsafe(32)
        redis_module.set_session(session_id, user.id)
        client.headers["Cookie"] = f"session_id={session_id}"
        return session_id

    return _login


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, login) -> TestClient:
    """Client with an active session for test_user"""
    login(client, test_user)
    return client


@pytest.fixture(scope="function")
def make_survey(db_session: Session):
    """Insert a survey directly, bypassing request validation"""

    def _make_survey(
        owner: User,
        expires_at: Optional[datetime] = None,
        unlock_deadline: Optional[datetime] = None,
        is_paid: bool = False,
        title: str = "Be honest",
        questions=("What should I stop doing?", "What do I do well?"),
        no_expiry: bool = False
    ) -> Survey:
        now = datetime.now(timezone.utc)
        if expires_at is None and not no_expiry:
            expires_at = now + timedelta(hours=24)
        survey = Survey(
            owner_id=owner.id,
            title=title,
            duration_hours=24,
            created_at=now,
            expires_at=expires_at,
            unlock_deadline=unlock_deadline,
            is_paid=is_paid,
            paid_at=now if is_paid else None,
        )
        survey.questions = [Question(position=i, text=text) for i, text in enumerate(questions)]
        db_session.add(survey)
        db_session.commit()
        db_session.refresh(survey)
        return survey

    return _make_survey
