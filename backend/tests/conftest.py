import hashlib
import hmac
import json
import logging
import os
import time
from datetime import datetime, timezone

import pytest

# Set test environment variables before the application reads its settings
os.environ.update(
    {
        "DATABASE_URL": os.getenv("TEST_DATABASE_URL", "sqlite://"),
        "REDIS_URL": "redis://localhost:6379/15",
        "LOG_JSON": "false",
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
        "ENQUEUE_URL": "http://enqueue.test/jobs/enqueue",
        "ENQUEUE_SECRET": "enqueue_test_secret",
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_API_BASE": "https://api.stripe.test",
        "RESEND_API_KEY": "re_test_123",
        "RESEND_FROM": "Acesso <acesso@example.com>",
        "RESEND_API_BASE": "https://api.resend.test",
    }
)

from fastapi.testclient import TestClient  # noqa: E402
from paynotify.core.config import get_settings  # noqa: E402
from paynotify.db import models  # noqa: E402
from paynotify.db.models import Base  # noqa: E402
from paynotify.db.session import SessionLocal, engine  # noqa: E402
from paynotify.main import app, db_session  # noqa: E402
from paynotify.services.rate_limit import RateLimiter  # noqa: E402

logger = logging.getLogger(__name__)

STRIPE_EVENTS_URL = "https://api.stripe.test/v1/events"
RESEND_EMAILS_URL = "https://api.resend.test/emails"
ENQUEUE_URL = "http://enqueue.test/jobs/enqueue"


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def client():
    def override_db_session():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    app.state.rate_limiter = RateLimiter()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def sign(body: bytes, secret: str = "whsec_test", timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    payload = f"{ts}.".encode() + body
    sig = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def stripe_event(
    event_id: str = "evt_42",
    event_type: str = "payment.succeeded",
    obj: dict | None = None,
) -> dict:
    if obj is None:
        obj = {
            "id": "pi_123",
            "object": "payment_intent",
            "receipt_email": "payer@example.com",
        }
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def paid_payment(db):
    code = models.AccessCode(
        id="code_1",
        code_plaintext="123456",
        valid_until=datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc),
    )
    payment = models.Payment(
        id="pay_1",
        provider="stripe",
        provider_payment_id="pi_123",
        provider_checkout_session_id="cs_123",
        status="paid",
        access_code_id="code_1",
    )
    db.add_all([code, payment])
    db.commit()
    return payment


def signed_json(payload: dict) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    return body, {"Stripe-Signature": sign(body), "Content-Type": "application/json"}
