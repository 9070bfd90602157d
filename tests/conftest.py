import hashlib
import hmac
import json
import os
import time
from decimal import Decimal
from typing import Generator

# Must be set before storefront modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PASSWORD_ROUNDS", "1000")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
from sqlalchemy.pool import StaticPool

from storefront import auth, models
from storefront.config import get_settings
from storefront.db import Base, make_engine, make_sessionmaker
from storefront.errors import PaymentGatewayError
from storefront.gateway import GatewaySession, PaymentGateway, StripeGateway
from storefront.main import app, get_db, get_gateway


class FakeGateway(PaymentGateway):
    """Records sessions instead of calling Stripe; verifies webhooks like Stripe does."""

    def __init__(self):
        self.sessions = []
        self.expired = []
        self.fail = False
        self.fail_expire = False
        self.next_session_id = None
        self.delay = 0.0
        self._counter = 0
        self._verifier = StripeGateway(None, webhook_secret=get_settings().stripe_webhook_secret)

    def create_session(self, line_items, success_url, cancel_url, metadata=None):
        if self.fail:
            raise PaymentGatewayError("payment gateway unavailable")
        if self.delay:
            # Stand-in for a slow network round trip
            time.sleep(self.delay)
        self._counter += 1
        session_id = self.next_session_id or f"cs_test_{self._counter}"
        self.sessions.append(
            {
                "id": session_id,
                "line_items": list(line_items),
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": dict(metadata or {}),
            }
        )
        return GatewaySession(id=session_id, url=f"https://checkout.example.test/pay/{session_id}")

    def expire_session(self, session_id):
        if self.fail_expire:
            raise PaymentGatewayError("payment gateway unavailable")
        self.expired.append(session_id)

    def parse_event(self, payload, signature):
        return self._verifier.parse_event(payload, signature)


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = make_engine("sqlite://", poolclass=StaticPool)
    TestingSessionLocal = make_sessionmaker(engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(scope="function")
def client(db_session, gateway):
    # Override dependencies to use the same session and the fake gateway
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make(username="alice", password="secret123", email=None, admin=False):
        user = auth.create_user(db_session, username, email or f"{username}@example.com", password)
        if admin:
            user = auth.promote_to_admin(db_session, username)
        return user
    return _make


@pytest.fixture
def bearer(db_session):
    def _headers(user):
        return {"Authorization": f"Bearer {auth.create_session(db_session, user)}"}
    return _headers


@pytest.fixture
def make_product(db_session):
    def _make(price="10.00", name="Widget", product_id=None, **extra):
        product = models.Product(
            id=product_id,
            name=name,
            description=extra.get("description", f"A fine {name.lower()}"),
            price=Decimal(price),
            image=extra.get("image", "https://img.example.com/widget.png"),
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product
    return _make


@pytest.fixture
def signed_event():
    """Build a webhook body and a Stripe-Signature header for it."""
    secret = get_settings().stripe_webhook_secret

    def _sign(event_type, session_id, payment_status="paid", event_id="evt_1", secret_override=None):
        body = json.dumps(
            {
                "id": event_id,
                "type": event_type,
                "data": {"object": {"id": session_id, "object": "checkout.session", "payment_status": payment_status}},
            }
        )
        timestamp = int(time.time())
        signature = hmac.new(
            (secret_override or secret).encode(), f"{timestamp}.{body}".encode(), hashlib.sha256
        ).hexdigest()
        return body, {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}
    return _sign
