"""Pytest fixtures: test client, test DB (in-memory SQLite), fake payment gateway."""
import json
import os

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite and test secrets; must be set before app is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("GATEWAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("GATEWAY_KEY_SECRET", "test-key-secret")
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
# High registration limit so every test can register
os.environ.setdefault("RATE_LIMIT_REGISTER_PER_MINUTE", "100")

from sqlmodel import Session, SQLModel  # noqa: E402

from app.api.deps import get_gateway  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.database import engine  # noqa: E402
from app.core.errors import GatewayError  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.core.signatures import callback_signature, hmac_hex  # noqa: E402
from app.main import app  # noqa: E402
from app.models import User  # noqa: E402
from app.services.gateway import RemoteOrder, RemotePayment  # noqa: E402
from app.services.notifications import NotificationSink  # noqa: E402
from app.services.plans import clear_catalog_cache  # noqa: E402
from app.services.subscriptions import SubscriptionStore  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}


class FakeGateway:
    """In-process stand-in for GatewayClient. Unknown payments behave like an unreachable API."""

    key_id = "rzp_test_key"

    def __init__(self):
        self.enabled = True
        self.fail_create = False
        self.fail_fetch = False
        self.orders: list[tuple[RemoteOrder, dict]] = []
        self.payments: dict[str, RemotePayment] = {}

    def create_remote_order(self, amount, currency, receipt, metadata):
        if self.fail_create:
            raise GatewayError()
        order = RemoteOrder(id=f"order_test{len(self.orders) + 1:04d}", amount=amount, currency=currency, receipt=receipt)
        self.orders.append((order, metadata))
        return order

    def add_payment(self, payment_id, order_id, amount, status="captured"):
        self.payments[payment_id] = RemotePayment(
            id=payment_id, order_id=order_id, amount=amount, currency="INR", status=status
        )

    def fetch_remote_payment(self, payment_id):
        if self.fail_fetch or payment_id not in self.payments:
            raise GatewayError()
        return self.payments[payment_id]


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(scope="function")
def client(gateway):
    """TestClient on fresh tables; lifespan recreates and seeds them."""
    SQLModel.metadata.drop_all(engine)
    clear_catalog_cache()
    limiter.reset()
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db(client):
    with Session(engine) as session:
        yield session


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_user(db):
    """Inserts a user directly (no bcrypt, no registration limits)."""
    counter = {"n": 0}

    def _make(email=None, role="user", trial=False):
        counter["n"] += 1
        user = User(
            email=email or f"farmer{counter['n']}@example.com",
            hashed_password="unused",
            full_name="Test Farmer",
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        if trial:
            SubscriptionStore(db).start_trial(user.id, settings.trial_days)
        return user

    return _make


def headers_for(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def create_order(client):
    def _create(user, plan="monthly", **extra):
        r = client.post("/orders", json={"plan": plan, **extra}, headers=headers_for(user))
        assert r.status_code == 200, r.text
        return r.json()

    return _create


@pytest.fixture
def verify(client):
    """Checkout callback with a correct (or overridden) signature."""

    def _verify(user, order_id, payment_id="pay_test0001", signature=None):
        sig = signature or callback_signature(settings.gateway_key_secret, order_id, payment_id)
        return client.post(
            "/verify",
            json={"order_id": order_id, "payment_id": payment_id, "signature": sig},
            headers=headers_for(user),
        )

    return _verify


@pytest.fixture
def send_webhook(client):
    def _send(raw_body: bytes, signature=None):
        sig = signature if signature is not None else hmac_hex(settings.gateway_webhook_secret, raw_body)
        return client.post(
            "/webhook",
            content=raw_body,
            headers={"X-Razorpay-Signature": sig, "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture
def auth():
    return headers_for


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def webhook_body():
    """Gateway event body as raw bytes, shaped like the real payload."""

    def _body(order_id, amount, payment_id="pay_wh0001", event="payment.captured", receipt=None, status="captured"):
        entity = {
            "id": payment_id,
            "entity": "payment",
            "amount": amount,
            "currency": "INR",
            "status": status,
            "order_id": order_id,
            "method": "upi",
            "notes": {"receipt": receipt} if receipt else [],
        }
        return json.dumps(
            {
                "entity": "event",
                "account_id": "acc_test",
                "event": event,
                "contains": ["payment"],
                "payload": {"payment": {"entity": entity}},
                "created_at": 1700000000,
            }
        ).encode("utf-8")

    return _body
