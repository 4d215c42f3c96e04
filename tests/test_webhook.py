"""Gateway webhook: signature, duplicate delivery, event handling, receipt fallback."""
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from app.core.config import settings
from app.core.signatures import hmac_hex
from app.main import app
from app.models import AuditLog, ErrorLog, PaymentRecord, Subscription
from app.services.subscriptions import SubscriptionStore


def _record(db, **where) -> PaymentRecord:
    db.expire_all()
    stmt = select(PaymentRecord)
    for field, value in where.items():
        stmt = stmt.where(getattr(PaymentRecord, field) == value)
    return db.exec(stmt).one()


def _subscriptions(db, user_id) -> list[Subscription]:
    db.expire_all()
    return list(db.exec(select(Subscription).where(Subscription.user_id == user_id)).all())


def test_duplicate_delivery_activates_once(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user, plan="monthly")
    raw = webhook_body(order["order_id"], 49900)

    for _ in range(2):
        r = send_webhook(raw)
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}

    subs = _subscriptions(db, user.id)
    assert len(subs) == 1
    assert subs[0].end_date == subs[0].start_date + timedelta(days=30)
    record = _record(db, external_order_id=order["order_id"])
    assert record.status == "verified"
    assert record.verified_via == "webhook"
    assert record.external_payment_id == "pay_wh0001"


def test_bad_signature_is_400_without_detail(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user)
    r = send_webhook(webhook_body(order["order_id"], 49900), signature="0" * 64)
    assert r.status_code == 400
    assert r.json() == {"status": "invalid signature"}
    assert order["order_id"] not in r.text
    assert _record(db, external_order_id=order["order_id"]).status == "pending"


def test_missing_signature_is_400(client: TestClient, webhook_body):
    r = client.post("/webhook", content=webhook_body("order_x", 49900))
    assert r.status_code == 400


def test_signature_covers_raw_bytes(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user)
    raw = webhook_body(order["order_id"], 49900)
    signature = hmac_hex(settings.gateway_webhook_secret, raw)
    # Same JSON, different bytes
    r = send_webhook(raw.replace(b", ", b",", 1), signature=signature)
    assert r.status_code == 400


def test_callback_then_webhook(client: TestClient, db, make_user, create_order, verify, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user)
    assert verify(user, order["order_id"], payment_id="pay_both01").status_code == 200
    r = send_webhook(webhook_body(order["order_id"], 49900, payment_id="pay_both01"))
    assert r.status_code == 200
    assert len(_subscriptions(db, user.id)) == 1
    assert _record(db, external_order_id=order["order_id"]).verified_via == "callback"


def test_amount_mismatch_rejects(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user)
    r = send_webhook(webhook_body(order["order_id"], 100))
    assert r.status_code == 200
    assert _record(db, external_order_id=order["order_id"]).status == "rejected"
    assert _subscriptions(db, user.id) == []


def test_failed_payment_keeps_order_pending(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user)
    r = send_webhook(webhook_body(order["order_id"], 49900, event="payment.failed", status="failed"))
    assert r.status_code == 200
    assert _record(db, external_order_id=order["order_id"]).status == "pending"
    assert db.exec(select(AuditLog).where(AuditLog.event == "payment_attempt_failed")).first() is not None


def test_unknown_order_and_other_events_are_acknowledged(client: TestClient, db, send_webhook, webhook_body):
    assert send_webhook(webhook_body("order_unknown", 49900)).status_code == 200
    assert send_webhook(webhook_body("order_unknown", 49900, event="refund.created")).status_code == 200
    assert send_webhook(b"not json at all").status_code == 200
    assert db.exec(select(Subscription)).first() is None


def test_order_paid_event(client: TestClient, db, make_user, create_order, send_webhook, webhook_body):
    user = make_user()
    order = create_order(user, plan="yearly")
    r = send_webhook(webhook_body(order["order_id"], 449900, event="order.paid"))
    assert r.status_code == 200
    subs = _subscriptions(db, user.id)
    assert len(subs) == 1
    assert subs[0].end_date - subs[0].start_date == timedelta(days=365)


def test_receipt_fallback_when_order_id_was_never_stored(client: TestClient, db, make_user, auth, gateway, send_webhook, webhook_body):
    gateway.fail_create = True
    user = make_user()
    assert client.post("/orders", json={"plan": "monthly"}, headers=auth(user)).status_code == 502
    record = _record(db, user_id=user.id)
    assert record.external_order_id is None

    r = send_webhook(webhook_body("order_late01", 49900, receipt=record.receipt))
    assert r.status_code == 200
    record = _record(db, user_id=user.id)
    assert record.status == "verified"
    assert record.external_order_id == "order_late01"
    assert len(_subscriptions(db, user.id)) == 1


def test_storage_failure_is_500_and_redelivery_activates(client: TestClient, db, make_user, create_order, send_webhook, webhook_body, monkeypatch):
    user = make_user()
    order = create_order(user)
    raw = webhook_body(order["order_id"], 49900)

    def locked_stack(self, *args, **kwargs):
        raise OperationalError("INSERT INTO subscriptions", {}, Exception("database is locked"))

    monkeypatch.setattr(SubscriptionStore, "stack", locked_stack)
    failing = TestClient(app, raise_server_exceptions=False)
    r = failing.post(
        "/webhook",
        content=raw,
        headers={"X-Razorpay-Signature": hmac_hex(settings.gateway_webhook_secret, raw), "Content-Type": "application/json"},
    )
    assert r.status_code == 500
    assert r.json()["code"] == "INTERNAL_ERROR"
    assert r.json()["request_id"]
    assert _record(db, external_order_id=order["order_id"]).status == "pending"
    assert _subscriptions(db, user.id) == []
    assert db.exec(select(ErrorLog).where(ErrorLog.endpoint == "/webhook")).first() is not None

    # Gateway redelivers after the non-2xx answer
    monkeypatch.undo()
    r = send_webhook(raw)
    assert r.status_code == 200
    assert _record(db, external_order_id=order["order_id"]).status == "verified"
    assert len(_subscriptions(db, user.id)) == 1
