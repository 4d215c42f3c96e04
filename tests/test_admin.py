"""Admin surface: secret header, manual verification, rejection, grants and revokes."""
from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlmodel import select

from app.models import AuditLog, Notification, PaymentRecord, Subscription


def _manual(client, auth, user, reference="UPI987654321098"):
    r = client.post("/payments/manual", json={"plan": "quarterly", "reference": reference}, headers=auth(user))
    assert r.status_code == 201
    return r.json()


def test_admin_requires_secret(client: TestClient):
    assert client.get("/admin/payments").status_code == 403
    assert client.get("/admin/payments", headers={"X-Admin-Secret": "nope"}).status_code == 403


def test_admin_verify_activates_once(client: TestClient, db, make_user, auth, admin_headers):
    user = make_user()
    record = _manual(client, auth, user)
    r = client.post(f"/admin/payments/{record['id']}/verify", json={"note": "UPI statement checked"}, headers=admin_headers)
    assert r.status_code == 200
    j = r.json()
    assert j["plan"] == "quarterly"
    assert j["already_processed"] is False

    r = client.post(f"/admin/payments/{record['id']}/verify", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["already_processed"] is True

    db.expire_all()
    stored = db.get(PaymentRecord, record["id"])
    assert stored.status == "verified"
    assert stored.verified_via == "admin"
    assert stored.admin_note == "UPI statement checked"
    subs = db.exec(select(Subscription).where(Subscription.user_id == user.id)).all()
    assert len(subs) == 1
    assert subs[0].end_date - subs[0].start_date == timedelta(days=90)


def test_admin_reject(client: TestClient, db, make_user, auth, admin_headers):
    user = make_user()
    record = _manual(client, auth, user)
    r = client.post(f"/admin/payments/{record['id']}/reject", json={"note": "Reference not found"}, headers=admin_headers)
    assert r.status_code == 200
    assert client.post(f"/admin/payments/{record['id']}/reject", headers=admin_headers).status_code == 400
    assert client.post(f"/admin/payments/{record['id']}/verify", headers=admin_headers).status_code == 400
    db.expire_all()
    assert db.get(PaymentRecord, record["id"]).status == "rejected"
    assert db.exec(select(Notification).where(Notification.kind == "payment_rejected")).one().user_id == user.id


def test_admin_verify_unknown_record(client: TestClient, admin_headers):
    r = client.post("/admin/payments/9999/verify", headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_admin_grant_stacks(client: TestClient, db, make_user, admin_headers):
    user = make_user(trial=True)
    r = client.post("/admin/subscriptions/grant", json={"user_id": user.id, "days": 15, "note": "support"}, headers=admin_headers)
    assert r.status_code == 200
    granted = r.json()
    assert granted["plan"] == "manual"
    trial = db.exec(select(Subscription).where(Subscription.user_id == user.id, Subscription.plan == "trial")).one()
    assert datetime.fromisoformat(granted["start_date"]) == trial.end_date
    assert db.exec(select(AuditLog).where(AuditLog.event == "subscription_granted")).first() is not None


def test_admin_grant_limits(client: TestClient, make_user, admin_headers):
    user = make_user()
    r = client.post("/admin/subscriptions/grant", json={"user_id": user.id, "days": 500}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post("/admin/subscriptions/grant", json={"user_id": user.id, "days": 40, "plan": "monthly"}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post("/admin/subscriptions/grant", json={"user_id": 9999, "days": 10}, headers=admin_headers)
    assert r.status_code == 404


def test_admin_revoke(client: TestClient, make_user, auth, admin_headers):
    user = make_user(trial=True)
    subs = client.get(f"/admin/subscriptions/user/{user.id}", headers=admin_headers).json()
    assert len(subs) == 1
    r = client.post(f"/admin/subscriptions/{subs[0]['id']}/revoke", headers=admin_headers)
    assert r.json() == {"ok": True, "changed": True}
    assert client.get("/subscription/access", headers=auth(user)).status_code == 403
    r = client.post(f"/admin/subscriptions/{subs[0]['id']}/revoke", headers=admin_headers)
    assert r.json() == {"ok": True, "changed": False}
