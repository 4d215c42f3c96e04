"""Stacking arithmetic, current subscription, plans and the access gate."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from app.core.database import engine
from app.core.timeutil import utcnow
from app.models import Notification, Subscription
from app.services.notifications import DatabaseNotificationSink, NotificationSink
from app.services.plans import PlanQuote
from app.services.subscriptions import SubscriptionStore, days_left


def _add(db, user_id, plan, start, end, is_active=True) -> Subscription:
    sub = Subscription(user_id=user_id, plan=plan, start_date=start, end_date=end, is_active=is_active)
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


def test_renewal_stacks_on_current_end(client, db, make_user):
    user = make_user()
    now = utcnow()
    t = now + timedelta(days=5)
    _add(db, user.id, "monthly", t - timedelta(days=30), t)

    sub = SubscriptionStore(db).activate(user.id, PlanQuote(name="monthly", price=499, days=30), payment_id=None, now=now)
    assert sub.start_date == t
    assert sub.end_date == t + timedelta(days=30)


def test_stacks_on_latest_of_several(client, db, make_user):
    user = make_user()
    now = utcnow()
    _add(db, user.id, "monthly", now - timedelta(days=10), now + timedelta(days=20))
    later = _add(db, user.id, "monthly", now + timedelta(days=20), now + timedelta(days=50))
    sub = SubscriptionStore(db).stack(user.id, "quarterly", 90, now=now)
    assert sub.start_date == later.end_date


def test_no_current_starts_now(client, db, make_user):
    user = make_user()
    now = utcnow()
    # Lapsed and revoked subscriptions are not stacked upon
    _add(db, user.id, "monthly", now - timedelta(days=40), now - timedelta(days=10))
    _add(db, user.id, "yearly", now - timedelta(days=1), now + timedelta(days=300), is_active=False)
    sub = SubscriptionStore(db).stack(user.id, "monthly", 30, now=now)
    assert sub.start_date == now
    assert sub.end_date == now + timedelta(days=30)


def test_paid_plan_stacks_on_trial(client: TestClient, db, make_user, create_order, verify):
    user = make_user(trial=True)
    trial = SubscriptionStore(db).current(user.id)
    order = create_order(user)
    assert verify(user, order["order_id"]).status_code == 200
    db.expire_all()
    paid = db.exec(select(Subscription).where(Subscription.user_id == user.id, Subscription.plan == "monthly")).one()
    assert paid.start_date == trial.end_date
    assert paid.end_date == trial.end_date + timedelta(days=30)


def test_current_without_subscription(client: TestClient, make_user, auth):
    user = make_user()
    r = client.get("/subscription/current", headers=auth(user))
    assert r.status_code == 200
    assert r.json() == {"is_active": False, "subscription": None, "days_left": 0}


def test_current_with_trial(client: TestClient, make_user, auth):
    user = make_user(trial=True)
    j = client.get("/subscription/current", headers=auth(user)).json()
    assert j["is_active"] is True
    assert j["subscription"]["plan"] == "trial"
    assert j["days_left"] == 5


def test_plans_catalogue(client: TestClient):
    r = client.get("/subscription/plans")
    assert r.status_code == 200
    assert [(p["name"], p["price"], p["days"]) for p in r.json()] == [
        ("monthly", 499, 30),
        ("quarterly", 1299, 90),
        ("halfyearly", 2499, 180),
        ("yearly", 4499, 365),
    ]


def test_access_gate(client: TestClient, make_user, auth):
    expired = make_user()
    r = client.get("/subscription/access", headers=auth(expired))
    assert r.status_code == 403
    assert r.json()["code"] == "SUBSCRIPTION_EXPIRED"

    active = make_user(trial=True)
    r = client.get("/subscription/access", headers=auth(active))
    assert r.status_code == 200
    assert r.json()["plan"] == "trial"


def test_days_left_rounds_up():
    now = utcnow()
    sub = Subscription(user_id=1, plan="monthly", start_date=now, end_date=now + timedelta(days=2, hours=1))
    assert days_left(sub, now) == 3
    assert days_left(None) == 0
    assert days_left(sub, now + timedelta(days=10)) == 0


def test_sink_without_emit_cannot_be_built():
    class SilentSink(NotificationSink):
        pass

    with pytest.raises(TypeError):
        SilentSink()


def test_grant_is_stored_once_by_database_sink(client, db, make_user):
    user = make_user()
    sink = DatabaseNotificationSink(engine)
    sub = SubscriptionStore(db, sink).grant(user.id, 15)
    SubscriptionStore(db, sink).grant(user.id, 15)

    db.expire_all()
    rows = db.exec(select(Notification).where(Notification.user_id == user.id)).all()
    assert [n.dedup_key for n in rows].count(f"subscription_granted_{sub.id}") == 1
    assert len(rows) == 2
