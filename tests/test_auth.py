"""Auth: register (with trial and per-IP cap), login, me."""
from fastapi.testclient import TestClient
from sqlmodel import select

from app.models import SecurityLog, Subscription


def _register(client, email, ip="203.0.113.10", password="secure123"):
    return client.post(
        "/auth/register",
        json={"email": email, "password": password, "full_name": "New Farmer", "phone": "+919876543210"},
        headers={"X-Forwarded-For": ip},
    )


def test_register_success_starts_trial(client: TestClient, db):
    r = _register(client, "New@Example.com")
    assert r.status_code == 201
    j = r.json()
    assert j["email"] == "new@example.com"
    assert j["full_name"] == "New Farmer"
    subs = db.exec(select(Subscription).where(Subscription.user_id == j["id"])).all()
    assert len(subs) == 1
    assert subs[0].plan == "trial"
    assert (subs[0].end_date - subs[0].start_date).days == 5


def test_register_duplicate_email(client: TestClient):
    assert _register(client, "dup@example.com").status_code == 201
    r = _register(client, "dup@example.com")
    assert r.status_code == 400


def test_register_validation(client: TestClient):
    r = client.post("/auth/register", json={"email": "bad", "password": "123"})
    assert r.status_code == 422


def test_register_ip_weekly_cap(client: TestClient, db):
    for i in range(3):
        assert _register(client, f"farm{i}@example.com", ip="198.51.100.7").status_code == 201
    r = _register(client, "farm3@example.com", ip="198.51.100.7")
    assert r.status_code == 429
    assert r.json()["code"] == "IP_ACCOUNT_LIMIT"
    # Another IP is unaffected
    assert _register(client, "farm4@example.com", ip="198.51.100.8").status_code == 201
    assert db.exec(select(SecurityLog).where(SecurityLog.event == "fraud")).first() is not None


def test_login_success(client: TestClient):
    _register(client, "login@example.com", password="pass123456")
    r = client.post("/auth/login", json={"email": "login@example.com", "password": "pass123456"})
    assert r.status_code == 200
    assert "access_token" in r.json()


def test_login_wrong_password(client: TestClient, db):
    _register(client, "wrong@example.com", password="right123")
    r = client.post("/auth/login", json={"email": "wrong@example.com", "password": "wrongpass"})
    assert r.status_code == 401
    assert db.exec(select(SecurityLog).where(SecurityLog.event == "failed_login")).first() is not None


def test_login_rate_limited(client: TestClient):
    for _ in range(5):
        r = client.post("/auth/login", json={"email": "nobody@example.com", "password": "whatever"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": "nobody@example.com", "password": "whatever"})
    assert r.status_code == 429
    assert r.json()["code"] == "RATE_LIMITED"


def test_me_requires_auth(client: TestClient):
    r = client.get("/auth/me")
    assert r.status_code == 401


def test_me_with_token(client: TestClient, make_user, auth):
    user = make_user(email="me@example.com")
    r = client.get("/auth/me", headers=auth(user))
    assert r.status_code == 200
    assert r.json()["email"] == "me@example.com"
