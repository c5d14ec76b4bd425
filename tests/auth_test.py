from datetime import datetime, timedelta

import pytest

from fastapi.testclient import TestClient

from auth import SESSION_COOKIE_NAME, create_session_token
from main import app
from conftest import PASSWORD


@pytest.mark.parametrize("field", ["username", "email", "phone"])
def test_login_with_any_identifier(make_user, client, field):
    user = make_user(phone="081234567890")
    response = client.post("/api/login", json={"identifier": getattr(user, field), "password": PASSWORD})
    assert response.status_code == 200, response.text
    assert response.json()["user"]["id"] == user.id
    assert "hashed_password" not in response.json()["user"]
    assert SESSION_COOKIE_NAME in response.cookies


def test_login_email_is_case_insensitive(make_user, client):
    user = make_user(email="Mixed.Case@Example.com")
    response = client.post("/api/login", json={"identifier": "mixed.case@example.com", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["user"]["id"] == user.id


def test_wrong_password(make_user, client):
    user = make_user()
    response = client.post("/api/login", json={"identifier": user.username, "password": "wrong"})
    assert response.status_code == 401


def test_unknown_user(client):
    assert client.post("/api/login", json={"identifier": "ghost", "password": "x"}).status_code == 401


def test_unverified_member_cannot_log_in(make_user, client):
    user = make_user(email_verified=False)
    response = client.post("/api/login", json={"identifier": user.username, "password": PASSWORD})
    assert response.status_code == 403


def test_unverified_admin_can_log_in(make_user, client):
    user = make_user(role="admin", email_verified=False)
    assert client.post("/api/login", json={"identifier": user.username, "password": PASSWORD}).status_code == 200


def test_suspended_member_can_still_log_in(make_user, client):
    user = make_user(active=False)
    assert client.post("/api/login", json={"identifier": user.username, "password": PASSWORD}).status_code == 200


def test_session_cookie_and_logout(member, member_client):
    me = member_client.get("/api/auth/user")
    assert me.status_code == 200
    assert me.json()["id"] == member.id

    assert member_client.post("/api/logout").status_code == 200
    assert member_client.get("/api/auth/user").status_code == 401


def test_remember_me_extends_session(make_user, client, storage):
    user = make_user()
    short = client.post("/api/login", json={"identifier": user.username, "password": PASSWORD}).json()
    long = client.post(
        "/api/login", json={"identifier": user.username, "password": PASSWORD, "remember_me": True}
    ).json()

    short_left = datetime.fromisoformat(short["expires_at"]) - datetime.utcnow()
    long_left = datetime.fromisoformat(long["expires_at"]) - datetime.utcnow()
    assert timedelta(hours=23) < short_left <= timedelta(hours=24)
    assert timedelta(days=29) < long_left <= timedelta(days=30)


def test_bearer_token_is_accepted(make_user, client):
    user = make_user()
    token = client.post("/api/login", json={"identifier": user.username, "password": PASSWORD}).cookies[SESSION_COOKIE_NAME]

    fresh = TestClient(app)
    response = fresh.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["id"] == user.id


def test_token_without_session_row_is_rejected(make_user, client):
    user = make_user()
    token = create_session_token("no-such-session", user.id, datetime.utcnow() + timedelta(hours=1))
    response = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_role_is_read_from_database(make_user, login, storage):
    user = make_user()
    session = login(user)
    assert session.get("/api/admin/dashboard").status_code == 403

    storage.update_user(user.id, role="admin")
    assert session.get("/api/admin/dashboard").status_code == 200


def test_expired_session_is_rejected(make_user, client, storage):
    user = make_user()
    past = datetime.utcnow() - timedelta(minutes=1)
    session = storage.create_session(user_id=user.id, expires_at=past.isoformat())
    token = create_session_token(session.id, user.id, datetime.utcnow() + timedelta(hours=1))

    response = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert storage.get_session(session.id) is None
