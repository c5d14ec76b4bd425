from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from auth import verify_password
from service_modules.password_reset_service import GENERIC_MESSAGE


def _registration(**overrides):
    payload = {
        "username": "andi",
        "email": "andi@example.com",
        "first_name": "Andi",
        "last_name": "Wijaya",
        "phone": "081234567890",
        "password": "secret123",
        "confirm_password": "secret123",
    }
    payload.update(overrides)
    return payload


def test_register_creates_unverified_member(client, storage):
    response = client.post("/api/register", json=_registration())
    assert response.status_code == 200, response.text
    assert response.json()["user"]["email_verified"] is False

    user = storage.get_user_by_username("andi")
    assert user.role == "member"
    assert len(user.verification_code) == 6
    assert verify_password("secret123", user.hashed_password)


def test_register_duplicates_conflict(client):
    assert client.post("/api/register", json=_registration()).status_code == 200
    assert client.post("/api/register", json=_registration(email="other@example.com")).status_code == 409
    assert client.post("/api/register", json=_registration(username="other", email="ANDI@example.com")).status_code == 409


@pytest.mark.parametrize("overrides", [
    {"confirm_password": "different"},
    {"password": "123", "confirm_password": "123"},
    {"phone": "1234"},
    {"email": "not-an-email"},
    {"username": "ab"},
])
def test_register_validation(client, overrides):
    response = client.post("/api/register", json=_registration(**overrides))
    assert response.status_code == 400
    assert response.json()["detail"]


def test_allowed_email_domains(client):
    with patch.dict("os.environ", {"ALLOWED_EMAIL_DOMAINS": "gym.co.id"}):
        assert client.post("/api/register", json=_registration()).status_code == 400
        ok = client.post("/api/register", json=_registration(email="andi@gym.co.id"))
    assert ok.status_code == 200


def test_verify_email(client, storage):
    client.post("/api/register", json=_registration())
    user = storage.get_user_by_username("andi")

    wrong = "000000" if user.verification_code != "000000" else "111111"
    assert client.post("/api/verify-email", json={"email": "andi@example.com", "code": wrong}).status_code == 400

    response = client.post("/api/verify-email", json={"email": "andi@example.com", "code": user.verification_code})
    assert response.status_code == 200
    assert storage.get_user(user.id).email_verified is True
    assert client.post("/api/login", json={"identifier": "andi", "password": "secret123"}).status_code == 200


def test_expired_verification_code(client, storage):
    client.post("/api/register", json=_registration())
    user = storage.get_user_by_username("andi")
    storage.update_user(user.id, verification_code_expiry=(datetime.utcnow() - timedelta(minutes=1)).isoformat())

    response = client.post("/api/verify-email", json={"email": "andi@example.com", "code": user.verification_code})
    assert response.status_code == 400
    assert "expired" in response.json()["detail"].lower()


def test_account_code_attempt_limit(client, storage):
    client.post("/api/register", json=_registration())
    code = storage.get_user_by_username("andi").verification_code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        response = client.post("/api/verify-email", json={"email": "andi@example.com", "code": wrong})
        assert response.status_code == 400
    assert "too many" in response.json()["detail"].lower()

    assert client.post("/api/verify-email", json={"email": "andi@example.com", "code": code}).status_code == 400
    assert storage.get_user_by_username("andi").email_verified is False

    client.post("/api/resend-verification-code", json={"email": "andi@example.com"})
    fresh = storage.get_user_by_username("andi").verification_code
    assert client.post("/api/verify-email", json={"email": "andi@example.com", "code": fresh}).status_code == 200


def test_resend_verification_code(client, storage):
    client.post("/api/register", json=_registration())
    assert client.post("/api/resend-verification-code", json={"email": "andi@example.com"}).status_code == 200
    assert client.post("/api/resend-verification-code", json={"email": "nobody@example.com"}).status_code == 404


def test_verify_then_register(client, storage):
    assert client.post("/api/send-verification-code", json={"email": "andi@example.com"}).status_code == 200
    code = storage.get_pending_verification("andi@example.com").code

    response = client.post("/api/register-verified", json=_registration(verification_code=code))
    assert response.status_code == 200, response.text
    assert response.json()["user"]["email_verified"] is True
    assert storage.get_pending_verification("andi@example.com") is None


def test_pending_code_attempt_limit(client, storage):
    client.post("/api/send-verification-code", json={"email": "andi@example.com"})
    code = storage.get_pending_verification("andi@example.com").code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(5):
        response = client.post("/api/register-verified", json=_registration(verification_code=wrong))
        assert response.status_code == 400
    assert storage.get_pending_verification("andi@example.com") is None
    assert client.post("/api/register-verified", json=_registration(verification_code=code)).status_code == 400


def test_send_code_to_registered_email_conflicts(make_user, client):
    user = make_user()
    assert client.post("/api/send-verification-code", json={"email": user.email}).status_code == 409


def test_register_admin_needs_secret(client):
    payload = {"username": "boss", "email": "boss@example.com", "first_name": "Boss", "password": "secret123"}
    assert client.post("/api/register-admin", json={**payload, "admin_secret_key": "guess"}).status_code == 403

    response = client.post("/api/register-admin", json={**payload, "admin_secret_key": "admin123"})
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "admin"


def test_forgot_password_does_not_reveal_accounts(make_user, client):
    user = make_user()
    known = client.post("/api/forgot-password", json={"email": user.email})
    unknown = client.post("/api/forgot-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json()["message"] == unknown.json()["message"] == GENERIC_MESSAGE


def test_reset_password_once(make_user, login, client, storage):
    user = make_user()
    old_session = login(user)

    with patch("service_modules.password_reset_service.secrets.token_urlsafe", return_value="reset-token"):
        client.post("/api/forgot-password", json={"email": user.email})

    payload = {"token": "reset-token", "new_password": "brandnew1", "confirm_password": "brandnew1"}
    assert client.post("/api/reset-password", json=payload).status_code == 200
    assert client.post("/api/reset-password", json=payload).status_code == 400

    assert verify_password("brandnew1", storage.get_user(user.id).hashed_password)
    assert old_session.get("/api/auth/user").status_code == 401


def test_reset_password_mismatch(client):
    payload = {"token": "t", "new_password": "brandnew1", "confirm_password": "other"}
    assert client.post("/api/reset-password", json=payload).status_code == 400
