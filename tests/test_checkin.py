from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
import requests

from errors import QrAlreadyUsedError
from service_modules.checkin_service import get_checkin_service
from service_modules.push_service import get_push_service


def _generate(member_client):
    response = member_client.post("/api/checkin/generate")
    assert response.status_code == 200, response.text
    return response.json()["qr_code"]


def test_generate_qr_is_valid_for_five_minutes(member_client):
    response = member_client.post("/api/checkin/generate")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "valid"
    expires = datetime.fromisoformat(data["expires_at"])
    assert timedelta(minutes=4) < expires - datetime.utcnow() <= timedelta(minutes=5)


def test_generate_requires_login(client):
    assert client.post("/api/checkin/generate").status_code == 401


def test_suspended_member_cannot_generate(member, member_client, storage):
    storage.update_user(member.id, active=False)
    response = member_client.post("/api/checkin/generate")
    assert response.status_code == 403
    assert "suspended" in response.json()["detail"].lower()


def test_preview_does_not_consume(member_client, admin_client, storage):
    qr = _generate(member_client)

    response = admin_client.post("/api/admin/checkin/preview", json={"qr_code": qr})
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["member"]["username"]
    assert data["membership"]["is_active"] is True
    assert storage.get_qr_code(qr).status == "valid"


def test_approve_then_reuse_is_conflict(member, member_client, admin, admin_client, storage):
    qr = _generate(member_client)

    response = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr, "locker_number": "12"})
    assert response.status_code == 200, response.text
    check_in = response.json()["check_in"]
    assert check_in["user_id"] == member.id
    assert check_in["locker_number"] == "12"
    assert check_in["approved_by"] == admin.id

    again = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr})
    assert again.status_code == 409
    assert "already used" in again.json()["detail"].lower()

    status = member_client.get(f"/api/checkin/status/{qr}").json()
    assert status["status"] == "used"
    assert status["check_in"]["id"] == check_in["id"]

    preview = admin_client.post("/api/admin/checkin/preview", json={"qr_code": qr}).json()
    assert preview["valid"] is False
    assert preview["status"] == "used"


def test_public_verify_checks_in(member, member_client, client, storage):
    qr = _generate(member_client)
    response = client.post("/api/checkin/verify", json={"qr_code": qr})
    assert response.status_code == 200
    assert storage.get_active_check_in(member.id) is not None


def test_unknown_code_is_not_found(admin_client, client):
    assert admin_client.post("/api/admin/checkin/approve", json={"qr_code": "nope"}).status_code == 404
    assert admin_client.post("/api/admin/checkin/preview", json={"qr_code": "nope"}).status_code == 404
    assert client.post("/api/checkin/verify", json={"qr_code": "nope"}).status_code == 404


def test_expired_code_is_rejected_and_flipped(member, admin_client, storage):
    past = (datetime.utcnow() - timedelta(minutes=1)).isoformat()
    storage.create_qr_code(member.id, "old-code", past)

    preview = admin_client.post("/api/admin/checkin/preview", json={"qr_code": "old-code"})
    assert preview.status_code == 200
    assert preview.json()["status"] == "expired"

    response = admin_client.post("/api/admin/checkin/approve", json={"qr_code": "old-code"})
    assert response.status_code == 400
    assert storage.get_qr_code("old-code").status == "expired"
    assert storage.get_active_check_in(member.id) is None


def test_member_suspended_after_generating_is_refused(member, member_client, admin_client, storage):
    qr = _generate(member_client)
    assert admin_client.post(f"/api/admin/members/{member.id}/suspend").status_code == 200

    response = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr})
    assert response.status_code == 403
    assert "suspended" in response.json()["detail"].lower()
    # the code stays spent and no visit is recorded
    assert storage.get_qr_code(qr).status == "used"
    assert storage.get_active_check_in(member.id) is None


def test_member_without_membership_is_refused(make_user, login, admin_client, storage):
    user = make_user()
    qr = _generate(login(user))

    response = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr})
    assert response.status_code == 403
    assert "membership" in response.json()["detail"].lower()
    assert storage.get_active_check_in(user.id) is None


def test_concurrent_consumers_only_one_wins(member, member_client, storage):
    qr = _generate(member_client)
    service = get_checkin_service()

    def attempt(_):
        try:
            service.consume_qr(qr)
            return "ok"
        except QrAlreadyUsedError:
            return "used"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("used") == 7
    assert len(storage.list_user_check_ins(member.id)) == 1


def test_full_visit_from_registration(client, admin, admin_client, plan, storage, login):
    response = client.post("/api/register", json={
        "username": "newbie",
        "email": "newbie@example.com",
        "first_name": "New",
        "last_name": "Bie",
        "phone": "081234567890",
        "password": "secret123",
        "confirm_password": "secret123",
    })
    assert response.status_code == 200, response.text
    user = storage.get_user_by_username("newbie")
    assert client.post("/api/login", json={"identifier": "newbie", "password": "secret123"}).status_code == 403

    verify = client.post("/api/verify-email", json={"email": "newbie@example.com", "code": user.verification_code})
    assert verify.status_code == 200

    assigned = admin_client.post(f"/api/admin/members/{user.id}/membership", json={"plan_id": plan.id})
    assert assigned.status_code == 200, assigned.text

    member_client = login(user, password="secret123")
    qr = _generate(member_client)
    assert admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr}).status_code == 200
    assert admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr}).status_code == 409

    recent = admin_client.get("/api/admin/checkins").json()
    assert recent["current_crowd"] == 1
    assert recent["check_ins"][0]["member"]["id"] == user.id


def test_permanent_qr_checks_in_once(member, member_client, admin_client):
    code = member_client.get("/api/checkin/permanent-qr").json()["qr_code"]
    assert code.startswith("MBR-")
    assert member_client.get("/api/checkin/permanent-qr").json()["qr_code"] == code

    first = admin_client.post("/api/admin/checkin/validate", json={"qr_code": code})
    assert first.status_code == 200
    assert first.json()["status"] == "success"

    second = admin_client.post("/api/admin/checkin/validate", json={"qr_code": code})
    assert second.json()["status"] == "already_checked_in"
    assert second.json()["check_in"]["id"] == first.json()["check_in"]["id"]


def test_checkout_twice_is_conflict(member_client, admin_client):
    qr = _generate(member_client)
    check_in_id = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr}).json()["check_in"]["id"]

    response = member_client.post(f"/api/checkin/{check_in_id}/checkout")
    assert response.status_code == 200
    assert response.json()["check_in"]["status"] == "completed"
    assert response.json()["check_in"]["check_out_time"]

    assert admin_client.post(f"/api/admin/checkins/{check_in_id}/checkout").status_code == 409


def test_member_cannot_check_out_someone_else(member_client, admin_client, make_user, give_membership, login):
    other = make_user()
    give_membership(other)
    qr = _generate(login(other))
    check_in_id = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr}).json()["check_in"]["id"]

    assert member_client.post(f"/api/checkin/{check_in_id}/checkout").status_code == 404


def test_auto_checkout_closes_stale_visits(member, storage):
    storage.create_check_in(user_id=member.id)
    service = get_checkin_service()

    assert service.auto_checkout(hours=3) == 0
    assert service.auto_checkout(hours=0) == 1
    assert storage.get_active_check_in(member.id) is None


@pytest.mark.parametrize("path", ["/api/admin/checkin/approve", "/api/admin/checkin/preview"])
def test_front_desk_endpoints_need_staff(member_client, path):
    assert member_client.post(path, json={"qr_code": "x"}).status_code == 403


def test_unreachable_push_endpoint_does_not_fail_check_in(member, member_client, admin_client, storage):
    storage.upsert_push_subscription(member.id, "https://push.example.com/gone", "key", "secret", None)
    qr = _generate(member_client)

    push = get_push_service()
    with patch.object(push, "public_key", "pub"), patch.object(push, "private_key", "priv"), \
            patch("service_modules.push_service.webpush", side_effect=requests.ConnectionError("down")) as send:
        response = admin_client.post("/api/admin/checkin/approve", json={"qr_code": qr})

    assert response.status_code == 200, response.text
    send.assert_called_once()
    assert storage.get_active_check_in(member.id) is not None
