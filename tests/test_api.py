import base64
import io
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from PIL import Image
from sqlalchemy.exc import OperationalError


def _png_data_url():
    buf = io.BytesIO()
    Image.new("RGB", (20, 20), (255, 0, 0)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_reports_database_outage(client):
    with patch("main.ping_db", side_effect=OperationalError("SELECT 1", {}, Exception("down"))):
        response = client.get("/api/health")
    assert response.status_code == 503


def test_unknown_api_path_is_json_404(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_api_responses_are_not_cached(client):
    assert "no-store" in client.get("/api/health").headers["Cache-Control"]


def test_validation_errors_are_400(client):
    response = client.post("/api/login", json={"identifier": "x"})
    assert response.status_code == 400
    assert "password" in response.json()["detail"]


def test_admin_routes_are_guarded(client, member_client, admin_client):
    assert client.get("/api/admin/dashboard").status_code == 401
    assert member_client.get("/api/admin/dashboard").status_code == 403
    assert admin_client.get("/api/admin/dashboard").status_code == 200


def test_admin_dashboard(member, admin_client):
    data = admin_client.get("/api/admin/dashboard").json()
    assert [m["id"] for m in data["members"]] == [member.id]
    assert data["stats"]["total_members"] == 1
    assert data["stats"]["current_crowd"] == 0
    assert data["stats"]["memberships"]["active"] == 1


def test_admin_member_management(admin_client, client):
    created = admin_client.post("/api/admin/members", json={
        "username": "walkin", "email": "walkin@example.com", "first_name": "Walk", "password": "secret123"
    })
    assert created.status_code == 200, created.text
    user_id = created.json()["id"]
    assert created.json()["email_verified"] is True

    updated = admin_client.put(f"/api/admin/members/{user_id}", json={"last_name": "In"})
    assert updated.json()["full_name"] == "Walk In"

    assert admin_client.post(f"/api/admin/members/{user_id}/suspend").json()["active"] is False
    assert admin_client.post(f"/api/admin/members/{user_id}/activate").json()["active"] is True

    detail = admin_client.get(f"/api/admin/members/{user_id}").json()
    assert detail["memberships"] == []
    assert any(m["id"] == user_id for m in admin_client.get("/api/admin/members").json())

    assert client.post("/api/login", json={"identifier": "walkin", "password": "secret123"}).status_code == 200


def test_profile_update(member_client):
    response = member_client.put("/api/member/profile", json={"first_name": "Rina", "phone": "0812-3456-7890"})
    assert response.status_code == 200
    assert response.json()["first_name"] == "Rina"
    assert response.json()["phone"] == "081234567890"


def test_upload_image_is_stored_locally(admin_client, client):
    response = admin_client.post("/api/admin/upload-image", json={"image": _png_data_url(), "folder": "classes"})
    assert response.status_code == 200, response.text
    url = response.json()["url"]
    assert url.startswith("/uploads/classes/")
    assert client.get(url).status_code == 200


def test_upload_rejects_non_image(admin_client):
    response = admin_client.post("/api/admin/upload-image", json={"image": "data:text/plain;base64,aGk="})
    assert response.status_code == 400


def test_promotions_visibility(admin_client, member_client):
    admin_client.post("/api/admin/promotions", json={"title": "Later", "sort_order": 2})
    admin_client.post("/api/admin/promotions", json={"title": "First", "sort_order": 1})
    admin_client.post("/api/admin/promotions", json={"title": "Hidden", "is_active": False})
    admin_client.post("/api/admin/promotions", json={"title": "Over", "ends_at": "2000-01-01T00:00:00"})

    titles = [p["title"] for p in member_client.get("/api/member/promotions").json()]
    assert titles == ["First", "Later"]
    assert len(admin_client.get("/api/admin/promotions").json()) == 4


def test_feedback_flow(member_client, admin_client):
    created = member_client.post("/api/feedbacks", json={"subject": "Showers", "message": "Cold water", "rating": 2})
    assert created.status_code == 200
    feedback_id = created.json()["id"]

    response = admin_client.put(f"/api/admin/feedbacks/{feedback_id}", json={
        "status": "resolved", "admin_response": "Boiler fixed"
    })
    assert response.json()["status"] == "resolved"
    assert member_client.get("/api/feedbacks").json()[0]["admin_response"] == "Boiler fixed"
    assert admin_client.get("/api/admin/feedbacks").json()[0]["member"]["username"]

    assert admin_client.put(f"/api/admin/feedbacks/{feedback_id}", json={"status": "lost"}).status_code == 400


def test_notifications(member, member_client, admin_client, storage):
    storage.create_notification(member.id, "general", "Hello", "First")
    storage.create_notification(member.id, "general", "Again", "Second")

    assert member_client.get("/api/notifications/unread-count").json()["count"] == 2
    notifications = member_client.get("/api/notifications").json()
    assert member_client.post(f"/api/notifications/{notifications[0]['id']}/read").status_code == 200
    assert member_client.get("/api/notifications/unread-count").json()["count"] == 1

    member_client.post("/api/notifications/read-all")
    assert member_client.get("/api/notifications/unread-count").json()["count"] == 0

    assert member_client.delete(f"/api/notifications/{notifications[1]['id']}").status_code == 200
    assert member_client.delete(f"/api/notifications/{notifications[1]['id']}").status_code == 404
    # another user's notification is invisible
    assert admin_client.post(f"/api/notifications/{notifications[0]['id']}/read").status_code == 404


def test_push_subscription(member, member_client, storage):
    assert member_client.get("/api/push/vapid-public-key").status_code == 503

    payload = {"endpoint": "https://push.example.com/abc", "keys": {"p256dh": "key", "auth": "secret"}}
    assert member_client.post("/api/push/subscribe", json=payload).status_code == 200
    assert len(storage.list_push_subscriptions(member.id)) == 1

    removed = member_client.post("/api/push/unsubscribe", json={"endpoint": payload["endpoint"]})
    assert removed.json()["removed"] is True
    assert storage.list_push_subscriptions(member.id) == []


def test_activity_log_records_logins(member, member_client, admin_client):
    mine = member_client.get("/api/member/activity").json()
    assert [entry["action"] for entry in mine] == ["login"]

    logs = admin_client.get("/api/admin/activity-logs", params={"action": "login", "user_id": member.id}).json()
    assert len(logs) == 1


def test_create_subscription_without_stripe(member_client, plan):
    response = member_client.post("/api/create-subscription", json={"plan_id": plan.id})
    assert response.status_code == 503


def test_payment_history(member, member_client, storage, plan):
    storage.create_payment(user_id=member.id, plan_id=plan.id, amount=50.0, status="completed", payment_method="cash")
    payments = member_client.get("/api/payments").json()
    assert len(payments) == 1
    assert payments[0]["amount"] == 50.0


def _invoice_paid_event(invoice_id, amount_paid, currency):
    invoice = SimpleNamespace(id=invoice_id, payment_intent=None, amount_paid=amount_paid, currency=currency)
    return SimpleNamespace(type="invoice.payment_succeeded", data=SimpleNamespace(object=invoice))


@pytest.mark.parametrize("amount_paid, currency, expected", [
    (5000, "usd", 50.0),
    (5000, "jpy", 5000.0),
])
def test_stripe_webhook_completes_payment(member, client, storage, plan, amount_paid, currency, expected):
    payment = storage.create_payment(
        user_id=member.id, plan_id=plan.id, amount=plan.price, status="pending",
        payment_method="card", stripe_invoice_id="in_123"
    )
    event = _invoice_paid_event("in_123", amount_paid, currency)

    with patch.dict("os.environ", {"STRIPE_WEBHOOK_SECRET": "whsec_test"}), \
            patch("service_modules.payment_service.stripe.Webhook.construct_event", return_value=event):
        response = client.post("/api/payment/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "sig"})

    assert response.status_code == 200, response.text
    completed = next(p for p in storage.list_user_payments(member.id) if p.id == payment.id)
    assert completed.status == "completed"
    assert completed.amount == expected
    assert completed.membership_id
