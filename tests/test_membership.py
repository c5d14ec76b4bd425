from datetime import datetime, timedelta

from models_orm import MembershipORM
from database import SessionLocal


def _memberships(user_id):
    db = SessionLocal()
    try:
        return db.query(MembershipORM).filter(MembershipORM.user_id == user_id).all()
    finally:
        db.close()


def test_assign_replaces_active_membership(member, admin_client, storage):
    yearly = storage.create_plan(name="Yearly", price=500.0, duration_months=12)

    response = admin_client.post(f"/api/admin/members/{member.id}/membership", json={"plan_id": yearly.id})
    assert response.status_code == 200, response.text
    data = response.json()["membership"]
    assert data["plan"]["name"] == "Yearly"
    assert data["is_active"] is True

    rows = _memberships(member.id)
    assert len(rows) == 2
    assert [m.status for m in rows if m.status == "active"] == ["active"]
    assert storage.get_active_membership(member.id).plan_id == yearly.id


def test_end_date_follows_plan_duration(make_user, admin_client, plan):
    user = make_user()
    response = admin_client.post(
        f"/api/admin/members/{user.id}/membership",
        json={"plan_id": plan.id, "start_date": "2031-01-31T00:00:00"}
    )
    assert response.status_code == 200
    assert response.json()["membership"]["end_date"].startswith("2031-02-28")


def test_end_before_start_is_rejected(make_user, admin_client, plan):
    user = make_user()
    response = admin_client.post(f"/api/admin/members/{user.id}/membership", json={
        "plan_id": plan.id, "start_date": "2031-05-01", "end_date": "2031-04-01"
    })
    assert response.status_code == 400


def test_assign_can_record_cash_payment(make_user, admin_client, plan, storage):
    user = make_user()
    response = admin_client.post(f"/api/admin/members/{user.id}/membership", json={
        "plan_id": plan.id, "record_payment": True
    })
    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["status"] == "completed"
    assert payment["amount"] == plan.price
    assert payment["payment_method"] == "cash"

    revenue = admin_client.get("/api/admin/dashboard").json()["stats"]["revenue"]
    assert revenue["total"] == plan.price
    assert revenue["this_month"] == plan.price


def test_cancel_membership(member, admin_client, storage):
    assert admin_client.delete(f"/api/admin/members/{member.id}/membership").status_code == 200
    assert storage.get_active_membership(member.id) is None
    assert admin_client.delete(f"/api/admin/members/{member.id}/membership").status_code == 404


def test_delete_member_with_active_membership_conflicts(member, admin_client, storage):
    response = admin_client.delete(f"/api/admin/members/{member.id}")
    assert response.status_code == 409
    assert storage.get_user(member.id) is not None

    admin_client.delete(f"/api/admin/members/{member.id}/membership")
    assert admin_client.delete(f"/api/admin/members/{member.id}").status_code == 200
    assert storage.get_user(member.id) is None


def test_lapsed_membership_is_not_active(make_user, storage, plan):
    user = make_user()
    start = datetime.utcnow() - timedelta(days=40)
    storage.replace_active_membership(user.id, plan.id, start.isoformat(), (start + timedelta(days=30)).isoformat())

    assert storage.get_active_membership(user.id) is None
    assert storage.membership_stats()["active"] == 0


def test_expiring_soon(make_user, give_membership, login, admin_client):
    soon = make_user()
    give_membership(soon, days=10)
    later = make_user()
    give_membership(later, days=60)

    mine = login(soon).get("/api/notifications/expiring").json()
    assert [m["user_id"] for m in mine] == [soon.id]
    assert login(later).get("/api/notifications/expiring").json() == []

    everyone = admin_client.get("/api/notifications/expiring").json()
    assert {m["member"]["id"] for m in everyone} == {soon.id}
    assert admin_client.get("/api/admin/dashboard").json()["stats"]["expiring_soon"] == 1


def test_plan_management_is_admin_only(member_client, admin_client, client):
    payload = {"name": "Student", "price": 25, "duration_months": 1, "features": ["Gym floor", "Lockers"]}
    assert member_client.post("/api/admin/membership-plans", json=payload).status_code == 403
    assert client.post("/api/admin/membership-plans", json=payload).status_code == 401

    created = admin_client.post("/api/admin/membership-plans", json=payload)
    assert created.status_code == 200
    plan_id = created.json()["id"]
    assert created.json()["features"] == ["Gym floor", "Lockers"]

    assert any(p["id"] == plan_id for p in client.get("/api/membership-plans").json())
    assert admin_client.delete(f"/api/admin/membership-plans/{plan_id}").status_code == 200
    assert all(p["id"] != plan_id for p in client.get("/api/membership-plans").json())


def test_member_dashboard(member, member_client):
    response = member_client.get("/api/member/dashboard")
    assert response.status_code == 200
    data = response.json()
    assert data["membership"]["is_active"] is True
    assert data["membership"]["days_remaining"] >= 29
    assert data["stats"]["monthly_check_ins"] == 0
    assert "hashed_password" not in data["user"]
