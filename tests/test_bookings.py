from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from errors import ConflictError


def _tomorrow():
    return (datetime.utcnow() + timedelta(days=1)).date().isoformat()


@pytest.fixture
def yoga(admin_client):
    response = admin_client.post("/api/admin/classes", json={
        "name": "Yoga", "instructor_name": "Dewi", "schedule": "Mon 18:00", "max_capacity": 2
    })
    assert response.status_code == 200, response.text
    return response.json()


def _class(client, class_id):
    return next(c for c in client.get("/api/classes").json() if c["id"] == class_id)


def test_capacity_is_enforced(yoga, make_user, login, client):
    clients = [login(make_user()) for _ in range(3)]
    day = _tomorrow()

    assert clients[0].post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).status_code == 200
    assert clients[1].post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).status_code == 200
    full = clients[2].post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day})
    assert full.status_code == 409
    assert "full" in full.json()["detail"].lower()
    assert _class(client, yoga["id"])["current_enrollment"] == 2


def test_concurrent_bookings_never_exceed_capacity(yoga, make_user, storage):
    users = [make_user() for _ in range(6)]
    day = _tomorrow()

    def attempt(user):
        try:
            storage.create_class_booking(user.id, yoga["id"], day)
            return "ok"
        except ConflictError:
            return "full"

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(attempt, users))

    assert outcomes.count("ok") == 2
    assert storage.get_class(yoga["id"]).current_enrollment == 2


def test_duplicate_booking_conflicts(yoga, member_client):
    day = _tomorrow()
    assert member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).status_code == 200
    assert member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).status_code == 409


def test_cancel_frees_the_seat(yoga, member_client, client):
    booking = member_client.post(
        f"/api/classes/{yoga['id']}/book", json={"booking_date": _tomorrow()}
    ).json()["booking"]
    assert _class(client, yoga["id"])["current_enrollment"] == 1

    response = member_client.post(f"/api/class-bookings/{booking['id']}/cancel")
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "cancelled"
    assert _class(client, yoga["id"])["current_enrollment"] == 0

    assert member_client.post(f"/api/class-bookings/{booking['id']}/cancel").status_code == 409


def test_cannot_cancel_someone_elses_booking(yoga, member_client, make_user, login):
    booking = member_client.post(
        f"/api/classes/{yoga['id']}/book", json={"booking_date": _tomorrow()}
    ).json()["booking"]
    assert login(make_user()).post(f"/api/class-bookings/{booking['id']}/cancel").status_code == 404


def test_booking_unknown_or_inactive_class(yoga, member_client, admin_client):
    day = _tomorrow()
    assert member_client.post("/api/classes/nope/book", json={"booking_date": day}).status_code == 404

    admin_client.delete(f"/api/admin/classes/{yoga['id']}")
    assert member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).status_code == 404


def test_booking_in_the_past_is_rejected(yoga, member_client):
    yesterday = (datetime.utcnow() - timedelta(days=1)).date().isoformat()
    assert member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": yesterday}).status_code == 400


def test_admin_status_changes(yoga, member_client, admin_client):
    day = _tomorrow()
    first = member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": day}).json()["booking"]

    attended = admin_client.put(f"/api/admin/class-bookings/{first['id']}", json={"status": "attended"})
    assert attended.status_code == 200
    assert attended.json()["booking"]["status"] == "attended"

    listed = admin_client.get("/api/admin/class-bookings", params={"status": "attended"}).json()
    assert [b["id"] for b in listed] == [first["id"]]
    assert listed[0]["member"]["id"]

    second = member_client.post(
        f"/api/classes/{yoga['id']}/book", json={"booking_date": (datetime.utcnow() + timedelta(days=2)).date().isoformat()}
    ).json()["booking"]
    member_client.post(f"/api/class-bookings/{second['id']}/cancel")
    assert admin_client.put(f"/api/admin/class-bookings/{second['id']}", json={"status": "attended"}).status_code == 409


def test_my_class_bookings(yoga, member_client):
    member_client.post(f"/api/classes/{yoga['id']}/book", json={"booking_date": _tomorrow()})
    bookings = member_client.get("/api/class-bookings", params={"upcoming": True}).json()
    assert len(bookings) == 1
    assert bookings[0]["class"]["name"] == "Yoga"


# --- PT BOOKINGS ---

@pytest.fixture
def trainer(admin_client):
    response = admin_client.post("/api/admin/trainers", json={
        "name": "Budi", "specialization": "Strength", "price_per_session": 30,
        "availability": {"mon": ["09:00", "10:00"]}
    })
    assert response.status_code == 200, response.text
    return response.json()


def test_trainer_listing(trainer, client):
    trainers = client.get("/api/trainers").json()
    assert trainers[0]["name"] == "Budi"
    assert trainers[0]["availability"] == {"mon": ["09:00", "10:00"]}


def test_pt_booking_lifecycle(trainer, member_client, admin_client):
    when = (datetime.utcnow() + timedelta(days=3)).replace(microsecond=0).isoformat()
    created = member_client.post("/api/pt-bookings", json={"trainer_id": trainer["id"], "booking_date": when})
    assert created.status_code == 200, created.text
    booking = created.json()["booking"]
    assert booking["status"] == "pending"

    confirmed = admin_client.put(f"/api/admin/pt-bookings/{booking['id']}", json={"status": "confirmed"})
    assert confirmed.json()["booking"]["status"] == "confirmed"
    completed = admin_client.put(f"/api/admin/pt-bookings/{booking['id']}", json={"status": "completed"})
    assert completed.json()["booking"]["status"] == "completed"

    assert member_client.post(f"/api/pt-bookings/{booking['id']}/cancel").status_code == 409
    assert admin_client.put(f"/api/admin/pt-bookings/{booking['id']}", json={"status": "pending"}).status_code == 409

    mine = member_client.get("/api/pt-bookings").json()
    assert mine[0]["trainer"]["name"] == "Budi"


def test_pt_booking_unknown_status(trainer, member_client, admin_client):
    when = (datetime.utcnow() + timedelta(days=3)).isoformat()
    booking = member_client.post(
        "/api/pt-bookings", json={"trainer_id": trainer["id"], "booking_date": when}
    ).json()["booking"]
    assert admin_client.put(f"/api/admin/pt-bookings/{booking['id']}", json={"status": "lost"}).status_code == 400
