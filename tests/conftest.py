import os
import sys
import shutil
import tempfile
import uuid
from datetime import datetime, timedelta

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Point the app at a throwaway database before anything imports database.py
_TMP_DIR = tempfile.mkdtemp(prefix="gym_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["DISABLE_BACKGROUND_JOBS"] = "1"
os.environ["APP_ENV"] = "test"
for _key in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET",
             "WHATSAPP_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY",
             "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET", "ALLOWED_EMAIL_DOMAINS"):
    os.environ[_key] = ""

from fastapi.testclient import TestClient

from main import app
from database import Base, engine
from auth import get_password_hash
from storage import get_storage

PASSWORD = "password123"


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def storage():
    return get_storage()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(storage):
    def _make_user(role="member", active=True, email_verified=True, **fields):
        username = fields.pop("username", f"{role}_{uuid.uuid4().hex[:8]}")
        return storage.create_user(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            first_name=fields.pop("first_name", username.title()),
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            active=active,
            email_verified=email_verified,
            **fields
        )
    return _make_user


@pytest.fixture
def plan(storage):
    return storage.create_plan(name="Monthly", price=50.0, duration_months=1, features_json='["Gym floor"]')


@pytest.fixture
def give_membership(storage, plan):
    def _give(user, days=30):
        start = datetime.utcnow() - timedelta(days=1)
        return storage.replace_active_membership(
            user.id, plan.id, start.isoformat(), (start + timedelta(days=days + 1)).isoformat()
        )
    return _give


@pytest.fixture
def login():
    """Returns a fresh client holding the session cookie of the given user."""
    def _login(user, password=PASSWORD):
        logged_in = TestClient(app)
        response = logged_in.post("/api/login", json={"identifier": user.username, "password": password})
        assert response.status_code == 200, response.text
        return logged_in
    return _login


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def admin_client(admin, login):
    return login(admin)


@pytest.fixture
def member(make_user, give_membership):
    user = make_user()
    give_membership(user)
    return user


@pytest.fixture
def member_client(member, login):
    return login(member)
