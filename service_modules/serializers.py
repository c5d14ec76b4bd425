"""
ORM -> JSON-ready dict conversion shared by services and routes.
"""
import json
from datetime import datetime
from typing import Optional

USER_PRIVATE_FIELDS = {
    "hashed_password", "verification_code", "verification_code_expiry", "verification_attempts",
    "stripe_customer_id", "stripe_subscription_id",
}


def row_to_dict(obj, exclude=()) -> Optional[dict]:
    if obj is None:
        return None
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns if c.name not in exclude}


def _loads(value, default):
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def user_to_dict(user) -> Optional[dict]:
    data = row_to_dict(user, exclude=USER_PRIVATE_FIELDS)
    if data is not None:
        data["full_name"] = " ".join(p for p in (user.first_name, user.last_name) if p) or user.username
    return data


def user_summary(user) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "profile_image_url": user.profile_image_url,
        "active": user.active,
    }


def plan_to_dict(plan) -> Optional[dict]:
    data = row_to_dict(plan, exclude={"features_json"})
    if data is not None:
        data["features"] = _loads(plan.features_json, [])
    return data


def membership_to_dict(membership, plan=None, now: Optional[datetime] = None) -> Optional[dict]:
    data = row_to_dict(membership)
    if data is None:
        return None
    now = now or datetime.utcnow()
    end = datetime.fromisoformat(membership.end_date)
    data["is_active"] = membership.status == "active" and end > now
    data["days_remaining"] = max(0, (end - now).days) if data["is_active"] else 0
    if plan is not None:
        data["plan"] = plan_to_dict(plan)
    return data


def trainer_to_dict(trainer) -> Optional[dict]:
    data = row_to_dict(trainer, exclude={"availability_json"})
    if data is not None:
        data["availability"] = _loads(trainer.availability_json, {})
    return data


def activity_log_to_dict(log) -> Optional[dict]:
    data = row_to_dict(log, exclude={"metadata_json"})
    if data is not None:
        data["metadata"] = _loads(log.metadata_json, None)
    return data
