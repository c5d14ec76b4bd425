"""
Member Service - profiles, admin member management, feedback and promotions.
"""
from .base import logging, now_iso, NotFoundError, DatabaseStorage, get_storage
from .activity_log_service import ActivityLogService, get_activity_log_service
from .upload_helper import save_data_url
from .serializers import row_to_dict, user_to_dict, user_summary, membership_to_dict
from auth import get_password_hash
from models import (
    ProfileUpdateRequest, MemberCreate, MemberUpdate, FeedbackCreate, FeedbackUpdate,
    PromotionCreate, PromotionUpdate
)
from typing import List

logger = logging.getLogger("gym_app")


class MemberService:
    """Service for member accounts as seen by the member and by staff."""

    def __init__(self, storage: DatabaseStorage, activity_log: ActivityLogService):
        self.storage = storage
        self.activity_log = activity_log

    # --- PROFILE ---

    def update_profile(self, user, data: ProfileUpdateRequest) -> dict:
        fields = data.model_dump(exclude_unset=True, exclude={"profile_image"})
        if data.profile_image:
            fields["profile_image_url"] = save_data_url(data.profile_image, "profiles")
        return user_to_dict(self.storage.update_user(user.id, **fields))

    # --- ADMIN: MEMBERS ---

    def list_members(self) -> List[dict]:
        return [
            {**user_to_dict(r["user"]),
             "membership": membership_to_dict(r["membership"], r["plan"]) if r["membership"] else None}
            for r in self.storage.list_members_with_membership(now_iso())
        ]

    def get_member(self, user_id: str) -> dict:
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError("Member not found")
        memberships = self.storage.list_user_memberships(user_id)
        return {
            **user_to_dict(user),
            "memberships": [membership_to_dict(m, self.storage.get_plan(m.plan_id)) for m in memberships],
            "recent_check_ins": [row_to_dict(c) for c in self.storage.list_user_check_ins(user_id, limit=10)],
        }

    def create_member(self, data: MemberCreate, admin) -> dict:
        user = self.storage.create_user(
            username=data.username,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            phone=data.phone,
            hashed_password=get_password_hash(data.password),
            role=data.role,
            active=True,
            email_verified=True
        )
        logger.info(f"Admin {admin.id} created {data.role} {user.username} ({user.id})")
        return user_to_dict(user)

    def update_member(self, user_id: str, data: MemberUpdate) -> dict:
        return user_to_dict(self.storage.update_user(user_id, **data.model_dump(exclude_unset=True)))

    def set_active(self, user_id: str, active: bool, admin, request=None) -> dict:
        user = self.storage.update_user(user_id, active=active)
        self.activity_log.log(
            "member_activated" if active else "member_suspended", user_id=user_id, entity="user",
            entity_id=user_id, metadata={"changed_by": admin.id}, request=request
        )
        logger.info(f"Admin {admin.id} {'activated' if active else 'suspended'} user {user_id}")
        return user_to_dict(user)

    def delete_member(self, user_id: str, admin) -> dict:
        self.storage.delete_user(user_id, now_iso())
        logger.info(f"Admin {admin.id} deleted user {user_id}")
        return {"status": "success", "message": "Member deleted"}

    # --- FEEDBACK ---

    def submit_feedback(self, user, data: FeedbackCreate) -> dict:
        return row_to_dict(self.storage.create_feedback(user_id=user.id, **data.model_dump()))

    def my_feedback(self, user_id: str) -> List[dict]:
        return [row_to_dict(r["feedback"]) for r in self.storage.list_feedbacks(user_id=user_id)]

    def all_feedback(self) -> List[dict]:
        return [{**row_to_dict(r["feedback"]), "member": user_summary(r["user"])}
                for r in self.storage.list_feedbacks()]

    def respond_to_feedback(self, feedback_id: str, data: FeedbackUpdate) -> dict:
        return row_to_dict(self.storage.update_feedback(feedback_id, **data.model_dump(exclude_unset=True)))

    # --- PROMOTIONS ---

    def visible_promotions(self) -> List[dict]:
        return [row_to_dict(p) for p in self.storage.list_promotions(visible_at=now_iso())]

    def all_promotions(self) -> List[dict]:
        return [row_to_dict(p) for p in self.storage.list_promotions()]

    def create_promotion(self, data: PromotionCreate) -> dict:
        return row_to_dict(self.storage.create_promotion(**data.model_dump()))

    def update_promotion(self, promotion_id: str, data: PromotionUpdate) -> dict:
        return row_to_dict(self.storage.update_promotion(promotion_id, **data.model_dump(exclude_unset=True)))

    def delete_promotion(self, promotion_id: str) -> dict:
        self.storage.delete_promotion(promotion_id)
        return {"status": "success"}


# Singleton instance for easy import
member_service = MemberService(get_storage(), get_activity_log_service())

def get_member_service() -> MemberService:
    """Dependency injection helper."""
    return member_service
