"""
Membership Service - plans, membership assignment and expiry reporting.
"""
from .base import (
    logging, json, utcnow, now_iso, parse_iso, add_months,
    ValidationError, NotFoundError, DatabaseStorage, get_storage
)
from .activity_log_service import ActivityLogService, get_activity_log_service
from .notification_service import NotificationService, get_notification_service
from .serializers import plan_to_dict, membership_to_dict, user_summary, row_to_dict
from models import MembershipPlanCreate, MembershipPlanUpdate, AssignMembershipRequest
from storage import EXPIRING_SOON_DAYS
from typing import List, Optional

logger = logging.getLogger("gym_app")


class MembershipService:
    """Service for membership plans and member memberships."""

    def __init__(self, storage: DatabaseStorage, activity_log: ActivityLogService,
                 notifications: NotificationService):
        self.storage = storage
        self.activity_log = activity_log
        self.notifications = notifications

    # --- PLANS ---

    def list_plans(self, active_only: bool = True) -> List[dict]:
        return [plan_to_dict(p) for p in self.storage.list_plans(active_only=active_only)]

    def create_plan(self, data: MembershipPlanCreate) -> dict:
        fields = data.model_dump(exclude={"features"})
        plan = self.storage.create_plan(features_json=json.dumps(data.features), **fields)
        logger.info(f"Created membership plan {plan.id} ({plan.name})")
        return plan_to_dict(plan)

    def update_plan(self, plan_id: str, data: MembershipPlanUpdate) -> dict:
        fields = data.model_dump(exclude_unset=True, exclude={"features"})
        if data.features is not None:
            fields["features_json"] = json.dumps(data.features)
        return plan_to_dict(self.storage.update_plan(plan_id, **fields))

    def deactivate_plan(self, plan_id: str) -> dict:
        self.storage.update_plan(plan_id, active=False)
        logger.info(f"Deactivated membership plan {plan_id}")
        return {"status": "success", "message": "Plan deactivated"}

    # --- MEMBERSHIPS ---

    def get_current_membership(self, user_id: str) -> Optional[dict]:
        membership = self.storage.get_active_membership(user_id, now_iso())
        if membership is None:
            return None
        return membership_to_dict(membership, self.storage.get_plan(membership.plan_id))

    def activate_plan(self, user_id: str, plan, start_date: Optional[str] = None,
                      end_date: Optional[str] = None, auto_renewal: bool = False):
        """Replace whatever membership the user holds with one for `plan`."""
        start = parse_iso(start_date, "start_date") or utcnow()
        end = parse_iso(end_date, "end_date") or add_months(start, plan.duration_months)
        if end < start:
            raise ValidationError("Membership end date must not be before its start date")

        membership = self.storage.replace_active_membership(
            user_id=user_id,
            plan_id=plan.id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            auto_renewal=auto_renewal
        )
        logger.info(f"Membership {membership.id} ({plan.name}) active for user {user_id} until {membership.end_date}")
        return membership

    def assign_membership(self, user_id: str, data: AssignMembershipRequest, admin, request=None) -> dict:
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError("Member not found")
        plan = self.storage.get_plan(data.plan_id)
        if plan is None or not plan.active:
            raise NotFoundError("Membership plan not found")

        membership = self.activate_plan(user_id, plan, data.start_date, data.end_date, data.auto_renewal)

        payment = None
        if data.record_payment:
            payment = self.storage.create_payment(
                user_id=user_id,
                membership_id=membership.id,
                plan_id=plan.id,
                amount=plan.price,
                currency=plan.currency,
                status="completed",
                payment_method=data.payment_method,
                description=f"{plan.name} membership ({data.payment_method})"
            )

        self.activity_log.log_membership_change(user_id, membership.id, plan.name, admin.id, request=request)
        self.notifications.create_notification(
            user_id, "membership", "Membership activated",
            f"Your {plan.name} membership is active until {membership.end_date[:10]}.",
            related_id=membership.id
        )
        return {
            "status": "success",
            "membership": membership_to_dict(membership, plan),
            "payment": row_to_dict(payment),
        }

    def cancel_membership(self, user_id: str, admin, request=None) -> dict:
        if self.storage.get_user(user_id) is None:
            raise NotFoundError("Member not found")
        count = self.storage.cancel_active_memberships(user_id)
        if not count:
            raise NotFoundError("Member has no active membership")
        self.activity_log.log(
            "membership_cancelled", user_id=user_id, entity="membership",
            description="Membership cancelled", metadata={"changed_by": admin.id}, request=request
        )
        return {"status": "success", "cancelled": count}

    def expiring_memberships(self, user_id: Optional[str] = None, days: int = EXPIRING_SOON_DAYS) -> List[dict]:
        rows = self.storage.list_expiring_memberships(now_iso(), days=days, user_id=user_id)
        return [
            {**membership_to_dict(r["membership"], r["plan"]), "member": user_summary(r["user"])}
            for r in rows
        ]

    def stats(self) -> dict:
        return self.storage.membership_stats(now_iso())


# Singleton instance for easy import
membership_service = MembershipService(get_storage(), get_activity_log_service(), get_notification_service())

def get_membership_service() -> MembershipService:
    """Dependency injection helper."""
    return membership_service
