"""
Dashboard Service - aggregated views for the member home screen and the admin overview.
"""
from .base import logging, utcnow, now_iso, DatabaseStorage, get_storage
from .serializers import row_to_dict, user_to_dict, membership_to_dict

logger = logging.getLogger("gym_app")


class DashboardService:
    def __init__(self, storage: DatabaseStorage):
        self.storage = storage

    def member_dashboard(self, user) -> dict:
        now = utcnow()
        membership = self.storage.get_active_membership(user.id, now.isoformat())
        plan = self.storage.get_plan(membership.plan_id) if membership else None

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).isoformat()
        upcoming = self.storage.list_user_class_bookings(user.id, upcoming_from=now.date().isoformat())

        return {
            "user": user_to_dict(user),
            "membership": membership_to_dict(membership, plan, now) if membership else None,
            "recent_check_ins": [row_to_dict(c) for c in self.storage.list_user_check_ins(user.id, limit=10)],
            "upcoming_classes": [
                {**row_to_dict(r["booking"]), "class": row_to_dict(r["gym_class"])} for r in upcoming
            ],
            "recent_payments": [row_to_dict(p) for p in self.storage.list_user_payments(user.id, limit=5)],
            "stats": {
                "monthly_check_ins": self.storage.count_user_check_ins_since(user.id, month_start),
                "upcoming_classes": len(upcoming),
                "current_crowd": self.storage.count_active_check_ins(),
            },
        }

    def admin_dashboard(self) -> dict:
        now = now_iso()
        members = self.storage.list_members_with_membership(now)
        membership_stats = self.storage.membership_stats(now)

        return {
            "members": [
                {**user_to_dict(r["user"]),
                 "membership": membership_to_dict(r["membership"], r["plan"])}
                for r in members if r["membership"] is not None
            ],
            "stats": {
                "total_members": len(members),
                # TODO: define "active today" with the front desk before computing it; reported as 0 until then
                "active_today": 0,
                "expiring_soon": membership_stats["expiring_soon"],
                "current_crowd": self.storage.count_active_check_ins(),
                "memberships": membership_stats,
                "revenue": self.storage.revenue_stats(now),
            },
        }


# Singleton instance for easy import
dashboard_service = DashboardService(get_storage())

def get_dashboard_service() -> DashboardService:
    """Dependency injection helper."""
    return dashboard_service
