"""
Activity Log Service - audit trail of member and staff actions.
"""
from .base import logging, ConflictError, ServiceUnavailableError, DatabaseStorage, get_storage
from .serializers import activity_log_to_dict
from typing import List, Optional

logger = logging.getLogger("gym_app")


class ActivityLogService:
    """Writes audit records. A failed write is logged, never raised to the caller."""

    def __init__(self, storage: DatabaseStorage):
        self.storage = storage

    def log(self, action: str, user_id: Optional[str] = None, entity: Optional[str] = None,
            entity_id: Optional[str] = None, description: Optional[str] = None,
            metadata: Optional[dict] = None, request=None):
        ip_address = user_agent = None
        if request is not None:
            forwarded = request.headers.get("X-Forwarded-For")
            ip_address = forwarded.split(",")[0].strip() if forwarded else (
                request.client.host if request.client else None)
            user_agent = request.headers.get("User-Agent")
        try:
            self.storage.create_activity_log(
                action=action, user_id=user_id, entity=entity, entity_id=entity_id,
                description=description, metadata=metadata, ip_address=ip_address, user_agent=user_agent
            )
        except (ServiceUnavailableError, ConflictError) as e:
            logger.error(f"Activity log '{action}' for user {user_id} not written: {e.message}")

    def log_login(self, user_id: str, request=None):
        self.log("login", user_id=user_id, entity="user", entity_id=user_id, description="User logged in",
                 request=request)

    def log_logout(self, user_id: str, request=None):
        self.log("logout", user_id=user_id, entity="user", entity_id=user_id, description="User logged out",
                 request=request)

    def log_check_in(self, user_id: str, check_in_id: str, approved_by: Optional[str] = None, request=None):
        self.log("check_in", user_id=user_id, entity="check_in", entity_id=check_in_id,
                 description="Member checked in", metadata={"approved_by": approved_by} if approved_by else None,
                 request=request)

    def log_check_out(self, user_id: str, check_in_id: str, automatic: bool = False, request=None):
        self.log("check_out", user_id=user_id, entity="check_in", entity_id=check_in_id,
                 description="Automatic check-out" if automatic else "Member checked out", request=request)

    def log_membership_change(self, user_id: str, membership_id: str, plan_name: str, changed_by: str, request=None):
        self.log("membership_assigned", user_id=user_id, entity="membership", entity_id=membership_id,
                 description=f"Membership set to {plan_name}", metadata={"changed_by": changed_by}, request=request)

    def list_logs(self, **filters) -> List[dict]:
        return [activity_log_to_dict(log) for log in self.storage.list_activity_logs(**filters)]


# Singleton instance for easy import
activity_log_service = ActivityLogService(get_storage())

def get_activity_log_service() -> ActivityLogService:
    """Dependency injection helper."""
    return activity_log_service
