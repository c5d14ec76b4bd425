"""
Notification Service - handles creating and managing user notifications.
"""
from .base import logging, NotFoundError, DatabaseStorage, get_storage
from .push_service import PushService, get_push_service
from .serializers import row_to_dict
from typing import List

logger = logging.getLogger("gym_app")


class NotificationService:
    """Service for managing user notifications."""

    def __init__(self, storage: DatabaseStorage, push: PushService):
        self.storage = storage
        self.push = push

    def create_notification(self, user_id: str, notification_type: str, title: str, message: str,
                            related_id: str = None, push: bool = True) -> dict:
        """Create a notification for a user and mirror it to their browsers."""
        notification = self.storage.create_notification(
            user_id=user_id, type=notification_type, title=title, message=message, related_id=related_id
        )
        logger.info(f"Created notification for user {user_id}: {title}")

        if push:
            self.push.send_to_user(user_id, title, message)

        return row_to_dict(notification)

    def get_user_notifications(self, user_id: str, limit: int = 50) -> List[dict]:
        return [row_to_dict(n) for n in self.storage.list_notifications(user_id, limit=limit)]

    def get_unread_count(self, user_id: str) -> dict:
        return {"count": self.storage.count_unread_notifications(user_id)}

    def mark_as_read(self, notification_id: int, user_id: str) -> dict:
        if not self.storage.mark_notification_read(notification_id, user_id):
            raise NotFoundError("Notification not found")
        return {"status": "success"}

    def mark_all_as_read(self, user_id: str) -> dict:
        count = self.storage.mark_all_notifications_read(user_id)
        return {"status": "success", "updated": count}

    def delete_notification(self, notification_id: int, user_id: str) -> dict:
        if not self.storage.delete_notification(notification_id, user_id):
            raise NotFoundError("Notification not found")
        return {"status": "success"}


# Singleton instance for easy import
notification_service = NotificationService(get_storage(), get_push_service())

def get_notification_service() -> NotificationService:
    """Dependency injection helper."""
    return notification_service
