"""
Messaging Service - admin broadcasts over email and WhatsApp, and inactivity reminders.
"""
from .base import (
    logging, utcnow, timedelta, NotFoundError, ServiceUnavailableError,
    DatabaseStorage, get_storage
)
from .email_service import EmailService, get_email_service
from .whatsapp_service import WhatsAppService, get_whatsapp_service
from .notification_service import NotificationService, get_notification_service
from typing import List, Optional

logger = logging.getLogger("gym_app")

INACTIVITY_DAYS = 7


def _display_name(user) -> str:
    return user.first_name or user.username


class MessagingService:
    def __init__(self, storage: DatabaseStorage, email: EmailService, whatsapp: WhatsAppService,
                 notifications: NotificationService):
        self.storage = storage
        self.email = email
        self.whatsapp = whatsapp
        self.notifications = notifications

    def _recipients(self, user_ids: Optional[List[str]]):
        if not user_ids:
            return self.storage.list_users(role="member", active_only=True)
        users = []
        for user_id in user_ids:
            user = self.storage.get_user(user_id)
            if user is None:
                raise NotFoundError(f"Member {user_id} not found")
            users.append(user)
        return users

    def send_email(self, subject: str, message: str, user_ids: Optional[List[str]] = None) -> dict:
        if not self.email.is_configured():
            raise ServiceUnavailableError("Email is not configured")

        sent, failed = 0, []
        for user in self._recipients(user_ids):
            if self.email.send_custom_email(user.email, _display_name(user), subject, message):
                sent += 1
            else:
                failed.append(user.email)
        logger.info(f"Admin email '{subject}': {sent} sent, {len(failed)} failed")
        return {"status": "success", "sent": sent, "failed": len(failed), "failed_recipients": failed}

    def send_whatsapp(self, message: str, phone_numbers: Optional[List[str]] = None,
                      user_ids: Optional[List[str]] = None) -> dict:
        phones = list(phone_numbers or [])
        if user_ids:
            phones.extend(u.phone for u in self._recipients(user_ids) if u.phone)
        result = self.whatsapp.send_bulk(phones, message)
        logger.info(f"Admin WhatsApp broadcast: {result['sent']} sent, {result['failed']} failed")
        return {"status": "success", **result}

    def send_inactivity_reminders(self, days_inactive: int = INACTIVITY_DAYS) -> dict:
        """Notify (and email) members with an active membership who have not checked in for a while."""
        now = utcnow()
        since = (now - timedelta(days=days_inactive)).isoformat()
        members = self.storage.list_inactive_members(since, now.isoformat())

        emailed = 0
        for user in members:
            self.notifications.create_notification(
                user.id, "reminder", "We miss you!",
                f"You haven't visited the gym in {days_inactive} days. Come back and keep your progress going!"
            )
            if self.email.is_configured() and self.email.send_inactivity_reminder_email(
                    user.email, _display_name(user), days_inactive):
                emailed += 1

        logger.info(f"Inactivity reminders: {len(members)} notified, {emailed} emailed")
        return {"status": "success", "notified": len(members), "emailed": emailed}


# Singleton instance for easy import
messaging_service = MessagingService(
    get_storage(), get_email_service(), get_whatsapp_service(), get_notification_service()
)

def get_messaging_service() -> MessagingService:
    """Dependency injection helper."""
    return messaging_service
