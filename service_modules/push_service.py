"""
Push Service - Web Push delivery to subscribed browsers (VAPID).
"""
import os
import json
import logging

import requests
from pywebpush import webpush, WebPushException

from storage import DatabaseStorage, get_storage

logger = logging.getLogger("gym_app")

# Push services answer 404/410 for subscriptions the browser has dropped
STALE_SUBSCRIPTION_STATUSES = {404, 410}


class PushService:
    """Service for subscribing browsers and fanning out push messages."""

    def __init__(self, storage: DatabaseStorage):
        self.storage = storage
        self.public_key = os.getenv("VAPID_PUBLIC_KEY", "")
        self.private_key = os.getenv("VAPID_PRIVATE_KEY", "")
        self.subject = os.getenv("VAPID_SUBJECT", "mailto:admin@example.com")

    def is_configured(self) -> bool:
        return bool(self.public_key and self.private_key)

    def subscribe(self, user_id: str, endpoint: str, p256dh: str, auth: str, user_agent: str = None):
        sub = self.storage.upsert_push_subscription(user_id, endpoint, p256dh, auth, user_agent)
        logger.info(f"Push subscription stored for user {user_id}")
        return sub

    def unsubscribe(self, user_id: str, endpoint: str) -> bool:
        return self.storage.delete_push_subscription(endpoint, user_id=user_id)

    def send_to_user(self, user_id: str, title: str, body: str, url: str = "/") -> int:
        """Returns the number of subscriptions that accepted the message."""
        if not self.is_configured():
            logger.debug("VAPID keys not configured, skipping push")
            return 0

        payload = json.dumps({"title": title, "body": body, "url": url})
        delivered = 0
        for sub in self.storage.list_push_subscriptions(user_id):
            try:
                webpush(
                    subscription_info={"endpoint": sub.endpoint, "keys": {"p256dh": sub.p256dh, "auth": sub.auth}},
                    data=payload,
                    vapid_private_key=self.private_key,
                    vapid_claims={"sub": self.subject},
                    timeout=10
                )
                delivered += 1
            except WebPushException as e:
                status = e.response.status_code if e.response is not None else None
                if status in STALE_SUBSCRIPTION_STATUSES:
                    self.storage.delete_push_subscription(sub.endpoint)
                    logger.info(f"Removed stale push subscription for user {user_id}")
                else:
                    logger.error(f"Push to user {user_id} failed: {e}")
            except requests.RequestException as e:
                logger.error(f"Push to user {user_id} could not reach {sub.endpoint}: {e}")
        return delivered


# Singleton instance for easy import
push_service = PushService(get_storage())

def get_push_service() -> PushService:
    """Dependency injection helper."""
    return push_service
