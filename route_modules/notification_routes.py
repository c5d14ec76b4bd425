"""
Notification Routes - in-app notifications, web push subscriptions and expiry alerts.
"""
from fastapi import APIRouter, Depends, Request
from auth import get_current_user
from models import PushSubscribeRequest, PushUnsubscribeRequest
from service_modules.notification_service import NotificationService, get_notification_service
from service_modules.push_service import PushService, get_push_service
from service_modules.membership_service import MembershipService, get_membership_service
from errors import ServiceUnavailableError

router = APIRouter()

STAFF_ROLES = {"admin", "owner"}


@router.get("/api/notifications")
def get_notifications(
    limit: int = 50,
    user = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Get notifications for the current user."""
    return service.get_user_notifications(user.id, min(limit, 200))


@router.get("/api/notifications/unread-count")
def get_unread_count(
    user = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Get count of unread notifications."""
    return service.get_unread_count(user.id)


@router.get("/api/notifications/expiring")
def get_expiring_memberships(
    user = Depends(get_current_user),
    service: MembershipService = Depends(get_membership_service)
):
    """Memberships ending soon. Staff see every member, members only their own."""
    user_id = None if user.role in STAFF_ROLES else user.id
    return service.expiring_memberships(user_id=user_id)


@router.post("/api/notifications/read-all")
def mark_all_as_read(
    user = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Mark all notifications as read."""
    return service.mark_all_as_read(user.id)


@router.post("/api/notifications/{notification_id}/read")
def mark_as_read(
    notification_id: int,
    user = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Mark a notification as read."""
    return service.mark_as_read(notification_id, user.id)


@router.delete("/api/notifications/{notification_id}")
def delete_notification(
    notification_id: int,
    user = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """Delete a notification."""
    return service.delete_notification(notification_id, user.id)


# --- WEB PUSH ---

@router.get("/api/push/vapid-public-key")
def get_vapid_public_key(service: PushService = Depends(get_push_service)):
    if not service.is_configured():
        raise ServiceUnavailableError("Push notifications are not configured")
    return {"public_key": service.public_key}


@router.post("/api/push/subscribe")
def subscribe_push(
    data: PushSubscribeRequest,
    request: Request,
    user = Depends(get_current_user),
    service: PushService = Depends(get_push_service)
):
    service.subscribe(
        user.id, data.endpoint, data.keys.p256dh, data.keys.auth,
        user_agent=request.headers.get("User-Agent")
    )
    return {"status": "success"}


@router.post("/api/push/unsubscribe")
def unsubscribe_push(
    data: PushUnsubscribeRequest,
    user = Depends(get_current_user),
    service: PushService = Depends(get_push_service)
):
    return {"status": "success", "removed": service.unsubscribe(user.id, data.endpoint)}
