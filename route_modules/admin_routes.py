"""
Admin Routes - back-office dashboard, member management, promotions, feedback,
uploads, broadcasts and the audit log.
"""
from fastapi import APIRouter, Depends, Request
from typing import Optional
from auth import require_admin
from models import (
    MemberCreate, MemberUpdate, PromotionCreate, PromotionUpdate, FeedbackUpdate,
    UploadImageRequest, AdminEmailRequest, AdminWhatsAppRequest, InactivityReminderRequest
)
from service_modules.dashboard_service import DashboardService, get_dashboard_service
from service_modules.member_service import MemberService, get_member_service
from service_modules.messaging_service import MessagingService, get_messaging_service
from service_modules.activity_log_service import ActivityLogService, get_activity_log_service
from service_modules.upload_helper import save_data_url
import logging

logger = logging.getLogger("gym_app")
router = APIRouter()


@router.get("/api/admin/dashboard")
def get_admin_dashboard(
    admin = Depends(require_admin),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Members with an active membership plus headline stats."""
    return service.admin_dashboard()


# --- MEMBERS ---

@router.get("/api/admin/members")
def get_members(
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.list_members()


@router.post("/api/admin/members")
def create_member(
    data: MemberCreate,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    """Admin-created accounts skip email verification."""
    return service.create_member(data, admin)


@router.get("/api/admin/members/{user_id}")
def get_member(
    user_id: str,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.get_member(user_id)


@router.put("/api/admin/members/{user_id}")
def update_member(
    user_id: str,
    data: MemberUpdate,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.update_member(user_id, data)


@router.delete("/api/admin/members/{user_id}")
def delete_member(
    user_id: str,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    """Refused while the member still holds an active membership."""
    return service.delete_member(user_id, admin)


@router.post("/api/admin/members/{user_id}/suspend")
def suspend_member(
    user_id: str,
    request: Request,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.set_active(user_id, False, admin, request=request)


@router.post("/api/admin/members/{user_id}/activate")
def activate_member(
    user_id: str,
    request: Request,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.set_active(user_id, True, admin, request=request)


# --- PROMOTIONS ---

@router.get("/api/admin/promotions")
def get_promotions(
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.all_promotions()


@router.post("/api/admin/promotions")
def create_promotion(
    data: PromotionCreate,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.create_promotion(data)


@router.put("/api/admin/promotions/{promotion_id}")
def update_promotion(
    promotion_id: str,
    data: PromotionUpdate,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.update_promotion(promotion_id, data)


@router.delete("/api/admin/promotions/{promotion_id}")
def delete_promotion(
    promotion_id: str,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.delete_promotion(promotion_id)


# --- FEEDBACK ---

@router.get("/api/admin/feedbacks")
def get_feedbacks(
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.all_feedback()


@router.put("/api/admin/feedbacks/{feedback_id}")
def respond_to_feedback(
    feedback_id: str,
    data: FeedbackUpdate,
    admin = Depends(require_admin),
    service: MemberService = Depends(get_member_service)
):
    return service.respond_to_feedback(feedback_id, data)


# --- UPLOADS ---

@router.post("/api/admin/upload-image")
def upload_image(
    data: UploadImageRequest,
    admin = Depends(require_admin)
):
    """Store a base64 data URL and return its public URL."""
    url = save_data_url(data.image, data.folder)
    logger.info(f"Admin {admin.id} uploaded image to {url}")
    return {"status": "success", "url": url}


# --- MESSAGING ---

@router.post("/api/admin/email/send")
def send_email(
    data: AdminEmailRequest,
    admin = Depends(require_admin),
    service: MessagingService = Depends(get_messaging_service)
):
    return service.send_email(data.subject, data.message, data.user_ids)


@router.post("/api/admin/whatsapp/send")
def send_whatsapp(
    data: AdminWhatsAppRequest,
    admin = Depends(require_admin),
    service: MessagingService = Depends(get_messaging_service)
):
    return service.send_whatsapp(data.message, data.phone_numbers, data.user_ids)


@router.post("/api/admin/send-inactivity-reminders")
def send_inactivity_reminders(
    data: Optional[InactivityReminderRequest] = None,
    admin = Depends(require_admin),
    service: MessagingService = Depends(get_messaging_service)
):
    days = data.days_inactive if data else InactivityReminderRequest().days_inactive
    return service.send_inactivity_reminders(days)


# --- AUDIT LOG ---

@router.get("/api/admin/activity-logs")
def get_activity_logs(
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    admin = Depends(require_admin),
    service: ActivityLogService = Depends(get_activity_log_service)
):
    return service.list_logs(
        user_id=user_id, action=action, entity=entity, start_date=start_date,
        end_date=end_date, limit=min(max(limit, 1), 500), offset=max(offset, 0)
    )
