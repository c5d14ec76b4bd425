"""
Member Routes - dashboard, profile, promotions, own activity and feedback.
"""
from fastapi import APIRouter, Depends
from auth import get_current_user
from models import ProfileUpdateRequest, FeedbackCreate
from service_modules.dashboard_service import DashboardService, get_dashboard_service
from service_modules.member_service import MemberService, get_member_service
from service_modules.activity_log_service import ActivityLogService, get_activity_log_service

router = APIRouter()


@router.get("/api/member/dashboard")
def get_member_dashboard(
    user = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service)
):
    """Membership, recent visits, upcoming classes and payments for the home screen."""
    return service.member_dashboard(user)


@router.put("/api/member/profile")
def update_profile(
    data: ProfileUpdateRequest,
    user = Depends(get_current_user),
    service: MemberService = Depends(get_member_service)
):
    return service.update_profile(user, data)


@router.get("/api/member/promotions")
def get_promotions(
    user = Depends(get_current_user),
    service: MemberService = Depends(get_member_service)
):
    """Promotions that are active and inside their date window."""
    return service.visible_promotions()


@router.get("/api/member/activity")
def get_my_activity(
    limit: int = 50,
    offset: int = 0,
    user = Depends(get_current_user),
    service: ActivityLogService = Depends(get_activity_log_service)
):
    return service.list_logs(user_id=user.id, limit=min(limit, 200), offset=offset)


# --- FEEDBACK ---

@router.post("/api/feedbacks")
def submit_feedback(
    data: FeedbackCreate,
    user = Depends(get_current_user),
    service: MemberService = Depends(get_member_service)
):
    return service.submit_feedback(user, data)


@router.get("/api/feedbacks")
def get_my_feedback(
    user = Depends(get_current_user),
    service: MemberService = Depends(get_member_service)
):
    return service.my_feedback(user.id)
