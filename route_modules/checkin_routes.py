"""
Check-in Routes - one-time QR codes, permanent member codes and check-out.

Member-facing endpoints live under /api/checkin, front desk endpoints under
/api/admin/checkin(s).
"""
from fastapi import APIRouter, Depends, Request
from auth import get_current_user, require_admin
from models import QrCodeRequest, CheckInApproveRequest
from service_modules.checkin_service import CheckInService, get_checkin_service

router = APIRouter()


# --- MEMBER ---

@router.post("/api/checkin/generate")
def generate_qr(
    user = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service)
):
    """Issue a one-time QR code valid for five minutes."""
    return service.generate_qr(user)


@router.post("/api/checkin/verify")
def verify_qr(
    data: QrCodeRequest,
    request: Request,
    service: CheckInService = Depends(get_checkin_service)
):
    """Kiosk scan: spend the code and check the member in. No login required."""
    return service.consume_qr(data.qr_code, request=request)


@router.get("/api/checkin/status/{qr_code}")
def get_qr_status(
    qr_code: str,
    user = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.get_qr_status(qr_code, user)


@router.get("/api/checkin/permanent-qr")
def get_permanent_qr(
    user = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.get_permanent_qr(user)


@router.get("/api/checkin/history")
def get_my_check_ins(
    limit: int = 10,
    user = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.my_check_ins(user.id, min(limit, 100))


@router.post("/api/checkin/{check_in_id}/checkout")
def check_out(
    check_in_id: str,
    request: Request,
    user = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.check_out(check_in_id, user, request=request)


# --- FRONT DESK ---

@router.post("/api/admin/checkin/preview")
def preview_qr(
    data: QrCodeRequest,
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    """Show who the code belongs to without spending it."""
    return service.validate_qr(data.qr_code)


@router.post("/api/admin/checkin/approve")
def approve_qr(
    data: CheckInApproveRequest,
    request: Request,
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.consume_qr(
        data.qr_code, locker_number=data.locker_number, approved_by=admin.id, request=request
    )


@router.post("/api/admin/checkin/validate")
def validate_permanent_qr(
    data: CheckInApproveRequest,
    request: Request,
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    """Check a member in with their permanent code."""
    return service.check_in_with_permanent_qr(
        data.qr_code, approved_by=admin.id, locker_number=data.locker_number, request=request
    )


@router.get("/api/admin/checkins")
def get_recent_check_ins(
    limit: int = 20,
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    return {
        "check_ins": service.recent_check_ins(min(max(limit, 1), 200)),
        "current_crowd": service.current_crowd(),
    }


@router.post("/api/admin/checkins/{check_in_id}/checkout")
def admin_check_out(
    check_in_id: str,
    request: Request,
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    return service.check_out(check_in_id, admin, request=request)


@router.post("/api/admin/auto-checkout")
def run_auto_checkout(
    admin = Depends(require_admin),
    service: CheckInService = Depends(get_checkin_service)
):
    """Close stale check-ins now instead of waiting for the background job."""
    return {"status": "success", "checked_out": service.auto_checkout()}
