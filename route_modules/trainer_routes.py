"""
Trainer Routes - personal trainers, PT bookings, session packages and attendance.
"""
from fastapi import APIRouter, Depends, Request
from typing import Optional
from auth import get_current_user, require_admin
from models import (
    TrainerCreate, TrainerUpdate, PtBookingCreate, BookingStatusUpdate,
    PtPackageCreate, PtAttendanceCreate, PtAttendanceConfirm
)
from service_modules.trainer_service import TrainerService, get_trainer_service

router = APIRouter()


# --- TRAINERS ---

@router.get("/api/trainers")
def get_trainers(service: TrainerService = Depends(get_trainer_service)):
    return service.list_trainers()


@router.get("/api/admin/trainers")
def admin_get_trainers(
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.list_trainers(active_only=False)


@router.post("/api/admin/trainers")
def admin_create_trainer(
    data: TrainerCreate,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.create_trainer(data)


@router.put("/api/admin/trainers/{trainer_id}")
def admin_update_trainer(
    trainer_id: str,
    data: TrainerUpdate,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.update_trainer(trainer_id, data)


@router.delete("/api/admin/trainers/{trainer_id}")
def admin_delete_trainer(
    trainer_id: str,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.deactivate_trainer(trainer_id)


# --- PT BOOKINGS ---

@router.get("/api/pt-bookings")
def get_my_pt_bookings(
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.my_bookings(user.id)


@router.post("/api/pt-bookings")
def create_pt_booking(
    data: PtBookingCreate,
    request: Request,
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.create_booking(user, data, request=request)


@router.post("/api/pt-bookings/{booking_id}/cancel")
def cancel_pt_booking(
    booking_id: str,
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.cancel_booking(user, booking_id)


@router.get("/api/admin/pt-bookings")
def admin_get_pt_bookings(
    status: Optional[str] = None,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.all_bookings(status=status)


@router.put("/api/admin/pt-bookings/{booking_id}")
def admin_update_pt_booking(
    booking_id: str,
    data: BookingStatusUpdate,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.update_booking_status(booking_id, data.status)


# --- SESSION PACKAGES ---

@router.get("/api/pt-session-packages")
def get_my_pt_packages(
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.my_packages(user.id)


@router.get("/api/admin/pt-session-packages")
def admin_get_pt_packages(
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.all_packages()


@router.post("/api/admin/pt-session-packages")
def admin_create_pt_package(
    data: PtPackageCreate,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    """Sell a bundle of sessions; price defaults to the trainer's rate."""
    return service.create_package(data)


# --- ATTENDANCE ---

@router.get("/api/pt-session-attendance")
def get_my_pt_attendance(
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.my_attendance(user.id)


@router.post("/api/pt-session-attendance")
def schedule_pt_session(
    data: PtAttendanceCreate,
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.schedule_session(user, data)


@router.post("/api/pt-session-attendance/{attendance_id}/check-in")
def check_in_pt_session(
    attendance_id: str,
    user = Depends(get_current_user),
    service: TrainerService = Depends(get_trainer_service)
):
    return service.check_in_session(user, attendance_id)


@router.get("/api/admin/pt-session-attendance")
def admin_get_pending_attendance(
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    """Sessions waiting for confirmation."""
    return service.pending_attendance()


@router.post("/api/admin/pt-session-attendance/{attendance_id}/confirm")
def admin_confirm_pt_session(
    attendance_id: str,
    request: Request,
    data: Optional[PtAttendanceConfirm] = None,
    admin = Depends(require_admin),
    service: TrainerService = Depends(get_trainer_service)
):
    """Confirm a session and take exactly one session off the package."""
    return service.confirm_session(admin, attendance_id, notes=data.notes if data else None, request=request)
