"""
Class Routes - group classes and class bookings.
"""
from fastapi import APIRouter, Depends, Request
from typing import Optional
from auth import get_current_user, require_admin
from models import ClassBookingCreate, BookingStatusUpdate, GymClassCreate, GymClassUpdate
from service_modules.class_service import ClassService, get_class_service

router = APIRouter()


# --- MEMBER ---

@router.get("/api/classes")
def get_classes(service: ClassService = Depends(get_class_service)):
    """Active classes with their current enrollment."""
    return service.list_classes()


@router.post("/api/classes/{class_id}/book")
def book_class(
    class_id: str,
    data: ClassBookingCreate,
    request: Request,
    user = Depends(get_current_user),
    service: ClassService = Depends(get_class_service)
):
    return service.book_class(user, class_id, data.booking_date, request=request)


@router.get("/api/class-bookings")
def get_my_class_bookings(
    upcoming: bool = False,
    user = Depends(get_current_user),
    service: ClassService = Depends(get_class_service)
):
    return service.my_bookings(user.id, upcoming_only=upcoming)


@router.post("/api/class-bookings/{booking_id}/cancel")
def cancel_class_booking(
    booking_id: str,
    request: Request,
    user = Depends(get_current_user),
    service: ClassService = Depends(get_class_service)
):
    return service.cancel_booking(user, booking_id, request=request)


# --- ADMIN ---

@router.get("/api/admin/classes")
def admin_get_classes(
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    return service.list_classes(active_only=False)


@router.post("/api/admin/classes")
def admin_create_class(
    data: GymClassCreate,
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    return service.create_class(data)


@router.put("/api/admin/classes/{class_id}")
def admin_update_class(
    class_id: str,
    data: GymClassUpdate,
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    return service.update_class(class_id, data)


@router.delete("/api/admin/classes/{class_id}")
def admin_delete_class(
    class_id: str,
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    """Soft delete: the class is hidden but its bookings stay."""
    return service.deactivate_class(class_id)


@router.get("/api/admin/class-bookings")
def admin_get_class_bookings(
    status: Optional[str] = None,
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    return service.all_bookings(status=status)


@router.put("/api/admin/class-bookings/{booking_id}")
def admin_update_class_booking(
    booking_id: str,
    data: BookingStatusUpdate,
    admin = Depends(require_admin),
    service: ClassService = Depends(get_class_service)
):
    return service.update_booking_status(booking_id, data.status)
