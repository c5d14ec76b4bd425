"""
Trainer Service - personal trainers, PT bookings, session packages and attendance.
"""
from .base import (
    logging, json, now_iso, parse_iso,
    ValidationError, NotFoundError, ConflictError, AccountSuspendedError,
    DatabaseStorage, get_storage
)
from .activity_log_service import ActivityLogService, get_activity_log_service
from .notification_service import NotificationService, get_notification_service
from .serializers import row_to_dict, trainer_to_dict, user_summary
from models import TrainerCreate, TrainerUpdate, PtBookingCreate, PtPackageCreate, PtAttendanceCreate
from typing import List, Optional

logger = logging.getLogger("gym_app")

PT_BOOKING_TRANSITIONS = {
    "pending": {"confirmed", "completed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


class TrainerService:
    """Service for personal training: trainers, bookings and prepaid session packages."""

    def __init__(self, storage: DatabaseStorage, activity_log: ActivityLogService,
                 notifications: NotificationService):
        self.storage = storage
        self.activity_log = activity_log
        self.notifications = notifications

    # --- TRAINERS ---

    def list_trainers(self, active_only: bool = True) -> List[dict]:
        return [trainer_to_dict(t) for t in self.storage.list_trainers(active_only=active_only)]

    def create_trainer(self, data: TrainerCreate) -> dict:
        fields = data.model_dump(exclude={"availability"})
        trainer = self.storage.create_trainer(
            availability_json=json.dumps(data.availability) if data.availability else None, **fields
        )
        logger.info(f"Created trainer {trainer.id} ({trainer.name})")
        return trainer_to_dict(trainer)

    def update_trainer(self, trainer_id: str, data: TrainerUpdate) -> dict:
        fields = data.model_dump(exclude_unset=True, exclude={"availability"})
        if data.availability is not None:
            fields["availability_json"] = json.dumps(data.availability)
        return trainer_to_dict(self.storage.update_trainer(trainer_id, **fields))

    def deactivate_trainer(self, trainer_id: str) -> dict:
        self.storage.update_trainer(trainer_id, active=False)
        return {"status": "success", "message": "Trainer deactivated"}

    def _active_trainer(self, trainer_id: str):
        trainer = self.storage.get_trainer(trainer_id)
        if trainer is None or not trainer.active:
            raise NotFoundError("Trainer not found")
        return trainer

    # --- PT BOOKINGS ---

    def _booking_row(self, row: dict) -> dict:
        return {**row_to_dict(row["booking"]), "trainer": trainer_to_dict(row["trainer"]),
                "member": user_summary(row["user"])}

    def create_booking(self, user, data: PtBookingCreate, request=None) -> dict:
        if not user.active:
            raise AccountSuspendedError()
        trainer = self._active_trainer(data.trainer_id)
        booking_at = parse_iso(data.booking_date, "booking_date")
        if booking_at.isoformat() < now_iso():
            raise ValidationError("Cannot book a session in the past")

        booking = self.storage.create_pt_booking(
            user_id=user.id,
            trainer_id=trainer.id,
            booking_date=booking_at.isoformat(),
            duration=data.duration,
            session_count=data.session_count,
            notes=data.notes
        )
        self.activity_log.log(
            "pt_booking", user_id=user.id, entity="pt_booking", entity_id=booking.id,
            description=f"Requested PT session with {trainer.name}", request=request
        )
        return {"status": "success", "booking": row_to_dict(booking)}

    def _transition(self, booking, to_status: str):
        if to_status not in PT_BOOKING_TRANSITIONS:
            raise ValidationError(f"Unknown booking status: {to_status}")
        if to_status not in PT_BOOKING_TRANSITIONS[booking.status]:
            raise ConflictError(f"Cannot change a {booking.status} booking to {to_status}")
        return self.storage.transition_pt_booking(booking.id, booking.status, to_status)

    def cancel_booking(self, user, booking_id: str) -> dict:
        booking = self.storage.get_pt_booking(booking_id)
        if booking is None or booking.user_id != user.id:
            raise NotFoundError("Booking not found")
        booking = self._transition(booking, "cancelled")
        return {"status": "success", "booking": row_to_dict(booking)}

    def update_booking_status(self, booking_id: str, status: str) -> dict:
        booking = self.storage.get_pt_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        booking = self._transition(booking, status)
        if status == "confirmed":
            self.notifications.create_notification(
                booking.user_id, "booking", "PT session confirmed",
                f"Your personal training session on {booking.booking_date[:16].replace('T', ' ')} is confirmed.",
                related_id=booking.id
            )
        return {"status": "success", "booking": row_to_dict(booking)}

    def my_bookings(self, user_id: str) -> List[dict]:
        return [self._booking_row(r) for r in self.storage.list_pt_bookings(user_id=user_id)]

    def all_bookings(self, status: Optional[str] = None) -> List[dict]:
        return [self._booking_row(r) for r in self.storage.list_pt_bookings(status=status)]

    # --- SESSION PACKAGES ---

    def create_package(self, data: PtPackageCreate) -> dict:
        if self.storage.get_user(data.user_id) is None:
            raise NotFoundError("Member not found")
        trainer = self._active_trainer(data.trainer_id)
        price = data.price_per_session if data.price_per_session is not None else (trainer.price_per_session or 0)
        expiry = parse_iso(data.expiry_date, "expiry_date")

        package = self.storage.create_pt_package(
            user_id=data.user_id,
            trainer_id=trainer.id,
            total_sessions=data.total_sessions,
            price_per_session=price,
            total_price=price * data.total_sessions,
            expiry_date=expiry.isoformat() if expiry else None
        )
        self.notifications.create_notification(
            data.user_id, "pt_package", "PT package added",
            f"{data.total_sessions} sessions with {trainer.name} are ready to book.", related_id=package.id
        )
        logger.info(f"Created PT package {package.id}: {data.total_sessions} sessions for user {data.user_id}")
        return row_to_dict(package)

    def _package_row(self, row: dict) -> dict:
        return {**row_to_dict(row["package"]), "trainer": trainer_to_dict(row["trainer"]),
                "member": user_summary(row["user"])}

    def my_packages(self, user_id: str) -> List[dict]:
        return [self._package_row(r) for r in self.storage.list_pt_packages(user_id=user_id)]

    def all_packages(self) -> List[dict]:
        return [self._package_row(r) for r in self.storage.list_pt_packages()]

    # --- ATTENDANCE ---

    def _attendance_row(self, row: dict) -> dict:
        return {**row_to_dict(row["attendance"]), "trainer": trainer_to_dict(row["trainer"]),
                "member": user_summary(row["user"])}

    def schedule_session(self, user, data: PtAttendanceCreate) -> dict:
        if not user.active:
            raise AccountSuspendedError()
        package = self.storage.get_pt_package(data.package_id)
        if package is not None and package.expiry_date and package.expiry_date <= now_iso():
            raise ConflictError("This session package has expired")
        session_at = parse_iso(data.session_date, "session_date")
        attendance = self.storage.create_pt_attendance(
            data.package_id, user.id, session_at.isoformat(), notes=data.notes
        )
        return row_to_dict(attendance)

    def check_in_session(self, user, attendance_id: str) -> dict:
        """Member marks themselves present; the package is only charged on admin confirmation."""
        attendance = self.storage.get_pt_attendance(attendance_id)
        if attendance is None or attendance.user_id != user.id:
            raise NotFoundError("Session not found")
        attendance = self.storage.mark_pt_attendance_checked_in(attendance_id, now_iso())
        return {"status": "success", "attendance": row_to_dict(attendance)}

    def confirm_session(self, admin, attendance_id: str, notes: Optional[str] = None, request=None) -> dict:
        attendance, package = self.storage.confirm_pt_attendance(attendance_id, admin.id, now_iso(), notes)
        self.activity_log.log(
            "pt_session_confirmed", user_id=attendance.user_id, entity="pt_session_attendance",
            entity_id=attendance.id, description=f"Session {attendance.session_number} confirmed",
            metadata={"confirmed_by": admin.id, "remaining_sessions": package.remaining_sessions},
            request=request
        )
        self.notifications.create_notification(
            attendance.user_id, "pt_package", "PT session recorded",
            f"{package.remaining_sessions} session(s) left in your package.", related_id=package.id
        )
        return {"status": "success", "attendance": row_to_dict(attendance), "package": row_to_dict(package)}

    def my_attendance(self, user_id: str) -> List[dict]:
        return [self._attendance_row(r) for r in self.storage.list_pt_attendance(user_id=user_id)]

    def pending_attendance(self) -> List[dict]:
        return [self._attendance_row(r) for r in self.storage.list_pt_attendance(unconfirmed_only=True)]


# Singleton instance for easy import
trainer_service = TrainerService(get_storage(), get_activity_log_service(), get_notification_service())

def get_trainer_service() -> TrainerService:
    """Dependency injection helper."""
    return trainer_service
