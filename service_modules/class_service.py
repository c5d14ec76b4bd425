"""
Class Service - group classes and member class bookings.
"""
from .base import (
    logging, utcnow, ValidationError, NotFoundError, ConflictError, AccountSuspendedError,
    DatabaseStorage, get_storage
)
from .activity_log_service import ActivityLogService, get_activity_log_service
from .notification_service import NotificationService, get_notification_service
from .serializers import row_to_dict, user_summary
from models import GymClassCreate, GymClassUpdate
from typing import List

logger = logging.getLogger("gym_app")

# Admin-driven transitions. Cancellation is terminal.
CLASS_BOOKING_TRANSITIONS = {
    "booked": {"attended", "cancelled"},
    "attended": set(),
    "cancelled": set(),
}


class ClassService:
    """Service for managing group classes and bookings."""

    def __init__(self, storage: DatabaseStorage, activity_log: ActivityLogService,
                 notifications: NotificationService):
        self.storage = storage
        self.activity_log = activity_log
        self.notifications = notifications

    # --- CLASSES ---

    def list_classes(self, active_only: bool = True) -> List[dict]:
        return [row_to_dict(c) for c in self.storage.list_classes(active_only=active_only)]

    def create_class(self, data: GymClassCreate) -> dict:
        gym_class = self.storage.create_class(**data.model_dump())
        logger.info(f"Created class {gym_class.id} ({gym_class.name})")
        return row_to_dict(gym_class)

    def update_class(self, class_id: str, data: GymClassUpdate) -> dict:
        return row_to_dict(self.storage.update_class(class_id, **data.model_dump(exclude_unset=True)))

    def deactivate_class(self, class_id: str) -> dict:
        self.storage.update_class(class_id, active=False)
        return {"status": "success", "message": "Class deactivated"}

    # --- BOOKINGS ---

    def book_class(self, user, class_id: str, booking_date: str, request=None) -> dict:
        if not user.active:
            raise AccountSuspendedError()
        if booking_date[:10] < utcnow().date().isoformat():
            raise ValidationError("Cannot book a class in the past")

        booking = self.storage.create_class_booking(user.id, class_id, booking_date)
        gym_class = self.storage.get_class(class_id)

        self.activity_log.log(
            "class_booking", user_id=user.id, entity="class_booking", entity_id=booking.id,
            description=f"Booked {gym_class.name} on {booking_date[:10]}", request=request
        )
        self.notifications.create_notification(
            user.id, "booking", "Class booked",
            f"You're booked for {gym_class.name} on {booking_date[:10]}.", related_id=booking.id
        )
        return {"status": "success", "booking": row_to_dict(booking), "class": row_to_dict(gym_class)}

    def cancel_booking(self, user, booking_id: str, request=None) -> dict:
        booking = self.storage.get_class_booking(booking_id)
        if booking is None or booking.user_id != user.id:
            raise NotFoundError("Booking not found")
        if booking.status != "booked":
            raise ConflictError(f"Booking is already {booking.status}")

        booking = self.storage.update_class_booking_status(booking_id, "cancelled")
        self.activity_log.log(
            "class_booking_cancelled", user_id=user.id, entity="class_booking", entity_id=booking.id,
            description="Cancelled class booking", request=request
        )
        return {"status": "success", "booking": row_to_dict(booking)}

    def update_booking_status(self, booking_id: str, status: str) -> dict:
        booking = self.storage.get_class_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if status not in CLASS_BOOKING_TRANSITIONS:
            raise ValidationError(f"Unknown booking status: {status}")
        if status not in CLASS_BOOKING_TRANSITIONS[booking.status]:
            raise ConflictError(f"Cannot change a {booking.status} booking to {status}")

        booking = self.storage.update_class_booking_status(booking_id, status)
        return {"status": "success", "booking": row_to_dict(booking)}

    def my_bookings(self, user_id: str, upcoming_only: bool = False) -> List[dict]:
        upcoming_from = utcnow().date().isoformat() if upcoming_only else None
        return [
            {**row_to_dict(r["booking"]), "class": row_to_dict(r["gym_class"])}
            for r in self.storage.list_user_class_bookings(user_id, upcoming_from=upcoming_from)
        ]

    def all_bookings(self, status: str = None) -> List[dict]:
        return [
            {**row_to_dict(r["booking"]), "class": row_to_dict(r["gym_class"]), "member": user_summary(r["user"])}
            for r in self.storage.list_class_bookings(status=status)
        ]


# Singleton instance for easy import
class_service = ClassService(get_storage(), get_activity_log_service(), get_notification_service())

def get_class_service() -> ClassService:
    """Dependency injection helper."""
    return class_service
