"""
Check-in Service - one-time QR codes, permanent member codes and gym attendance.

A one-time code is valid for QR_VALIDITY_MINUTES and moves valid -> used once,
or valid -> expired by the clock. Consuming a code and creating the check-in
are separate steps: the code is spent first, then the member is checked for
an active account and membership.
"""
import os
from .base import (
    logging, uuid, timedelta, utcnow, now_iso, AppError,
    ValidationError, NotFoundError, QrAlreadyUsedError,
    AccountSuspendedError, MembershipInactiveError,
    DatabaseStorage, get_storage
)
from .activity_log_service import ActivityLogService, get_activity_log_service
from .notification_service import NotificationService, get_notification_service
from .serializers import row_to_dict, user_summary, membership_to_dict
from typing import Optional

logger = logging.getLogger("gym_app")

QR_VALIDITY_MINUTES = 5
AUTO_CHECKOUT_HOURS = int(os.getenv("AUTO_CHECKOUT_HOURS", "3"))
STAFF_ROLES = {"admin", "owner"}


class CheckInService:
    """Service for QR generation, validation and check-in/check-out."""

    def __init__(self, storage: DatabaseStorage, activity_log: ActivityLogService,
                 notifications: NotificationService):
        self.storage = storage
        self.activity_log = activity_log
        self.notifications = notifications

    # --- ELIGIBILITY ---

    def _ensure_eligible(self, user):
        """Active account and an unexpired active membership. Returns (membership, plan)."""
        if not user.active:
            raise AccountSuspendedError()
        membership = self.storage.get_active_membership(user.id, now_iso())
        if membership is None:
            raise MembershipInactiveError()
        return membership, self.storage.get_plan(membership.plan_id)

    def _member_info(self, user) -> dict:
        membership = self.storage.get_active_membership(user.id, now_iso())
        plan = self.storage.get_plan(membership.plan_id) if membership else None
        return {
            "member": user_summary(user),
            "membership": membership_to_dict(membership, plan) if membership else None,
        }

    # --- ONE-TIME QR ---

    def generate_qr(self, user) -> dict:
        """Issue a fresh one-time code for the member's next gym entry."""
        if not user.active:
            raise AccountSuspendedError()

        token = str(uuid.uuid4())
        expires_at = (utcnow() + timedelta(minutes=QR_VALIDITY_MINUTES)).isoformat()
        record = self.storage.create_qr_code(user.id, token, expires_at)
        logger.info(f"QR code generated for user {user.id}, expires {expires_at}")
        return {"qr_code": record.qr_code, "expires_at": record.expires_at, "status": record.status}

    def _state_of(self, qr) -> str:
        if qr.status != "valid":
            return qr.status
        if qr.expires_at <= now_iso():
            return "expired"
        return "valid"

    def validate_qr(self, qr_code: str) -> dict:
        """Read-only check. Unknown codes raise NotFoundError; used/expired are reported, not raised."""
        qr = self.storage.get_qr_code(qr_code)
        if qr is None:
            raise NotFoundError("QR code not found")

        state = self._state_of(qr)
        user = self.storage.get_user(qr.user_id)
        result = {
            "valid": state == "valid",
            "status": state,
            "qr_code": qr.qr_code,
            "expires_at": qr.expires_at,
            "used_at": qr.used_at,
        }
        if state == "used":
            result["message"] = "QR code already used"
        elif state == "expired":
            result["message"] = "QR code expired"
        if user is not None:
            result.update(self._member_info(user))
        return result

    def get_qr_status(self, qr_code: str, requester) -> dict:
        """Polling endpoint for the member screen showing the code."""
        qr = self.storage.get_qr_code(qr_code)
        if qr is None or (qr.user_id != requester.id and requester.role not in STAFF_ROLES):
            raise NotFoundError("QR code not found")

        state = self._state_of(qr)
        result = {"qr_code": qr.qr_code, "status": state, "expires_at": qr.expires_at, "used_at": qr.used_at}
        if state == "used":
            active = self.storage.get_active_check_in(qr.user_id)
            result["check_in"] = row_to_dict(active) if active and active.qr_code == qr.qr_code else None
        return result

    def consume_qr(self, qr_code: str, locker_number: Optional[str] = None,
                   approved_by: Optional[str] = None, request=None) -> dict:
        """
        Spend a one-time code and check the member in.

        Raises NotFoundError (unknown), ValidationError (expired),
        QrAlreadyUsedError (lost the race or already spent) and the
        suspension / membership errors (code stays spent, no check-in).
        """
        qr = self.storage.get_qr_code(qr_code)
        if qr is None:
            raise NotFoundError("QR code not found")
        if qr.status == "used":
            raise QrAlreadyUsedError()

        if self._state_of(qr) == "expired":
            self.storage.mark_qr_code_expired(qr_code)
            raise ValidationError("QR code expired. Please generate a new one.")

        if not self.storage.mark_qr_code_used(qr_code, now_iso()):
            current = self.storage.get_qr_code(qr_code)
            if current is not None and current.status == "expired":
                raise ValidationError("QR code expired. Please generate a new one.")
            raise QrAlreadyUsedError()

        user = self.storage.get_user(qr.user_id)
        if user is None:
            raise NotFoundError("Member not found")

        try:
            membership, plan = self._ensure_eligible(user)
        except (AccountSuspendedError, MembershipInactiveError) as e:
            logger.warning(f"QR {qr_code} spent but check-in refused for user {user.id}: {e.message}")
            raise

        check_in = self.storage.create_check_in(
            user_id=user.id, qr_code=qr_code, locker_number=locker_number, approved_by=approved_by
        )
        self.activity_log.log_check_in(user.id, check_in.id, approved_by=approved_by, request=request)
        try:
            self.notifications.create_notification(
                user.id, "checkin", "Checked in", "Welcome! Your check-in was recorded.", related_id=check_in.id
            )
        except AppError as e:
            logger.error(f"Check-in {check_in.id} recorded but notification failed: {e.message}")
        logger.info(f"User {user.id} checked in with one-time QR (check-in {check_in.id})")

        return {
            "status": "success",
            "message": "Check-in successful",
            "check_in": row_to_dict(check_in),
            "member": user_summary(user),
            "membership": membership_to_dict(membership, plan),
        }

    # --- PERMANENT QR ---

    def get_permanent_qr(self, user) -> dict:
        code = user.permanent_qr_code
        if not code:
            code = f"MBR-{uuid.uuid4().hex}"
            self.storage.update_user(user.id, permanent_qr_code=code)
            logger.info(f"Permanent QR assigned to user {user.id}")
        return {"qr_code": code}

    def check_in_with_permanent_qr(self, code: str, approved_by: Optional[str] = None,
                                   locker_number: Optional[str] = None, request=None) -> dict:
        user = self.storage.get_user_by_permanent_qr(code)
        if user is None:
            raise NotFoundError("Member QR code not recognised")

        membership, plan = self._ensure_eligible(user)

        existing = self.storage.get_active_check_in(user.id)
        if existing:
            return {
                "status": "already_checked_in",
                "message": "Member is already checked in",
                "check_in": row_to_dict(existing),
                "member": user_summary(user),
                "membership": membership_to_dict(membership, plan),
            }

        check_in = self.storage.create_check_in(
            user_id=user.id, qr_code=code, locker_number=locker_number, approved_by=approved_by
        )
        self.activity_log.log_check_in(user.id, check_in.id, approved_by=approved_by, request=request)
        return {
            "status": "success",
            "message": "Check-in successful",
            "check_in": row_to_dict(check_in),
            "member": user_summary(user),
            "membership": membership_to_dict(membership, plan),
        }

    # --- CHECK-OUT ---

    def check_out(self, check_in_id: str, actor, request=None) -> dict:
        check_in = self.storage.get_check_in(check_in_id)
        if check_in is None or (actor.role not in STAFF_ROLES and check_in.user_id != actor.id):
            raise NotFoundError("Check-in not found")

        check_in = self.storage.complete_check_in(check_in_id, now_iso())
        self.activity_log.log_check_out(check_in.user_id, check_in.id, request=request)
        return {"status": "success", "check_in": row_to_dict(check_in)}

    def auto_checkout(self, hours: int = AUTO_CHECKOUT_HOURS) -> int:
        """Close every check-in left open for longer than `hours`."""
        now = utcnow()
        cutoff = (now - timedelta(hours=hours)).isoformat()
        count = self.storage.auto_checkout(cutoff, now.isoformat())
        if count:
            logger.info(f"Auto-checkout closed {count} check-in(s) older than {hours}h")
        return count

    def cleanup_expired_qr_codes(self) -> int:
        count = self.storage.expire_qr_codes(now_iso())
        if count:
            logger.info(f"Expired {count} one-time QR code(s)")
        return count

    # --- READS ---

    def my_check_ins(self, user_id: str, limit: int = 10) -> list:
        return [row_to_dict(c) for c in self.storage.list_user_check_ins(user_id, limit)]

    def recent_check_ins(self, limit: int = 20) -> list:
        return [
            {
                **row_to_dict(row["check_in"]),
                "member": user_summary(row["user"]),
                "membership": membership_to_dict(row["membership"]) if row["membership"] else None,
            }
            for row in self.storage.list_recent_check_ins(limit, now_iso())
        ]

    def current_crowd(self) -> int:
        return self.storage.count_active_check_ins()


# Singleton instance for easy import
checkin_service = CheckInService(get_storage(), get_activity_log_service(), get_notification_service())

def get_checkin_service() -> CheckInService:
    """Dependency injection helper."""
    return checkin_service
