"""
Storage layer - the only module that talks to the ORM.

DatabaseStorage opens one session per operation. Driver-level failures surface
as ServiceUnavailableError and uniqueness violations as ConflictError, so the
services above never see SQLAlchemy exceptions.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from database import SessionLocal
from errors import ConflictError, NotFoundError, ServiceUnavailableError, ValidationError
from models_orm import (
    UserORM, SessionORM, PendingVerificationORM, PasswordResetTokenORM,
    MembershipPlanORM, MembershipORM, PaymentORM,
    GymClassORM, ClassBookingORM, PersonalTrainerORM, PtBookingORM,
    PtSessionPackageORM, PtSessionAttendanceORM,
    CheckInORM, OneTimeQrCodeORM,
    NotificationORM, PushSubscriptionORM, FeedbackORM, PromotionORM, ActivityLogORM
)

logger = logging.getLogger("gym_app")

EXPIRING_SOON_DAYS = 20


def _now() -> str:
    return datetime.utcnow().isoformat()


def _apply(obj, fields: dict):
    for key, value in fields.items():
        setattr(obj, key, value)


class DatabaseStorage:
    """Data access for every entity of the gym."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
        except (OperationalError, InterfaceError) as e:
            db.rollback()
            logger.error(f"Database unavailable: {e}")
            raise ServiceUnavailableError("Database unavailable, please try again shortly") from e
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Integrity error: {e.orig}")
            raise ConflictError("Record conflicts with existing data") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # --- USERS ---

    def get_user(self, user_id: str) -> Optional[UserORM]:
        with self._session() as db:
            return db.query(UserORM).filter(UserORM.id == user_id).first()

    def get_user_by_username(self, username: str) -> Optional[UserORM]:
        with self._session() as db:
            return db.query(UserORM).filter(UserORM.username == username).first()

    def get_user_by_email(self, email: str) -> Optional[UserORM]:
        with self._session() as db:
            return db.query(UserORM).filter(func.lower(UserORM.email) == email.lower()).first()

    def get_user_by_identifier(self, identifier: str) -> Optional[UserORM]:
        """Login lookup: username first, then email, then phone."""
        with self._session() as db:
            user = db.query(UserORM).filter(UserORM.username == identifier).first()
            if not user:
                user = db.query(UserORM).filter(func.lower(UserORM.email) == identifier.lower()).first()
            if not user:
                user = db.query(UserORM).filter(UserORM.phone == identifier).first()
            return user

    def get_user_by_permanent_qr(self, code: str) -> Optional[UserORM]:
        with self._session() as db:
            return db.query(UserORM).filter(UserORM.permanent_qr_code == code).first()

    def create_user(self, **fields) -> UserORM:
        with self._session() as db:
            if db.query(UserORM).filter(UserORM.username == fields.get("username")).first():
                raise ConflictError("Username already taken")
            if db.query(UserORM).filter(func.lower(UserORM.email) == fields.get("email", "").lower()).first():
                raise ConflictError("Email already registered")
            user = UserORM(**fields)
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

    def update_user(self, user_id: str, **fields) -> UserORM:
        with self._session() as db:
            user = db.query(UserORM).filter(UserORM.id == user_id).first()
            if not user:
                raise NotFoundError("User not found")
            _apply(user, fields)
            db.commit()
            db.refresh(user)
            return user

    def list_users(self, role: Optional[str] = None, active_only: bool = False) -> List[UserORM]:
        with self._session() as db:
            query = db.query(UserORM)
            if role:
                query = query.filter(UserORM.role == role)
            if active_only:
                query = query.filter(UserORM.active == True)
            return query.order_by(UserORM.created_at.desc()).all()

    def list_members_with_membership(self, now: Optional[str] = None) -> List[dict]:
        """Members with their current active membership and plan (or None)."""
        now = now or _now()
        with self._session() as db:
            members = db.query(UserORM).filter(UserORM.role == "member").order_by(UserORM.created_at.desc()).all()
            rows = db.query(MembershipORM, MembershipPlanORM).join(
                MembershipPlanORM, MembershipPlanORM.id == MembershipORM.plan_id
            ).filter(
                MembershipORM.status == "active",
                MembershipORM.end_date > now
            ).order_by(MembershipORM.end_date.asc()).all()

            by_user = {}
            for membership, plan in rows:
                by_user[membership.user_id] = (membership, plan)

            result = []
            for member in members:
                membership, plan = by_user.get(member.id, (None, None))
                result.append({"user": member, "membership": membership, "plan": plan})
            return result

    def delete_user(self, user_id: str, now: Optional[str] = None):
        """Delete a user and their records. Refused while a membership is active."""
        now = now or _now()
        with self._session() as db:
            user = db.query(UserORM).filter(UserORM.id == user_id).first()
            if not user:
                raise NotFoundError("User not found")

            active = db.query(MembershipORM).filter(
                MembershipORM.user_id == user_id,
                MembershipORM.status == "active",
                MembershipORM.end_date > now
            ).count()
            if active:
                raise ConflictError("Cannot delete a member with an active membership. Cancel the membership first.")

            for model in (
                SessionORM, NotificationORM, PushSubscriptionORM, OneTimeQrCodeORM,
                CheckInORM, ClassBookingORM, PtSessionAttendanceORM, PtSessionPackageORM,
                PtBookingORM, PaymentORM, MembershipORM, FeedbackORM
            ):
                db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)

            db.query(ActivityLogORM).filter(ActivityLogORM.user_id == user_id).update(
                {"user_id": None}, synchronize_session=False)
            db.query(CheckInORM).filter(CheckInORM.approved_by == user_id).update(
                {"approved_by": None}, synchronize_session=False)
            db.query(PtSessionAttendanceORM).filter(PtSessionAttendanceORM.confirmed_by == user_id).update(
                {"confirmed_by": None}, synchronize_session=False)
            db.query(PasswordResetTokenORM).filter(PasswordResetTokenORM.email == user.email).delete(
                synchronize_session=False)

            db.delete(user)
            db.commit()

    # --- SESSIONS ---

    def create_session(self, user_id: str, expires_at: str, ip_address: str = None, user_agent: str = None) -> SessionORM:
        with self._session() as db:
            session = SessionORM(user_id=user_id, expires_at=expires_at, ip_address=ip_address, user_agent=user_agent)
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    def get_session(self, session_id: str) -> Optional[SessionORM]:
        with self._session() as db:
            return db.query(SessionORM).filter(SessionORM.id == session_id).first()

    def delete_session(self, session_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(SessionORM).filter(SessionORM.id == session_id).delete(synchronize_session=False)
            db.commit()
            return deleted > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self._session() as db:
            deleted = db.query(SessionORM).filter(SessionORM.user_id == user_id).delete(synchronize_session=False)
            db.commit()
            return deleted

    def delete_expired_sessions(self, now: Optional[str] = None) -> int:
        with self._session() as db:
            deleted = db.query(SessionORM).filter(SessionORM.expires_at <= (now or _now())).delete(
                synchronize_session=False)
            db.commit()
            return deleted

    # --- PENDING VERIFICATIONS ---

    def upsert_pending_verification(self, email: str, code: str, expires_at: str) -> PendingVerificationORM:
        with self._session() as db:
            pending = db.query(PendingVerificationORM).filter(PendingVerificationORM.email == email).first()
            if pending:
                pending.code = code
                pending.expires_at = expires_at
                pending.attempts = 0
                pending.created_at = _now()
            else:
                pending = PendingVerificationORM(email=email, code=code, expires_at=expires_at, attempts=0)
                db.add(pending)
            db.commit()
            db.refresh(pending)
            return pending

    def get_pending_verification(self, email: str) -> Optional[PendingVerificationORM]:
        with self._session() as db:
            return db.query(PendingVerificationORM).filter(PendingVerificationORM.email == email).first()

    def increment_pending_attempts(self, email: str) -> int:
        with self._session() as db:
            db.query(PendingVerificationORM).filter(PendingVerificationORM.email == email).update(
                {"attempts": PendingVerificationORM.attempts + 1}, synchronize_session=False)
            db.commit()
            pending = db.query(PendingVerificationORM).filter(PendingVerificationORM.email == email).first()
            return pending.attempts if pending else 0

    def increment_verification_attempts(self, user_id: str) -> int:
        with self._session() as db:
            db.query(UserORM).filter(UserORM.id == user_id).update(
                {"verification_attempts": func.coalesce(UserORM.verification_attempts, 0) + 1},
                synchronize_session=False)
            db.commit()
            user = db.query(UserORM).filter(UserORM.id == user_id).first()
            return user.verification_attempts if user else 0

    def delete_pending_verification(self, email: str) -> bool:
        with self._session() as db:
            deleted = db.query(PendingVerificationORM).filter(PendingVerificationORM.email == email).delete(
                synchronize_session=False)
            db.commit()
            return deleted > 0

    def delete_expired_pending_verifications(self, now: Optional[str] = None) -> int:
        with self._session() as db:
            deleted = db.query(PendingVerificationORM).filter(
                PendingVerificationORM.expires_at <= (now or _now())
            ).delete(synchronize_session=False)
            db.commit()
            return deleted

    # --- PASSWORD RESET ---

    def create_password_reset_token(self, email: str, token_hash: str, expires_at: str) -> PasswordResetTokenORM:
        with self._session() as db:
            record = PasswordResetTokenORM(email=email, token_hash=token_hash, expires_at=expires_at, status="valid")
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def get_password_reset_token(self, token_hash: str) -> Optional[PasswordResetTokenORM]:
        with self._session() as db:
            return db.query(PasswordResetTokenORM).filter(PasswordResetTokenORM.token_hash == token_hash).first()

    def mark_password_reset_token_used(self, token_hash: str, now: Optional[str] = None) -> bool:
        now = now or _now()
        with self._session() as db:
            updated = db.query(PasswordResetTokenORM).filter(
                PasswordResetTokenORM.token_hash == token_hash,
                PasswordResetTokenORM.status == "valid",
                PasswordResetTokenORM.expires_at > now
            ).update({"status": "used", "used_at": now}, synchronize_session=False)
            db.commit()
            return updated == 1

    def expire_password_reset_tokens(self, now: Optional[str] = None) -> int:
        with self._session() as db:
            updated = db.query(PasswordResetTokenORM).filter(
                PasswordResetTokenORM.status == "valid",
                PasswordResetTokenORM.expires_at <= (now or _now())
            ).update({"status": "expired"}, synchronize_session=False)
            db.commit()
            return updated

    # --- MEMBERSHIP PLANS ---

    def list_plans(self, active_only: bool = True) -> List[MembershipPlanORM]:
        with self._session() as db:
            query = db.query(MembershipPlanORM)
            if active_only:
                query = query.filter(MembershipPlanORM.active == True)
            return query.order_by(MembershipPlanORM.price.asc()).all()

    def get_plan(self, plan_id: str) -> Optional[MembershipPlanORM]:
        with self._session() as db:
            return db.query(MembershipPlanORM).filter(MembershipPlanORM.id == plan_id).first()

    def create_plan(self, **fields) -> MembershipPlanORM:
        with self._session() as db:
            plan = MembershipPlanORM(**fields)
            db.add(plan)
            db.commit()
            db.refresh(plan)
            return plan

    def update_plan(self, plan_id: str, **fields) -> MembershipPlanORM:
        with self._session() as db:
            plan = db.query(MembershipPlanORM).filter(MembershipPlanORM.id == plan_id).first()
            if not plan:
                raise NotFoundError("Membership plan not found")
            _apply(plan, fields)
            db.commit()
            db.refresh(plan)
            return plan

    # --- MEMBERSHIPS ---

    def get_active_membership(self, user_id: str, now: Optional[str] = None) -> Optional[MembershipORM]:
        """Active means status 'active' and not past end_date at the time of the read."""
        with self._session() as db:
            return db.query(MembershipORM).filter(
                MembershipORM.user_id == user_id,
                MembershipORM.status == "active",
                MembershipORM.end_date > (now or _now())
            ).order_by(MembershipORM.end_date.desc()).first()

    def get_membership(self, membership_id: str) -> Optional[MembershipORM]:
        with self._session() as db:
            return db.query(MembershipORM).filter(MembershipORM.id == membership_id).first()

    def list_user_memberships(self, user_id: str) -> List[MembershipORM]:
        with self._session() as db:
            return db.query(MembershipORM).filter(
                MembershipORM.user_id == user_id
            ).order_by(MembershipORM.created_at.desc()).all()

    def replace_active_membership(self, user_id: str, plan_id: str, start_date: str, end_date: str,
                                  auto_renewal: bool = False) -> MembershipORM:
        """Cancel every active membership of the user and insert the new one in one transaction."""
        if end_date < start_date:
            raise ValidationError("Membership end date must not be before its start date")
        with self._session() as db:
            db.query(MembershipORM).filter(
                MembershipORM.user_id == user_id,
                MembershipORM.status == "active"
            ).update({"status": "cancelled"}, synchronize_session=False)
            membership = MembershipORM(
                user_id=user_id,
                plan_id=plan_id,
                start_date=start_date,
                end_date=end_date,
                status="active",
                auto_renewal=auto_renewal
            )
            db.add(membership)
            db.commit()
            db.refresh(membership)
            return membership

    def cancel_active_memberships(self, user_id: str) -> int:
        with self._session() as db:
            updated = db.query(MembershipORM).filter(
                MembershipORM.user_id == user_id,
                MembershipORM.status == "active"
            ).update({"status": "cancelled", "auto_renewal": False}, synchronize_session=False)
            db.commit()
            return updated

    def list_expiring_memberships(self, now: Optional[str] = None, days: int = EXPIRING_SOON_DAYS,
                                  user_id: Optional[str] = None) -> List[dict]:
        now_dt = datetime.fromisoformat(now) if now else datetime.utcnow()
        now = now_dt.isoformat()
        horizon = (now_dt + timedelta(days=days)).isoformat()
        with self._session() as db:
            query = db.query(MembershipORM, UserORM, MembershipPlanORM).join(
                UserORM, UserORM.id == MembershipORM.user_id
            ).join(
                MembershipPlanORM, MembershipPlanORM.id == MembershipORM.plan_id
            ).filter(
                MembershipORM.status == "active",
                MembershipORM.end_date > now,
                MembershipORM.end_date <= horizon
            )
            if user_id:
                query = query.filter(MembershipORM.user_id == user_id)
            rows = query.order_by(MembershipORM.end_date.asc()).all()
            return [{"membership": m, "user": u, "plan": p} for m, u, p in rows]

    def membership_stats(self, now: Optional[str] = None) -> dict:
        now_dt = datetime.fromisoformat(now) if now else datetime.utcnow()
        now = now_dt.isoformat()
        horizon = (now_dt + timedelta(days=EXPIRING_SOON_DAYS)).isoformat()
        with self._session() as db:
            total = db.query(func.count(MembershipORM.id)).scalar() or 0
            active = db.query(func.count(MembershipORM.id)).filter(
                MembershipORM.status == "active", MembershipORM.end_date > now
            ).scalar() or 0
            expiring = db.query(func.count(MembershipORM.id)).filter(
                MembershipORM.status == "active",
                MembershipORM.end_date > now,
                MembershipORM.end_date <= horizon
            ).scalar() or 0
            return {"total": total, "active": active, "expiring_soon": expiring}

    # --- PAYMENTS ---

    def create_payment(self, **fields) -> PaymentORM:
        with self._session() as db:
            payment = PaymentORM(**fields)
            db.add(payment)
            db.commit()
            db.refresh(payment)
            return payment

    def update_payment(self, payment_id: str, **fields) -> PaymentORM:
        with self._session() as db:
            payment = db.query(PaymentORM).filter(PaymentORM.id == payment_id).first()
            if not payment:
                raise NotFoundError("Payment not found")
            _apply(payment, fields)
            db.commit()
            db.refresh(payment)
            return payment

    def get_payment_by_invoice(self, invoice_id: str) -> Optional[PaymentORM]:
        with self._session() as db:
            return db.query(PaymentORM).filter(PaymentORM.stripe_invoice_id == invoice_id).first()

    def get_payment_by_intent(self, intent_id: str) -> Optional[PaymentORM]:
        with self._session() as db:
            return db.query(PaymentORM).filter(PaymentORM.stripe_payment_intent_id == intent_id).first()

    def list_user_payments(self, user_id: str, limit: int = 50) -> List[PaymentORM]:
        with self._session() as db:
            return db.query(PaymentORM).filter(
                PaymentORM.user_id == user_id
            ).order_by(PaymentORM.created_at.desc()).limit(limit).all()

    def revenue_stats(self, now: Optional[str] = None) -> dict:
        """Sum of completed payments: all time, this calendar month, last calendar month."""
        now_dt = datetime.fromisoformat(now) if now else datetime.utcnow()
        this_month = now_dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        last_month = (this_month - timedelta(days=1)).replace(day=1)
        with self._session() as db:
            base = db.query(func.coalesce(func.sum(PaymentORM.amount), 0)).filter(PaymentORM.status == "completed")
            total = base.scalar()
            current = base.filter(PaymentORM.created_at >= this_month.isoformat()).scalar()
            previous = base.filter(
                PaymentORM.created_at >= last_month.isoformat(),
                PaymentORM.created_at < this_month.isoformat()
            ).scalar()
            return {"total": float(total or 0), "this_month": float(current or 0), "last_month": float(previous or 0)}

    # --- CLASSES ---

    def list_classes(self, active_only: bool = True) -> List[GymClassORM]:
        with self._session() as db:
            query = db.query(GymClassORM)
            if active_only:
                query = query.filter(GymClassORM.active == True)
            return query.order_by(GymClassORM.name.asc()).all()

    def get_class(self, class_id: str) -> Optional[GymClassORM]:
        with self._session() as db:
            return db.query(GymClassORM).filter(GymClassORM.id == class_id).first()

    def create_class(self, **fields) -> GymClassORM:
        with self._session() as db:
            gym_class = GymClassORM(current_enrollment=0, **fields)
            db.add(gym_class)
            db.commit()
            db.refresh(gym_class)
            return gym_class

    def update_class(self, class_id: str, **fields) -> GymClassORM:
        with self._session() as db:
            gym_class = db.query(GymClassORM).filter(GymClassORM.id == class_id).first()
            if not gym_class:
                raise NotFoundError("Class not found")
            _apply(gym_class, fields)
            db.commit()
            db.refresh(gym_class)
            return gym_class

    def _recount_enrollment(self, db, class_id: str) -> int:
        count = db.query(func.count(ClassBookingORM.id)).filter(
            ClassBookingORM.class_id == class_id,
            ClassBookingORM.status == "booked"
        ).scalar() or 0
        db.query(GymClassORM).filter(GymClassORM.id == class_id).update(
            {"current_enrollment": count}, synchronize_session=False)
        return count

    def create_class_booking(self, user_id: str, class_id: str, booking_date: str) -> ClassBookingORM:
        with self._session() as db:
            gym_class = db.query(GymClassORM).filter(GymClassORM.id == class_id).first()
            if not gym_class or not gym_class.active:
                raise NotFoundError("Class not found")

            duplicate = db.query(ClassBookingORM).filter(
                ClassBookingORM.user_id == user_id,
                ClassBookingORM.class_id == class_id,
                ClassBookingORM.booking_date == booking_date,
                ClassBookingORM.status == "booked"
            ).first()
            if duplicate:
                raise ConflictError("You already booked this class for that date")

            # claim the seat; the row count decides who gets the last one
            claimed = db.query(GymClassORM).filter(
                GymClassORM.id == class_id,
                GymClassORM.current_enrollment < GymClassORM.max_capacity
            ).update({"current_enrollment": GymClassORM.current_enrollment + 1}, synchronize_session=False)
            if claimed != 1:
                raise ConflictError("Class is full")

            booking = ClassBookingORM(user_id=user_id, class_id=class_id, booking_date=booking_date, status="booked")
            db.add(booking)
            db.flush()
            self._recount_enrollment(db, class_id)
            db.commit()
            db.refresh(booking)
            return booking

    def get_class_booking(self, booking_id: str) -> Optional[ClassBookingORM]:
        with self._session() as db:
            return db.query(ClassBookingORM).filter(ClassBookingORM.id == booking_id).first()

    def update_class_booking_status(self, booking_id: str, status: str) -> ClassBookingORM:
        """Move a booking out of 'booked'. Cancelled bookings never change again."""
        with self._session() as db:
            booking = db.query(ClassBookingORM).filter(ClassBookingORM.id == booking_id).first()
            if not booking:
                raise NotFoundError("Booking not found")
            if booking.status == "cancelled":
                raise ConflictError("Booking already cancelled")
            updated = db.query(ClassBookingORM).filter(
                ClassBookingORM.id == booking_id,
                ClassBookingORM.status == booking.status
            ).update({"status": status}, synchronize_session=False)
            if updated != 1:
                raise ConflictError("Booking was modified concurrently")
            self._recount_enrollment(db, booking.class_id)
            db.commit()
            db.refresh(booking)
            return booking

    def list_user_class_bookings(self, user_id: str, upcoming_from: Optional[str] = None) -> List[dict]:
        with self._session() as db:
            query = db.query(ClassBookingORM, GymClassORM).join(
                GymClassORM, GymClassORM.id == ClassBookingORM.class_id
            ).filter(ClassBookingORM.user_id == user_id)
            if upcoming_from:
                query = query.filter(
                    ClassBookingORM.status == "booked",
                    ClassBookingORM.booking_date >= upcoming_from
                )
                query = query.order_by(ClassBookingORM.booking_date.asc())
            else:
                query = query.order_by(ClassBookingORM.booking_date.desc())
            return [{"booking": b, "gym_class": c} for b, c in query.all()]

    def list_class_bookings(self, status: Optional[str] = None, limit: int = 200) -> List[dict]:
        with self._session() as db:
            query = db.query(ClassBookingORM, GymClassORM, UserORM).join(
                GymClassORM, GymClassORM.id == ClassBookingORM.class_id
            ).join(UserORM, UserORM.id == ClassBookingORM.user_id)
            if status:
                query = query.filter(ClassBookingORM.status == status)
            rows = query.order_by(ClassBookingORM.booking_date.desc()).limit(limit).all()
            return [{"booking": b, "gym_class": c, "user": u} for b, c, u in rows]

    # --- TRAINERS ---

    def list_trainers(self, active_only: bool = True) -> List[PersonalTrainerORM]:
        with self._session() as db:
            query = db.query(PersonalTrainerORM)
            if active_only:
                query = query.filter(PersonalTrainerORM.active == True)
            return query.order_by(PersonalTrainerORM.name.asc()).all()

    def get_trainer(self, trainer_id: str) -> Optional[PersonalTrainerORM]:
        with self._session() as db:
            return db.query(PersonalTrainerORM).filter(PersonalTrainerORM.id == trainer_id).first()

    def create_trainer(self, **fields) -> PersonalTrainerORM:
        with self._session() as db:
            trainer = PersonalTrainerORM(**fields)
            db.add(trainer)
            db.commit()
            db.refresh(trainer)
            return trainer

    def update_trainer(self, trainer_id: str, **fields) -> PersonalTrainerORM:
        with self._session() as db:
            trainer = db.query(PersonalTrainerORM).filter(PersonalTrainerORM.id == trainer_id).first()
            if not trainer:
                raise NotFoundError("Trainer not found")
            _apply(trainer, fields)
            db.commit()
            db.refresh(trainer)
            return trainer

    # --- PT BOOKINGS ---

    def create_pt_booking(self, **fields) -> PtBookingORM:
        with self._session() as db:
            booking = PtBookingORM(status="pending", **fields)
            db.add(booking)
            db.commit()
            db.refresh(booking)
            return booking

    def get_pt_booking(self, booking_id: str) -> Optional[PtBookingORM]:
        with self._session() as db:
            return db.query(PtBookingORM).filter(PtBookingORM.id == booking_id).first()

    def transition_pt_booking(self, booking_id: str, from_status: str, to_status: str) -> PtBookingORM:
        """Conditional status change; fails if the row left from_status in the meantime."""
        with self._session() as db:
            updated = db.query(PtBookingORM).filter(
                PtBookingORM.id == booking_id,
                PtBookingORM.status == from_status
            ).update({"status": to_status}, synchronize_session=False)
            if updated != 1:
                raise ConflictError("Booking status changed, please reload")
            db.commit()
            return db.query(PtBookingORM).filter(PtBookingORM.id == booking_id).first()

    def list_pt_bookings(self, user_id: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
        with self._session() as db:
            query = db.query(PtBookingORM, PersonalTrainerORM, UserORM).join(
                PersonalTrainerORM, PersonalTrainerORM.id == PtBookingORM.trainer_id
            ).join(UserORM, UserORM.id == PtBookingORM.user_id)
            if user_id:
                query = query.filter(PtBookingORM.user_id == user_id)
            if status:
                query = query.filter(PtBookingORM.status == status)
            rows = query.order_by(PtBookingORM.booking_date.desc()).all()
            return [{"booking": b, "trainer": t, "user": u} for b, t, u in rows]

    # --- PT PACKAGES & ATTENDANCE ---

    def create_pt_package(self, **fields) -> PtSessionPackageORM:
        with self._session() as db:
            package = PtSessionPackageORM(
                used_sessions=0,
                remaining_sessions=fields["total_sessions"],
                status="active",
                **fields
            )
            db.add(package)
            db.commit()
            db.refresh(package)
            return package

    def get_pt_package(self, package_id: str) -> Optional[PtSessionPackageORM]:
        with self._session() as db:
            return db.query(PtSessionPackageORM).filter(PtSessionPackageORM.id == package_id).first()

    def list_pt_packages(self, user_id: Optional[str] = None) -> List[dict]:
        with self._session() as db:
            query = db.query(PtSessionPackageORM, PersonalTrainerORM, UserORM).join(
                PersonalTrainerORM, PersonalTrainerORM.id == PtSessionPackageORM.trainer_id
            ).join(UserORM, UserORM.id == PtSessionPackageORM.user_id)
            if user_id:
                query = query.filter(PtSessionPackageORM.user_id == user_id)
            rows = query.order_by(PtSessionPackageORM.purchase_date.desc()).all()
            return [{"package": p, "trainer": t, "user": u} for p, t, u in rows]

    def create_pt_attendance(self, package_id: str, user_id: str, session_date: str,
                             notes: Optional[str] = None) -> PtSessionAttendanceORM:
        with self._session() as db:
            package = db.query(PtSessionPackageORM).filter(PtSessionPackageORM.id == package_id).first()
            if not package or package.user_id != user_id:
                raise NotFoundError("Session package not found")
            if package.status != "active" or package.remaining_sessions <= 0:
                raise ConflictError("No sessions remaining in this package")

            open_sessions = db.query(func.count(PtSessionAttendanceORM.id)).filter(
                PtSessionAttendanceORM.package_id == package_id,
                PtSessionAttendanceORM.admin_confirmed == False,
                PtSessionAttendanceORM.status.in_(["scheduled", "checked_in"])
            ).scalar() or 0
            if open_sessions >= package.remaining_sessions:
                raise ConflictError("All remaining sessions are already scheduled")

            attendance = PtSessionAttendanceORM(
                package_id=package_id,
                user_id=user_id,
                trainer_id=package.trainer_id,
                session_date=session_date,
                session_number=package.used_sessions + open_sessions + 1,
                status="scheduled",
                notes=notes,
                admin_confirmed=False
            )
            db.add(attendance)
            db.commit()
            db.refresh(attendance)
            return attendance

    def get_pt_attendance(self, attendance_id: str) -> Optional[PtSessionAttendanceORM]:
        with self._session() as db:
            return db.query(PtSessionAttendanceORM).filter(PtSessionAttendanceORM.id == attendance_id).first()

    def list_pt_attendance(self, user_id: Optional[str] = None, unconfirmed_only: bool = False) -> List[dict]:
        with self._session() as db:
            query = db.query(PtSessionAttendanceORM, PersonalTrainerORM, UserORM).join(
                PersonalTrainerORM, PersonalTrainerORM.id == PtSessionAttendanceORM.trainer_id
            ).join(UserORM, UserORM.id == PtSessionAttendanceORM.user_id)
            if user_id:
                query = query.filter(PtSessionAttendanceORM.user_id == user_id)
            if unconfirmed_only:
                query = query.filter(
                    PtSessionAttendanceORM.admin_confirmed == False,
                    PtSessionAttendanceORM.status.in_(["scheduled", "checked_in"])
                )
            rows = query.order_by(PtSessionAttendanceORM.session_date.desc()).all()
            return [{"attendance": a, "trainer": t, "user": u} for a, t, u in rows]

    def mark_pt_attendance_checked_in(self, attendance_id: str, now: Optional[str] = None) -> PtSessionAttendanceORM:
        now = now or _now()
        with self._session() as db:
            updated = db.query(PtSessionAttendanceORM).filter(
                PtSessionAttendanceORM.id == attendance_id,
                PtSessionAttendanceORM.status == "scheduled"
            ).update({"status": "checked_in", "check_in_time": now}, synchronize_session=False)
            if updated != 1:
                raise ConflictError("Session is not awaiting check-in")
            db.commit()
            return db.query(PtSessionAttendanceORM).filter(PtSessionAttendanceORM.id == attendance_id).first()

    def confirm_pt_attendance(self, attendance_id: str, admin_id: str, now: Optional[str] = None,
                              notes: Optional[str] = None):
        """
        Confirm a session and consume exactly one session from its package.
        Both rows are changed with conditional updates in one transaction.
        Returns (attendance, package).
        """
        now = now or _now()
        with self._session() as db:
            attendance = db.query(PtSessionAttendanceORM).filter(PtSessionAttendanceORM.id == attendance_id).first()
            if not attendance:
                raise NotFoundError("Session not found")

            values = {
                "admin_confirmed": True,
                "confirmed_by": admin_id,
                "confirmed_at": now,
                "status": "completed",
                "check_out_time": now,
            }
            if not attendance.check_in_time:
                values["check_in_time"] = now
            if notes:
                values["notes"] = notes

            confirmed = db.query(PtSessionAttendanceORM).filter(
                PtSessionAttendanceORM.id == attendance_id,
                PtSessionAttendanceORM.admin_confirmed == False,
                PtSessionAttendanceORM.status.in_(["scheduled", "checked_in"])
            ).update(values, synchronize_session=False)
            if confirmed != 1:
                raise ConflictError("Session already confirmed or closed")

            consumed = db.query(PtSessionPackageORM).filter(
                PtSessionPackageORM.id == attendance.package_id,
                PtSessionPackageORM.status == "active",
                PtSessionPackageORM.remaining_sessions > 0
            ).update({
                "used_sessions": PtSessionPackageORM.used_sessions + 1,
                "remaining_sessions": PtSessionPackageORM.remaining_sessions - 1,
            }, synchronize_session=False)
            if consumed != 1:
                db.rollback()
                raise ConflictError("No sessions remaining in this package")

            db.query(PtSessionPackageORM).filter(
                PtSessionPackageORM.id == attendance.package_id,
                PtSessionPackageORM.remaining_sessions == 0
            ).update({"status": "completed"}, synchronize_session=False)
            db.commit()

            attendance = db.query(PtSessionAttendanceORM).filter(PtSessionAttendanceORM.id == attendance_id).first()
            package = db.query(PtSessionPackageORM).filter(PtSessionPackageORM.id == attendance.package_id).first()
            return attendance, package

    # --- ONE-TIME QR CODES ---

    def create_qr_code(self, user_id: str, qr_code: str, expires_at: str) -> OneTimeQrCodeORM:
        with self._session() as db:
            record = OneTimeQrCodeORM(user_id=user_id, qr_code=qr_code, expires_at=expires_at, status="valid")
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def get_qr_code(self, qr_code: str) -> Optional[OneTimeQrCodeORM]:
        with self._session() as db:
            return db.query(OneTimeQrCodeORM).filter(OneTimeQrCodeORM.qr_code == qr_code).first()

    def mark_qr_code_used(self, qr_code: str, now: Optional[str] = None) -> bool:
        """
        valid -> used, at most once. Returns False when another caller got there
        first (or the code is no longer valid); the row count is the arbiter.
        """
        now = now or _now()
        with self._session() as db:
            updated = db.query(OneTimeQrCodeORM).filter(
                OneTimeQrCodeORM.qr_code == qr_code,
                OneTimeQrCodeORM.status == "valid"
            ).update({"status": "used", "used_at": now}, synchronize_session=False)
            db.commit()
            return updated == 1

    def mark_qr_code_expired(self, qr_code: str) -> bool:
        with self._session() as db:
            updated = db.query(OneTimeQrCodeORM).filter(
                OneTimeQrCodeORM.qr_code == qr_code,
                OneTimeQrCodeORM.status == "valid"
            ).update({"status": "expired"}, synchronize_session=False)
            db.commit()
            return updated == 1

    def expire_qr_codes(self, now: Optional[str] = None) -> int:
        with self._session() as db:
            updated = db.query(OneTimeQrCodeORM).filter(
                OneTimeQrCodeORM.status == "valid",
                OneTimeQrCodeORM.expires_at <= (now or _now())
            ).update({"status": "expired"}, synchronize_session=False)
            db.commit()
            return updated

    # --- CHECK-INS ---

    def create_check_in(self, user_id: str, qr_code: Optional[str] = None, locker_number: Optional[str] = None,
                        approved_by: Optional[str] = None) -> CheckInORM:
        with self._session() as db:
            check_in = CheckInORM(
                user_id=user_id,
                qr_code=qr_code,
                locker_number=locker_number,
                approved_by=approved_by,
                status="active"
            )
            db.add(check_in)
            db.commit()
            db.refresh(check_in)
            return check_in

    def get_check_in(self, check_in_id: str) -> Optional[CheckInORM]:
        with self._session() as db:
            return db.query(CheckInORM).filter(CheckInORM.id == check_in_id).first()

    def get_active_check_in(self, user_id: str) -> Optional[CheckInORM]:
        with self._session() as db:
            return db.query(CheckInORM).filter(
                CheckInORM.user_id == user_id,
                CheckInORM.status == "active"
            ).order_by(CheckInORM.check_in_time.desc()).first()

    def complete_check_in(self, check_in_id: str, now: Optional[str] = None) -> CheckInORM:
        now = now or _now()
        with self._session() as db:
            if not db.query(CheckInORM).filter(CheckInORM.id == check_in_id).first():
                raise NotFoundError("Check-in not found")
            updated = db.query(CheckInORM).filter(
                CheckInORM.id == check_in_id,
                CheckInORM.status == "active"
            ).update({"status": "completed", "check_out_time": now}, synchronize_session=False)
            if updated != 1:
                raise ConflictError("Already checked out")
            db.commit()
            return db.query(CheckInORM).filter(CheckInORM.id == check_in_id).first()

    def auto_checkout(self, cutoff: str, now: Optional[str] = None) -> int:
        """Complete every active check-in that started before cutoff."""
        with self._session() as db:
            updated = db.query(CheckInORM).filter(
                CheckInORM.status == "active",
                CheckInORM.check_in_time < cutoff
            ).update({"status": "completed", "check_out_time": now or _now()}, synchronize_session=False)
            db.commit()
            return updated

    def list_user_check_ins(self, user_id: str, limit: int = 10) -> List[CheckInORM]:
        with self._session() as db:
            return db.query(CheckInORM).filter(
                CheckInORM.user_id == user_id
            ).order_by(CheckInORM.check_in_time.desc()).limit(limit).all()

    def list_recent_check_ins(self, limit: int = 20, now: Optional[str] = None) -> List[dict]:
        now = now or _now()
        with self._session() as db:
            rows = db.query(CheckInORM, UserORM).join(
                UserORM, UserORM.id == CheckInORM.user_id
            ).order_by(CheckInORM.check_in_time.desc()).limit(limit).all()
            result = []
            for check_in, user in rows:
                membership = db.query(MembershipORM).filter(
                    MembershipORM.user_id == user.id,
                    MembershipORM.status == "active",
                    MembershipORM.end_date > now
                ).order_by(MembershipORM.end_date.desc()).first()
                result.append({"check_in": check_in, "user": user, "membership": membership})
            return result

    def count_active_check_ins(self) -> int:
        with self._session() as db:
            return db.query(func.count(CheckInORM.id)).filter(CheckInORM.status == "active").scalar() or 0

    def count_user_check_ins_since(self, user_id: str, since: str) -> int:
        with self._session() as db:
            return db.query(func.count(CheckInORM.id)).filter(
                CheckInORM.user_id == user_id,
                CheckInORM.check_in_time >= since
            ).scalar() or 0

    def list_inactive_members(self, since: str, now: Optional[str] = None) -> List[UserORM]:
        """Active members holding an active membership with no check-in since `since`."""
        now = now or _now()
        with self._session() as db:
            with_membership = db.query(MembershipORM.user_id).filter(
                MembershipORM.status == "active",
                MembershipORM.end_date > now
            )
            recent = db.query(CheckInORM.user_id).filter(CheckInORM.check_in_time >= since)
            return db.query(UserORM).filter(
                UserORM.role == "member",
                UserORM.active == True,
                UserORM.id.in_(with_membership),
                ~UserORM.id.in_(recent)
            ).all()

    # --- NOTIFICATIONS ---

    def create_notification(self, user_id: str, type: str, title: str, message: str,
                            related_id: Optional[str] = None) -> NotificationORM:
        with self._session() as db:
            notification = NotificationORM(
                user_id=user_id, type=type, title=title, message=message, related_id=related_id, is_read=False
            )
            db.add(notification)
            db.commit()
            db.refresh(notification)
            return notification

    def list_notifications(self, user_id: str, limit: int = 50) -> List[NotificationORM]:
        with self._session() as db:
            return db.query(NotificationORM).filter(
                NotificationORM.user_id == user_id
            ).order_by(NotificationORM.created_at.desc(), NotificationORM.id.desc()).limit(limit).all()

    def count_unread_notifications(self, user_id: str) -> int:
        with self._session() as db:
            return db.query(func.count(NotificationORM.id)).filter(
                NotificationORM.user_id == user_id,
                NotificationORM.is_read == False
            ).scalar() or 0

    def mark_notification_read(self, notification_id: int, user_id: str) -> bool:
        with self._session() as db:
            updated = db.query(NotificationORM).filter(
                NotificationORM.id == notification_id,
                NotificationORM.user_id == user_id
            ).update({"is_read": True}, synchronize_session=False)
            db.commit()
            return updated == 1

    def mark_all_notifications_read(self, user_id: str) -> int:
        with self._session() as db:
            updated = db.query(NotificationORM).filter(
                NotificationORM.user_id == user_id,
                NotificationORM.is_read == False
            ).update({"is_read": True}, synchronize_session=False)
            db.commit()
            return updated

    def delete_notification(self, notification_id: int, user_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(NotificationORM).filter(
                NotificationORM.id == notification_id,
                NotificationORM.user_id == user_id
            ).delete(synchronize_session=False)
            db.commit()
            return deleted == 1

    # --- PUSH SUBSCRIPTIONS ---

    def upsert_push_subscription(self, user_id: str, endpoint: str, p256dh: str, auth: str,
                                 user_agent: Optional[str] = None) -> PushSubscriptionORM:
        with self._session() as db:
            sub = db.query(PushSubscriptionORM).filter(PushSubscriptionORM.endpoint == endpoint).first()
            if sub:
                _apply(sub, {"user_id": user_id, "p256dh": p256dh, "auth": auth, "user_agent": user_agent})
            else:
                sub = PushSubscriptionORM(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth,
                                          user_agent=user_agent)
                db.add(sub)
            db.commit()
            db.refresh(sub)
            return sub

    def list_push_subscriptions(self, user_id: str) -> List[PushSubscriptionORM]:
        with self._session() as db:
            return db.query(PushSubscriptionORM).filter(PushSubscriptionORM.user_id == user_id).all()

    def delete_push_subscription(self, endpoint: str, user_id: Optional[str] = None) -> bool:
        with self._session() as db:
            query = db.query(PushSubscriptionORM).filter(PushSubscriptionORM.endpoint == endpoint)
            if user_id:
                query = query.filter(PushSubscriptionORM.user_id == user_id)
            deleted = query.delete(synchronize_session=False)
            db.commit()
            return deleted > 0

    # --- FEEDBACK ---

    def create_feedback(self, **fields) -> FeedbackORM:
        with self._session() as db:
            feedback = FeedbackORM(status="pending", **fields)
            db.add(feedback)
            db.commit()
            db.refresh(feedback)
            return feedback

    def list_feedbacks(self, user_id: Optional[str] = None) -> List[dict]:
        with self._session() as db:
            query = db.query(FeedbackORM, UserORM).join(UserORM, UserORM.id == FeedbackORM.user_id)
            if user_id:
                query = query.filter(FeedbackORM.user_id == user_id)
            rows = query.order_by(FeedbackORM.created_at.desc()).all()
            return [{"feedback": f, "user": u} for f, u in rows]

    def update_feedback(self, feedback_id: str, **fields) -> FeedbackORM:
        with self._session() as db:
            feedback = db.query(FeedbackORM).filter(FeedbackORM.id == feedback_id).first()
            if not feedback:
                raise NotFoundError("Feedback not found")
            _apply(feedback, fields)
            db.commit()
            db.refresh(feedback)
            return feedback

    # --- PROMOTIONS ---

    def list_promotions(self, visible_at: Optional[str] = None) -> List[PromotionORM]:
        """All promotions, or only those active and inside their window at `visible_at`."""
        with self._session() as db:
            query = db.query(PromotionORM)
            if visible_at:
                query = query.filter(
                    PromotionORM.is_active == True,
                    (PromotionORM.starts_at == None) | (PromotionORM.starts_at <= visible_at),
                    (PromotionORM.ends_at == None) | (PromotionORM.ends_at >= visible_at)
                )
            return query.order_by(PromotionORM.sort_order.asc(), PromotionORM.created_at.desc()).all()

    def create_promotion(self, **fields) -> PromotionORM:
        with self._session() as db:
            promotion = PromotionORM(**fields)
            db.add(promotion)
            db.commit()
            db.refresh(promotion)
            return promotion

    def update_promotion(self, promotion_id: str, **fields) -> PromotionORM:
        with self._session() as db:
            promotion = db.query(PromotionORM).filter(PromotionORM.id == promotion_id).first()
            if not promotion:
                raise NotFoundError("Promotion not found")
            _apply(promotion, fields)
            db.commit()
            db.refresh(promotion)
            return promotion

    def delete_promotion(self, promotion_id: str):
        with self._session() as db:
            deleted = db.query(PromotionORM).filter(PromotionORM.id == promotion_id).delete(
                synchronize_session=False)
            if not deleted:
                raise NotFoundError("Promotion not found")
            db.commit()

    # --- ACTIVITY LOG ---

    def create_activity_log(self, action: str, user_id: Optional[str] = None, entity: Optional[str] = None,
                            entity_id: Optional[str] = None, description: Optional[str] = None,
                            metadata: Optional[dict] = None, ip_address: Optional[str] = None,
                            user_agent: Optional[str] = None) -> ActivityLogORM:
        with self._session() as db:
            log = ActivityLogORM(
                user_id=user_id,
                action=action,
                entity=entity,
                entity_id=entity_id,
                description=description,
                metadata_json=json.dumps(metadata) if metadata else None,
                ip_address=ip_address,
                user_agent=user_agent
            )
            db.add(log)
            db.commit()
            db.refresh(log)
            return log

    def list_activity_logs(self, user_id: Optional[str] = None, action: Optional[str] = None,
                           entity: Optional[str] = None, start_date: Optional[str] = None,
                           end_date: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[ActivityLogORM]:
        with self._session() as db:
            query = db.query(ActivityLogORM)
            if user_id:
                query = query.filter(ActivityLogORM.user_id == user_id)
            if action:
                query = query.filter(ActivityLogORM.action == action)
            if entity:
                query = query.filter(ActivityLogORM.entity == entity)
            if start_date:
                query = query.filter(ActivityLogORM.created_at >= start_date)
            if end_date:
                query = query.filter(ActivityLogORM.created_at <= end_date)
            return query.order_by(
                ActivityLogORM.created_at.desc(), ActivityLogORM.id.desc()
            ).offset(offset).limit(limit).all()


# Singleton instance for easy import
storage = DatabaseStorage()

def get_storage() -> DatabaseStorage:
    """Dependency injection helper."""
    return storage
