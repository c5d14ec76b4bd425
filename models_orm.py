from sqlalchemy import Column, Integer, String, Boolean, Float, ForeignKey, Text
from database import Base
from datetime import datetime
import uuid


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.utcnow().isoformat()

# --- CORE MODELS ---

class UserORM(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True, default=_uuid)
    username = Column(String, unique=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    profile_image_url = Column(String, nullable=True)
    permanent_qr_code = Column(String, unique=True, nullable=True, index=True)  # Stable per-member code printed on cards
    role = Column(String, index=True, default="member")  # member, admin, owner
    active = Column(Boolean, default=True, index=True)  # False = suspended
    email_verified = Column(Boolean, default=False)

    # Email verification for accounts created through /api/register
    verification_code = Column(String, nullable=True)
    verification_code_expiry = Column(String, nullable=True)  # ISO datetime
    verification_attempts = Column(Integer, default=0)

    # Stripe
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)

    created_at = Column(String, default=_now)
    updated_at = Column(String, default=_now, onupdate=_now)


class SessionORM(Base):
    """Server-side login sessions referenced by the session cookie."""
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    expires_at = Column(String, index=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(String, default=_now)


class PendingVerificationORM(Base):
    """Email codes issued before the account exists (verify-then-create registration)."""
    __tablename__ = "pending_verifications"

    email = Column(String, primary_key=True)
    code = Column(String)
    expires_at = Column(String, index=True)
    attempts = Column(Integer, default=0)
    created_at = Column(String, default=_now)


class PasswordResetTokenORM(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, index=True)
    token_hash = Column(String, unique=True, index=True)  # sha256 of the emailed token
    expires_at = Column(String)
    used_at = Column(String, nullable=True)
    status = Column(String, default="valid")  # valid, used, expired
    created_at = Column(String, default=_now)

# --- MEMBERSHIPS ---

class MembershipPlanORM(Base):
    __tablename__ = "membership_plans"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String)
    description = Column(Text, nullable=True)
    price = Column(Float)
    currency = Column(String, default="usd")
    duration_months = Column(Integer)
    features_json = Column(Text, nullable=True)  # JSON list of strings
    stripe_price_id = Column(String, nullable=True)
    active = Column(Boolean, default=True, index=True)
    created_at = Column(String, default=_now)


class MembershipORM(Base):
    __tablename__ = "memberships"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    plan_id = Column(String, ForeignKey("membership_plans.id"), index=True)
    start_date = Column(String)
    end_date = Column(String, index=True)
    status = Column(String, default="active", index=True)  # active, expired, cancelled
    auto_renewal = Column(Boolean, default=False)
    created_at = Column(String, default=_now)


class PaymentORM(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    membership_id = Column(String, ForeignKey("memberships.id"), nullable=True)
    plan_id = Column(String, ForeignKey("membership_plans.id"), nullable=True)
    amount = Column(Float)
    currency = Column(String, default="usd")
    stripe_payment_intent_id = Column(String, unique=True, nullable=True)
    stripe_invoice_id = Column(String, nullable=True, index=True)
    status = Column(String, default="pending", index=True)  # pending, completed, failed, refunded
    payment_method = Column(String, nullable=True)  # card, cash, transfer
    description = Column(String, nullable=True)
    created_at = Column(String, default=_now, index=True)

# --- CLASSES & TRAINERS ---

class GymClassORM(Base):
    __tablename__ = "gym_classes"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    instructor_name = Column(String, nullable=True)
    schedule = Column(String, nullable=True)  # Free text, e.g. "Mon/Wed 18:00"
    max_capacity = Column(Integer, default=20)
    current_enrollment = Column(Integer, default=0)
    active = Column(Boolean, default=True, index=True)
    created_at = Column(String, default=_now)


class ClassBookingORM(Base):
    __tablename__ = "class_bookings"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    class_id = Column(String, ForeignKey("gym_classes.id"), index=True)
    booking_date = Column(String)  # ISO date of the session attended
    status = Column(String, default="booked", index=True)  # booked, attended, cancelled
    created_at = Column(String, default=_now)


class PersonalTrainerORM(Base):
    __tablename__ = "personal_trainers"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String)
    bio = Column(Text, nullable=True)
    specialization = Column(String, nullable=True)
    experience = Column(Integer, nullable=True)  # years
    certification = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    price_per_session = Column(Float, default=0)
    availability_json = Column(Text, nullable=True)  # JSON: {"monday": ["09:00-12:00"], ...}
    active = Column(Boolean, default=True, index=True)
    created_at = Column(String, default=_now)


class PtBookingORM(Base):
    __tablename__ = "pt_bookings"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    trainer_id = Column(String, ForeignKey("personal_trainers.id"), index=True)
    booking_date = Column(String)
    duration = Column(Integer, default=60)  # minutes
    session_count = Column(Integer, default=1)
    status = Column(String, default="pending", index=True)  # pending, confirmed, completed, cancelled
    notes = Column(Text, nullable=True)
    created_at = Column(String, default=_now)


class PtSessionPackageORM(Base):
    __tablename__ = "pt_session_packages"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    trainer_id = Column(String, ForeignKey("personal_trainers.id"), index=True)
    total_sessions = Column(Integer)
    used_sessions = Column(Integer, default=0)
    remaining_sessions = Column(Integer)
    price_per_session = Column(Float)
    total_price = Column(Float)
    status = Column(String, default="active", index=True)  # active, completed, expired
    purchase_date = Column(String, default=_now)
    expiry_date = Column(String, nullable=True)
    created_at = Column(String, default=_now)


class PtSessionAttendanceORM(Base):
    __tablename__ = "pt_session_attendance"

    id = Column(String, primary_key=True, default=_uuid)
    package_id = Column(String, ForeignKey("pt_session_packages.id"), index=True)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    trainer_id = Column(String, ForeignKey("personal_trainers.id"))
    session_date = Column(String)
    session_number = Column(Integer)
    status = Column(String, default="scheduled", index=True)  # scheduled, checked_in, completed, cancelled, no_show
    check_in_time = Column(String, nullable=True)
    check_out_time = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    admin_confirmed = Column(Boolean, default=False, index=True)
    confirmed_by = Column(String, ForeignKey("users.id"), nullable=True)
    confirmed_at = Column(String, nullable=True)
    created_at = Column(String, default=_now)

# --- CHECK-IN ---

class CheckInORM(Base):
    __tablename__ = "check_ins"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    check_in_time = Column(String, default=_now, index=True)
    check_out_time = Column(String, nullable=True)
    qr_code = Column(String, nullable=True)  # One-time or permanent code that was scanned
    locker_number = Column(String, nullable=True)
    status = Column(String, default="active", index=True)  # active, completed
    approved_by = Column(String, ForeignKey("users.id"), nullable=True)


class OneTimeQrCodeORM(Base):
    __tablename__ = "one_time_qr_codes"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    qr_code = Column(String, unique=True, index=True)
    expires_at = Column(String)
    used_at = Column(String, nullable=True)
    status = Column(String, default="valid", index=True)  # valid, used, expired
    created_at = Column(String, default=_now)

# --- ENGAGEMENT ---

class NotificationORM(Base):
    """In-app notifications for members and staff."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    type = Column(String, index=True)  # booking, membership, checkin, reminder, system
    title = Column(String)
    message = Column(String)
    related_id = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(String, default=_now)


class PushSubscriptionORM(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    endpoint = Column(String, unique=True)
    p256dh = Column(String)
    auth = Column(String)
    user_agent = Column(String, nullable=True)
    created_at = Column(String, default=_now)


class FeedbackORM(Base):
    __tablename__ = "feedbacks"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), index=True)
    subject = Column(String)
    message = Column(Text)
    rating = Column(Integer, nullable=True)  # 1-5
    status = Column(String, default="pending", index=True)  # pending, reviewed, resolved
    admin_response = Column(Text, nullable=True)
    created_at = Column(String, default=_now)
    updated_at = Column(String, default=_now, onupdate=_now)


class PromotionORM(Base):
    __tablename__ = "promotions"

    id = Column(String, primary_key=True, default=_uuid)
    title = Column(String)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    cta = Column(String, nullable=True)  # Button label
    cta_href = Column(String, nullable=True)
    starts_at = Column(String, nullable=True)
    ends_at = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    sort_order = Column(Integer, default=0)
    created_at = Column(String, default=_now)


class ActivityLogORM(Base):
    """Audit trail of member and staff actions."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String, index=True)  # login, logout, check_in, class_booking, ...
    entity = Column(String, nullable=True, index=True)
    entity_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    metadata_json = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(String, default=_now, index=True)
