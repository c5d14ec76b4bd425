from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict
import re

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9]{9,12}$")
_CODE_RE = re.compile(r"^[0-9]{6}$")


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    cleaned = re.sub(r"[\s\-()]", "", value)
    if not _PHONE_RE.match(cleaned):
        raise ValueError("Phone number must be 9-12 digits")
    return cleaned


# --- AUTH ---
class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    phone: str
    password: str = Field(min_length=6)
    confirm_password: str
    selfie_image: Optional[str] = None  # data:image/...;base64,...

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class RegisterVerifiedRequest(RegisterRequest):
    verification_code: str

    @field_validator("verification_code")
    @classmethod
    def validate_code(cls, v):
        if not _CODE_RE.match(v):
            raise ValueError("Verification code must be 6 digits")
        return v


class AdminRegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    password: str = Field(min_length=6)
    admin_secret_key: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class SendVerificationCodeRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class VerifyEmailRequest(BaseModel):
    email: str
    code: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v):
        if not _CODE_RE.match(v):
            raise ValueError("Verification code must be 6 digits")
        return v


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)  # username, email or phone
    password: str = Field(min_length=1)
    remember_me: bool = False


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# --- MEMBER ---
class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    profile_image: Optional[str] = None  # data URL

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class FeedbackCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)


class FeedbackUpdate(BaseModel):
    status: Optional[str] = Field(default=None, pattern="^(pending|reviewed|resolved)$")
    admin_response: Optional[str] = None


# --- CHECK-IN ---
class QrCodeRequest(BaseModel):
    qr_code: str = Field(min_length=1)


class CheckInApproveRequest(BaseModel):
    qr_code: str = Field(min_length=1)
    locker_number: Optional[str] = None


# --- CLASSES ---
class ClassBookingCreate(BaseModel):
    booking_date: str  # ISO date

    @field_validator("booking_date")
    @classmethod
    def validate_date(cls, v):
        from datetime import datetime
        try:
            datetime.fromisoformat(v)
        except ValueError:
            raise ValueError("booking_date must be an ISO date")
        return v


class BookingStatusUpdate(BaseModel):
    status: str


class GymClassCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    instructor_name: Optional[str] = None
    schedule: Optional[str] = None
    max_capacity: int = Field(default=20, ge=1)
    active: bool = True


class GymClassUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    instructor_name: Optional[str] = None
    schedule: Optional[str] = None
    max_capacity: Optional[int] = Field(default=None, ge=1)
    active: Optional[bool] = None


# --- TRAINERS & PT ---
class TrainerCreate(BaseModel):
    name: str = Field(min_length=1)
    bio: Optional[str] = None
    specialization: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)
    certification: Optional[str] = None
    image_url: Optional[str] = None
    price_per_session: float = Field(default=0, ge=0)
    availability: Optional[Dict[str, List[str]]] = None
    active: bool = True


class TrainerUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    specialization: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)
    certification: Optional[str] = None
    image_url: Optional[str] = None
    price_per_session: Optional[float] = Field(default=None, ge=0)
    availability: Optional[Dict[str, List[str]]] = None
    active: Optional[bool] = None


class PtBookingCreate(BaseModel):
    trainer_id: str
    booking_date: str
    duration: int = Field(default=60, ge=15, le=240)
    session_count: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class PtPackageCreate(BaseModel):
    user_id: str
    trainer_id: str
    total_sessions: int = Field(ge=1)
    price_per_session: Optional[float] = Field(default=None, ge=0)
    expiry_date: Optional[str] = None


class PtAttendanceCreate(BaseModel):
    package_id: str
    session_date: str
    notes: Optional[str] = None


class PtAttendanceConfirm(BaseModel):
    notes: Optional[str] = None


# --- MEMBERSHIP & PAYMENTS ---
class MembershipPlanCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: float = Field(ge=0)
    currency: str = "usd"
    duration_months: int = Field(ge=1)
    features: List[str] = []
    stripe_price_id: Optional[str] = None
    active: bool = True


class MembershipPlanUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    duration_months: Optional[int] = Field(default=None, ge=1)
    features: Optional[List[str]] = None
    stripe_price_id: Optional[str] = None
    active: Optional[bool] = None


class AssignMembershipRequest(BaseModel):
    plan_id: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    auto_renewal: bool = False
    record_payment: bool = False
    payment_method: str = "cash"


class CreateSubscriptionRequest(BaseModel):
    plan_id: str


# --- ADMIN: MEMBERS ---
class MemberCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: str
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    password: str = Field(min_length=6)
    role: str = Field(default="member", pattern="^(member|admin)$")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class MemberUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = Field(default=None, pattern="^(member|admin)$")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        return _check_email(v) if v is not None else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


# --- PROMOTIONS ---
class PromotionCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    cta: Optional[str] = None
    cta_href: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0


class PromotionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    cta: Optional[str] = None
    cta_href: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


# --- MESSAGING ---
class UploadImageRequest(BaseModel):
    image: str  # data:image/...;base64,...
    folder: str = Field(default="images", pattern="^[a-z0-9_-]+$")


class AdminEmailRequest(BaseModel):
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)
    user_ids: Optional[List[str]] = None  # None = all active members


class AdminWhatsAppRequest(BaseModel):
    message: str = Field(min_length=1)
    phone_numbers: Optional[List[str]] = None
    user_ids: Optional[List[str]] = None

    @model_validator(mode="after")
    def has_recipients(self):
        if not self.phone_numbers and not self.user_ids:
            raise ValueError("Provide phone_numbers or user_ids")
        return self


class InactivityReminderRequest(BaseModel):
    days_inactive: int = Field(default=7, ge=1, le=365)


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscribeRequest(BaseModel):
    endpoint: str
    keys: PushSubscriptionKeys


class PushUnsubscribeRequest(BaseModel):
    endpoint: str
