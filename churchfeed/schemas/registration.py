"""Church registration, pending registration and checkout schemas."""
import re
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from churchfeed.models.church import AdminRole, SubscriptionTier

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
PASSWORD_MIN_LENGTH = 8


def _normalize_phone(value: str | None) -> str:
    if value is None:
        return ""
    return re.sub(r"\D", "", value.strip())


def _validate_phone_digits(phone: str) -> None:
    digits = _normalize_phone(phone)
    if not digits:
        raise ValueError("Phone number is required.")
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"Phone number must have at least {PHONE_MIN_DIGITS} digits (e.g. 5551234567 or +1 555 123 4567).")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")


class ChurchRegistrationBase(BaseModel):
    church_name: str = Field(min_length=1, max_length=255)
    church_address: str = Field(min_length=1, max_length=500)
    is_hq: bool
    hq_church_code: str | None = None
    admin_name: str = Field(min_length=1, max_length=255)
    admin_role: AdminRole
    admin_phone: str
    admin_email: EmailStr
    member_count_tier: SubscriptionTier
    wants_trial: bool = False

    @field_validator("church_name", "church_address", "admin_name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required.")
        return v

    @field_validator("admin_phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        _validate_phone_digits(v or "")
        return (v or "").strip()

    @field_validator("hq_church_code")
    @classmethod
    def normalize_hq_code(cls, v: str | None) -> str | None:
        v = (v or "").strip().upper()
        return v or None

    @model_validator(mode="after")
    def hq_code_matches_branch(self):
        # A branch must name its HQ; an HQ must not
        if self.is_hq and self.hq_church_code:
            raise ValueError("An HQ church cannot have an HQ church code.")
        if not self.is_hq and not self.hq_church_code:
            raise ValueError("HQ church code is required for a branch church.")
        return self


class ChurchRegistrationInput(ChurchRegistrationBase):
    """Registration form as submitted by the church admin."""
    admin_password: str = Field(min_length=PASSWORD_MIN_LENGTH)


class StoredChurchRegistration(ChurchRegistrationBase):
    """Registration form as kept in the pending-registration cache (password already hashed)."""
    admin_password_hash: str = Field(min_length=1)


class PendingRegistration(BaseModel):
    """Contents of the single per-device pending registration slot.

    registration_data stays a plain dict here; it is validated as
    StoredChurchRegistration when the registration is completed. session_id is the
    checkout session opened for it, once Checkout has returned one.
    """
    registration_data: dict[str, Any] | None = None
    selected_tier: SubscriptionTier | None = None
    created_at_epoch_millis: int = 0
    session_id: str | None = None


class PendingRegistrationResponse(BaseModel):
    church_name: str | None = None
    selected_tier: SubscriptionTier | None = None
    created_at_epoch_millis: int


class CheckoutStartResponse(BaseModel):
    checkout_url: str
    session_id: str


class CompleteRegistrationRequest(BaseModel):
    session_id: str | None = None


class CompletedChurch(BaseModel):
    id: int | None = None
    name: str
    church_code: str


class CompletedAdmin(BaseModel):
    id: int | None = None
    name: str
    email: str


class CompletionResponse(BaseModel):
    status: str = "completed"
    church: CompletedChurch
    admin: CompletedAdmin
    needs_email_verification: bool
    degraded: bool = False
    message: str


class CheckoutSessionCreate(BaseModel):
    email: EmailStr
    name: str
    tier: SubscriptionTier
    trial_days: int = Field(default=0, ge=0)
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, str] | None = None


class CheckoutSessionResponse(BaseModel):
    url: str
    session_id: str
    customer_id: str | None = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    payment_status: str
    customer_email: str | None = None
    church_name: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    metadata: dict[str, str] = {}


class PortalSessionCreate(BaseModel):
    customer_id: str
    return_url: str | None = None
