"""Account schemas: login, verification, member join."""
from pydantic import BaseModel, EmailStr, Field, field_validator
from churchfeed.models.user import UserRole
from churchfeed.schemas.registration import PASSWORD_MIN_LENGTH, _validate_phone_digits


class UserLogin(BaseModel):
    email: EmailStr
    password: str
    role: UserRole | None = None  # Required when the same email is both admin and member


class UserResponse(BaseModel):
    id: int
    email: str
    role: UserRole
    full_name: str | None = None
    phone: str | None = None
    email_verified: bool = False
    church_id: int | None = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class MemberJoin(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    phone: str
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    church_code: str

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        _validate_phone_digits(v or "")
        return (v or "").strip()

    @field_validator("church_code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return (v or "").strip().upper()


class DeviceTokenUpdate(BaseModel):
    device_token: str = Field(min_length=1, max_length=255)
