"""Accounts: admin/member login, admin email verification, current user."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from churchfeed.config import get_settings
from churchfeed.database import get_db
from churchfeed.dependencies import get_current_user
from churchfeed.models.user import User, UserRole
from churchfeed.schemas.auth import ResendVerificationRequest, Token, UserLogin, UserResponse, VerifyEmailRequest
from churchfeed.services.audit_log import CATEGORY_FAILED_ATTEMPT, CATEGORY_STATUS_CHANGE, create_log, request_context
from churchfeed.services.auth import (
    as_utc,
    create_access_token,
    generate_verification_code,
    verification_expiry,
    verify_password,
)
from churchfeed.services.notifications import send_verification_email
from churchfeed.services.posts import church_id_for_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def user_to_response(user: User, db: Session) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        role=user.role,
        full_name=user.full_name,
        phone=user.phone,
        email_verified=bool(user.email_verified),
        church_id=church_id_for_user(db, user),
    )


def _normalize_verification_code(raw: str | None) -> str:
    """Return stripped string, or empty string if not exactly 6 digits."""
    s = (raw or "").strip()
    if len(s) != 6 or not s.isdigit():
        return ""
    return s


def _admin_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.strip().lower(), User.role == UserRole.admin).first()


@router.post("/login", response_model=Token)
def login(request: Request, data: UserLogin, db: Session = Depends(get_db)):
    email = str(data.email).strip().lower()
    if not data.role:
        candidates = db.query(User).filter(User.email == email).all()
        if len(candidates) > 1:
            raise HTTPException(
                status_code=400,
                detail="This email is registered as both church admin and member. Choose a role and try again.",
            )
        user = candidates[0] if candidates else None
    else:
        user = db.query(User).filter(User.email == email, User.role == data.role).first()
    if not user or not verify_password(data.password, user.hashed_password):
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Login failed",
            f"Failed login attempt for email: {email}.",
            actor_email=email,
            meta={"reason": "invalid_email_or_password"},
            **request_context(request),
        )
        db.commit()
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.role == UserRole.admin and not user.email_verified:
        raise HTTPException(
            status_code=401,
            detail="Please verify your email first. Check your inbox or request a new verification code.",
        )
    token = create_access_token(user.id, user.email, user.role)
    return Token(access_token=token, user=user_to_response(user, db))


@router.post("/verify-email", response_model=Token)
def verify_email(request: Request, data: VerifyEmailRequest, db: Session = Depends(get_db)):
    """Confirm a church admin's email with the 6-digit code sent at registration."""
    raw_code = (data.code or "").strip()
    code = _normalize_verification_code(data.code)
    if raw_code and not code:
        raise HTTPException(status_code=400, detail="Verification code must be exactly 6 digits.")
    user = _admin_by_email(db, str(data.email))
    if not user:
        raise HTTPException(status_code=400, detail="Invalid request")
    if user.email_verified:
        token = create_access_token(user.id, user.email, user.role)
        return Token(access_token=token, user=user_to_response(user, db))

    stored = _normalize_verification_code(user.email_verification_code)
    if not code or not stored or stored != code:
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Email verification failed",
            f"Invalid or wrong verification code for user_id={user.id}.",
            actor_user_id=user.id,
            actor_email=user.email,
            meta={"user_id": user.id, "reason": "invalid_or_expired_code"},
            **request_context(request),
        )
        db.commit()
        raise HTTPException(status_code=400, detail="Invalid or expired verification code.")
    expires_at = as_utc(user.email_verification_expires_at)
    if expires_at and expires_at < datetime.now(timezone.utc):
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Email verification failed",
            f"Expired verification code for user_id={user.id}.",
            actor_user_id=user.id,
            actor_email=user.email,
            meta={"user_id": user.id, "reason": "expired_code"},
            **request_context(request),
        )
        db.commit()
        raise HTTPException(status_code=400, detail="Verification code has expired. Please request a new one.")

    user.email_verified = True
    user.email_verification_code = None
    user.email_verification_expires_at = None
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Email verified",
        f"Church admin {user.email} verified their email.",
        church_id=church_id_for_user(db, user),
        actor_user_id=user.id,
        actor_email=user.email,
        **request_context(request),
    )
    db.commit()
    db.refresh(user)
    token = create_access_token(user.id, user.email, user.role)
    return Token(access_token=token, user=user_to_response(user, db))


@router.post("/resend-verification")
def resend_verification(data: ResendVerificationRequest, db: Session = Depends(get_db)):
    user = _admin_by_email(db, str(data.email))
    if not user:
        raise HTTPException(status_code=400, detail="Invalid request")
    if user.email_verified:
        return {"status": "ok", "message": "Email is already verified."}
    code = generate_verification_code()
    user.email_verification_code = code
    user.email_verification_expires_at = verification_expiry()
    db.commit()
    sent = send_verification_email(user.email, code)
    if not sent:
        logger.warning("[Auth] Resend verification email not sent to %s", user.email)
        raise HTTPException(
            status_code=503,
            detail="We could not send the verification email. Check MAILGUN_DOMAIN and MAILGUN_FROM_EMAIL in .env and restart the server, then try again.",
        )
    return {"status": "ok", "message": "Verification code sent. Check your email."}


@router.get("/me", response_model=UserResponse)
def me(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return user_to_response(current_user, db)


@router.get("/config")
def public_config():
    """Values the app needs before sign-in (publishable key only)."""
    settings = get_settings()
    return {
        "app_name": settings.app_name,
        "stripe_publishable_key": settings.stripe_publishable_key,
        "trial_days": settings.trial_days,
    }
