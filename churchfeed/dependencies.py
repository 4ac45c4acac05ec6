"""Shared dependencies: DB session, current user, device slot, payment gateway."""
from fastapi import Depends, Header, HTTPException, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from churchfeed.database import get_db
from churchfeed.models.church import Admin
from churchfeed.models.user import User, UserRole
from churchfeed.services.auth import decode_token_with_error
from churchfeed.services.church_writer import ChurchWriter
from churchfeed.services.payments import PaymentGateway, StripeGateway, get_payment_gateway_for_settings
from churchfeed.services.registration import RegistrationCompletionCoordinator
from churchfeed.services.registration_cache import RegistrationCache, SqlRegistrationCache, cache_for_device

security = HTTPBearer(auto_error=False)

DEVICE_ID_MAX_LEN = 128


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.admin:
        raise HTTPException(status_code=403, detail="Church admin role required")
    return current_user


def get_current_admin(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
) -> Admin:
    admin = db.query(Admin).filter(Admin.user_id == current_user.id).first()
    if not admin:
        raise HTTPException(status_code=403, detail="No church is linked to this admin account.")
    return admin


def get_optional_device_id(
    x_device_id: str | None = Header(None),
    device_id: str | None = Query(None),
) -> str | None:
    """Device identity for the pending-registration slot: X-Device-Id header, or ?device_id= on redirects."""
    value = (x_device_id or device_id or "").strip()
    if len(value) > DEVICE_ID_MAX_LEN:
        raise HTTPException(status_code=400, detail="Device id is too long.")
    return value or None


def get_device_id(device_id: str | None = Depends(get_optional_device_id)) -> str:
    if not device_id:
        raise HTTPException(status_code=400, detail="X-Device-Id header (or device_id query parameter) is required.")
    return device_id


def get_registration_cache(
    db: Session = Depends(get_db),
    device_id: str = Depends(get_device_id),
) -> RegistrationCache:
    return SqlRegistrationCache(db, device_id)


def get_completion_cache(
    db: Session = Depends(get_db),
    device_id: str | None = Depends(get_optional_device_id),
) -> RegistrationCache:
    return cache_for_device(db, device_id)


def get_payment_gateway() -> PaymentGateway:
    return get_payment_gateway_for_settings()


def get_stripe_gateway() -> StripeGateway:
    """The relay endpoints always talk to Stripe directly, whatever PAYMENT_GATEWAY says."""
    return StripeGateway()


def get_church_writer(db: Session = Depends(get_db)) -> ChurchWriter:
    return ChurchWriter(db)


def get_completion_coordinator(
    cache: RegistrationCache = Depends(get_completion_cache),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    writer: ChurchWriter = Depends(get_church_writer),
) -> RegistrationCompletionCoordinator:
    return RegistrationCompletionCoordinator(cache, gateway, writer)
