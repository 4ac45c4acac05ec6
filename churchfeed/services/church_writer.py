"""Writes the church, admin identity and admin record for a completed registration.

Each step commits on its own so the completion coordinator can undo an earlier step
(delete_church / delete_admin_identity) when a later one fails.
"""
import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from churchfeed.config import get_settings
from churchfeed.models.church import Admin, AdminRole, Church, Subscription, SubscriptionStatus, SubscriptionTier
from churchfeed.models.user import User, UserRole
from churchfeed.schemas.registration import StoredChurchRegistration
from churchfeed.services.auth import generate_verification_code, verification_expiry
from churchfeed.services.church_directory import (
    CodeGenerationExhaustedError,
    church_code_exists,
    generate_unique_church_code,
    get_church_by_code,
)
from churchfeed.services.notifications import send_verification_email
from churchfeed.services.payments import SessionVerification

logger = logging.getLogger(__name__)


class ChurchWriteError(Exception):
    """A church/admin record could not be written."""
    pass


class HqChurchNotFoundError(ChurchWriteError):
    def __init__(self, code: str):
        super().__init__(f"No HQ church found with code {code}")
        self.code = code


class IdentityCreationError(ChurchWriteError):
    """The admin identity was not created (hard failure)."""
    pass


@dataclass
class AdminProfile:
    name: str
    role: str
    phone: str
    email: str


@dataclass
class AdminIdentity:
    user_id: int
    needs_email_verification: bool
    # Set when the identity exists but something around it (the confirmation email) failed
    warning: str | None = None


def admin_profile_from_registration(registration: StoredChurchRegistration) -> AdminProfile:
    return AdminProfile(
        name=registration.admin_name,
        role=registration.admin_role.value,
        phone=registration.admin_phone,
        email=str(registration.admin_email).lower(),
    )


class ChurchWriter:
    def __init__(
        self,
        db: Session,
        *,
        require_email_verification: bool | None = None,
        code_max_attempts: int | None = None,
        send_verification: Callable[[str, str], bool] = send_verification_email,
    ):
        settings = get_settings()
        self.db = db
        self.require_email_verification = (
            settings.require_email_verification if require_email_verification is None else require_email_verification
        )
        self.code_max_attempts = code_max_attempts or settings.church_code_max_attempts
        self.send_verification = send_verification

    def find_registration(self, session_id: str) -> tuple[Church, Admin] | None:
        """Church + admin already written for this checkout session, if any."""
        church = self.db.query(Church).filter(Church.checkout_session_id == session_id).first()
        if not church:
            return None
        admin = self.db.query(Admin).filter(Admin.church_id == church.id).first()
        if not admin:
            return None
        return church, admin

    def identity_needs_verification(self, user_id: int) -> bool:
        user = self.db.get(User, user_id)
        return bool(user) and not user.email_verified

    def create_church(
        self,
        registration: StoredChurchRegistration,
        tier: SubscriptionTier,
        session_id: str | None = None,
        verification: SessionVerification | None = None,
    ) -> Church:
        parent_hq_id = None
        if not registration.is_hq:
            hq = get_church_by_code(self.db, registration.hq_church_code)
            if not hq:
                raise HqChurchNotFoundError(registration.hq_church_code or "")
            parent_hq_id = hq.id

        status = SubscriptionStatus.trialing if registration.wants_trial else SubscriptionStatus.active
        # The existence check and the unique index both guard the code; a lost race just regenerates
        for _ in range(self.code_max_attempts):
            try:
                code = generate_unique_church_code(
                    lambda c: church_code_exists(self.db, c),
                    max_attempts=self.code_max_attempts,
                )
            except CodeGenerationExhaustedError as e:
                raise ChurchWriteError(str(e)) from e
            church = Church(
                name=registration.church_name,
                address=registration.church_address,
                is_hq=registration.is_hq,
                parent_hq_id=parent_hq_id,
                church_code=code,
                subscription_tier=tier,
                checkout_session_id=session_id,
            )
            try:
                self.db.add(church)
                self.db.flush()
                self.db.add(Subscription(
                    church_id=church.id,
                    stripe_customer_id=verification.customer_id if verification else None,
                    stripe_subscription_id=verification.subscription_id if verification else None,
                    status=status,
                ))
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if session_id and self.db.query(Church.id).filter(Church.checkout_session_id == session_id).first():
                    raise ChurchWriteError(f"A church was already created for session {session_id}") from e
                logger.warning("[ChurchWriter] Church code %s collided on insert; regenerating", code)
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                raise ChurchWriteError(f"Could not create church: {e}") from e
            self.db.refresh(church)
            logger.info("[ChurchWriter] Created church id=%s code=%s session=%s", church.id, church.church_code, session_id)
            return church
        raise ChurchWriteError(str(CodeGenerationExhaustedError(self.code_max_attempts)))

    def create_admin_identity(self, email: str, hashed_password: str, profile: AdminProfile) -> AdminIdentity:
        email = (email or "").strip().lower()
        existing = self.db.query(User).filter(User.email == email, User.role == UserRole.admin).first()
        if existing:
            raise IdentityCreationError("This email is already registered as a church admin. Please sign in instead.")

        code = generate_verification_code() if self.require_email_verification else None
        user = User(
            email=email,
            hashed_password=hashed_password,
            role=UserRole.admin,
            full_name=profile.name,
            phone=profile.phone,
            email_verified=not self.require_email_verification,
            email_verification_code=code,
            email_verification_expires_at=verification_expiry() if code else None,
        )
        try:
            self.db.add(user)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise IdentityCreationError(f"Could not create admin account: {e}") from e
        self.db.refresh(user)

        warning = None
        if code:
            sent = self.send_verification(email, code)
            if not sent:
                # Non-fatal: the identity exists and the code can be resent
                warning = "Verification email could not be sent. Use resend verification to get a new code."
                logger.warning("[ChurchWriter] Verification email not sent to %s (user_id=%s)", email, user.id)
        return AdminIdentity(user_id=user.id, needs_email_verification=not user.email_verified, warning=warning)

    def create_admin_record(self, user_id: int, church_id: int, profile: AdminProfile) -> Admin:
        admin = Admin(
            user_id=user_id,
            church_id=church_id,
            role=AdminRole(profile.role),
            name=profile.name,
            email=profile.email,
            phone=profile.phone,
        )
        try:
            self.db.add(admin)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ChurchWriteError(f"Could not create admin record: {e}") from e
        self.db.refresh(admin)
        return admin

    def delete_church(self, church_id: int) -> None:
        try:
            self.db.query(Subscription).filter(Subscription.church_id == church_id).delete()
            self.db.query(Church).filter(Church.id == church_id).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ChurchWriteError(f"Could not delete church {church_id}: {e}") from e
        logger.info("[ChurchWriter] Deleted church id=%s (compensating)", church_id)

    def delete_admin_identity(self, user_id: int) -> None:
        try:
            self.db.query(User).filter(User.id == user_id, User.role == UserRole.admin).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ChurchWriteError(f"Could not delete admin identity {user_id}: {e}") from e
        logger.info("[ChurchWriter] Deleted admin identity user_id=%s (compensating)", user_id)
