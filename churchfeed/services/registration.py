"""
Church registration: submission (pending slot + checkout) and completion after payment.

Completion states:
    START -> VERIFYING -> {PAID_NO_CACHE, PAID_WITH_CACHE} -> WRITING -> {DONE, WRITE_FAILED}
    START -> {MISSING_SESSION, GATEWAY_ERROR, NOT_PAID}
    PAID_WITH_CACHE -> CORRUPT_DATA          (cache preserved)
    WRITE_FAILED                             (cache preserved, retry with the same session id)
    DONE                                     (cache cleared)

Payment is verified before the cache is read and the cache is read before anything is
written, so an unpaid session never exposes or creates a registration.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

from pydantic import ValidationError

from churchfeed.config import Settings, get_settings
from churchfeed.models.church import Admin, Church, SubscriptionTier
from churchfeed.schemas.registration import ChurchRegistrationInput, PendingRegistration, StoredChurchRegistration
from churchfeed.services.auth import get_password_hash
from churchfeed.services.church_writer import ChurchWriteError, ChurchWriter, admin_profile_from_registration
from churchfeed.services.payments import (
    CheckoutCustomer,
    CheckoutSession,
    GatewayError,
    PaymentGateway,
    SessionVerification,
    build_return_targets,
)
from churchfeed.services.registration_cache import RegistrationCache

logger = logging.getLogger(__name__)

DEGRADED_CHURCH_CODE = "Check your email for details"
DEGRADED_CHURCH_NAME = "Your Church"
DEGRADED_ADMIN_NAME = "Church Admin"


class MissingSessionError(Exception):
    """No checkout session id was supplied (e.g. a cold start from a non-payment link)."""

    def __init__(self):
        super().__init__("No checkout session id supplied")


class PaymentNotCompletedError(Exception):
    def __init__(self, session_id: str, payment_status: str | None = None):
        super().__init__(f"Payment not completed for session {session_id} (status={payment_status or 'unknown'})")
        self.session_id = session_id
        self.payment_status = payment_status


class CorruptPendingDataError(Exception):
    """The pending registration exists but is not a valid registration."""
    pass


class RegistrationWriteError(Exception):
    """Church/admin records could not be written; safe to retry with the same session id."""
    pass


class RegistrationInProgressError(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Registration for session {session_id} is already being completed")
        self.session_id = session_id


class InFlightGuard:
    """At most one completion per session id at a time (thread-safe)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[str] = set()

    @contextmanager
    def claim(self, key: str):
        with self._lock:
            if key in self._active:
                raise RegistrationInProgressError(key)
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active


in_flight_registrations = InFlightGuard()


@dataclass
class CompletionResult:
    church_name: str
    church_code: str
    admin_name: str
    admin_email: str
    needs_email_verification: bool
    church: Church | None = None
    admin: Admin | None = None
    degraded: bool = False
    warning: str | None = None


def start_registration(
    cache: RegistrationCache,
    gateway: PaymentGateway,
    registration: ChurchRegistrationInput,
    device_id: str,
    settings: Settings | None = None,
) -> CheckoutSession:
    """Store the registration in the device's pending slot, open a checkout session for it,
    then tag the slot with that session id so only its own completion consumes it.
    """
    settings = settings or get_settings()
    stored = StoredChurchRegistration(
        **registration.model_dump(exclude={"admin_password"}),
        admin_password_hash=get_password_hash(registration.admin_password),
    )
    pending = PendingRegistration(
        registration_data=stored.model_dump(mode="json"),
        selected_tier=registration.member_count_tier,
        created_at_epoch_millis=int(time.time() * 1000),
    )
    cache.save(pending)

    success_url, cancel_url = build_return_targets(device_id, settings)
    trial_days = settings.trial_days if registration.wants_trial else 0
    checkout = gateway.create_checkout_session(
        registration.member_count_tier,
        CheckoutCustomer(email=str(registration.admin_email), name=registration.admin_name),
        trial_days,
        success_url,
        cancel_url,
        metadata={
            "church_name": registration.church_name[:200],
            "admin_role": registration.admin_role.value,
            "device_id": device_id,
        },
    )
    cache.save(pending.model_copy(update={"session_id": checkout.session_id}))
    logger.info(
        "[Registration] Checkout started for %r session=%s tier=%s trial_days=%d",
        registration.church_name,
        checkout.session_id,
        registration.member_count_tier.value,
        trial_days,
    )
    return checkout


class RegistrationCompletionCoordinator:
    """Turns a paid checkout session into church + admin records."""

    def __init__(
        self,
        cache: RegistrationCache,
        gateway: PaymentGateway,
        writer: ChurchWriter,
        in_flight: InFlightGuard | None = None,
    ):
        self.cache = cache
        self.gateway = gateway
        self.writer = writer
        self.in_flight = in_flight or in_flight_registrations

    def complete_registration(self, session_id: str | None) -> CompletionResult:
        session_id = (session_id or "").strip()
        if not session_id:
            raise MissingSessionError()
        with self.in_flight.claim(session_id):
            return self._complete(session_id)

    def _complete(self, session_id: str) -> CompletionResult:
        try:
            verification = self.gateway.verify_session(session_id)
        except GatewayError:
            logger.warning("[Registration] Could not verify session %s; user may retry", session_id)
            raise
        if not verification.paid:
            logger.info("[Registration] Session %s not paid (status=%s)", session_id, verification.payment_status)
            raise PaymentNotCompletedError(session_id, verification.payment_status)

        pending = self.cache.load()
        if pending is not None and pending.session_id and pending.session_id != session_id:
            # Slot belongs to a different checkout; leave it for that session
            logger.info(
                "[Registration] Pending registration on this device is for session %s, not %s; leaving it",
                pending.session_id,
                session_id,
            )
            pending = None

        existing = self.writer.find_registration(session_id)
        if existing:
            church, admin = existing
            logger.info("[Registration] Session %s already produced church id=%s; returning it", session_id, church.id)
            if pending is not None and pending.session_id == session_id:
                self.cache.clear()
            return self._result(church, admin, self.writer.identity_needs_verification(admin.user_id))

        if pending is None:
            logger.warning("[Registration] Session %s is paid but no pending registration is cached", session_id)
            return self._degraded_result(verification)

        registration = self._validate(pending, session_id)
        tier = pending.selected_tier or registration.member_count_tier

        church, admin, needs_verification, warning = self._write(registration, tier, session_id, verification)
        self.cache.clear()
        logger.info("[Registration] Completed session=%s church id=%s code=%s", session_id, church.id, church.church_code)
        result = self._result(church, admin, needs_verification)
        result.warning = warning
        return result

    def _validate(self, pending: PendingRegistration, session_id: str) -> StoredChurchRegistration:
        if not pending.registration_data:
            logger.error("[Registration] Pending registration for session %s has no registration data", session_id)
            raise CorruptPendingDataError("Pending registration has no registration data")
        try:
            return StoredChurchRegistration.model_validate(pending.registration_data)
        except ValidationError as e:
            logger.error("[Registration] Pending registration for session %s is invalid: %s", session_id, e)
            raise CorruptPendingDataError(f"Pending registration is invalid ({e.error_count()} error(s))") from e

    def _write(
        self,
        registration: StoredChurchRegistration,
        tier: SubscriptionTier,
        session_id: str,
        verification: SessionVerification,
    ) -> tuple[Church, Admin, bool, str | None]:
        profile = admin_profile_from_registration(registration)
        try:
            church = self.writer.create_church(registration, tier, session_id, verification)
        except ChurchWriteError as e:
            logger.error("[Registration] Church write failed for session %s: %s", session_id, e)
            raise RegistrationWriteError(str(e)) from e

        try:
            identity = self.writer.create_admin_identity(profile.email, registration.admin_password_hash, profile)
        except ChurchWriteError as e:
            logger.error("[Registration] Admin identity failed for session %s: %s", session_id, e)
            self._undo(church.id)
            raise RegistrationWriteError(str(e)) from e

        try:
            admin = self.writer.create_admin_record(identity.user_id, church.id, profile)
        except ChurchWriteError as e:
            logger.error("[Registration] Admin record failed for session %s: %s", session_id, e)
            self._undo(church.id, identity.user_id)
            raise RegistrationWriteError(str(e)) from e

        return church, admin, identity.needs_email_verification, identity.warning

    def _undo(self, church_id: int, user_id: int | None = None) -> None:
        # Compensation failures are logged; the original write error is what the caller sees
        if user_id is not None:
            try:
                self.writer.delete_admin_identity(user_id)
            except ChurchWriteError:
                logger.exception("[Registration] Could not remove admin identity %s", user_id)
        try:
            self.writer.delete_church(church_id)
        except ChurchWriteError:
            logger.exception("[Registration] Could not remove orphaned church %s", church_id)

    @staticmethod
    def _result(church: Church, admin: Admin, needs_verification: bool) -> CompletionResult:
        return CompletionResult(
            church_name=church.name,
            church_code=church.church_code,
            admin_name=admin.name,
            admin_email=admin.email,
            needs_email_verification=needs_verification,
            church=church,
            admin=admin,
        )

    @staticmethod
    def _degraded_result(verification: SessionVerification) -> CompletionResult:
        return CompletionResult(
            church_name=verification.metadata.get("church_name") or DEGRADED_CHURCH_NAME,
            church_code=DEGRADED_CHURCH_CODE,
            admin_name=DEGRADED_ADMIN_NAME,
            admin_email=verification.customer_email or "",
            needs_email_verification=True,
            degraded=True,
        )
