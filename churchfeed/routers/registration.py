"""Church registration: submit + pay, then complete after the Stripe redirect."""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from churchfeed.database import get_db
from churchfeed.dependencies import (
    get_completion_coordinator,
    get_device_id,
    get_optional_device_id,
    get_payment_gateway,
    get_registration_cache,
)
from churchfeed.schemas.registration import (
    ChurchRegistrationInput,
    CheckoutStartResponse,
    CompleteRegistrationRequest,
    CompletedAdmin,
    CompletedChurch,
    CompletionResponse,
    PendingRegistrationResponse,
)
from churchfeed.services.audit_log import (
    CATEGORY_FAILED_ATTEMPT,
    CATEGORY_PAYMENT,
    CATEGORY_REGISTRATION,
    create_log,
    request_context,
)
from churchfeed.services.church_writer import ChurchWriter
from churchfeed.services.notifications import send_church_welcome_email
from churchfeed.services.payments import GatewayError, PaymentGateway
from churchfeed.services.registration import (
    CompletionResult,
    CorruptPendingDataError,
    MissingSessionError,
    PaymentNotCompletedError,
    RegistrationCompletionCoordinator,
    RegistrationInProgressError,
    RegistrationWriteError,
    start_registration,
)
from churchfeed.services.registration_cache import RegistrationCache, StorageError, cache_for_device

logger = logging.getLogger(__name__)

router = APIRouter(tags=["registration"])

ACTION_RETRY = "retry"
ACTION_RETRY_PAYMENT = "retry_payment"
ACTION_RETRY_REGISTRATION = "retry_registration"
ACTION_CONTACT_SUPPORT = "contact_support"
ACTION_START_OVER = "start_over"


def _error(status_code: int, code: str, message: str, action: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, "action": action})


def _completion_message(result: CompletionResult) -> str:
    if result.degraded:
        return "Payment successful! Your subscription has been activated. Check your email for your church details."
    if result.needs_email_verification:
        return (
            f"Welcome to ChurchFeed! Your church code is: {result.church_code}. "
            f"Please check your email ({result.admin_email}) to verify your account before signing in."
        )
    return f"Church registered successfully! Your church code is: {result.church_code}"


def _to_response(result: CompletionResult) -> CompletionResponse:
    return CompletionResponse(
        church=CompletedChurch(
            id=result.church.id if result.church else None,
            name=result.church_name,
            church_code=result.church_code,
        ),
        admin=CompletedAdmin(
            id=result.admin.id if result.admin else None,
            name=result.admin_name,
            email=result.admin_email,
        ),
        needs_email_verification=result.needs_email_verification,
        degraded=result.degraded,
        message=_completion_message(result),
    )


def _run_completion(
    coordinator: RegistrationCompletionCoordinator,
    session_id: str | None,
    db: Session,
    request: Request,
) -> CompletionResponse:
    ctx = request_context(request)
    try:
        result = coordinator.complete_registration(session_id)
    except MissingSessionError:
        raise _error(400, "missing_session", "No payment session was found. Start from the welcome screen.", ACTION_START_OVER)
    except RegistrationInProgressError:
        raise _error(409, "in_progress", "Your registration is already being completed. Please wait a moment.", ACTION_RETRY)
    except GatewayError as e:
        raise _error(502, "gateway_error", f"We could not confirm your payment right now. Please try again. ({e})", ACTION_RETRY)
    except PaymentNotCompletedError as e:
        create_log(
            db,
            CATEGORY_PAYMENT,
            "Payment not completed",
            f"Checkout session {e.session_id} returned status {e.payment_status}.",
            meta={"session_id": e.session_id, "payment_status": e.payment_status},
            **ctx,
        )
        db.commit()
        raise _error(402, "payment_not_completed", "Your payment was not completed. Please restart checkout.", ACTION_RETRY_PAYMENT)
    except CorruptPendingDataError:
        raise _error(
            422,
            "corrupt_pending_data",
            "Payment was successful, but the saved registration could not be read. Please contact support.",
            ACTION_CONTACT_SUPPORT,
        )
    except RegistrationWriteError as e:
        create_log(
            db,
            CATEGORY_FAILED_ATTEMPT,
            "Registration write failed",
            f"Church registration for session {session_id} could not be written: {e}",
            meta={"session_id": session_id},
            **ctx,
        )
        db.commit()
        raise _error(
            500,
            "registration_write_failed",
            f"Payment was successful, but there was an issue completing your registration: {e}",
            ACTION_RETRY_REGISTRATION,
        )
    except StorageError:
        raise _error(503, "storage_error", "Registration storage is unavailable. Please try again.", ACTION_RETRY)

    create_log(
        db,
        CATEGORY_REGISTRATION,
        "Church registered" if not result.degraded else "Payment confirmed without local registration",
        f"Church {result.church_name!r} ({result.church_code}) completed for session {session_id}.",
        church_id=result.church.id if result.church else None,
        actor_user_id=result.admin.user_id if result.admin else None,
        actor_email=result.admin_email or None,
        meta={"session_id": session_id, "degraded": result.degraded, "warning": result.warning},
        **ctx,
    )
    db.commit()
    if result.church and result.admin:
        sent = send_church_welcome_email(result.admin_email, result.admin_name, result.church_name, result.church_code)
        if not sent:
            logger.warning("[Registration] Welcome email not sent to %s", result.admin_email)
    return _to_response(result)


@router.post("/registrations", response_model=CheckoutStartResponse)
def submit_registration(
    data: ChurchRegistrationInput,
    device_id: str = Depends(get_device_id),
    cache: RegistrationCache = Depends(get_registration_cache),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Save the registration for this device and open Stripe Checkout for it."""
    try:
        checkout = start_registration(cache, gateway, data, device_id)
    except StorageError:
        raise _error(503, "storage_error", "Could not save your registration. Please try again.", ACTION_RETRY)
    except GatewayError as e:
        raise _error(502, "gateway_error", f"Could not start checkout: {e}", ACTION_RETRY)
    return CheckoutStartResponse(checkout_url=checkout.checkout_url, session_id=checkout.session_id)


@router.get("/registrations/pending", response_model=PendingRegistrationResponse)
def get_pending_registration(cache: RegistrationCache = Depends(get_registration_cache)):
    try:
        pending = cache.load()
    except StorageError:
        raise _error(503, "storage_error", "Registration storage is unavailable. Please try again.", ACTION_RETRY)
    if pending is None:
        raise HTTPException(status_code=404, detail="No pending registration for this device.")
    return PendingRegistrationResponse(
        church_name=(pending.registration_data or {}).get("church_name"),
        selected_tier=pending.selected_tier,
        created_at_epoch_millis=pending.created_at_epoch_millis,
    )


@router.post("/registrations/complete", response_model=CompletionResponse)
def complete_registration(
    request: Request,
    data: CompleteRegistrationRequest,
    db: Session = Depends(get_db),
    coordinator: RegistrationCompletionCoordinator = Depends(get_completion_coordinator),
):
    """Verify the checkout session with Stripe and create the church + admin. Safe to retry with the same session_id."""
    return _run_completion(coordinator, data.session_id, db, request)


@router.get("/payment-success")
def payment_success(
    request: Request,
    session_id: str | None = Query(None),
    device_id: str | None = Query(None),
    x_device_id: str | None = Header(None),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Redirect / deep-link entry point. Without a session_id this is a normal app launch."""
    session_id = (session_id or "").strip()
    if not session_id:
        return {"status": "launch"}
    device = get_optional_device_id(x_device_id=x_device_id, device_id=device_id)
    coordinator = RegistrationCompletionCoordinator(cache_for_device(db, device), gateway, ChurchWriter(db))
    return _run_completion(coordinator, session_id, db, request)


@router.get("/payment-cancel")
def payment_cancel():
    return {
        "status": "cancelled",
        "code": "payment_cancelled",
        "message": "Payment was cancelled. You can restart checkout whenever you are ready.",
        "action": ACTION_RETRY_PAYMENT,
    }
