"""Stripe relay: checkout, payment verification, billing portal and webhook receipt.

The mobile app (or a RelayGateway on another host) calls these instead of holding the
Stripe secret key itself.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from churchfeed.config import get_settings
from churchfeed.database import get_db
from churchfeed.dependencies import get_stripe_gateway
from churchfeed.models.church import Subscription, SubscriptionStatus
from churchfeed.schemas.registration import (
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    PortalSessionCreate,
    VerifyPaymentResponse,
)
from churchfeed.services.audit_log import CATEGORY_PAYMENT, CATEGORY_STATUS_CHANGE, create_log
from churchfeed.services.payments import (
    CheckoutCustomer,
    GatewayError,
    StripeGateway,
    as_plain_dict,
    build_return_targets,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

# Stripe subscription statuses we track; anything else (incomplete, unpaid, paused) is inactive
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.trialing,
    "past_due": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
}


@router.post("/api/create-checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(data: CheckoutSessionCreate, gateway: StripeGateway = Depends(get_stripe_gateway)):
    settings = get_settings()
    metadata = dict(data.metadata or {})
    if metadata.get("device_id"):
        default_success, default_cancel = build_return_targets(metadata["device_id"], settings)
    else:
        default_success, default_cancel = settings.checkout_success_url, settings.checkout_cancel_url
    try:
        session = gateway.create_checkout_session(
            data.tier,
            CheckoutCustomer(email=str(data.email), name=data.name),
            data.trial_days,
            data.success_url or default_success,
            data.cancel_url or default_cancel,
            metadata=metadata,
        )
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return CheckoutSessionResponse(url=session.checkout_url, session_id=session.session_id, customer_id=session.customer_id)


@router.get("/verify-payment/{session_id}", response_model=VerifyPaymentResponse)
def verify_payment(session_id: str, gateway: StripeGateway = Depends(get_stripe_gateway)):
    try:
        result = gateway.verify_session(session_id)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return VerifyPaymentResponse(
        success=result.paid,
        payment_status=result.payment_status,
        customer_email=result.customer_email,
        church_name=result.metadata.get("church_name"),
        customer_id=result.customer_id,
        subscription_id=result.subscription_id,
        metadata=result.metadata,
    )


@router.post("/api/create-portal-session")
def create_portal_session(data: PortalSessionCreate, gateway: StripeGateway = Depends(get_stripe_gateway)):
    try:
        url = gateway.create_portal_session(data.customer_id, data.return_url)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"url": url}


def _apply_subscription_status(db: Session, subscription: dict, deleted: bool) -> None:
    sub_id = subscription.get("id")
    customer_id = subscription.get("customer")
    row = None
    if sub_id:
        row = db.query(Subscription).filter(Subscription.stripe_subscription_id == sub_id).first()
    if row is None and customer_id:
        row = db.query(Subscription).filter(Subscription.stripe_customer_id == customer_id).first()
    if row is None:
        logger.info("[Webhook] No local subscription for %s (customer=%s)", sub_id, customer_id)
        return
    old = row.status
    if deleted:
        new = SubscriptionStatus.canceled
    else:
        new = STRIPE_STATUS_MAP.get(subscription.get("status") or "", SubscriptionStatus.inactive)
    row.status = new
    if sub_id and not row.stripe_subscription_id:
        row.stripe_subscription_id = sub_id
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Subscription status changed",
        f"Subscription {sub_id} for church {row.church_id}: {old.value if old else None} -> {new.value}.",
        church_id=row.church_id,
        meta={"subscription_id": sub_id, "customer_id": customer_id, "from": old, "to": new},
    )
    db.commit()
    logger.info("[Webhook] Subscription %s -> %s (church=%s)", sub_id, new.value, row.church_id)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    db: Session = Depends(get_db),
):
    """Receive Stripe events. The signature is always verified; processing problems are logged, not returned."""
    secret = get_settings().stripe_webhook_secret
    if not secret:
        logger.error("[Webhook] STRIPE_WEBHOOK_SECRET is not set; refusing event")
        raise HTTPException(status_code=400, detail="Webhook secret not configured")
    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature or "", secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error("[Webhook] Signature verification failed: %s", e)
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    event_type = None
    try:
        event = as_plain_dict(event)
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info("[Webhook] Received %s (%s)", event_type, event.get("id"))
        if event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            _apply_subscription_status(db, obj, deleted=event_type == "customer.subscription.deleted")
        elif event_type == "checkout.session.completed":
            metadata = obj.get("metadata") or {}
            create_log(
                db,
                CATEGORY_PAYMENT,
                "Checkout completed",
                f"Checkout session {obj.get('id')} completed for {metadata.get('church_name') or 'unknown church'}.",
                actor_email=(obj.get("customer_details") or {}).get("email"),
                meta={"session_id": obj.get("id"), "customer_id": obj.get("customer"), "tier": metadata.get("tier")},
            )
            db.commit()
    except Exception:
        db.rollback()
        logger.exception("[Webhook] Failed to process %s", event_type)
    return {"received": True}
