"""
Payment gateway adapter - everything that talks to Stripe (directly or through a relay).

Only verify_session() is trusted to say whether a checkout was paid. Redirect parameters
and webhooks carry a session id at most; they are never proof of payment.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
import stripe

from churchfeed.config import Settings, get_settings
from churchfeed.models.church import SubscriptionTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierInfo:
    tier: SubscriptionTier
    name: str
    member_range: str
    price_usd: int
    max_members: int | None


SUBSCRIPTION_TIERS: dict[SubscriptionTier, TierInfo] = {
    SubscriptionTier.tier1: TierInfo(SubscriptionTier.tier1, "New Church", "0-50 members", 10, 50),
    SubscriptionTier.tier2: TierInfo(SubscriptionTier.tier2, "Growing Church", "51-150 members", 15, 150),
    SubscriptionTier.tier3: TierInfo(SubscriptionTier.tier3, "Established Church", "151-499 members", 20, 499),
    SubscriptionTier.tier4: TierInfo(SubscriptionTier.tier4, "Mega Church", "500+ members", 50, None),
}


class GatewayError(Exception):
    """Checkout could not be started or a session could not be read (transport, auth, config)."""
    pass


@dataclass
class CheckoutCustomer:
    email: str
    name: str


@dataclass
class CheckoutSession:
    checkout_url: str
    session_id: str
    customer_id: str | None = None


@dataclass
class SessionVerification:
    paid: bool
    payment_status: str
    customer_email: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


def as_plain_dict(obj: Any) -> dict:
    """Recursively turn a Stripe object into plain dicts and lists.

    Current stripe releases no longer make StripeObject a dict subclass; older ones do.
    Both are handled, and so are plain dicts (test doubles, relay payloads).
    """
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        to_dict = getattr(obj, "to_dict", None)
        if not callable(to_dict):
            raise TypeError(f"Expected a Stripe object or mapping, got {type(obj).__name__}")
        obj = to_dict()
    return {key: _plain(value) for key, value in obj.items()}


def _plain(value: Any) -> Any:
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict) or callable(getattr(value, "to_dict", None)):
        return as_plain_dict(value)
    return value


def _get(obj: Any, key: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _object_id(value: Any) -> str | None:
    # Expanded Stripe objects come back as objects, unexpanded ones as id strings
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def build_return_targets(device_id: str, settings: Settings | None = None) -> tuple[str, str]:
    """Success/cancel URLs for Checkout; the device id rides along so the redirect can find its cache slot."""
    settings = settings or get_settings()
    suffix = f"device_id={quote(device_id, safe='')}"
    success = settings.checkout_success_url
    cancel = settings.checkout_cancel_url
    success = f"{success}{'&' if '?' in success else '?'}{suffix}"
    cancel = f"{cancel}{'&' if '?' in cancel else '?'}{suffix}"
    return success, cancel


class PaymentGateway(ABC):
    @abstractmethod
    def create_checkout_session(
        self,
        tier: SubscriptionTier,
        customer: CheckoutCustomer,
        trial_days: int,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    def verify_session(self, session_id: str) -> SessionVerification:
        ...


class StripeGateway(PaymentGateway):
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _configure(self) -> None:
        if not self.settings.stripe_secret_key:
            raise GatewayError("Stripe is not configured. Set STRIPE_SECRET_KEY in .env.")
        stripe.api_key = self.settings.stripe_secret_key

    def price_id_for_tier(self, tier: SubscriptionTier | str) -> str:
        key = tier.value if isinstance(tier, SubscriptionTier) else str(tier)
        price_id = self.settings.stripe_price_ids.get(key, "")
        if not price_id:
            raise GatewayError(f"No Stripe price configured for tier {key!r}")
        return price_id

    def create_checkout_session(
        self,
        tier: SubscriptionTier,
        customer: CheckoutCustomer,
        trial_days: int,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        if trial_days < 0:
            raise ValueError("trial_days must be >= 0")
        price_id = self.price_id_for_tier(tier)
        self._configure()
        metadata = {**(metadata or {}), "tier": SubscriptionTier(tier).value, "source": "ChurchFeed"}
        try:
            stripe_customer = stripe.Customer.create(
                email=customer.email,
                name=customer.name,
                metadata=metadata,
            )
            customer_id = _get(stripe_customer, "id")
            params: dict[str, Any] = {
                "customer": customer_id,
                "payment_method_types": ["card"],
                "mode": "subscription",
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": {**metadata, "customer_id": customer_id or ""},
                "billing_address_collection": "required",
                "allow_promotion_codes": True,
            }
            if trial_days > 0:
                params["subscription_data"] = {"trial_period_days": trial_days, "metadata": metadata}
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("[Stripe] Checkout session creation failed for %s: %s", customer.email, e)
            raise GatewayError(f"Failed to create checkout session: {getattr(e, 'user_message', None) or e}") from e

        url = _get(session, "url")
        session_id = _get(session, "id")
        if not url or not session_id:
            raise GatewayError("Stripe did not return a checkout URL.")
        logger.info("[Stripe] Created checkout session %s (tier=%s trial_days=%d)", session_id, metadata["tier"], trial_days)
        return CheckoutSession(checkout_url=url, session_id=session_id, customer_id=customer_id)

    def verify_session(self, session_id: str) -> SessionVerification:
        self._configure()
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error("[Stripe] Could not retrieve checkout session %s: %s", session_id, e)
            raise GatewayError(f"Failed to verify payment: {getattr(e, 'user_message', None) or e}") from e

        try:
            data = as_plain_dict(session)
            status = data.get("payment_status") or "unpaid"
            details = data.get("customer_details") or {}
            metadata = data.get("metadata") or {}
            verification = SessionVerification(
                paid=status == "paid",
                payment_status=status,
                customer_email=details.get("email"),
                customer_id=_object_id(data.get("customer")),
                subscription_id=_object_id(data.get("subscription")),
                metadata={str(k): str(v) for k, v in metadata.items()},
            )
        except (TypeError, AttributeError, ValueError) as e:
            logger.error("[Stripe] Unreadable checkout session %s: %s", session_id, e)
            raise GatewayError(f"Failed to verify payment: unexpected session payload ({e})") from e
        logger.info("[Stripe] Session %s payment_status=%s", session_id, status)
        return verification

    def create_portal_session(self, customer_id: str, return_url: str | None = None) -> str:
        self._configure()
        try:
            portal = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url or self.settings.billing_portal_return_url,
            )
        except stripe.StripeError as e:
            logger.error("[Stripe] Portal session creation failed for %s: %s", customer_id, e)
            raise GatewayError(f"Failed to create portal session: {e}") from e
        return _get(portal, "url")


class RelayGateway(PaymentGateway):
    """Talks to a remote ChurchFeed relay (POST /api/create-checkout-session, GET /verify-payment/{id})."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, transport: httpx.BaseTransport | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.relay_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.relay_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"Relay returned a malformed response (status={response.status_code})") from e
        if not isinstance(data, dict):
            raise GatewayError("Relay returned a malformed response")
        return data

    def create_checkout_session(
        self,
        tier: SubscriptionTier,
        customer: CheckoutCustomer,
        trial_days: int,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        if trial_days < 0:
            raise ValueError("trial_days must be >= 0")
        if tier not in SUBSCRIPTION_TIERS:
            raise GatewayError(f"Unknown tier {tier!r}")
        body = {
            "email": customer.email,
            "name": customer.name,
            "tier": SubscriptionTier(tier).value,
            "trial_days": trial_days,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        try:
            with self._client() as client:
                r = client.post("/api/create-checkout-session", json=body)
        except httpx.HTTPError as e:
            logger.error("[Relay] create-checkout-session failed: %s", e)
            raise GatewayError(f"Could not reach payment relay: {e}") from e
        if r.status_code >= 400:
            raise GatewayError(f"Relay refused checkout session (status={r.status_code}): {r.text[:300]}")
        data = self._json(r)
        if not data.get("url") or not data.get("session_id"):
            raise GatewayError("Relay response is missing url or session_id")
        return CheckoutSession(checkout_url=data["url"], session_id=data["session_id"], customer_id=data.get("customer_id"))

    def verify_session(self, session_id: str) -> SessionVerification:
        try:
            with self._client() as client:
                r = client.get(f"/verify-payment/{quote(session_id, safe='')}")
        except httpx.HTTPError as e:
            logger.error("[Relay] verify-payment failed for %s: %s", session_id, e)
            raise GatewayError(f"Could not reach payment relay: {e}") from e
        if r.status_code >= 400:
            raise GatewayError(f"Relay could not verify session (status={r.status_code})")
        data = self._json(r)
        status = data.get("payment_status") or "unpaid"
        return SessionVerification(
            paid=bool(data.get("success")) and status == "paid",
            payment_status=status,
            customer_email=data.get("customer_email"),
            customer_id=data.get("customer_id"),
            subscription_id=data.get("subscription_id"),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


def get_payment_gateway_for_settings(settings: Settings | None = None) -> PaymentGateway:
    settings = settings or get_settings()
    if (settings.payment_gateway or "").strip().lower() == "relay":
        return RelayGateway(settings.relay_api_url, settings.relay_timeout_seconds)
    return StripeGateway(settings)
