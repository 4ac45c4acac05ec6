"""Stripe relay endpoints and webhook receipt."""
import hashlib
import hmac
import json
import time
from unittest.mock import patch

import stripe

from churchfeed.models.audit_log import AuditLog
from churchfeed.models.church import Subscription, SubscriptionStatus
from churchfeed.services.payments import CheckoutSession, GatewayError, SessionVerification
from conftest import make_church


def _subscription(db, church, status=SubscriptionStatus.active):
    sub = Subscription(church_id=church.id, stripe_customer_id="cus_123", stripe_subscription_id="sub_456", status=status)
    db.add(sub)
    db.commit()
    return sub


WEBHOOK_SECRET = "whsec_test_churchfeed"


def _event_payload(event_type, obj) -> dict:
    return {"id": "evt_test_1", "object": "event", "type": event_type, "data": {"object": obj}}


def _event(event_type, obj):
    return stripe.Event.construct_from(_event_payload(event_type, obj), "sk_test_churchfeed")


def _signed(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestRelayCheckout:
    def test_create_checkout_session(self, client, stripe_gateway):
        stripe_gateway.create_checkout_session.return_value = CheckoutSession(
            checkout_url="https://checkout.stripe.com/c/pay/cs_1", session_id="cs_1", customer_id="cus_1"
        )
        r = client.post("/api/create-checkout-session", json={
            "email": "ruth@gracechapel.org",
            "name": "Ruth Adeyemi",
            "tier": "tier1",
            "trial_days": 7,
            "metadata": {"church_name": "Grace Chapel", "device_id": "dev-1"},
        })
        assert r.status_code == 200, r.text
        assert r.json() == {"url": "https://checkout.stripe.com/c/pay/cs_1", "session_id": "cs_1", "customer_id": "cus_1"}
        args = stripe_gateway.create_checkout_session.call_args.args
        assert args[2] == 7
        assert args[3].endswith("device_id=dev-1")

    def test_negative_trial_rejected(self, client):
        r = client.post("/api/create-checkout-session", json={
            "email": "ruth@gracechapel.org", "name": "Ruth", "tier": "tier1", "trial_days": -1,
        })
        assert r.status_code == 422

    def test_checkout_gateway_error(self, client, stripe_gateway):
        stripe_gateway.create_checkout_session.side_effect = GatewayError("Stripe is not configured")
        r = client.post("/api/create-checkout-session", json={"email": "ruth@gracechapel.org", "name": "Ruth", "tier": "tier2"})
        assert r.status_code == 502

    def test_verify_payment(self, client, stripe_gateway):
        stripe_gateway.verify_session.return_value = SessionVerification(
            paid=True,
            payment_status="paid",
            customer_email="ruth@gracechapel.org",
            customer_id="cus_1",
            subscription_id="sub_1",
            metadata={"church_name": "Grace Chapel"},
        )
        body = client.get("/verify-payment/cs_1").json()
        assert body["success"] is True
        assert body["church_name"] == "Grace Chapel"
        stripe_gateway.verify_session.assert_called_once_with("cs_1")

    def test_verify_payment_gateway_error(self, client, stripe_gateway):
        stripe_gateway.verify_session.side_effect = GatewayError("Failed to verify payment")
        assert client.get("/verify-payment/cs_1").status_code == 502

    def test_portal_session(self, client, stripe_gateway):
        stripe_gateway.create_portal_session.return_value = "https://billing.stripe.com/p/session/test"
        r = client.post("/api/create-portal-session", json={"customer_id": "cus_1"})
        assert r.json() == {"url": "https://billing.stripe.com/p/session/test"}


class TestWebhook:
    def test_bad_signature(self, client):
        with patch("stripe.Webhook.construct_event", side_effect=stripe.SignatureVerificationError("bad", "t=1,v1=x")):
            r = client.post("/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
        assert r.status_code == 400

    def test_missing_secret(self, client, monkeypatch):
        from churchfeed.config import get_settings
        monkeypatch.setattr(get_settings(), "stripe_webhook_secret", "")
        r = client.post("/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
        assert r.status_code == 400

    def test_subscription_updated(self, client, db):
        church = make_church(db)
        _subscription(db, church)
        event = _event("customer.subscription.updated", {"id": "sub_456", "customer": "cus_123", "status": "past_due"})
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            r = client.post("/webhook", content=b"{...}", headers={"Stripe-Signature": "t=1,v1=abc"})
        assert r.status_code == 200
        assert r.json() == {"received": True}
        assert construct.call_args.args[2] == WEBHOOK_SECRET
        db.expire_all()
        assert db.query(Subscription).one().status == SubscriptionStatus.past_due
        assert db.query(AuditLog).filter(AuditLog.category == "status_change").count() == 1

    def test_subscription_deleted(self, client, db):
        church = make_church(db)
        _subscription(db, church, SubscriptionStatus.trialing)
        event = _event("customer.subscription.deleted", {"id": "sub_456", "customer": "cus_123", "status": "canceled"})
        with patch("stripe.Webhook.construct_event", return_value=event):
            client.post("/webhook", content=b"{...}", headers={"Stripe-Signature": "t=1,v1=abc"})
        db.expire_all()
        assert db.query(Subscription).one().status == SubscriptionStatus.canceled

    def test_unknown_subscription_still_acknowledged(self, client, db):
        event = _event("customer.subscription.updated", {"id": "sub_other", "customer": "cus_other", "status": "active"})
        with patch("stripe.Webhook.construct_event", return_value=event):
            r = client.post("/webhook", content=b"{...}", headers={"Stripe-Signature": "t=1,v1=abc"})
        assert r.status_code == 200

    def test_checkout_completed_is_audited(self, client, db):
        event = _event("checkout.session.completed", {
            "id": "cs_1",
            "customer": "cus_1",
            "customer_details": {"email": "ruth@gracechapel.org"},
            "metadata": {"church_name": "Grace Chapel", "tier": "tier2"},
        })
        with patch("stripe.Webhook.construct_event", return_value=event):
            r = client.post("/webhook", content=b"{...}", headers={"Stripe-Signature": "t=1,v1=abc"})
        assert r.status_code == 200
        log = db.query(AuditLog).filter(AuditLog.category == "payment").one()
        assert log.actor_email == "ruth@gracechapel.org"


class TestSignedWebhook:
    def _post(self, client, event_type, obj, secret=WEBHOOK_SECRET):
        payload = json.dumps(_event_payload(event_type, obj)).encode()
        return client.post(
            "/webhook",
            content=payload,
            headers={"Stripe-Signature": _signed(payload, secret), "Content-Type": "application/json"},
        )

    def test_signed_subscription_update_is_applied(self, client, db):
        church = make_church(db)
        _subscription(db, church)
        r = self._post(client, "customer.subscription.updated", {
            "id": "sub_456",
            "object": "subscription",
            "customer": "cus_123",
            "status": "past_due",
        })
        assert r.status_code == 200
        assert r.json() == {"received": True}
        db.expire_all()
        assert db.query(Subscription).one().status == SubscriptionStatus.past_due

    def test_signed_checkout_completed_is_audited(self, client, db):
        r = self._post(client, "checkout.session.completed", {
            "id": "cs_1",
            "object": "checkout.session",
            "customer": "cus_1",
            "customer_details": {"email": "ruth@gracechapel.org"},
            "metadata": {"church_name": "Grace Chapel", "tier": "tier1"},
        })
        assert r.status_code == 200
        assert db.query(AuditLog).filter(AuditLog.category == "payment").one().actor_email == "ruth@gracechapel.org"

    def test_wrong_secret_is_rejected(self, client, db):
        church = make_church(db)
        _subscription(db, church)
        r = self._post(client, "customer.subscription.deleted", {"id": "sub_456", "customer": "cus_123"}, secret="whsec_other")
        assert r.status_code == 400
        db.expire_all()
        assert db.query(Subscription).one().status == SubscriptionStatus.active
