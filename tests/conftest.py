import os

# Settings are read once at import time; point everything at an in-memory database first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "churchfeed-test-secret-key-0123456789abcdef"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_churchfeed"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_churchfeed"
os.environ["STRIPE_PRICE_TIER1"] = "price_tier1_test"
os.environ["STRIPE_PRICE_TIER2"] = "price_tier2_test"
os.environ["STRIPE_PRICE_TIER3"] = "price_tier3_test"
os.environ["STRIPE_PRICE_TIER4"] = "price_tier4_test"
os.environ["PAYMENT_GATEWAY"] = "stripe"

import pytest
from fastapi.testclient import TestClient

from churchfeed.database import Base, SessionLocal, engine, get_db
from churchfeed.dependencies import get_payment_gateway, get_stripe_gateway
from churchfeed.main import app
from churchfeed.models.church import Admin, AdminRole, Church, Member, SubscriptionTier
from churchfeed.models.user import User, UserRole
from churchfeed.schemas.registration import PendingRegistration, StoredChurchRegistration
from churchfeed.services.auth import create_access_token, get_password_hash
from churchfeed.services.church_writer import ChurchWriter
from churchfeed.services.payments import (
    CheckoutSession,
    GatewayError,
    PaymentGateway,
    SessionVerification,
)
from churchfeed.services.registration import InFlightGuard, RegistrationCompletionCoordinator
from churchfeed.services.registration_cache import SqlRegistrationCache

DEVICE_ID = "device-ios-7f3a"
ADMIN_PASSWORD = "Shepherd#2024"


class FakeGateway(PaymentGateway):
    """In-memory checkout: sessions start unpaid until mark_paid()."""

    def __init__(self):
        self.sessions: dict[str, SessionVerification] = {}
        self.created: list[dict] = []
        self.verify_calls: list[str] = []
        self.verify_error: Exception | None = None

    def create_checkout_session(self, tier, customer, trial_days, success_url, cancel_url, metadata=None):
        n = len(self.created) + 1
        session_id = f"cs_test_{n:04d}"
        self.created.append({
            "tier": tier,
            "email": customer.email,
            "name": customer.name,
            "trial_days": trial_days,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata or {}),
        })
        self.sessions[session_id] = SessionVerification(
            paid=False,
            payment_status="unpaid",
            customer_email=customer.email,
            customer_id=f"cus_test_{n:04d}",
            metadata=dict(metadata or {}),
        )
        return CheckoutSession(
            checkout_url=f"https://checkout.stripe.com/c/pay/{session_id}",
            session_id=session_id,
            customer_id=f"cus_test_{n:04d}",
        )

    def add_paid_session(self, session_id: str, email: str = "ruth@gracechapel.org", metadata: dict | None = None):
        self.sessions[session_id] = SessionVerification(
            paid=True,
            payment_status="paid",
            customer_email=email,
            customer_id="cus_test_paid",
            subscription_id="sub_test_paid",
            metadata=dict(metadata or {}),
        )

    def mark_paid(self, session_id: str):
        s = self.sessions[session_id]
        s.paid = True
        s.payment_status = "paid"
        s.subscription_id = f"sub_{session_id}"

    def verify_session(self, session_id):
        self.verify_calls.append(session_id)
        if self.verify_error is not None:
            raise self.verify_error
        if session_id not in self.sessions:
            raise GatewayError(f"No such checkout session: {session_id}")
        return self.sessions[session_id]


def registration_payload(**overrides) -> dict:
    data = {
        "church_name": "Grace Chapel",
        "church_address": "12 Elm Street, Springfield",
        "is_hq": True,
        "hq_church_code": None,
        "admin_name": "Ruth Adeyemi",
        "admin_role": "Head Pastor",
        "admin_phone": "+1 555 123 4567",
        "admin_email": "ruth@gracechapel.org",
        "admin_password": ADMIN_PASSWORD,
        "member_count_tier": "tier2",
        "wants_trial": False,
    }
    data.update(overrides)
    return data


def pending_registration(session_id: str | None = None, **overrides) -> PendingRegistration:
    data = registration_payload(**overrides)
    password = data.pop("admin_password")
    stored = StoredChurchRegistration(**data, admin_password_hash=get_password_hash(password))
    return PendingRegistration(
        registration_data=stored.model_dump(mode="json"),
        selected_tier=stored.member_count_tier,
        created_at_epoch_millis=1_700_000_000_000,
        session_id=session_id,
    )


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def cache(db):
    return SqlRegistrationCache(db, DEVICE_ID)


@pytest.fixture
def sent_codes():
    return []


@pytest.fixture
def writer(db, sent_codes):
    def send(email, code):
        sent_codes.append((email, code))
        return True

    return ChurchWriter(db, require_email_verification=True, send_verification=send)


@pytest.fixture
def coordinator(cache, gateway, writer):
    return RegistrationCompletionCoordinator(cache, gateway, writer, in_flight=InFlightGuard())


@pytest.fixture
def stripe_gateway():
    from unittest.mock import MagicMock
    from churchfeed.services.payments import StripeGateway

    return MagicMock(spec=StripeGateway)


@pytest.fixture
def client(db, gateway, stripe_gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_church(db, name="Grace Chapel", code="GRACE1", is_hq=True, parent_hq_id=None) -> Church:
    church = Church(
        name=name,
        address="12 Elm Street, Springfield",
        is_hq=is_hq,
        parent_hq_id=parent_hq_id,
        church_code=code,
        subscription_tier=SubscriptionTier.tier1,
    )
    db.add(church)
    db.commit()
    db.refresh(church)
    return church


def make_admin(db, church: Church, email="ruth@gracechapel.org", name="Ruth Adeyemi") -> tuple[User, Admin]:
    user = User(
        email=email,
        hashed_password=get_password_hash(ADMIN_PASSWORD),
        role=UserRole.admin,
        full_name=name,
        phone="+1 555 123 4567",
        email_verified=True,
    )
    db.add(user)
    db.flush()
    admin = Admin(
        user_id=user.id,
        church_id=church.id,
        role=AdminRole.head_pastor,
        name=name,
        email=email,
        phone="+1 555 123 4567",
    )
    db.add(admin)
    db.commit()
    db.refresh(user)
    db.refresh(admin)
    return user, admin


def make_member(db, church: Church, email="sam@gracechapel.org", name="Sam Okafor") -> User:
    user = User(
        email=email,
        hashed_password=get_password_hash("Member#2024"),
        role=UserRole.member,
        full_name=name,
        phone="+1 555 987 6543",
        email_verified=True,
    )
    db.add(user)
    db.flush()
    db.add(Member(user_id=user.id, church_id=church.id, name=name, phone="+1 555 987 6543", email=email))
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}
