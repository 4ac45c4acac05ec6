"""Churches, their admins and members, and the billing subscription."""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum as SQLEnum, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from churchfeed.database import Base
import enum

CHURCH_CODE_LENGTH = 6


class SubscriptionTier(str, enum.Enum):
    tier1 = "tier1"
    tier2 = "tier2"
    tier3 = "tier3"
    tier4 = "tier4"


class AdminRole(str, enum.Enum):
    head_pastor = "Head Pastor"
    pastor = "Pastor"
    secretary = "Secretary"


class SubscriptionStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    past_due = "past_due"
    canceled = "canceled"
    trialing = "trialing"


class Church(Base):
    __tablename__ = "churches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=False)
    is_hq = Column(Boolean, default=True, nullable=False)
    parent_hq_id = Column(Integer, ForeignKey("churches.id", ondelete="SET NULL"), nullable=True, index=True)

    # Join credential shared with members: 6 uppercase alphanumeric characters
    church_code = Column(String(CHURCH_CODE_LENGTH), unique=True, nullable=False, index=True)
    subscription_tier = Column(SQLEnum(SubscriptionTier), nullable=False)

    # At most one church per paid checkout session
    checkout_session_id = Column(String(255), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    parent_hq = relationship("Church", remote_side=[id])


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(AdminRole, values_callable=lambda e: [m.value for m in e]), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    church = relationship("Church")


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False)
    device_token = Column(String(255), nullable=True)  # Expo push token

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    church = relationship("Church")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), unique=True, nullable=False)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.active)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
