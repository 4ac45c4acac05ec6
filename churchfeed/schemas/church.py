"""Church directory schemas."""
from datetime import datetime
from pydantic import BaseModel
from churchfeed.models.church import SubscriptionStatus, SubscriptionTier


class ChurchLookupResponse(BaseModel):
    id: int
    name: str
    is_hq: bool
    church_code: str

    class Config:
        from_attributes = True


class ChurchResponse(BaseModel):
    id: int
    name: str
    address: str
    is_hq: bool
    parent_hq_id: int | None = None
    church_code: str
    subscription_tier: SubscriptionTier
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    church_id: int
    status: SubscriptionStatus
    subscription_tier: SubscriptionTier
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
