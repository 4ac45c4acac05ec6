"""Church directory lookups and the church feed."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from churchfeed.database import get_db
from churchfeed.dependencies import get_current_admin, get_current_user
from churchfeed.models.church import Admin, Church, Subscription
from churchfeed.models.user import User
from churchfeed.schemas.church import ChurchLookupResponse, ChurchResponse, SubscriptionResponse
from churchfeed.schemas.post import PostResponse
from churchfeed.services.church_directory import get_church_branches, get_church_by_code
from churchfeed.services.posts import church_id_for_user, get_church_feed

router = APIRouter(prefix="/churches", tags=["churches"])


@router.get("/code/{code}", response_model=ChurchLookupResponse)
def lookup_church_by_code(code: str, db: Session = Depends(get_db)):
    """Public lookup used before joining (member) or registering a branch (HQ code)."""
    church = get_church_by_code(db, code)
    if not church:
        raise HTTPException(status_code=404, detail="No church found with that code.")
    return church


@router.get("/me", response_model=ChurchResponse)
def my_church(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    church_id = church_id_for_user(db, current_user)
    church = db.get(Church, church_id) if church_id else None
    if not church:
        raise HTTPException(status_code=404, detail="No church is linked to this account.")
    return church


@router.get("/me/subscription", response_model=SubscriptionResponse)
def my_subscription(db: Session = Depends(get_db), admin: Admin = Depends(get_current_admin)):
    """Billing state of the admin's church, as last reported by Stripe."""
    sub = db.query(Subscription).filter(Subscription.church_id == admin.church_id).first()
    if not sub:
        raise HTTPException(status_code=404, detail="No subscription is recorded for this church.")
    return SubscriptionResponse(
        church_id=sub.church_id,
        status=sub.status,
        subscription_tier=admin.church.subscription_tier,
        stripe_customer_id=sub.stripe_customer_id,
        stripe_subscription_id=sub.stripe_subscription_id,
        created_at=sub.created_at,
        updated_at=sub.updated_at,
    )


@router.get("/{church_id}/branches", response_model=list[ChurchResponse])
def list_branches(church_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    church = db.get(Church, church_id)
    if not church:
        raise HTTPException(status_code=404, detail="Church not found")
    if not church.is_hq:
        return []
    return get_church_branches(db, church_id)


@router.get("/{church_id}/feed", response_model=list[PostResponse])
def church_feed(church_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if church_id_for_user(db, current_user) != church_id:
        raise HTTPException(status_code=403, detail="You can only view your own church's feed.")
    return get_church_feed(db, church_id, viewer_user_id=current_user.id)
