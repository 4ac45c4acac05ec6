"""Members joining a church with its code, and their push tokens."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from churchfeed.database import get_db
from churchfeed.dependencies import get_current_user
from churchfeed.models.church import Member
from churchfeed.models.user import User, UserRole
from churchfeed.routers.auth import user_to_response
from churchfeed.schemas.auth import DeviceTokenUpdate, MemberJoin, Token
from churchfeed.services.audit_log import CATEGORY_REGISTRATION, create_log, request_context
from churchfeed.services.auth import create_access_token, get_password_hash
from churchfeed.services.church_directory import get_church_by_code
from churchfeed.services.notifications import send_member_welcome_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members", tags=["members"])


@router.post("/join", response_model=Token)
def join_church(request: Request, data: MemberJoin, db: Session = Depends(get_db)):
    church = get_church_by_code(db, data.church_code)
    if not church:
        raise HTTPException(status_code=404, detail="No church found with that code. Check the code with your church admin.")
    email = str(data.email).strip().lower()
    if db.query(User).filter(User.email == email, User.role == UserRole.member).first():
        raise HTTPException(status_code=400, detail="This email is already registered as a member. Please sign in instead.")

    user = User(
        email=email,
        hashed_password=get_password_hash(data.password),
        role=UserRole.member,
        full_name=data.name.strip(),
        phone=data.phone,
        email_verified=True,
    )
    try:
        db.add(user)
        db.flush()
        db.add(Member(user_id=user.id, church_id=church.id, name=user.full_name, phone=data.phone, email=email))
        create_log(
            db,
            CATEGORY_REGISTRATION,
            "Member joined",
            f"{email} joined church {church.name!r} ({church.church_code}).",
            church_id=church.id,
            actor_user_id=user.id,
            actor_email=email,
            **request_context(request),
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="This email is already registered as a member. Please sign in instead.")
    db.refresh(user)

    if not send_member_welcome_email(email, user.full_name, church.name):
        logger.warning("[Members] Welcome email not sent to %s", email)
    token = create_access_token(user.id, user.email, user.role)
    return Token(access_token=token, user=user_to_response(user, db))


@router.put("/me/device-token")
def update_device_token(
    data: DeviceTokenUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    member = db.query(Member).filter(Member.user_id == current_user.id).first()
    if not member:
        raise HTTPException(status_code=404, detail="No member profile for this account.")
    member.device_token = data.device_token.strip()
    db.commit()
    return {"status": "ok"}
