"""Announcements and reactions."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from churchfeed.database import get_db
from churchfeed.dependencies import get_current_admin, get_current_user
from churchfeed.models.church import Admin, Church
from churchfeed.models.post import Post
from churchfeed.models.user import User
from churchfeed.schemas.post import PostCreate, PostResponse, ReactionRequest, ReactionStateResponse
from churchfeed.services.posts import church_id_for_user, post_visible_to_church
from churchfeed.services.reactions import ReactionCoordinator, ReactionWriteError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])


def _visible_post(db: Session, post_id: int, user: User) -> Post:
    post = db.get(Post, post_id)
    if not post or not post_visible_to_church(db, post, church_id_for_user(db, user)):
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def _reaction_error(e: ReactionWriteError) -> HTTPException:
    logger.warning("[Reactions] %s", e)
    return HTTPException(
        status_code=503,
        detail={"code": "reaction_write_failed", "message": "Your reaction was not saved. Please try again.", "action": "retry"},
    )


def _state(reactions: ReactionCoordinator, post_id: int, user_id: int) -> ReactionStateResponse:
    return ReactionStateResponse(
        post_id=post_id,
        user_reaction=reactions.get_user_reaction(post_id, user_id),
        summary=reactions.get_summary(post_id, user_id),
    )


@router.post("", response_model=PostResponse, status_code=201)
def create_post(data: PostCreate, db: Session = Depends(get_db), admin: Admin = Depends(get_current_admin)):
    """Post an announcement. An HQ may target specific branches; no targets means every branch."""
    targets = sorted(set(data.target_branches or []))
    if targets:
        church = db.get(Church, admin.church_id)
        branch_ids = {
            cid for (cid,) in db.query(Church.id).filter(Church.parent_hq_id == admin.church_id).all()
        }
        if not church or not church.is_hq:
            raise HTTPException(status_code=400, detail="Only an HQ church can target branches.")
        unknown = [t for t in targets if t not in branch_ids]
        if unknown:
            raise HTTPException(status_code=400, detail=f"Not branches of your church: {unknown}")
    post = Post(
        church_id=admin.church_id,
        author_id=admin.id,
        content=data.content.strip(),
        image_url=(data.image_url or "").strip() or None,
        target_branches=targets or None,
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    return PostResponse(
        id=post.id,
        church_id=post.church_id,
        author_id=post.author_id,
        author_name=admin.name,
        content=post.content,
        image_url=post.image_url,
        target_branches=post.target_branches,
        created_at=post.created_at,
    )


@router.get("/{post_id}/reactions", response_model=ReactionStateResponse)
def get_reactions(post_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _visible_post(db, post_id, current_user)
    return _state(ReactionCoordinator(db), post_id, current_user.id)


@router.post("/{post_id}/reactions", response_model=ReactionStateResponse)
def toggle_reaction(
    post_id: int,
    data: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Tap a reaction: same type removes it, another type replaces it."""
    _visible_post(db, post_id, current_user)
    reactions = ReactionCoordinator(db)
    try:
        reactions.toggle(post_id, current_user.id, data.type)
    except ReactionWriteError as e:
        raise _reaction_error(e)
    return _state(reactions, post_id, current_user.id)


@router.put("/{post_id}/reactions", response_model=ReactionStateResponse)
def set_reaction(
    post_id: int,
    data: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _visible_post(db, post_id, current_user)
    reactions = ReactionCoordinator(db)
    try:
        reactions.set_reaction(post_id, current_user.id, data.type)
    except ReactionWriteError as e:
        raise _reaction_error(e)
    return _state(reactions, post_id, current_user.id)


@router.delete("/{post_id}/reactions", response_model=ReactionStateResponse)
def remove_reaction(post_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    _visible_post(db, post_id, current_user)
    reactions = ReactionCoordinator(db)
    try:
        reactions.remove_reaction(post_id, current_user.id)
    except ReactionWriteError as e:
        raise _reaction_error(e)
    return _state(reactions, post_id, current_user.id)
