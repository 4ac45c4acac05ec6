"""Announcements and the church feed."""
from sqlalchemy import or_
from sqlalchemy.orm import Session

from churchfeed.models.church import Admin, Church, Member
from churchfeed.models.post import Post
from churchfeed.models.user import User, UserRole
from churchfeed.schemas.post import PostResponse
from churchfeed.services.reactions import ReactionCoordinator, build_summary

FEED_LIMIT = 100


def church_id_for_user(db: Session, user: User) -> int | None:
    if user.role == UserRole.admin:
        admin = db.query(Admin).filter(Admin.user_id == user.id).first()
        return admin.church_id if admin else None
    member = db.query(Member).filter(Member.user_id == user.id).first()
    return member.church_id if member else None


def _targets(post: Post, church_id: int) -> bool:
    return not post.target_branches or church_id in post.target_branches


def post_visible_to_church(db: Session, post: Post, church_id: int | None) -> bool:
    """A church sees its own posts and the posts its HQ pushes to it."""
    if church_id is None:
        return False
    if post.church_id == church_id:
        return True
    church = db.get(Church, church_id)
    return bool(church and church.parent_hq_id == post.church_id and _targets(post, church_id))


def get_church_feed(db: Session, church_id: int, viewer_user_id: int | None = None, limit: int = FEED_LIMIT) -> list[PostResponse]:
    church = db.get(Church, church_id)
    if not church:
        return []
    q = db.query(Post)
    if church.parent_hq_id:
        q = q.filter(or_(Post.church_id == church_id, Post.church_id == church.parent_hq_id))
    else:
        q = q.filter(Post.church_id == church_id)
    rows = q.order_by(Post.created_at.desc(), Post.id.desc()).all()
    posts = [p for p in rows if p.church_id == church_id or _targets(p, church_id)][:limit]

    reactions = ReactionCoordinator(db)
    ids = [p.id for p in posts]
    counts = reactions.get_counts(ids)
    mine = reactions.get_user_reactions(ids, viewer_user_id)
    return [
        PostResponse(
            id=p.id,
            church_id=p.church_id,
            author_id=p.author_id,
            author_name=p.author.name if p.author else None,
            content=p.content,
            image_url=p.image_url,
            target_branches=p.target_branches,
            created_at=p.created_at,
            reactions=build_summary(counts.get(p.id, {}), mine.get(p.id)),
            user_reaction=mine.get(p.id),
        )
        for p in posts
    ]
