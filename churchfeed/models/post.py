"""Announcements and the reactions members leave on them."""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from churchfeed.database import Base, JSONType
import enum


class ReactionType(str, enum.Enum):
    heart = "heart"
    like = "like"
    prayer = "prayer"
    praise = "praise"
    heart_hands = "heart_hands"


class Post(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    image_url = Column(String(1000), nullable=True)
    # HQ posts only: branch church ids the post is pushed to (empty/None = every branch)
    target_branches = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    author = relationship("Admin")


class Reaction(Base):
    __tablename__ = "reactions"
    # One active reaction per user per post; a new type replaces the old one
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_reactions_post_user"),)

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reaction_type = Column(SQLEnum(ReactionType), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
