"""Post, feed and reaction schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from churchfeed.models.post import ReactionType


class PostCreate(BaseModel):
    content: str = Field(min_length=1, max_length=10_000)
    image_url: str | None = None
    target_branches: list[int] | None = None


class ReactionSummaryEntry(BaseModel):
    type: ReactionType
    count: int
    user_reacted: bool = False


class ReactionRequest(BaseModel):
    type: ReactionType


class ReactionStateResponse(BaseModel):
    post_id: int
    user_reaction: ReactionType | None = None
    summary: list[ReactionSummaryEntry]


class PostResponse(BaseModel):
    id: int
    church_id: int
    author_id: int | None = None
    author_name: str | None = None
    content: str
    image_url: str | None = None
    target_branches: list[int] | None = None
    created_at: datetime | None = None
    reactions: list[ReactionSummaryEntry] = []
    user_reaction: ReactionType | None = None
