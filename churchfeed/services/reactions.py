"""Post reactions: one active reaction per user per post, plus the per-post summary.

The toggle decision and the optimistic summary update both go through the reducer
functions below, so a client can apply the same transition before the write lands.
"""
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from churchfeed.models.post import Reaction, ReactionType
from churchfeed.schemas.post import ReactionSummaryEntry

logger = logging.getLogger(__name__)

REACTION_ORDER = [t for t in ReactionType]


class ReactionWriteError(Exception):
    pass


def next_reaction(current: ReactionType | None, tapped: ReactionType) -> ReactionType | None:
    """Tapping the active reaction clears it; tapping another one switches to it."""
    return None if current == tapped else tapped


def build_summary(counts: dict[ReactionType, int], viewer_reaction: ReactionType | None) -> list[ReactionSummaryEntry]:
    entries = [
        ReactionSummaryEntry(type=t, count=n, user_reacted=(t == viewer_reaction))
        for t, n in counts.items()
        if n > 0
    ]
    entries.sort(key=lambda e: (-e.count, REACTION_ORDER.index(e.type)))
    return entries


def reduce_summary(
    summary: list[ReactionSummaryEntry],
    current: ReactionType | None,
    tapped: ReactionType,
) -> list[ReactionSummaryEntry]:
    """Summary after the viewer taps `tapped` while holding `current`."""
    counts = {e.type: e.count for e in summary}
    if current is not None and counts.get(current, 0) > 0:
        counts[current] -= 1
    target = next_reaction(current, tapped)
    if target is not None:
        counts[target] = counts.get(target, 0) + 1
    return build_summary(counts, target)


class ReactionCoordinator:
    def __init__(self, db: Session):
        self.db = db

    def get_user_reaction(self, post_id: int, user_id: int) -> ReactionType | None:
        row = (
            self.db.query(Reaction.reaction_type)
            .filter(Reaction.post_id == post_id, Reaction.user_id == user_id)
            .first()
        )
        return row[0] if row else None

    def set_reaction(self, post_id: int, user_id: int, reaction_type: ReactionType) -> None:
        reaction_type = ReactionType(reaction_type)
        try:
            self._upsert(post_id, user_id, reaction_type)
        except IntegrityError:
            # Lost an insert race for (post_id, user_id): the row exists now, update it
            self.db.rollback()
            try:
                self._upsert(post_id, user_id, reaction_type)
            except SQLAlchemyError as e:
                self.db.rollback()
                raise ReactionWriteError(f"Could not save reaction: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ReactionWriteError(f"Could not save reaction: {e}") from e

    def _upsert(self, post_id: int, user_id: int, reaction_type: ReactionType) -> None:
        row = self.db.query(Reaction).filter(Reaction.post_id == post_id, Reaction.user_id == user_id).first()
        if row:
            if row.reaction_type == reaction_type:
                return
            row.reaction_type = reaction_type
        else:
            self.db.add(Reaction(post_id=post_id, user_id=user_id, reaction_type=reaction_type))
        self.db.commit()

    def remove_reaction(self, post_id: int, user_id: int) -> None:
        try:
            self.db.query(Reaction).filter(Reaction.post_id == post_id, Reaction.user_id == user_id).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ReactionWriteError(f"Could not remove reaction: {e}") from e

    def toggle(self, post_id: int, user_id: int, reaction_type: ReactionType) -> ReactionType | None:
        """Apply a tap and return the user's reaction afterwards."""
        reaction_type = ReactionType(reaction_type)
        target = next_reaction(self.get_user_reaction(post_id, user_id), reaction_type)
        if target is None:
            self.remove_reaction(post_id, user_id)
        else:
            self.set_reaction(post_id, user_id, target)
        return target

    def get_counts(self, post_ids: list[int]) -> dict[int, dict[ReactionType, int]]:
        if not post_ids:
            return {}
        rows = (
            self.db.query(Reaction.post_id, Reaction.reaction_type, func.count(Reaction.id))
            .filter(Reaction.post_id.in_(post_ids))
            .group_by(Reaction.post_id, Reaction.reaction_type)
            .all()
        )
        counts: dict[int, dict[ReactionType, int]] = {pid: {} for pid in post_ids}
        for post_id, reaction_type, n in rows:
            counts[post_id][reaction_type] = n
        return counts

    def get_user_reactions(self, post_ids: list[int], user_id: int | None) -> dict[int, ReactionType]:
        if not post_ids or user_id is None:
            return {}
        rows = (
            self.db.query(Reaction.post_id, Reaction.reaction_type)
            .filter(Reaction.post_id.in_(post_ids), Reaction.user_id == user_id)
            .all()
        )
        return {post_id: reaction_type for post_id, reaction_type in rows}

    def get_summary(self, post_id: int, viewer_user_id: int | None = None) -> list[ReactionSummaryEntry]:
        counts = self.get_counts([post_id]).get(post_id, {})
        viewer = self.get_user_reaction(post_id, viewer_user_id) if viewer_user_id is not None else None
        return build_summary(counts, viewer)
