"""Reactions: the toggle reducer and the per-post summary."""
import random
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from churchfeed.models.post import Post, Reaction, ReactionType
from churchfeed.schemas.post import ReactionSummaryEntry
from churchfeed.services.reactions import (
    ReactionCoordinator,
    ReactionWriteError,
    build_summary,
    next_reaction,
    reduce_summary,
)
from conftest import make_admin, make_church, make_member

HEART = ReactionType.heart
LIKE = ReactionType.like
PRAYER = ReactionType.prayer


@pytest.fixture
def church(db):
    return make_church(db)


@pytest.fixture
def post(db, church):
    _, admin = make_admin(db, church)
    p = Post(church_id=church.id, author_id=admin.id, content="Sunday service moves to 10am this week.")
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def reactions(db):
    return ReactionCoordinator(db)


class TestReducer:
    def test_tap_new_reaction(self):
        assert next_reaction(None, HEART) == HEART

    def test_tap_active_reaction_clears(self):
        assert next_reaction(HEART, HEART) is None

    def test_tap_other_reaction_switches(self):
        assert next_reaction(HEART, LIKE) == LIKE

    def test_summary_order_and_zero_counts(self):
        summary = build_summary({PRAYER: 2, HEART: 2, LIKE: 5, ReactionType.praise: 0}, PRAYER)
        assert [(e.type, e.count) for e in summary] == [(LIKE, 5), (HEART, 2), (PRAYER, 2)]
        assert [e.user_reacted for e in summary] == [False, False, True]

    def test_reduce_switch(self):
        summary = [
            ReactionSummaryEntry(type=HEART, count=3, user_reacted=True),
            ReactionSummaryEntry(type=LIKE, count=1),
        ]
        after = reduce_summary(summary, HEART, LIKE)
        assert {e.type: e.count for e in after} == {HEART: 2, LIKE: 2}
        assert [e.type for e in after if e.user_reacted] == [LIKE]

    def test_reduce_untap_drops_empty_entry(self):
        summary = [ReactionSummaryEntry(type=HEART, count=1, user_reacted=True)]
        assert reduce_summary(summary, HEART, HEART) == []


class TestReactionCoordinator:
    def test_toggle_twice_removes(self, db, church, post, reactions):
        member = make_member(db, church)
        assert reactions.toggle(post.id, member.id, HEART) == HEART
        assert reactions.toggle(post.id, member.id, HEART) is None
        assert db.query(Reaction).filter(Reaction.post_id == post.id, Reaction.user_id == member.id).count() == 0

    def test_toggle_other_type_replaces(self, db, church, post, reactions):
        member = make_member(db, church)
        reactions.toggle(post.id, member.id, HEART)
        reactions.toggle(post.id, member.id, LIKE)
        rows = db.query(Reaction).filter(Reaction.post_id == post.id, Reaction.user_id == member.id).all()
        assert [r.reaction_type for r in rows] == [LIKE]

    def test_set_is_idempotent(self, db, church, post, reactions):
        member = make_member(db, church)
        reactions.set_reaction(post.id, member.id, PRAYER)
        reactions.set_reaction(post.id, member.id, PRAYER)
        assert db.query(Reaction).count() == 1
        assert reactions.get_user_reaction(post.id, member.id) == PRAYER

    def test_remove_absent_is_noop(self, db, church, post, reactions):
        member = make_member(db, church)
        reactions.remove_reaction(post.id, member.id)
        assert reactions.get_user_reaction(post.id, member.id) is None

    def test_summary_counts_across_users(self, db, church, post, reactions):
        a = make_member(db, church, email="a@gracechapel.org")
        b = make_member(db, church, email="b@gracechapel.org")
        c = make_member(db, church, email="c@gracechapel.org")
        reactions.set_reaction(post.id, a.id, HEART)
        reactions.set_reaction(post.id, b.id, HEART)
        reactions.set_reaction(post.id, c.id, PRAYER)

        summary = reactions.get_summary(post.id, c.id)
        assert [(e.type, e.count, e.user_reacted) for e in summary] == [(HEART, 2, False), (PRAYER, 1, True)]
        assert all(not e.user_reacted for e in reactions.get_summary(post.id))

    def test_at_most_one_user_reacted_entry(self, db, church, post, reactions):
        users = [make_member(db, church, email=f"m{i}@gracechapel.org") for i in range(3)]
        rng = random.Random(3)
        for _ in range(40):
            user = rng.choice(users)
            if rng.random() < 0.3:
                reactions.remove_reaction(post.id, user.id)
            else:
                reactions.set_reaction(post.id, user.id, rng.choice(list(ReactionType)))
            for viewer in users:
                marked = [e for e in reactions.get_summary(post.id, viewer.id) if e.user_reacted]
                assert len(marked) <= 1

    def test_optimistic_summary_matches_server(self, db, church, post, reactions):
        a = make_member(db, church, email="a@gracechapel.org")
        b = make_member(db, church, email="b@gracechapel.org")
        reactions.set_reaction(post.id, a.id, HEART)
        reactions.set_reaction(post.id, b.id, LIKE)

        before = reactions.get_summary(post.id, b.id)
        predicted = reduce_summary(before, reactions.get_user_reaction(post.id, b.id), HEART)
        reactions.toggle(post.id, b.id, HEART)
        assert predicted == reactions.get_summary(post.id, b.id)

    def test_write_failure_raises_reaction_write_error(self, db, church, post, reactions):
        member = make_member(db, church)
        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("database is locked"))):
            with pytest.raises(ReactionWriteError):
                reactions.set_reaction(post.id, member.id, HEART)
            with pytest.raises(ReactionWriteError):
                reactions.remove_reaction(post.id, member.id)
