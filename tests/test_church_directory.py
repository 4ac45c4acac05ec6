"""Church codes and directory lookups."""
import random

import pytest

from churchfeed.services.church_directory import (
    CodeGenerationExhaustedError,
    generate_church_code,
    generate_unique_church_code,
    get_church_branches,
    get_church_by_code,
    is_valid_church_code,
)
from conftest import make_church


class TestChurchCodes:
    def test_generated_code_format(self):
        for _ in range(50):
            assert is_valid_church_code(generate_church_code())

    def test_seeded_rng_is_repeatable(self):
        assert generate_church_code(random.Random(7)) == generate_church_code(random.Random(7))

    @pytest.mark.parametrize("code", ["", "GRACE", "grace1", "GRACE12", "GR-CE1", None])
    def test_invalid_codes(self, code):
        assert not is_valid_church_code(code)

    def test_collision_regenerates(self):
        taken = set()
        rng = random.Random(42)
        first = generate_church_code(random.Random(42))
        taken.add(first)
        code = generate_unique_church_code(lambda c: c in taken, max_attempts=5, rng=rng)
        assert code != first
        assert is_valid_church_code(code)

    def test_exhausted_after_max_attempts(self):
        calls = []

        def always_taken(code):
            calls.append(code)
            return True

        with pytest.raises(CodeGenerationExhaustedError) as exc:
            generate_unique_church_code(always_taken, max_attempts=3)
        assert exc.value.attempts == 3
        assert len(calls) == 3


class TestLookup:
    def test_lookup_is_case_insensitive(self, db):
        church = make_church(db, code="GRACE1")
        assert get_church_by_code(db, " grace1 ").id == church.id

    def test_lookup_unknown_or_malformed_code(self, db):
        make_church(db, code="GRACE1")
        assert get_church_by_code(db, "HOPE22") is None
        assert get_church_by_code(db, "not a code") is None

    def test_branches_of_hq(self, db):
        hq = make_church(db, code="GRACE1")
        make_church(db, name="Grace Chapel North", code="NORTH1", is_hq=False, parent_hq_id=hq.id)
        make_church(db, name="Grace Chapel East", code="EAST01", is_hq=False, parent_hq_id=hq.id)
        make_church(db, name="Hope Fellowship", code="HOPE22")
        names = [c.name for c in get_church_branches(db, hq.id)]
        assert names == ["Grace Chapel East", "Grace Chapel North"]
