"""Unit tests for the chunk planner."""

import pytest

from object_transfer.domain.entities.transfer_plan import PartSpec
from object_transfer.domain.exceptions import InvalidArgumentError
from object_transfer.domain.services.chunk_planner import ChunkPlanner
from object_transfer.domain.value_objects.sizes import GIB, KIB, MIB


def assert_well_formed(plan, total_size):
    """Parts are contiguous, 1-based, and cover the object exactly."""
    assert sum(p.length for p in plan.parts) == total_size
    assert [p.index for p in plan.parts] == list(range(1, plan.part_count + 1))
    offset = 0
    for part in plan.parts:
        assert part.offset == offset
        offset += part.length
    for part in plan.parts[:-1]:
        assert part.length == plan.part_size


@pytest.mark.unit
class TestChunkPlanner:
    """Test part boundary computation."""

    def test_twelve_mib_in_five_mib_parts(self):
        """Test the canonical 5/5/2 MiB split."""
        plan = ChunkPlanner().plan(12 * MIB, 5 * MIB)

        assert plan.part_count == 3
        assert plan.parts == (
            PartSpec(1, 0, 5 * MIB),
            PartSpec(2, 5 * MIB, 5 * MIB),
            PartSpec(3, 10 * MIB, 2 * MIB),
        )
        assert plan.adjustments == ()

    def test_single_part_when_object_fits(self):
        """Test that an object no larger than the part size is one part."""
        plan = ChunkPlanner().plan(3 * MIB, 5 * MIB)

        assert plan.is_single_part
        assert plan.parts[0] == PartSpec(1, 0, 3 * MIB)

    def test_exact_multiple_has_no_short_tail(self):
        """Test that an exact multiple produces equal parts."""
        plan = ChunkPlanner().plan(10 * MIB, 5 * MIB)

        assert [p.length for p in plan.parts] == [5 * MIB, 5 * MIB]

    def test_zero_byte_object_has_one_empty_part(self):
        """Test that an empty object still yields a uniform plan."""
        plan = ChunkPlanner().plan(0)

        assert plan.part_count == 1
        assert plan.parts[0] == PartSpec(1, 0, 0)
        assert plan.total_size == 0

    def test_small_part_size_raised_to_minimum(self):
        """Test that a part size below the store minimum is clamped up."""
        plan = ChunkPlanner().plan(20 * MIB, 1 * MIB)

        assert plan.part_size == 5 * MIB
        assert plan.part_count == 4
        assert len(plan.adjustments) == 1
        assert "raised to minimum" in plan.adjustments[0]

    def test_large_part_size_lowered_to_maximum(self):
        """Test that a part size above the store maximum is clamped down."""
        planner = ChunkPlanner(min_part_size=KIB, max_part_size=4 * KIB)

        plan = planner.plan(10 * KIB, 64 * KIB)

        assert plan.part_size == 4 * KIB
        assert [p.length for p in plan.parts] == [4 * KIB, 4 * KIB, 2 * KIB]
        assert "lowered to maximum" in plan.adjustments[0]

    def test_part_size_grows_to_respect_part_count(self):
        """Test that the part size grows when the count limit would be exceeded."""
        planner = ChunkPlanner(min_part_size=MIB, max_part_count=10)

        plan = planner.plan(100 * MIB + 1, MIB)

        assert plan.part_count <= 10
        assert plan.part_size % MIB == 0
        assert plan.part_size == 11 * MIB
        assert_well_formed(plan, 100 * MIB + 1)
        assert any("stay within 10 parts" in a for a in plan.adjustments)

    def test_default_part_size_used_when_none_requested(self):
        """Test that the configured default applies without a request."""
        planner = ChunkPlanner(min_part_size=KIB, default_part_size=8 * KIB)

        plan = planner.plan(20 * KIB)

        assert plan.part_size == 8 * KIB
        assert plan.part_count == 3

    def test_negative_size_rejected(self):
        """Test that a negative object size is invalid."""
        with pytest.raises(InvalidArgumentError):
            ChunkPlanner().plan(-1)

    def test_object_beyond_limits_rejected(self):
        """Test that objects above max part size times max count are rejected."""
        planner = ChunkPlanner(min_part_size=MIB, max_part_size=2 * MIB, max_part_count=3)

        assert planner.max_object_size == 6 * MIB
        planner.plan(6 * MIB)
        with pytest.raises(InvalidArgumentError):
            planner.plan(6 * MIB + 1)

    def test_inconsistent_limits_rejected(self):
        """Test that the planner validates its own limits."""
        with pytest.raises(InvalidArgumentError):
            ChunkPlanner(min_part_size=10, max_part_size=5)
        with pytest.raises(InvalidArgumentError):
            ChunkPlanner(min_part_size=0)
        with pytest.raises(InvalidArgumentError):
            ChunkPlanner(max_part_count=0)

    def test_planning_is_deterministic(self):
        """Test that identical inputs give identical plans."""
        planner = ChunkPlanner()

        assert planner.plan(5 * GIB + 3, 100 * MIB) == planner.plan(5 * GIB + 3, 100 * MIB)

    def test_range_header_is_inclusive(self):
        """Test the Range header for a part."""
        plan = ChunkPlanner().plan(12 * MIB, 5 * MIB)

        assert plan.part(1).range_header == f"bytes=0-{5 * MIB - 1}"
        assert plan.part(3).range_header == f"bytes={10 * MIB}-{12 * MIB - 1}"

    def test_part_lookup_out_of_range(self):
        """Test that part lookup is 1-based and bounded."""
        plan = ChunkPlanner().plan(12 * MIB, 5 * MIB)

        with pytest.raises(IndexError):
            plan.part(0)
        with pytest.raises(IndexError):
            plan.part(4)


@pytest.mark.unit
@pytest.mark.property
class TestChunkPlannerProperties:
    """Plan invariants over a grid of sizes."""

    @pytest.mark.parametrize("total_size", [0, 1, KIB - 1, KIB, KIB + 1, 7 * KIB + 3, 64 * KIB])
    @pytest.mark.parametrize("part_size", [1, 512, KIB, 3 * KIB, 100 * KIB])
    def test_parts_cover_object(self, total_size, part_size):
        """Test that lengths sum to the total and offsets are contiguous."""
        planner = ChunkPlanner(min_part_size=KIB, max_part_size=16 * KIB, max_part_count=50)

        plan = planner.plan(total_size, part_size)

        assert_well_formed(plan, total_size)
        assert planner.min_part_size <= plan.part_size <= planner.max_part_size
        assert plan.part_count <= planner.max_part_count
        for part in plan.parts[:-1]:
            assert part.length >= planner.min_part_size
