"""Transfer plan entities produced by the chunk planner."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class PartSpec:
    """One contiguous byte range of an object.

    Attributes:
        index: 1-based part index, contiguous across the plan.
        offset: Offset of the first byte.
        length: Number of bytes in the part.
    """

    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.length

    @property
    def range_header(self) -> str:
        """Inclusive HTTP ``Range`` header value for this part."""
        return f"bytes={self.offset}-{self.end - 1}"


@dataclass(frozen=True, slots=True)
class TransferPlan:
    """Part boundaries for one object.

    Every part except the last has exactly ``part_size`` bytes and the
    lengths sum to ``total_size``. A zero-byte object has a single empty
    part so the plan shape is uniform.
    """

    total_size: int
    part_size: int
    parts: tuple[PartSpec, ...]
    adjustments: tuple[str, ...] = field(default_factory=tuple)

    @property
    def part_count(self) -> int:
        return len(self.parts)

    @property
    def is_single_part(self) -> bool:
        return len(self.parts) == 1

    def part(self, index: int) -> PartSpec:
        """Return the part with the given 1-based index."""
        if not 1 <= index <= len(self.parts):
            raise IndexError(f"Part {index} outside 1..{len(self.parts)}")
        return self.parts[index - 1]
