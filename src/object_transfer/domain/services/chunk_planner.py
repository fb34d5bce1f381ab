"""Chunk planner: decides part boundaries for an object."""

from __future__ import annotations

from object_transfer.domain.entities.transfer_plan import PartSpec, TransferPlan
from object_transfer.domain.exceptions import InvalidArgumentError
from object_transfer.domain.value_objects.sizes import GIB, MIB, format_bytes


DEFAULT_MIN_PART_SIZE = 5 * MIB
DEFAULT_MAX_PART_SIZE = 5 * GIB
DEFAULT_MAX_PART_COUNT = 10_000
DEFAULT_PART_SIZE = 64 * MIB


class ChunkPlanner:
    """Splits an object into contiguous, 1-based parts.

    Planning is a pure function of its inputs. A requested part size that
    falls outside the store's limits is clamped and the change is reported
    in ``TransferPlan.adjustments`` instead of failing. When the clamped
    size would need more parts than the store accepts, the part size grows
    to the next MiB boundary that fits.

    Example:
        >>> planner = ChunkPlanner()
        >>> plan = planner.plan(12 * MIB, 5 * MIB)
        >>> [p.length for p in plan.parts] == [5 * MIB, 5 * MIB, 2 * MIB]
        True
    """

    def __init__(
        self,
        min_part_size: int = DEFAULT_MIN_PART_SIZE,
        max_part_size: int = DEFAULT_MAX_PART_SIZE,
        max_part_count: int = DEFAULT_MAX_PART_COUNT,
        default_part_size: int = DEFAULT_PART_SIZE,
    ) -> None:
        """Initialize the planner.

        Args:
            min_part_size: Smallest size allowed for any part but the last.
            max_part_size: Largest size allowed for a part.
            max_part_count: Most parts one transfer may have.
            default_part_size: Part size used when none is requested.

        Raises:
            InvalidArgumentError: If the limits are inconsistent.
        """
        if min_part_size < 1:
            raise InvalidArgumentError("Minimum part size must be positive")
        if max_part_size < min_part_size:
            raise InvalidArgumentError("Maximum part size is below the minimum part size")
        if max_part_count < 1:
            raise InvalidArgumentError("Maximum part count must be positive")

        self.min_part_size = min_part_size
        self.max_part_size = max_part_size
        self.max_part_count = max_part_count
        self.default_part_size = default_part_size

    @property
    def max_object_size(self) -> int:
        return self.max_part_size * self.max_part_count

    def plan(self, total_size: int, requested_part_size: int | None = None) -> TransferPlan:
        """Compute the plan for an object.

        Args:
            total_size: Object size in bytes.
            requested_part_size: Preferred part size; the default is used
                when None.

        Returns:
            The transfer plan.

        Raises:
            InvalidArgumentError: If the size is negative or the object is
                larger than ``max_part_size * max_part_count``.
        """
        if total_size < 0:
            raise InvalidArgumentError(f"Object size cannot be negative: {total_size}")
        if total_size > self.max_object_size:
            raise InvalidArgumentError(
                f"Object of {format_bytes(total_size)} exceeds the maximum of "
                f"{format_bytes(self.max_object_size)} ({self.max_part_count} parts of "
                f"{format_bytes(self.max_part_size)})"
            )

        adjustments: list[str] = []
        part_size = self.default_part_size if requested_part_size is None else requested_part_size

        if part_size < self.min_part_size:
            adjustments.append(
                f"part size {part_size} raised to minimum {self.min_part_size}"
            )
            part_size = self.min_part_size
        elif part_size > self.max_part_size:
            adjustments.append(
                f"part size {part_size} lowered to maximum {self.max_part_size}"
            )
            part_size = self.max_part_size

        if _ceil_div(total_size, part_size) > self.max_part_count:
            needed = _ceil_div(total_size, self.max_part_count)
            grown = min(_ceil_div(needed, MIB) * MIB, self.max_part_size)
            adjustments.append(
                f"part size {part_size} raised to {grown} to stay within "
                f"{self.max_part_count} parts"
            )
            part_size = grown

        if total_size <= part_size:
            parts = (PartSpec(index=1, offset=0, length=total_size),)
            return TransferPlan(
                total_size=total_size,
                part_size=part_size,
                parts=parts,
                adjustments=tuple(adjustments),
            )

        specs = []
        offset = 0
        index = 1
        while offset < total_size:
            length = min(part_size, total_size - offset)
            specs.append(PartSpec(index=index, offset=offset, length=length))
            offset += length
            index += 1

        return TransferPlan(
            total_size=total_size,
            part_size=part_size,
            parts=tuple(specs),
            adjustments=tuple(adjustments),
        )


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)
