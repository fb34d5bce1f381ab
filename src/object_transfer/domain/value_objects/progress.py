"""Progress value objects."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Bytes moved by one part since its previous event.

    Attributes:
        part_index: 1-based part index.
        bytes_this_event: Bytes moved since the previous event for this part.
        cumulative_bytes_for_part: Bytes moved by the current attempt so far.
    """

    part_index: int
    bytes_this_event: int
    cumulative_bytes_for_part: int


@dataclass(frozen=True, slots=True)
class PartProgress:
    """In-flight progress of a single part."""

    part_index: int
    bytes_done: int
    bytes_total: int


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Point-in-time view of a transfer's progress.

    Derived from the aggregator's counters on each tick; never
    authoritative state.
    """

    bytes_done: int
    bytes_total: int
    parts_done: int
    parts_total: int
    bytes_per_second: float
    elapsed: float
    average_bytes_per_second: float = 0.0
    eta_seconds: float | None = None
    active_parts: tuple[PartProgress, ...] = field(default_factory=tuple)

    @property
    def percent(self) -> float:
        """Completion percentage in ``[0, 100]``."""
        if self.bytes_total <= 0:
            return 100.0 if self.parts_done >= self.parts_total else 0.0
        return min(100.0, self.bytes_done * 100.0 / self.bytes_total)

    @property
    def is_complete(self) -> bool:
        return self.parts_done >= self.parts_total and self.bytes_done >= self.bytes_total
