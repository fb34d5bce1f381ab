"""Progress aggregator: folds concurrent part events into one stream."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable

from object_transfer.domain.entities.transfer_plan import TransferPlan
from object_transfer.domain.value_objects.progress import (
    PartProgress,
    ProgressEvent,
    ProgressSnapshot,
)


RATE_EPSILON = 1e-6
_MIN_SPAN = 1e-3


class ProgressAggregator:
    """Thread-safe running totals for one transfer.

    Workers call :meth:`observe` from their own threads. Bytes are counted
    against a per-part high-water mark, so a retried part that starts over
    from zero never moves the aggregate backwards or counts twice.

    Throughput is reported two ways: over a sliding window of recent
    events, and as a lifetime average.
    """

    def __init__(
        self,
        plan: TransferPlan,
        window_seconds: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lengths = {p.index: p.length for p in plan.parts}
        self._bytes_total = plan.total_size
        self._parts_total = plan.part_count
        self._window = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._started = clock()
        self._high_water: dict[int, int] = {}
        self._done: set[int] = set()
        self._bytes_done = 0
        self._events: deque[tuple[float, int]] = deque()

    def observe(self, event: ProgressEvent) -> None:
        """Fold one worker event into the totals."""
        with self._lock:
            if event.part_index in self._done:
                return
            limit = self._lengths.get(event.part_index, 0)
            seen = self._high_water.get(event.part_index, 0)
            cumulative = min(event.cumulative_bytes_for_part, limit)
            if cumulative <= seen:
                return
            delta = cumulative - seen
            self._high_water[event.part_index] = cumulative
            self._bytes_done += delta
            self._events.append((self._clock(), delta))

    def part_completed(self, index: int) -> None:
        """Mark a part done, crediting any bytes not yet reported."""
        with self._lock:
            if index in self._done or index not in self._lengths:
                return
            remainder = self._lengths[index] - self._high_water.get(index, 0)
            if remainder > 0:
                self._bytes_done += remainder
                self._events.append((self._clock(), remainder))
            self._high_water[index] = self._lengths[index]
            self._done.add(index)

    def snapshot(self) -> ProgressSnapshot:
        """Current view of the totals."""
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._started)
            horizon = now - self._window
            while self._events and self._events[0][0] < horizon:
                self._events.popleft()
            windowed = sum(size for _, size in self._events)
            span = max(min(self._window, elapsed), _MIN_SPAN)
            rate = windowed / span
            average = self._bytes_done / max(elapsed, _MIN_SPAN)
            remaining = self._bytes_total - self._bytes_done
            eta = remaining / max(rate, RATE_EPSILON) if remaining > 0 else 0.0
            active = tuple(
                PartProgress(index, done, self._lengths[index])
                for index, done in sorted(self._high_water.items())
                if index not in self._done
            )
            return ProgressSnapshot(
                bytes_done=self._bytes_done,
                bytes_total=self._bytes_total,
                parts_done=len(self._done),
                parts_total=self._parts_total,
                bytes_per_second=rate,
                elapsed=elapsed,
                average_bytes_per_second=average,
                eta_seconds=eta,
                active_parts=active,
            )
