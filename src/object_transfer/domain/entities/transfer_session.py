"""Transfer session entity and its state machine."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto

from object_transfer.domain.entities.transfer_plan import TransferPlan
from object_transfer.domain.value_objects.identifiers import ObjectReference


class TransferDirection(Enum):
    """Direction of a transfer."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferState(Enum):
    """Lifecycle state of a transfer session."""

    PLANNED = auto()
    IN_PROGRESS = auto()
    COMPLETING = auto()
    COMPLETED = auto()
    ABORTING = auto()
    ABORTED = auto()

    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self in (TransferState.COMPLETED, TransferState.ABORTED)

    def can_transition_to(self, target: TransferState) -> bool:
        return target in _TRANSITIONS[self]


# Planned may abort directly when the upload session cannot be initiated.
_TRANSITIONS: dict[TransferState, frozenset[TransferState]] = {
    TransferState.PLANNED: frozenset({TransferState.IN_PROGRESS, TransferState.ABORTING}),
    TransferState.IN_PROGRESS: frozenset({TransferState.COMPLETING, TransferState.ABORTING}),
    TransferState.COMPLETING: frozenset({TransferState.COMPLETED, TransferState.ABORTING}),
    TransferState.ABORTING: frozenset({TransferState.ABORTED}),
    TransferState.COMPLETED: frozenset(),
    TransferState.ABORTED: frozenset(),
}


class PartStatus(Enum):
    """Outcome of a part transfer."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Diagnostics for one attempt at a part."""

    attempt: int
    started_at: float
    duration: float
    bytes_transferred: int
    error_type: str | None = None
    error: str | None = None
    status_code: int | None = None
    retry_delay: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_type is None


@dataclass(frozen=True)
class PartResult:
    """Final result of one part.

    Attributes:
        index: 1-based part index.
        etag: Entity tag for uploads, SHA-256 hex of received bytes for
            downloads. Empty when the part failed.
        bytes_transferred: Bytes moved by the successful attempt.
        attempts: Number of attempts made.
        status: Succeeded or Failed.
        reason: Failure reason, None on success.
        history: Per-attempt diagnostics.
        error: Exception that failed the part, if any.
    """

    index: int
    etag: str
    bytes_transferred: int
    attempts: int
    status: PartStatus
    reason: str | None = None
    history: tuple[AttemptRecord, ...] = ()
    error: Exception | None = field(default=None, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status is PartStatus.SUCCEEDED

    @classmethod
    def success(
        cls,
        index: int,
        etag: str,
        bytes_transferred: int,
        history: tuple[AttemptRecord, ...],
    ) -> PartResult:
        return cls(
            index=index,
            etag=etag,
            bytes_transferred=bytes_transferred,
            attempts=len(history),
            status=PartStatus.SUCCEEDED,
            history=history,
        )

    @classmethod
    def failure(
        cls,
        index: int,
        error: Exception,
        history: tuple[AttemptRecord, ...],
    ) -> PartResult:
        return cls(
            index=index,
            etag="",
            bytes_transferred=0,
            attempts=len(history),
            status=PartStatus.FAILED,
            reason=f"{type(error).__name__}: {error}",
            history=history,
            error=error,
        )


class InvalidStateTransition(RuntimeError):
    """Raised when the session is driven through an illegal transition."""


@dataclass
class TransferSession:
    """State of one transfer, owned by the coordinator.

    The part map and the state field are the only mutable members; all
    writes go through :meth:`transition` and :meth:`record`, which hold
    the session lock.
    """

    direction: TransferDirection
    object_ref: ObjectReference
    plan: TransferPlan
    session_id: str | None = None
    started_at: float = field(default_factory=time.time)
    state: TransferState = TransferState.PLANNED
    parts: dict[int, PartResult] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def transition(self, target: TransferState) -> None:
        """Move to ``target``.

        Raises:
            InvalidStateTransition: If the move is not allowed.
        """
        with self._lock:
            if not self.state.can_transition_to(target):
                raise InvalidStateTransition(
                    f"Cannot move transfer from {self.state.name} to {target.name}"
                )
            self.state = target

    def record(self, result: PartResult) -> None:
        """Store the result of a part.

        Raises:
            InvalidStateTransition: If the session is already terminal.
            ValueError: If the part index is not in the plan.
        """
        with self._lock:
            if self.state.is_terminal():
                raise InvalidStateTransition(
                    f"Cannot record part {result.index} in state {self.state.name}"
                )
            if not 1 <= result.index <= self.plan.part_count:
                raise ValueError(f"Part {result.index} is not part of the plan")
            self.parts[result.index] = result

    def all_succeeded(self) -> bool:
        with self._lock:
            return len(self.parts) == self.plan.part_count and all(
                r.succeeded for r in self.parts.values()
            )

    def failed_parts(self) -> list[PartResult]:
        with self._lock:
            return [r for r in self.parts.values() if not r.succeeded]

    def completion_parts(self) -> list[tuple[int, str]]:
        """(index, etag) pairs of succeeded parts in ascending index order."""
        with self._lock:
            return [
                (index, self.parts[index].etag)
                for index in sorted(self.parts)
                if self.parts[index].succeeded
            ]

    def results(self) -> tuple[PartResult, ...]:
        """Part results in ascending index order."""
        with self._lock:
            return tuple(self.parts[i] for i in sorted(self.parts))

    @property
    def bytes_transferred(self) -> int:
        with self._lock:
            return sum(r.bytes_transferred for r in self.parts.values() if r.succeeded)
