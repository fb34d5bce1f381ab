"""Inbound ports - API contracts for the transfer engine.

Inbound ports define the operations callers use to move objects to and
from the store and to sign requests, plus the option and result types
those operations exchange.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from object_transfer.domain.entities.transfer_plan import TransferPlan
from object_transfer.domain.entities.transfer_session import (
    AttemptRecord,
    PartResult,
    TransferDirection,
    TransferState,
)
from object_transfer.domain.exceptions import (
    CancellationError,
    InvalidArgumentError,
    TransferError,
)
from object_transfer.domain.services.integrity import IntegrityReport
from object_transfer.domain.services.signer import HttpRequest, SignedRequest
from object_transfer.domain.value_objects.cancellation import CancellationToken
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.domain.value_objects.progress import ProgressSnapshot
from object_transfer.ports.outbound.byte_streams import ByteSink, ByteSource


ProgressListener = Callable[[ProgressSnapshot], None]


# =============================================================================
# Options and results
# =============================================================================


@dataclass
class TransferOptions:
    """Per-transfer settings. Unset fields take the configured defaults.

    Attributes:
        part_size_bytes: Preferred part size; clamped to store limits.
        max_concurrency: Parts in flight at once.
        max_retries_per_part: Retries after the first attempt of a part.
        progress_callback: Receives snapshots on the coordinator thread.
        metadata: User metadata stored with an uploaded object.
        content_type: Content type stored with an uploaded object.
        transfer_timeout: Deadline in seconds for the whole transfer.
        cancellation: Token the caller may set to stop the transfer.
    """

    part_size_bytes: int | None = None
    max_concurrency: int | None = None
    max_retries_per_part: int | None = None
    progress_callback: ProgressListener | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    content_type: str | None = None
    transfer_timeout: float | None = None
    cancellation: CancellationToken | None = None

    def validate(self) -> None:
        """Reject option values outside their domain.

        Raises:
            InvalidArgumentError: On a non-positive size, concurrency or
                timeout, or a negative retry count.
        """
        if self.part_size_bytes is not None and self.part_size_bytes <= 0:
            raise InvalidArgumentError("part_size_bytes must be positive")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise InvalidArgumentError("max_concurrency must be at least 1")
        if self.max_retries_per_part is not None and self.max_retries_per_part < 0:
            raise InvalidArgumentError("max_retries_per_part cannot be negative")
        if self.transfer_timeout is not None and self.transfer_timeout <= 0:
            raise InvalidArgumentError("transfer_timeout must be positive")
        for name in self.metadata:
            if not name or any(c.isspace() for c in name):
                raise InvalidArgumentError(f"Invalid metadata name: {name!r}")


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a transfer.

    Always states the terminal state and the per-part attempt histories.
    Integrity failures carry expected and actual values in ``error``.
    """

    direction: TransferDirection
    object_ref: ObjectReference
    state: TransferState
    plan: TransferPlan | None
    session_id: str | None = None
    part_results: tuple[PartResult, ...] = ()
    progress: ProgressSnapshot | None = None
    error: TransferError | None = None
    integrity: IntegrityReport | None = None
    etag: str | None = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state is TransferState.COMPLETED

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)

    @property
    def attempt_histories(self) -> dict[int, tuple[AttemptRecord, ...]]:
        return {r.index: r.history for r in self.part_results}

    @property
    def bytes_transferred(self) -> int:
        return sum(r.bytes_transferred for r in self.part_results if r.succeeded)

    def raise_for_state(self) -> TransferResult:
        """Raise the terminal error unless the transfer completed."""
        if self.state is TransferState.COMPLETED:
            return self
        if self.error is not None:
            raise self.error
        raise TransferError(f"Transfer ended in state {self.state.name}")


# =============================================================================
# Transfer Service Port
# =============================================================================


class TransferServicePort(Protocol):
    """Protocol for caller-facing transfer and signing operations.

    Thread Safety:
        Separate transfers may run concurrently on one service instance.

    Failure model:
        Invalid input raises ``ConfigurationError`` before any request is
        made. Every other failure ends the transfer in ``ABORTED`` and is
        reported on the returned ``TransferResult``.

    Example:
        result = service.upload_multipart(ref, FileByteSource(path))
        result.raise_for_state()
    """

    @abstractmethod
    def upload_multipart(
        self,
        ref: ObjectReference,
        source: ByteSource,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Upload ``source`` as ``ref`` using multipart upload.

        Args:
            ref: Target object.
            source: Content to upload.
            options: Transfer options.

        Returns:
            Result in state COMPLETED or ABORTED.
        """
        ...

    @abstractmethod
    def download_multipart(
        self,
        ref: ObjectReference,
        sink: ByteSink,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Download ``ref`` into ``sink`` using ranged reads.

        Returns:
            Result in state COMPLETED or ABORTED. Partial output is left
            in the sink when aborted.
        """
        ...

    @abstractmethod
    def presign(self, ref: ObjectReference, method: str = "GET", expires_in: int | None = None) -> str:
        """Build a presigned URL for ``ref``.

        Raises:
            InvalidArgumentError: If ``expires_in`` is outside ``[1, max]``.
        """
        ...

    @abstractmethod
    def sign(self, request: HttpRequest) -> SignedRequest:
        """Sign a raw request with the configured credentials."""
        ...


__all__ = [
    "ProgressListener",
    "TransferOptions",
    "TransferResult",
    "TransferServicePort",
]
