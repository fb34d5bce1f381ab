"""Part transfer worker: moves one part with retries."""

from __future__ import annotations

import hashlib
import random
import time
from collections.abc import Callable

from object_transfer.domain.entities.transfer_plan import PartSpec
from object_transfer.domain.entities.transfer_session import (
    AttemptRecord,
    PartResult,
    TransferDirection,
    TransferSession,
)
from object_transfer.domain.exceptions import (
    CancellationError,
    IntegrityError,
    PartTimeoutError,
    TransferError,
    TransientTransportError,
)
from object_transfer.domain.services.retry_policy import RetryPolicy
from object_transfer.domain.value_objects.cancellation import CancellationToken
from object_transfer.domain.value_objects.progress import ProgressEvent
from object_transfer.infrastructure.logging import get_logger
from object_transfer.infrastructure.metrics import TransferMetrics
from object_transfer.ports.outbound.byte_streams import ByteSink, ByteSource
from object_transfer.ports.outbound.object_store_client import ObjectStoreClient


EMPTY_PART_CHECKSUM = hashlib.sha256(b"").hexdigest()


class PartTransferWorker:
    """Uploads or downloads a single part.

    Transient failures are retried locally following the retry policy.
    Anything else, or a transient failure after the last retry, comes back
    as a failed ``PartResult`` with the full attempt history.

    The stop token is checked before each attempt and while waiting to
    retry, never in the middle of an HTTP call, so a part is either fully
    written or not attempted.

    Downloads write either straight into the sink as chunks arrive, or
    into a buffer that is written once. Buffering is used when the sink
    cannot take positional writes or the part fits within
    ``buffer_limit``.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        retry_policy: RetryPolicy,
        *,
        source: ByteSource | None = None,
        sink: ByteSink | None = None,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        part_timeout: float = 300.0,
        buffer_limit: int = 8 * 1024 * 1024,
        stop: CancellationToken | None = None,
        metrics: TransferMetrics | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.client = client
        self.retry_policy = retry_policy
        self.source = source
        self.sink = sink
        self.on_progress = on_progress
        self.part_timeout = part_timeout
        self.buffer_limit = buffer_limit
        self.stop = stop or CancellationToken()
        self.metrics = metrics
        self._sleep = sleep or self.stop.wait
        self._clock = clock
        self._rng = rng
        self._logger = get_logger(__name__)

    def transfer_part(self, session: TransferSession, part: PartSpec) -> PartResult:
        """Transfer ``part`` of ``session`` and report how it went."""
        direction = session.direction.value
        history: list[AttemptRecord] = []
        first_start = self._clock()
        attempt = 0

        while True:
            if self.stop.cancelled:
                return PartResult.failure(
                    part.index,
                    CancellationError(self.stop.reason or "transfer stopped"),
                    tuple(history),
                )

            attempt += 1
            wall_start = time.time()
            started = self._clock()
            try:
                if session.direction is TransferDirection.UPLOAD:
                    etag, moved = self._upload(session, part, started + self.part_timeout)
                else:
                    etag, moved = self._download(session, part, started + self.part_timeout)
            except TransferError as exc:
                retry = self.retry_policy.should_retry(exc, attempt) and not self.stop.cancelled
                delay = self.retry_policy.next_delay(attempt, self._rng) if retry else None
                history.append(
                    AttemptRecord(
                        attempt=attempt,
                        started_at=wall_start,
                        duration=self._clock() - started,
                        bytes_transferred=0,
                        error_type=type(exc).__name__,
                        error=str(exc),
                        status_code=getattr(exc, "status_code", None),
                        retry_delay=delay,
                    )
                )
                if not retry:
                    self._logger.warning(
                        "part_failed",
                        direction=direction,
                        bucket=session.object_ref.bucket,
                        key=session.object_ref.key,
                        part=part.index,
                        attempts=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    if self.metrics is not None:
                        self.metrics.part_failures_total.labels(
                            direction=direction, error_type=type(exc).__name__
                        ).inc()
                    return PartResult.failure(part.index, exc, tuple(history))

                self._logger.info(
                    "part_retry_scheduled",
                    direction=direction,
                    part=part.index,
                    attempt=attempt,
                    delay_seconds=round(delay, 3),
                    error_type=type(exc).__name__,
                )
                if self.metrics is not None:
                    self.metrics.part_retries_total.labels(
                        direction=direction, error_type=type(exc).__name__
                    ).inc()
                self._sleep(delay)
                continue

            history.append(
                AttemptRecord(
                    attempt=attempt,
                    started_at=wall_start,
                    duration=self._clock() - started,
                    bytes_transferred=moved,
                )
            )
            if self.metrics is not None:
                self.metrics.parts_transferred_total.labels(direction=direction).inc()
                self.metrics.part_latency_seconds.labels(direction=direction).observe(
                    self._clock() - first_start
                )
            return PartResult.success(part.index, etag, moved, tuple(history))

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _remaining(self, deadline: float, part: PartSpec) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise PartTimeoutError(f"Part {part.index} exceeded {self.part_timeout}s")
        return remaining

    def _emitter(self, part: PartSpec) -> Callable[[int], None]:
        cumulative = 0

        def emit(size: int) -> None:
            nonlocal cumulative
            cumulative += size
            if self.on_progress is not None and size:
                self.on_progress(ProgressEvent(part.index, size, cumulative))

        return emit

    def _upload(self, session: TransferSession, part: PartSpec, deadline: float) -> tuple[str, int]:
        if self.source is None or session.session_id is None:
            raise TransferError("Upload worker needs a source and an upload id")
        data = self.source.read_at(part.offset, part.length)
        etag = self.client.upload_part(
            session.object_ref,
            session.session_id,
            part.index,
            data,
            on_progress=self._emitter(part),
            timeout=self._remaining(deadline, part),
        )
        return etag, len(data)

    def _download(self, session: TransferSession, part: PartSpec, deadline: float) -> tuple[str, int]:
        if self.sink is None:
            raise TransferError("Download worker needs a sink")
        if part.length == 0:
            return EMPTY_PART_CHECKSUM, 0

        buffered = not self.sink.supports_positional_writes or part.length <= self.buffer_limit
        buffer = bytearray()
        digest = hashlib.sha256()
        emit = self._emitter(part)
        received = 0

        with self.client.get_object_range(
            session.object_ref,
            part.offset,
            part.length,
            timeout=self._remaining(deadline, part),
        ) as chunks:
            for chunk in chunks:
                if received + len(chunk) > part.length:
                    raise IntegrityError("part_length", part.length, received + len(chunk))
                if buffered:
                    buffer += chunk
                else:
                    self.sink.write_at(part.offset + received, chunk)
                digest.update(chunk)
                received += len(chunk)
                emit(len(chunk))
                self._remaining(deadline, part)

        if received != part.length:
            raise TransientTransportError(
                f"Part {part.index} body ended after {received} of {part.length} bytes"
            )
        if buffered:
            self.sink.write_at(part.offset, bytes(buffer))
        return digest.hexdigest(), received
