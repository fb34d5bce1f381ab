"""Transfer coordinator: owns one transfer from plan to terminal state.

State machine::

    PLANNED -> IN_PROGRESS -> COMPLETING -> COMPLETED
                    |              |
                    +--------------+--> ABORTING -> ABORTED

The control loop runs on the calling thread. It dispatches parts in
ascending index order to a bounded thread pool, records each result in
the session as it arrives (in any order), publishes progress snapshots
and finally completes or aborts. Workers never touch the session's part
map directly.
"""

from __future__ import annotations

import dataclasses
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TypeVar

from object_transfer.application.part_worker import PartTransferWorker
from object_transfer.domain.entities.transfer_plan import PartSpec
from object_transfer.domain.entities.transfer_session import (
    PartResult,
    TransferDirection,
    TransferSession,
    TransferState,
)
from object_transfer.domain.exceptions import (
    CancellationError,
    IntegrityError,
    TransferError,
    TransferTimeoutError,
)
from object_transfer.domain.services.chunk_planner import ChunkPlanner
from object_transfer.domain.services.integrity import IntegrityReport, IntegrityVerifier
from object_transfer.domain.services.progress_aggregator import ProgressAggregator
from object_transfer.domain.services.retry_policy import RetryPolicy
from object_transfer.domain.value_objects.cancellation import CancellationToken
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.domain.value_objects.sizes import format_bytes, format_rate
from object_transfer.infrastructure.config import TransferConfig
from object_transfer.infrastructure.logging import get_logger
from object_transfer.infrastructure.metrics import TransferMetrics
from object_transfer.infrastructure.tracing import trace_span
from object_transfer.ports.inbound import TransferOptions, TransferResult
from object_transfer.ports.outbound.byte_streams import ByteSink, ByteSource
from object_transfer.ports.outbound.object_store_client import (
    CompletedPart,
    ObjectMetadata,
    ObjectStoreClient,
)


T = TypeVar("T")


@dataclass(frozen=True)
class CoordinatorSettings:
    """Defaults applied when ``TransferOptions`` leaves a field unset."""

    max_concurrency: int = 4
    retry_policy: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    part_timeout: float = 300.0
    transfer_timeout: float | None = None
    part_buffer_limit: int = 8 * 1024 * 1024
    progress_interval: float = 0.5
    progress_window: float = 3.0

    @classmethod
    def from_config(cls, transfer: TransferConfig) -> CoordinatorSettings:
        return cls(
            max_concurrency=transfer.max_concurrency,
            retry_policy=RetryPolicy(
                max_retries=transfer.max_retries,
                base_delay=transfer.retry_base_delay_seconds,
                max_delay=transfer.retry_max_delay_seconds,
                jitter=transfer.retry_jitter,
            ),
            part_timeout=transfer.part_timeout_seconds,
            transfer_timeout=transfer.transfer_timeout_seconds,
            part_buffer_limit=transfer.part_buffer_limit_bytes,
            progress_interval=transfer.progress_interval_seconds,
            progress_window=transfer.progress_window_seconds,
        )


class TransferCoordinator:
    """Runs multipart uploads and ranged downloads."""

    def __init__(
        self,
        client: ObjectStoreClient,
        upload_planner: ChunkPlanner,
        download_planner: ChunkPlanner,
        settings: CoordinatorSettings | None = None,
        *,
        integrity: IntegrityVerifier | None = None,
        metrics: TransferMetrics | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the coordinator.

        Args:
            client: Store client shared by all workers.
            upload_planner: Planner with the store's upload part limits.
            download_planner: Planner for ranged downloads.
            settings: Defaults for unset options.
            integrity: Verifier for reassembled downloads.
            metrics: Metrics sink; metrics are skipped when None.
            sleep: Retry sleep override, used by tests.
            clock: Monotonic clock.
        """
        self.client = client
        self.upload_planner = upload_planner
        self.download_planner = download_planner
        self.settings = settings or CoordinatorSettings()
        self.integrity = integrity or IntegrityVerifier()
        self.metrics = metrics
        self._sleep = sleep
        self._clock = clock
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def upload(
        self,
        ref: ObjectReference,
        source: ByteSource,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Upload ``source`` to ``ref``.

        Raises:
            ConfigurationError: On invalid options or an object too large
                for the part limits. Nothing is sent in that case.
        """
        options = options or TransferOptions()
        options.validate()
        plan = self.upload_planner.plan(source.size, options.part_size_bytes)
        session = TransferSession(TransferDirection.UPLOAD, ref, plan)
        started = self._clock()
        self._on_start(session, options)

        with trace_span("transfer.upload", self._span_attributes(session)) as span:
            try:
                initiated = self.client.initiate_multipart_upload(
                    ref, content_type=options.content_type, metadata=options.metadata
                )
            except TransferError as exc:
                result = self._abort(session, exc, options, started, None)
                span.set_attribute("transfer.state", result.state.name)
                return result
            session.session_id = initiated.upload_id
            span.set_attribute("transfer.upload_id", initiated.upload_id)

            aggregator = ProgressAggregator(plan, self.settings.progress_window, self._clock)
            error = self._run_parts(session, options, aggregator, started, source=source)
            if error is not None:
                result = self._abort(session, error, options, started, aggregator)
                span.set_attribute("transfer.state", result.state.name)
                return result

            session.transition(TransferState.COMPLETING)
            parts = [CompletedPart(index, etag) for index, etag in session.completion_parts()]
            try:
                completed = self._with_retries(
                    "complete",
                    lambda: self.client.complete_multipart_upload(ref, initiated.upload_id, parts),
                    self._retry_policy(options),
                    options.cancellation,
                )
            except TransferError as exc:
                result = self._abort(session, exc, options, started, aggregator)
                span.set_attribute("transfer.state", result.state.name)
                return result

            session.transition(TransferState.COMPLETED)
            result = self._finish(session, options, started, aggregator, etag=completed.etag)
            span.set_attribute("transfer.state", result.state.name)
            return result

    def download(
        self,
        ref: ObjectReference,
        sink: ByteSink,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Download ``ref`` into ``sink``.

        Partial output stays in the sink when the transfer aborts.

        Raises:
            ConfigurationError: On invalid options.
        """
        options = options or TransferOptions()
        options.validate()
        started = self._clock()

        try:
            metadata: ObjectMetadata = self._with_retries(
                "head",
                lambda: self.client.head_object(ref),
                self._retry_policy(options),
                options.cancellation,
            )
        except TransferError as exc:
            self._logger.warning(
                "transfer_aborted",
                direction=TransferDirection.DOWNLOAD.value,
                bucket=ref.bucket,
                key=ref.key,
                stage="head",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if self.metrics is not None:
                self.metrics.transfers_aborted_total.labels(
                    direction=TransferDirection.DOWNLOAD.value, reason=type(exc).__name__
                ).inc()
            return TransferResult(
                direction=TransferDirection.DOWNLOAD,
                object_ref=ref,
                state=TransferState.ABORTED,
                plan=None,
                error=exc,
                elapsed=self._clock() - started,
            )

        plan = self.download_planner.plan(metadata.size, options.part_size_bytes)
        session = TransferSession(TransferDirection.DOWNLOAD, ref, plan)
        self._on_start(session, options)

        with trace_span("transfer.download", self._span_attributes(session)) as span:
            aggregator = ProgressAggregator(plan, self.settings.progress_window, self._clock)
            try:
                sink.prepare(plan.total_size)
            except OSError as exc:
                result = self._abort(
                    session, _sink_error("prepare", exc), options, started, aggregator
                )
                span.set_attribute("transfer.state", result.state.name)
                return result
            error = self._run_parts(session, options, aggregator, started, sink=sink)
            if error is not None:
                result = self._abort(session, error, options, started, aggregator)
                span.set_attribute("transfer.state", result.state.name)
                return result

            session.transition(TransferState.COMPLETING)
            try:
                sink.flush()
            except OSError as exc:
                result = self._abort(
                    session, _sink_error("flush", exc), options, started, aggregator
                )
                span.set_attribute("transfer.state", result.state.name)
                return result
            try:
                report = self._verify_download(session, sink, metadata)
            except IntegrityError as exc:
                if self.metrics is not None:
                    self.metrics.integrity_errors_total.labels(kind=exc.kind).inc()
                result = self._abort(session, exc, options, started, aggregator)
                span.set_attribute("transfer.state", result.state.name)
                return result
            except OSError as exc:
                result = self._abort(
                    session, _sink_error("read", exc), options, started, aggregator
                )
                span.set_attribute("transfer.state", result.state.name)
                return result

            session.transition(TransferState.COMPLETED)
            result = self._finish(
                session, options, started, aggregator, etag=metadata.etag, integrity=report
            )
            span.set_attribute("transfer.state", result.state.name)
            return result

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def _run_parts(
        self,
        session: TransferSession,
        options: TransferOptions,
        aggregator: ProgressAggregator,
        started: float,
        *,
        source: ByteSource | None = None,
        sink: ByteSink | None = None,
    ) -> TransferError | None:
        """Dispatch every part and collect the results.

        Returns the error that stopped the transfer, or None when every
        part succeeded.
        """
        plan = session.plan
        concurrency = min(options.max_concurrency or self.settings.max_concurrency, plan.part_count)
        timeout = options.transfer_timeout or self.settings.transfer_timeout
        deadline = started + timeout if timeout else None
        cancellation = options.cancellation
        stop = CancellationToken()

        worker = PartTransferWorker(
            self.client,
            self._retry_policy(options),
            source=source,
            sink=sink,
            on_progress=aggregator.observe,
            part_timeout=self.settings.part_timeout,
            buffer_limit=self.settings.part_buffer_limit,
            stop=stop,
            metrics=self.metrics,
            sleep=self._sleep,
            clock=self._clock,
        )

        pending: deque[PartSpec] = deque(plan.parts)
        in_flight: dict[Future[PartResult], PartSpec] = {}
        error: TransferError | None = None
        last_publish = self._clock()

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="part-worker") as pool:
            session.transition(TransferState.IN_PROGRESS)
            while pending or in_flight:
                if error is None:
                    if cancellation is not None and cancellation.cancelled:
                        error = CancellationError(cancellation.reason or "cancelled by caller")
                    elif deadline is not None and self._clock() > deadline:
                        error = TransferTimeoutError(f"Transfer exceeded {timeout}s")
                    if error is not None:
                        stop.cancel(str(error))

                if error is None:
                    while pending and len(in_flight) < concurrency:
                        part = pending.popleft()
                        in_flight[pool.submit(worker.transfer_part, session, part)] = part
                else:
                    pending.clear()

                if not in_flight:
                    break

                done, _ = wait(
                    in_flight,
                    timeout=self.settings.progress_interval,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    part = in_flight.pop(future)
                    result = self._collect(future, part)
                    session.record(result)
                    if result.succeeded:
                        aggregator.part_completed(part.index)
                    elif error is None:
                        error = _as_transfer_error(result)
                        stop.cancel(str(error))

                now = self._clock()
                if now - last_publish >= self.settings.progress_interval:
                    self._publish(aggregator, options)
                    last_publish = now

        self._publish(aggregator, options)
        return error

    def _collect(self, future: Future[PartResult], part: PartSpec) -> PartResult:
        try:
            return future.result()
        except Exception as exc:
            self._logger.exception("part_crashed", part=part.index, error=str(exc))
            wrapped = TransferError(f"Part {part.index} failed unexpectedly: {exc}")
            wrapped.__cause__ = exc
            return PartResult.failure(part.index, wrapped, ())

    def _publish(self, aggregator: ProgressAggregator, options: TransferOptions) -> None:
        if options.progress_callback is None:
            return
        snapshot = aggregator.snapshot()
        try:
            options.progress_callback(snapshot)
        except Exception as exc:
            self._logger.warning(
                "progress_callback_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _with_retries(
        self,
        operation: str,
        call: Callable[[], T],
        policy: RetryPolicy,
        cancellation: CancellationToken | None = None,
    ) -> T:
        """Run a single request, retrying transient failures.

        Retry delays end early when ``cancellation`` fires, raising
        ``CancellationError``.
        """
        if self._sleep is not None:
            sleep = self._sleep
        elif cancellation is not None:
            sleep = cancellation.wait
        else:
            sleep = time.sleep
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except TransferError as exc:
                if not policy.should_retry(exc, attempt):
                    raise
                delay = policy.next_delay(attempt)
                self._logger.info(
                    "request_retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=round(delay, 3),
                    error_type=type(exc).__name__,
                )
                sleep(delay)
                if cancellation is not None and cancellation.cancelled:
                    raise CancellationError(cancellation.reason or "cancelled by caller") from exc

    # ------------------------------------------------------------------
    # Terminal steps
    # ------------------------------------------------------------------

    def _verify_download(
        self,
        session: TransferSession,
        sink: ByteSink,
        metadata: ObjectMetadata,
    ) -> IntegrityReport:
        self.integrity.verify_size(session.plan.total_size, session.bytes_transferred)
        return self.integrity.verify_object(
            expected_size=session.plan.total_size,
            actual_size=sink.size(),
            read_at=sink.read_at,
            etag=metadata.etag,
            checksum_sha256=metadata.checksum_sha256,
        )

    def _abort(
        self,
        session: TransferSession,
        error: TransferError,
        options: TransferOptions,
        started: float,
        aggregator: ProgressAggregator | None,
    ) -> TransferResult:
        session.transition(TransferState.ABORTING)
        if session.direction is TransferDirection.UPLOAD and session.session_id:
            try:
                self.client.abort_multipart_upload(session.object_ref, session.session_id)
            except TransferError as exc:
                self._logger.error(
                    "abort_request_failed",
                    bucket=session.object_ref.bucket,
                    key=session.object_ref.key,
                    upload_id=session.session_id,
                    error=str(exc),
                )
        session.transition(TransferState.ABORTED)

        elapsed = self._clock() - started
        log = self._logger.info if isinstance(error, CancellationError) else self._logger.warning
        log(
            "transfer_aborted",
            direction=session.direction.value,
            bucket=session.object_ref.bucket,
            key=session.object_ref.key,
            upload_id=session.session_id,
            error_type=type(error).__name__,
            error=str(error),
            failed_parts=[r.index for r in session.failed_parts()],
            elapsed_seconds=round(elapsed, 3),
        )
        if self.metrics is not None:
            direction = session.direction.value
            self.metrics.transfers_aborted_total.labels(
                direction=direction, reason=type(error).__name__
            ).inc()
            self.metrics.transfers_active.labels(direction=direction).dec()
            self.metrics.transfer_duration_seconds.labels(direction=direction).observe(elapsed)

        return TransferResult(
            direction=session.direction,
            object_ref=session.object_ref,
            state=session.state,
            plan=session.plan,
            session_id=session.session_id,
            part_results=session.results(),
            progress=aggregator.snapshot() if aggregator is not None else None,
            error=error,
            elapsed=elapsed,
        )

    def _finish(
        self,
        session: TransferSession,
        options: TransferOptions,
        started: float,
        aggregator: ProgressAggregator,
        *,
        etag: str | None = None,
        integrity: IntegrityReport | None = None,
    ) -> TransferResult:
        elapsed = self._clock() - started
        snapshot = aggregator.snapshot()
        self._logger.info(
            "transfer_completed",
            direction=session.direction.value,
            bucket=session.object_ref.bucket,
            key=session.object_ref.key,
            size=format_bytes(session.plan.total_size),
            parts=session.plan.part_count,
            retries=sum(r.attempts - 1 for r in session.results()),
            average_rate=format_rate(snapshot.average_bytes_per_second),
            elapsed_seconds=round(elapsed, 3),
        )
        if self.metrics is not None:
            direction = session.direction.value
            self.metrics.transfers_completed_total.labels(direction=direction).inc()
            self.metrics.transfers_active.labels(direction=direction).dec()
            self.metrics.transfer_duration_seconds.labels(direction=direction).observe(elapsed)
            self.metrics.bytes_transferred_total.labels(direction=direction).inc(
                session.bytes_transferred
            )
        return TransferResult(
            direction=session.direction,
            object_ref=session.object_ref,
            state=session.state,
            plan=session.plan,
            session_id=session.session_id,
            part_results=session.results(),
            progress=snapshot,
            integrity=integrity,
            etag=etag,
            elapsed=elapsed,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _retry_policy(self, options: TransferOptions) -> RetryPolicy:
        if options.max_retries_per_part is None:
            return self.settings.retry_policy
        return dataclasses.replace(self.settings.retry_policy, max_retries=options.max_retries_per_part)

    def _on_start(self, session: TransferSession, options: TransferOptions) -> None:
        plan = session.plan
        self._logger.info(
            "transfer_started",
            direction=session.direction.value,
            bucket=session.object_ref.bucket,
            key=session.object_ref.key,
            size=format_bytes(plan.total_size),
            part_size=format_bytes(plan.part_size),
            parts=plan.part_count,
            concurrency=min(options.max_concurrency or self.settings.max_concurrency, plan.part_count),
        )
        for adjustment in plan.adjustments:
            self._logger.info(
                "part_size_adjusted",
                direction=session.direction.value,
                adjustment=adjustment,
            )
        if self.metrics is not None:
            direction = session.direction.value
            self.metrics.transfers_started_total.labels(direction=direction).inc()
            self.metrics.transfers_active.labels(direction=direction).inc()

    @staticmethod
    def _span_attributes(session: TransferSession) -> dict[str, object]:
        return {
            "transfer.direction": session.direction.value,
            "transfer.bucket": session.object_ref.bucket,
            "transfer.key": session.object_ref.key,
            "transfer.size": session.plan.total_size,
            "transfer.part_size": session.plan.part_size,
            "transfer.part_count": session.plan.part_count,
        }


def _as_transfer_error(result: PartResult) -> TransferError:
    if isinstance(result.error, TransferError):
        return result.error
    return TransferError(result.reason or f"Part {result.index} failed")


def _sink_error(operation: str, exc: OSError) -> TransferError:
    error = TransferError(f"Destination {operation} failed: {exc}")
    error.__cause__ = exc
    return error
