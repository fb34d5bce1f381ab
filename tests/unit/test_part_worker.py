"""Unit tests for the part transfer worker."""

import hashlib
from contextlib import contextmanager

import pytest

from object_transfer.adapters.outbound.byte_streams import MemoryByteSink, MemoryByteSource
from object_transfer.application.part_worker import PartTransferWorker
from object_transfer.domain.entities.transfer_session import (
    PartStatus,
    TransferDirection,
    TransferSession,
)
from object_transfer.domain.exceptions import (
    CancellationError,
    IntegrityError,
    NonRetryableRequestError,
    PartTimeoutError,
    TransientTransportError,
)
from object_transfer.domain.services.chunk_planner import ChunkPlanner
from object_transfer.domain.services.retry_policy import RetryPolicy
from object_transfer.domain.value_objects.cancellation import CancellationToken
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.domain.value_objects.sizes import KIB


DATA = bytes(range(256)) * 48  # 12 KiB


class ScriptedClient:
    """Store client whose calls fail according to a script, then succeed."""

    def __init__(self, failures=None, chunk_size=KIB, data=DATA):
        self.failures = list(failures or [])
        self.chunk_size = chunk_size
        self.data = data
        self.calls = []

    def _next_failure(self):
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure

    def upload_part(self, ref, upload_id, part_number, data, on_progress=None, timeout=None):
        self.calls.append(("upload", part_number, timeout))
        for start in range(0, len(data), self.chunk_size):
            if on_progress is not None:
                on_progress(len(data[start : start + self.chunk_size]))
        self._next_failure()
        return hashlib.md5(data).hexdigest()

    @contextmanager
    def get_object_range(self, ref, offset, length, timeout=None):
        self.calls.append(("get", offset, length))
        self._next_failure()
        body = self.data[offset : offset + length]
        yield (body[i : i + self.chunk_size] for i in range(0, len(body), self.chunk_size))


def make_session(direction, upload_id="upload-1"):
    plan = ChunkPlanner(min_part_size=KIB).plan(len(DATA), 4 * KIB)
    session = TransferSession(direction, ObjectReference("bucket", "key"), plan)
    session.session_id = upload_id if direction is TransferDirection.UPLOAD else None
    return session


def make_worker(client, **kwargs):
    kwargs.setdefault("sleep", lambda delay: None)
    return PartTransferWorker(client, kwargs.pop("retry_policy", RetryPolicy(jitter=0.0)), **kwargs)


@pytest.mark.unit
class TestUploadPart:
    """Test uploading a single part."""

    def test_success_first_try(self):
        """Test a clean upload."""
        client = ScriptedClient()
        session = make_session(TransferDirection.UPLOAD)
        events = []
        worker = make_worker(client, source=MemoryByteSource(DATA), on_progress=events.append)

        result = worker.transfer_part(session, session.plan.part(2))

        assert result.status is PartStatus.SUCCEEDED
        assert result.etag == hashlib.md5(DATA[4 * KIB : 8 * KIB]).hexdigest()
        assert result.bytes_transferred == 4 * KIB
        assert result.attempts == 1
        assert [e.cumulative_bytes_for_part for e in events] == [KIB, 2 * KIB, 3 * KIB, 4 * KIB]

    def test_two_transient_failures_then_success(self):
        """Test that transient failures are retried and recorded."""
        client = ScriptedClient(
            failures=[
                TransientTransportError("503 SlowDown", status_code=503, code="SlowDown"),
                PartTimeoutError("timed out"),
            ]
        )
        delays = []
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(
            client,
            source=MemoryByteSource(DATA),
            retry_policy=RetryPolicy(base_delay=0.25, jitter=0.0),
            sleep=delays.append,
        )

        result = worker.transfer_part(session, session.plan.part(1))

        assert result.succeeded
        assert result.attempts == 3
        assert [r.error_type for r in result.history] == [
            "TransientTransportError",
            "PartTimeoutError",
            None,
        ]
        assert result.history[0].status_code == 503
        assert delays == [0.25, 0.5]
        assert [r.retry_delay for r in result.history] == [0.25, 0.5, None]

    def test_non_retryable_failure_stops_immediately(self):
        """Test that a 403 is not retried."""
        client = ScriptedClient(failures=[NonRetryableRequestError("denied", status_code=403)])
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(client, source=MemoryByteSource(DATA))

        result = worker.transfer_part(session, session.plan.part(2))

        assert result.status is PartStatus.FAILED
        assert result.attempts == 1
        assert isinstance(result.error, NonRetryableRequestError)
        assert result.reason == "NonRetryableRequestError: denied"
        assert len(client.calls) == 1

    def test_retry_budget_exhausted(self):
        """Test that a persistently transient part fails after max attempts."""
        client = ScriptedClient(failures=[TransientTransportError("503")] * 10)
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(
            client, source=MemoryByteSource(DATA), retry_policy=RetryPolicy(max_retries=2, jitter=0.0)
        )

        result = worker.transfer_part(session, session.plan.part(1))

        assert not result.succeeded
        assert result.attempts == 3
        assert len(client.calls) == 3
        assert result.history[-1].retry_delay is None

    def test_stop_token_prevents_attempt(self):
        """Test that a stopped transfer does not start new attempts."""
        client = ScriptedClient()
        stop = CancellationToken()
        stop.cancel("sibling part failed")
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(client, source=MemoryByteSource(DATA), stop=stop)

        result = worker.transfer_part(session, session.plan.part(1))

        assert isinstance(result.error, CancellationError)
        assert result.attempts == 0
        assert client.calls == []

    def test_stop_during_backoff_ends_retries(self):
        """Test that cancelling while waiting to retry stops the part."""
        client = ScriptedClient(failures=[TransientTransportError("503")] * 3)
        stop = CancellationToken()
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(
            client,
            source=MemoryByteSource(DATA),
            stop=stop,
            sleep=lambda delay: stop.cancel("caller"),
        )

        result = worker.transfer_part(session, session.plan.part(1))

        assert isinstance(result.error, CancellationError)
        assert result.attempts == 1
        assert len(client.calls) == 1

    def test_remaining_part_timeout_passed_to_client(self):
        """Test that the client receives the per-part deadline."""
        client = ScriptedClient()
        session = make_session(TransferDirection.UPLOAD)
        worker = make_worker(
            client, source=MemoryByteSource(DATA), part_timeout=30.0, clock=lambda: 1000.0
        )

        worker.transfer_part(session, session.plan.part(1))

        assert client.calls == [("upload", 1, 30.0)]


@pytest.mark.unit
class TestDownloadPart:
    """Test downloading a single part."""

    @pytest.mark.parametrize("buffer_limit", [0, 64 * KIB])
    def test_writes_part_at_offset(self, buffer_limit):
        """Test streamed and buffered writes land at the part offset."""
        client = ScriptedClient()
        sink = MemoryByteSink()
        sink.prepare(len(DATA))
        session = make_session(TransferDirection.DOWNLOAD)
        worker = make_worker(client, sink=sink, buffer_limit=buffer_limit)

        result = worker.transfer_part(session, session.plan.part(3))

        assert result.succeeded
        assert result.etag == hashlib.sha256(DATA[8 * KIB :]).hexdigest()
        assert sink.read_at(8 * KIB, 4 * KIB) == DATA[8 * KIB :]
        expected_writes = 1 if buffer_limit else 4
        assert len(sink.writes) == expected_writes

    def test_non_positional_sink_gets_one_write(self):
        """Test that sinks without positional writes receive whole parts."""
        client = ScriptedClient()
        sink = MemoryByteSink(positional=False)
        session = make_session(TransferDirection.DOWNLOAD)
        worker = make_worker(client, sink=sink, buffer_limit=0)

        worker.transfer_part(session, session.plan.part(1))

        assert sink.writes == [(0, 4 * KIB)]

    def test_reverse_order_parts_reassemble(self):
        """Test that parts finishing in reverse order yield the same bytes."""
        client = ScriptedClient()
        sink = MemoryByteSink()
        sink.prepare(len(DATA))
        session = make_session(TransferDirection.DOWNLOAD)
        worker = make_worker(client, sink=sink)

        for part in reversed(session.plan.parts):
            assert worker.transfer_part(session, part).succeeded

        assert sink.getvalue() == DATA
        assert [offset for offset, _ in sink.writes] == [8 * KIB, 4 * KIB, 0]

    def test_short_body_is_retried(self):
        """Test that a truncated body counts as a transient failure."""
        client = ScriptedClient(data=DATA[: 6 * KIB])
        sink = MemoryByteSink()
        session = make_session(TransferDirection.DOWNLOAD)
        worker = make_worker(client, sink=sink, retry_policy=RetryPolicy(max_retries=1, jitter=0.0))

        result = worker.transfer_part(session, session.plan.part(2))

        assert not result.succeeded
        assert result.attempts == 2
        assert isinstance(result.error, TransientTransportError)

    def test_oversized_body_is_integrity_error(self):
        """Test that receiving more bytes than requested is fatal."""

        class Oversized(ScriptedClient):
            @contextmanager
            def get_object_range(self, ref, offset, length, timeout=None):
                yield iter([b"x" * (length + 1)])

        sink = MemoryByteSink()
        session = make_session(TransferDirection.DOWNLOAD)
        worker = make_worker(Oversized(), sink=sink)

        result = worker.transfer_part(session, session.plan.part(1))

        assert isinstance(result.error, IntegrityError)
        assert result.error.kind == "part_length"
        assert result.attempts == 1
