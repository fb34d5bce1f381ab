"""Pytest configuration and shared fixtures for object transfer tests."""

from __future__ import annotations

import base64
import hashlib
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from unittest.mock import patch
from xml.etree import ElementTree as ET

import httpx
import pytest
from prometheus_client import CollectorRegistry
from pydantic import SecretStr

from object_transfer.application.transfer_service import TransferService
from object_transfer.domain.value_objects.credentials import Credentials
from object_transfer.infrastructure.config import (
    Config,
    ConnectionConfig,
    TransferConfig,
)
from object_transfer.infrastructure.container import Container
from object_transfer.infrastructure.metrics import TransferMetrics


MIB = 1024 * 1024
S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"
FIXED_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake S3 endpoint
# =============================================================================


@dataclass
class RecordedRequest:
    """A request the fake store received."""

    method: str
    bucket: str
    key: str
    params: dict[str, str]
    headers: dict[str, str]
    body: bytes

    @property
    def part_number(self) -> int | None:
        value = self.params.get("partNumber")
        return int(value) if value else None

    @property
    def range_start(self) -> int | None:
        value = self.headers.get("range")
        if not value:
            return None
        return int(value.split("=", 1)[1].split("-", 1)[0])


@dataclass
class FaultRule:
    """Injected failure for matching requests."""

    operation: str
    status: int | None = None
    code: str = "InternalError"
    part_number: int | None = None
    range_start: int | None = None
    times: int | None = 1
    exception: Exception | None = None
    hits: int = 0

    def matches(self, operation: str, request: RecordedRequest) -> bool:
        if operation != self.operation:
            return False
        if self.times is not None and self.hits >= self.times:
            return False
        if self.part_number is not None and request.part_number != self.part_number:
            return False
        if self.range_start is not None and request.range_start != self.range_start:
            return False
        return True


@dataclass
class FakeUpload:
    bucket: str
    key: str
    content_type: str | None
    metadata: dict[str, str]
    parts: dict[int, tuple[str, bytes]] = field(default_factory=dict)


@dataclass
class FakeObject:
    data: bytes
    etag: str
    checksum_sha256: str | None = None


def _error(status: int, code: str, message: str = "") -> httpx.Response:
    body = (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f"<Error><Code>{code}</Code><Message>{message or code}</Message>"
        f"<RequestId>fake-request</RequestId></Error>"
    )
    return httpx.Response(status, content=body.encode(), headers={"content-type": "application/xml"})


class FakeS3:
    """In-process S3 multipart endpoint served through ``httpx.MockTransport``.

    Speaks initiate, upload part, complete, abort, HEAD and ranged GET.
    Requests are checked for a structurally valid SigV4 authorization and
    a matching payload hash, recorded, and optionally failed or delayed.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.objects: dict[tuple[str, str], FakeObject] = {}
        self.uploads: dict[str, FakeUpload] = {}
        self.requests: list[RecordedRequest] = []
        self.rules: list[FaultRule] = []
        self.delays: dict[tuple[str, int], float] = {}
        self.complete_bodies: list[bytes] = []
        self.ignore_range = False
        self.corrupt_ranges = False

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -- test helpers ---------------------------------------------------

    def put_object(self, bucket: str, key: str, data: bytes, *, multipart_etag: bool = False,
                   checksum_sha256: str | None = None) -> None:
        etag = hashlib.md5(data).hexdigest()
        if multipart_etag:
            etag = f"{etag}-3"
        self.objects[(bucket, key)] = FakeObject(data, etag, checksum_sha256)

    def fail(self, operation: str, status: int | None = 503, code: str = "SlowDown", *,
             part_number: int | None = None, range_start: int | None = None,
             times: int | None = 1, exception: Exception | None = None) -> FaultRule:
        rule = FaultRule(operation, status, code, part_number, range_start, times, exception)
        self.rules.append(rule)
        return rule

    def delay(self, operation: str, selector: int, seconds: float) -> None:
        """Delay a part (by part number) or a range read (by start offset)."""
        self.delays[(operation, selector)] = seconds

    def calls(self, operation: str) -> list[RecordedRequest]:
        with self.lock:
            return [r for r in self.requests if _operation(r) == operation]

    # -- handler --------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        path = request.url.path.lstrip("/")
        bucket, _, key = path.partition("/")
        recorded = RecordedRequest(
            method=request.method,
            bucket=bucket,
            key=key,
            params=dict(request.url.params),
            headers={k.lower(): v for k, v in request.headers.items()},
            body=body,
        )
        operation = _operation(recorded)
        with self.lock:
            self.requests.append(recorded)

        auth_error = self._check_auth(recorded)
        if auth_error is not None:
            return auth_error

        selector = recorded.part_number if operation == "UploadPart" else recorded.range_start
        pause = self.delays.get((operation, selector)) if selector is not None else None
        if pause:
            time.sleep(pause)

        with self.lock:
            for rule in self.rules:
                if rule.matches(operation, recorded):
                    rule.hits += 1
                    if rule.exception is not None:
                        raise rule.exception
                    return _error(rule.status or 500, rule.code)

        handlers = {
            "InitiateMultipartUpload": self._initiate,
            "UploadPart": self._upload_part,
            "CompleteMultipartUpload": self._complete,
            "AbortMultipartUpload": self._abort,
            "HeadObject": self._head,
            "GetObject": self._get,
        }
        handle = handlers.get(operation)
        if handle is None:
            return _error(400, "NotImplemented")
        return handle(recorded)

    def _check_auth(self, request: RecordedRequest) -> httpx.Response | None:
        auth = request.headers.get("authorization", "")
        if not auth.startswith("AWS4-HMAC-SHA256 Credential="):
            return _error(403, "AccessDenied", "missing SigV4 authorization")
        if "SignedHeaders=" not in auth or "Signature=" not in auth:
            return _error(403, "AccessDenied", "malformed authorization")
        signed = auth.split("SignedHeaders=", 1)[1].split(",", 1)[0].split(";")
        if "host" not in signed or "x-amz-date" not in signed:
            return _error(403, "AccessDenied", "host and x-amz-date must be signed")
        payload_hash = request.headers.get("x-amz-content-sha256")
        if payload_hash is None:
            return _error(400, "InvalidRequest", "missing x-amz-content-sha256")
        if payload_hash != "UNSIGNED-PAYLOAD" and payload_hash != hashlib.sha256(request.body).hexdigest():
            return _error(400, "XAmzContentSHA256Mismatch")
        return None

    def _initiate(self, request: RecordedRequest) -> httpx.Response:
        upload_id = uuid.uuid4().hex
        metadata = {
            k[len("x-amz-meta-"):]: v
            for k, v in request.headers.items()
            if k.startswith("x-amz-meta-")
        }
        with self.lock:
            self.uploads[upload_id] = FakeUpload(
                request.bucket, request.key, request.headers.get("content-type"), metadata
            )
        body = (
            f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<InitiateMultipartUploadResult xmlns="{S3_NS}">'
            f"<Bucket>{request.bucket}</Bucket><Key>{request.key}</Key>"
            f"<UploadId>{upload_id}</UploadId></InitiateMultipartUploadResult>"
        )
        return httpx.Response(200, content=body.encode())

    def _upload_part(self, request: RecordedRequest) -> httpx.Response:
        upload_id = request.params["uploadId"]
        md5 = hashlib.md5(request.body)
        expected_md5 = request.headers.get("content-md5")
        if expected_md5 is not None:
            if base64.b64encode(md5.digest()).decode() != expected_md5:
                return _error(400, "BadDigest")
        with self.lock:
            upload = self.uploads.get(upload_id)
            if upload is None:
                return _error(404, "NoSuchUpload")
            etag = md5.hexdigest()
            upload.parts[request.part_number] = (etag, request.body)
        return httpx.Response(200, headers={"etag": f'"{etag}"'})

    def _complete(self, request: RecordedRequest) -> httpx.Response:
        upload_id = request.params["uploadId"]
        root = ET.fromstring(request.body)
        listed = [
            (int(p.findtext(f"{{{S3_NS}}}PartNumber")), p.findtext(f"{{{S3_NS}}}ETag").strip('"'))
            for p in root.findall(f"{{{S3_NS}}}Part")
        ]
        with self.lock:
            self.complete_bodies.append(request.body)
            upload = self.uploads.get(upload_id)
            if upload is None:
                return _error(404, "NoSuchUpload")
            numbers = [n for n, _ in listed]
            if numbers != sorted(numbers):
                return _error(400, "InvalidPartOrder")
            for number, etag in listed:
                stored = upload.parts.get(number)
                if stored is None or stored[0] != etag:
                    return _error(400, "InvalidPart")
            data = b"".join(upload.parts[n][1] for n in numbers)
            digest = hashlib.md5(b"".join(bytes.fromhex(e) for _, e in listed)).hexdigest()
            etag = f"{digest}-{len(listed)}"
            self.objects[(upload.bucket, upload.key)] = FakeObject(data, etag)
            del self.uploads[upload_id]
        body = (
            f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<CompleteMultipartUploadResult xmlns="{S3_NS}">'
            f"<Location>http://s3.test/{request.bucket}/{request.key}</Location>"
            f"<Bucket>{request.bucket}</Bucket><Key>{request.key}</Key>"
            f"<ETag>&quot;{etag}&quot;</ETag></CompleteMultipartUploadResult>"
        )
        return httpx.Response(200, content=body.encode())

    def _abort(self, request: RecordedRequest) -> httpx.Response:
        with self.lock:
            if self.uploads.pop(request.params["uploadId"], None) is None:
                return _error(404, "NoSuchUpload")
        return httpx.Response(204)

    def _head(self, request: RecordedRequest) -> httpx.Response:
        obj = self.objects.get((request.bucket, request.key))
        if obj is None:
            return httpx.Response(404)
        headers = {"content-length": str(len(obj.data)), "etag": f'"{obj.etag}"'}
        if obj.checksum_sha256:
            headers["x-amz-checksum-sha256"] = obj.checksum_sha256
        return httpx.Response(200, headers=headers)

    def _get(self, request: RecordedRequest) -> httpx.Response:
        obj = self.objects.get((request.bucket, request.key))
        if obj is None:
            return _error(404, "NoSuchKey")
        header = request.headers.get("range")
        if header is None or self.ignore_range:
            return httpx.Response(200, content=obj.data)
        start, end = (int(v) for v in header.split("=", 1)[1].split("-", 1))
        chunk = obj.data[start : end + 1]
        if self.corrupt_ranges and chunk:
            chunk = bytes([chunk[0] ^ 0xFF]) + chunk[1:]
        return httpx.Response(
            206,
            content=chunk,
            headers={"content-range": f"bytes {start}-{end}/{len(obj.data)}"},
        )


def _operation(request: RecordedRequest) -> str:
    params = request.params
    if request.method == "POST" and "uploads" in params:
        return "InitiateMultipartUpload"
    if request.method == "PUT" and "partNumber" in params:
        return "UploadPart"
    if request.method == "POST" and "uploadId" in params:
        return "CompleteMultipartUpload"
    if request.method == "DELETE" and "uploadId" in params:
        return "AbortMultipartUpload"
    if request.method == "HEAD":
        return "HeadObject"
    if request.method == "GET":
        return "GetObject"
    return "Unknown"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_container():
    """Reset the DI container before each test."""
    Container.reset()
    yield
    Container.reset()


@pytest.fixture
def fake_s3() -> FakeS3:
    """Provide an empty fake S3 endpoint."""
    return FakeS3()


@pytest.fixture
def registry() -> CollectorRegistry:
    """Provide an isolated metrics registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> TransferMetrics:
    """Provide metrics bound to an isolated registry."""
    return TransferMetrics(registry)


@pytest.fixture
def credentials() -> Credentials:
    """Provide test signing credentials."""
    return Credentials(access_key="AKIDTEST", secret_key="test-secret-key", region="us-east-1")


@pytest.fixture
def test_config() -> Config:
    """Provide a configuration pointing at the fake store."""
    return Config(
        connection=ConnectionConfig(
            endpoint="s3.test",
            access_key="AKIDTEST",
            secret_key=SecretStr("test-secret-key"),
            use_ssl=False,
        ),
        transfer=TransferConfig(
            part_size="5MB",
            download_part_size="1MB",
            max_concurrency=2,
            progress_interval_seconds=0.01,
            retry_base_delay_seconds=0.0,
            io_chunk_size="256KB",
            part_buffer_limit="512KB",
        ),
    )


@pytest.fixture
def service(test_config: Config, fake_s3: FakeS3, metrics: TransferMetrics):
    """Provide a transfer service wired to the fake store with no retry sleeps."""
    svc = TransferService.from_config(
        test_config,
        metrics=metrics,
        transport=fake_s3.transport,
        clock=lambda: FIXED_TIME,
        sleep=lambda _: None,
    )
    yield svc
    svc.close()


@pytest.fixture
def slow_retry_service(test_config: Config, fake_s3: FakeS3, metrics: TransferMetrics):
    """Provide a service whose retry delays really wait, at least 15 seconds each."""
    transfer = test_config.transfer.model_copy(
        update={"retry_base_delay_seconds": 30.0, "retry_max_delay_seconds": 60.0}
    )
    svc = TransferService.from_config(
        test_config.model_copy(update={"transfer": transfer}),
        metrics=metrics,
        transport=fake_s3.transport,
        clock=lambda: FIXED_TIME,
    )
    yield svc
    svc.close()


@pytest.fixture
def container(test_config: Config) -> Container:
    """Provide a configured container for testing."""
    with patch("object_transfer.infrastructure.container.get_config", return_value=test_config), \
            patch("object_transfer.infrastructure.container.get_metrics",
                  return_value=TransferMetrics(CollectorRegistry())), \
            patch("object_transfer.infrastructure.container.setup_tracing"):
        return Container.create()


def make_payload(size: int, seed: int = 7) -> bytes:
    """Deterministic test content that differs between parts."""
    return random.Random(seed).randbytes(size)


@pytest.fixture
def payload():
    """Provide the deterministic content generator."""
    return make_payload


# Pytest markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "chaos: mark test as chaos test")
    config.addinivalue_line("markers", "property: mark test as property-based test")
