"""httpx-backed S3 client.

Implements the ``ObjectStoreClient`` port with path-style requests
(``{endpoint}/{bucket}/{key}``) signed by a ``RequestSigner``. This module
is the only place HTTP responses are mapped onto the error taxonomy:

- 429, 5xx and throttling codes raise ``TransientTransportError``
- timeouts raise ``PartTimeoutError``
- resets and other transport failures raise ``TransientTransportError``
- any other 4xx raises ``NonRetryableRequestError``
- unexpected response bodies raise ``MalformedResponseError``
"""

from __future__ import annotations

import base64
import hashlib
import re
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import httpx

from object_transfer.adapters.outbound.s3_xml import (
    build_complete_body,
    parse_complete,
    parse_error,
    parse_initiate,
)
from object_transfer.domain.exceptions import (
    MalformedResponseError,
    NonRetryableRequestError,
    PartTimeoutError,
    TransferError,
    TransientTransportError,
)
from object_transfer.domain.services.integrity import normalize_etag
from object_transfer.domain.services.signer import (
    EMPTY_SHA256,
    UNSIGNED_PAYLOAD,
    HttpRequest,
    RequestSigner,
)
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.infrastructure.logging import get_logger
from object_transfer.ports.outbound.object_store_client import (
    CompletedPart,
    CompleteResult,
    ErrorResult,
    InitiateResult,
    ObjectMetadata,
    ProgressCallback,
)


TRANSIENT_ERROR_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequests",
        "RequestLimitExceeded",
        "RequestTimeout",
        "InternalError",
        "ServiceUnavailable",
    }
)

_CONTENT_RANGE_RE = re.compile(r"^bytes (\d+)-(\d+)/(\d+|\*)$")
_META_PREFIX = "x-amz-meta-"


def is_transient(status_code: int | None, code: str | None) -> bool:
    """Whether a store error is worth retrying."""
    if code in TRANSIENT_ERROR_CODES:
        return True
    return status_code is not None and (status_code == 429 or status_code >= 500)


def error_to_exception(error: ErrorResult, operation: str) -> TransferError:
    """Map a store error document onto the error taxonomy."""
    message = f"{operation} failed: {error.code}"
    if error.message:
        message += f" ({error.message})"
    if is_transient(error.status_code, error.code):
        return TransientTransportError(message, status_code=error.status_code, code=error.code)
    return NonRetryableRequestError(message, status_code=error.status_code, code=error.code)


def content_md5(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data, usedforsecurity=False).digest()).decode("ascii")


class HttpObjectStoreClient:
    """S3 multipart client over a shared ``httpx.Client``.

    The underlying connection pool is thread-safe, so one instance serves
    every worker of every transfer.
    """

    def __init__(
        self,
        endpoint: str,
        signer: RequestSigner,
        *,
        use_ssl: bool = True,
        verify_tls: bool = True,
        timeout: float = 30.0,
        max_connections: int = 10,
        unsigned_payload: bool = False,
        io_chunk_size: int = 64 * 1024,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: ``host[:port]``; a scheme prefix overrides ``use_ssl``.
            signer: Signs every request.
            use_ssl: Use https.
            verify_tls: Verify server certificates.
            timeout: Default request timeout in seconds.
            max_connections: Connection pool size.
            unsigned_payload: Send ``UNSIGNED-PAYLOAD`` instead of hashing parts.
            io_chunk_size: Chunk size for streamed bodies.
            transport: Custom transport, e.g. ``httpx.MockTransport`` in tests.
        """
        scheme = "https" if use_ssl else "http"
        if "://" in endpoint:
            scheme, endpoint = endpoint.split("://", 1)
        self.host = endpoint.rstrip("/")
        self.scheme = scheme
        self.base_url = f"{scheme}://{self.host}"
        self.signer = signer
        self.unsigned_payload = unsigned_payload
        self.io_chunk_size = io_chunk_size
        self._logger = get_logger(__name__, endpoint=self.base_url)
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            verify=verify_tls,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _build(
        self,
        method: str,
        ref: ObjectReference,
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        payload_hash: str = EMPTY_SHA256,
        content: Any = None,
        timeout: float | None = None,
    ) -> httpx.Request:
        request = HttpRequest(
            method=method,
            path=ref.path,
            query=dict(query or {}),
            headers={"host": self.host, **(headers or {})},
            payload_hash=payload_hash,
        )
        signed = self.signer.sign(request)
        extensions = {}
        if timeout is not None:
            extensions["timeout"] = httpx.Timeout(timeout).as_dict()
        return self._client.build_request(
            signed.method,
            self.base_url + signed.target,
            headers=signed.headers,
            content=content,
            extensions=extensions,
        )

    def _send(self, request: httpx.Request, operation: str, stream: bool = False) -> httpx.Response:
        try:
            response = self._client.send(request, stream=stream)
        except httpx.TimeoutException as exc:
            raise PartTimeoutError(f"{operation} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientTransportError(f"{operation} transport error: {exc}") from exc

        if response.status_code >= 300:
            body = response.read()
            response.close()
            error = parse_error(body, response.status_code, response.reason_phrase)
            self._logger.warning(
                "request_failed",
                operation=operation,
                method=request.method,
                status_code=response.status_code,
                code=error.code,
                request_id=error.request_id,
            )
            raise error_to_exception(error, operation)
        return response

    # ------------------------------------------------------------------
    # ObjectStoreClient
    # ------------------------------------------------------------------

    def initiate_multipart_upload(
        self,
        ref: ObjectReference,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> InitiateResult:
        headers = {f"{_META_PREFIX}{k.lower()}": v for k, v in (metadata or {}).items()}
        if content_type:
            headers["content-type"] = content_type
        request = self._build("POST", ref, {"uploads": ""}, headers)
        response = self._send(request, "InitiateMultipartUpload")
        return parse_initiate(response.content, ref.bucket, ref.key)

    def upload_part(
        self,
        ref: ObjectReference,
        upload_id: str,
        part_number: int,
        data: bytes,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> str:
        payload_hash = UNSIGNED_PAYLOAD if self.unsigned_payload else hashlib.sha256(data).hexdigest()
        headers = {
            "content-length": str(len(data)),
            "content-md5": content_md5(data),
        }
        request = self._build(
            "PUT",
            ref,
            {"partNumber": str(part_number), "uploadId": upload_id},
            headers,
            payload_hash=payload_hash,
            content=self._body_chunks(data, on_progress),
            timeout=timeout,
        )
        response = self._send(request, "UploadPart")
        etag = response.headers.get("etag")
        if not etag:
            raise MalformedResponseError(f"UploadPart {part_number} response has no ETag")
        return normalize_etag(etag)

    def _body_chunks(self, data: bytes, on_progress: ProgressCallback | None) -> Iterator[bytes]:
        view = memoryview(data)
        for start in range(0, len(data), self.io_chunk_size):
            chunk = view[start : start + self.io_chunk_size]
            yield chunk.tobytes()
            if on_progress is not None:
                on_progress(len(chunk))

    def complete_multipart_upload(
        self,
        ref: ObjectReference,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> CompleteResult:
        body = build_complete_body(parts)
        request = self._build(
            "POST",
            ref,
            {"uploadId": upload_id},
            {"content-type": "application/xml", "content-length": str(len(body))},
            payload_hash=hashlib.sha256(body).hexdigest(),
            content=body,
        )
        response = self._send(request, "CompleteMultipartUpload")
        result = parse_complete(response.content, ref.bucket, ref.key)
        if isinstance(result, ErrorResult):
            self._logger.warning(
                "request_failed",
                operation="CompleteMultipartUpload",
                method="POST",
                status_code=response.status_code,
                code=result.code,
                request_id=result.request_id,
            )
            raise error_to_exception(result, "CompleteMultipartUpload")
        return result

    def abort_multipart_upload(self, ref: ObjectReference, upload_id: str) -> None:
        request = self._build("DELETE", ref, {"uploadId": upload_id})
        self._send(request, "AbortMultipartUpload").close()

    def head_object(self, ref: ObjectReference) -> ObjectMetadata:
        request = self._build("HEAD", ref)
        response = self._send(request, "HeadObject")
        length = response.headers.get("content-length")
        try:
            size = int(length) if length is not None else -1
        except ValueError:
            size = -1
        if size < 0:
            raise MalformedResponseError(f"HeadObject response has no usable Content-Length: {length!r}")
        etag = response.headers.get("etag")
        return ObjectMetadata(
            size=size,
            etag=normalize_etag(etag) if etag else None,
            content_type=response.headers.get("content-type"),
            last_modified=response.headers.get("last-modified"),
            checksum_sha256=response.headers.get("x-amz-checksum-sha256"),
            metadata={
                name[len(_META_PREFIX):]: value
                for name, value in response.headers.items()
                if name.lower().startswith(_META_PREFIX)
            },
        )

    @contextmanager
    def get_object_range(
        self,
        ref: ObjectReference,
        offset: int,
        length: int,
        timeout: float | None = None,
    ) -> Iterator[Iterator[bytes]]:
        end = offset + length - 1
        request = self._build("GET", ref, headers={"range": f"bytes={offset}-{end}"}, timeout=timeout)
        response = self._send(request, "GetObject", stream=True)
        try:
            self._check_range(response, offset, end, length)
            yield self._stream(response)
        finally:
            response.close()

    def _check_range(self, response: httpx.Response, start: int, end: int, length: int) -> None:
        if response.status_code == 206:
            header = response.headers.get("content-range", "")
            match = _CONTENT_RANGE_RE.match(header)
            if not match or int(match.group(1)) != start or int(match.group(2)) != end:
                raise MalformedResponseError(
                    f"Store answered bytes={start}-{end} with Content-Range {header!r}"
                )
            return
        # A 200 is only acceptable when the requested range is the whole object.
        content_length = response.headers.get("content-length")
        if start != 0 or not (content_length or "").isdigit() or int(content_length) != length:
            raise MalformedResponseError(
                f"Store ignored Range bytes={start}-{end} (status {response.status_code})"
            )

    def _stream(self, response: httpx.Response) -> Iterator[bytes]:
        try:
            yield from response.iter_bytes(self.io_chunk_size)
        except httpx.TimeoutException as exc:
            raise PartTimeoutError(f"GetObject read timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientTransportError(f"GetObject read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpObjectStoreClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
