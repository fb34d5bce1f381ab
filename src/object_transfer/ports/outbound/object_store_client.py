"""Object store client port.

This outbound port is the contract for the HTTP calls the engine makes
against an S3-compatible store. Responses are returned as explicit tagged
types; implementations map every failure onto the transfer error taxonomy
so the engine never inspects raw HTTP responses.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Protocol

from object_transfer.domain.value_objects.identifiers import ObjectReference


ProgressCallback = Callable[[int], None]
"""Called with the number of bytes sent since the previous call."""


@dataclass(frozen=True, slots=True)
class InitiateResult:
    """Response to an initiate-multipart-upload call."""

    bucket: str
    key: str
    upload_id: str


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """One entry of a completion request."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class CompleteResult:
    """Response to a complete-multipart-upload call."""

    bucket: str
    key: str
    etag: str
    location: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorResult:
    """Error document returned by the store."""

    code: str
    message: str
    status_code: int | None = None
    resource: str | None = None
    request_id: str | None = None


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """Object attributes from a HEAD request."""

    size: int
    etag: str | None = None
    content_type: str | None = None
    last_modified: str | None = None
    checksum_sha256: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)


class ObjectStoreClient(Protocol):
    """Protocol for the multipart and ranged-read calls against a store.

    Thread Safety:
        Implementations must allow concurrent calls from worker threads.

    Errors:
        Transient failures (timeouts, resets, 5xx, throttling) raise
        ``TransientTransportError``; other 4xx responses raise
        ``NonRetryableRequestError``; unexpected bodies raise
        ``MalformedResponseError``.
    """

    @abstractmethod
    def initiate_multipart_upload(
        self,
        ref: ObjectReference,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> InitiateResult:
        """Start a multipart upload (``POST ?uploads``).

        Args:
            ref: Target object.
            content_type: Content type stored with the object.
            metadata: User metadata, sent as ``x-amz-meta-*`` headers.

        Returns:
            The store-issued upload id.
        """
        ...

    @abstractmethod
    def upload_part(
        self,
        ref: ObjectReference,
        upload_id: str,
        part_number: int,
        data: bytes,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> str:
        """Upload one part (``PUT ?partNumber=N&uploadId=ID``).

        Args:
            ref: Target object.
            upload_id: Upload session id.
            part_number: 1-based part number.
            data: Exact part content.
            on_progress: Receives byte counts as the body is sent.
            timeout: Seconds allowed for the request.

        Returns:
            The part's entity tag without quotes.
        """
        ...

    @abstractmethod
    def complete_multipart_upload(
        self,
        ref: ObjectReference,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> CompleteResult:
        """Assemble the uploaded parts (``POST ?uploadId=ID``).

        Parts are sent in ascending part number order regardless of the
        order given.
        """
        ...

    @abstractmethod
    def abort_multipart_upload(self, ref: ObjectReference, upload_id: str) -> None:
        """Release an upload session and its parts (``DELETE ?uploadId=ID``)."""
        ...

    @abstractmethod
    def head_object(self, ref: ObjectReference) -> ObjectMetadata:
        """Fetch object size and validators."""
        ...

    @abstractmethod
    def get_object_range(
        self,
        ref: ObjectReference,
        offset: int,
        length: int,
        timeout: float | None = None,
    ) -> AbstractContextManager[Iterator[bytes]]:
        """Open a ranged read of ``[offset, offset + length)``.

        The context manager yields an iterator of body chunks and releases
        the connection on exit.

        Raises:
            MalformedResponseError: If the store ignored the range.
        """
        ...
