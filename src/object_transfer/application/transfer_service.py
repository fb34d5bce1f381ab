"""Transfer service: the caller-facing implementation of the inbound port."""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from datetime import datetime

import httpx

from object_transfer.adapters.outbound.byte_streams import FileByteSink, FileByteSource
from object_transfer.adapters.outbound.http_object_store import HttpObjectStoreClient
from object_transfer.application.transfer_coordinator import (
    CoordinatorSettings,
    TransferCoordinator,
)
from object_transfer.domain.exceptions import InvalidArgumentError
from object_transfer.domain.services.chunk_planner import ChunkPlanner
from object_transfer.domain.services.integrity import IntegrityVerifier
from object_transfer.domain.services.signer import (
    HttpRequest,
    RequestSigner,
    SignedRequest,
    utc_now,
)
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.infrastructure.config import Config
from object_transfer.infrastructure.logging import get_logger
from object_transfer.infrastructure.metrics import TransferMetrics
from object_transfer.ports.inbound import TransferOptions, TransferResult
from object_transfer.ports.outbound.byte_streams import ByteSink, ByteSource


PRESIGN_METHODS = frozenset({"GET", "PUT", "DELETE", "HEAD"})


class TransferService:
    """Uploads, downloads and signing against one store endpoint.

    Construct with explicit collaborators, or from configuration with
    :meth:`from_config`. Nothing here reads global state.
    """

    def __init__(
        self,
        client: HttpObjectStoreClient,
        signer: RequestSigner,
        coordinator: TransferCoordinator,
        *,
        default_presign_expiry: int = 3600,
        metrics: TransferMetrics | None = None,
    ) -> None:
        self.client = client
        self.signer = signer
        self.coordinator = coordinator
        self.default_presign_expiry = default_presign_expiry
        self.metrics = metrics
        self._logger = get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        metrics: TransferMetrics | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> TransferService:
        """Wire the service from configuration.

        Raises:
            InvalidArgumentError: If the configured credentials are empty.
        """
        transfer = config.transfer
        signer = RequestSigner(
            config.credentials(),
            clock=clock,
            max_presign_expiry=config.signing.max_presign_expiry_seconds,
        )
        client = HttpObjectStoreClient(
            config.connection.endpoint,
            signer,
            use_ssl=config.connection.use_ssl,
            verify_tls=config.connection.verify_tls,
            timeout=config.connection.timeout_seconds,
            max_connections=max(config.connection.max_connections, transfer.max_concurrency),
            unsigned_payload=transfer.unsigned_payload,
            io_chunk_size=transfer.io_chunk_size_bytes,
            transport=transport,
        )
        upload_planner = ChunkPlanner(
            min_part_size=transfer.min_part_size_bytes,
            max_part_size=transfer.max_part_size_bytes,
            max_part_count=transfer.max_part_count,
            default_part_size=transfer.part_size_bytes,
        )
        download_planner = ChunkPlanner(
            min_part_size=transfer.download_min_part_size_bytes,
            max_part_size=transfer.max_part_size_bytes,
            max_part_count=transfer.max_part_count,
            default_part_size=transfer.download_part_size_bytes,
        )
        coordinator = TransferCoordinator(
            client,
            upload_planner,
            download_planner,
            CoordinatorSettings.from_config(transfer),
            integrity=IntegrityVerifier(chunk_size=max(transfer.io_chunk_size_bytes, 1024 * 1024)),
            metrics=metrics,
            sleep=sleep,
            clock=monotonic,
        )
        return cls(
            client,
            signer,
            coordinator,
            default_presign_expiry=config.signing.default_presign_expiry_seconds,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def upload_multipart(
        self,
        ref: ObjectReference,
        source: ByteSource,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        return self.coordinator.upload(ref, source, options)

    def download_multipart(
        self,
        ref: ObjectReference,
        sink: ByteSink,
        options: TransferOptions | None = None,
    ) -> TransferResult:
        return self.coordinator.download(ref, sink, options)

    def upload_file(
        self,
        ref: ObjectReference,
        path: str | os.PathLike[str],
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Upload a local file."""
        return self.upload_multipart(ref, FileByteSource(path), options)

    def download_file(
        self,
        ref: ObjectReference,
        path: str | os.PathLike[str],
        options: TransferOptions | None = None,
    ) -> TransferResult:
        """Download into a local file. A partial file is kept on abort."""
        with FileByteSink(path) as sink:
            return self.download_multipart(ref, sink, options)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def presign(
        self,
        ref: ObjectReference,
        method: str = "GET",
        expires_in: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """Build a presigned URL for ``ref``.

        Raises:
            InvalidArgumentError: On an unsupported method or an expiry
                outside ``[1, max]``.
        """
        verb = method.upper()
        if verb not in PRESIGN_METHODS:
            raise InvalidArgumentError(f"Cannot presign method {method!r}")
        url = self.signer.presign(
            verb,
            self.client.host,
            ref.path,
            self.default_presign_expiry if expires_in is None else expires_in,
            scheme=self.client.scheme,
            headers=headers,
        )
        if self.metrics is not None:
            self.metrics.presigned_urls_total.labels(method=verb).inc()
        return url

    def sign(self, request: HttpRequest) -> SignedRequest:
        """Sign a raw request with the configured credentials."""
        signed = self.signer.sign(request)
        if self.metrics is not None:
            self.metrics.requests_signed_total.inc()
        return signed

    def close(self) -> None:
        self.client.close()
