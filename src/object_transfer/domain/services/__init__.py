"""Domain services."""

from object_transfer.domain.services.chunk_planner import ChunkPlanner
from object_transfer.domain.services.integrity import IntegrityReport, IntegrityVerifier
from object_transfer.domain.services.progress_aggregator import ProgressAggregator
from object_transfer.domain.services.retry_policy import RetryPolicy
from object_transfer.domain.services.signer import (
    HttpRequest,
    PresignedUrl,
    RequestSigner,
    SignedRequest,
    presign_url,
    sign_request,
)

__all__ = [
    "ChunkPlanner",
    "IntegrityReport",
    "IntegrityVerifier",
    "ProgressAggregator",
    "RetryPolicy",
    "HttpRequest",
    "PresignedUrl",
    "RequestSigner",
    "SignedRequest",
    "presign_url",
    "sign_request",
]
