"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the object store and for the local
byte sources and sinks a transfer reads from or writes to.
"""

from object_transfer.ports.outbound.byte_streams import ByteSink, ByteSource
from object_transfer.ports.outbound.object_store_client import (
    CompletedPart,
    CompleteResult,
    ErrorResult,
    InitiateResult,
    ObjectMetadata,
    ObjectStoreClient,
    ProgressCallback,
)

__all__ = [
    "ByteSink",
    "ByteSource",
    "CompletedPart",
    "CompleteResult",
    "ErrorResult",
    "InitiateResult",
    "ObjectMetadata",
    "ObjectStoreClient",
    "ProgressCallback",
]
