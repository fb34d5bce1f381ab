"""Domain value objects."""

from object_transfer.domain.value_objects.cancellation import CancellationToken
from object_transfer.domain.value_objects.credentials import Credentials
from object_transfer.domain.value_objects.identifiers import ObjectReference
from object_transfer.domain.value_objects.progress import (
    PartProgress,
    ProgressEvent,
    ProgressSnapshot,
)
from object_transfer.domain.value_objects.sizes import (
    format_bytes,
    format_rate,
    parse_size,
)

__all__ = [
    "CancellationToken",
    "Credentials",
    "ObjectReference",
    "PartProgress",
    "ProgressEvent",
    "ProgressSnapshot",
    "format_bytes",
    "format_rate",
    "parse_size",
]
