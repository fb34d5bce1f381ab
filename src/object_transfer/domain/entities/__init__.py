"""Domain entities."""

from object_transfer.domain.entities.transfer_plan import PartSpec, TransferPlan
from object_transfer.domain.entities.transfer_session import (
    AttemptRecord,
    InvalidStateTransition,
    PartResult,
    PartStatus,
    TransferDirection,
    TransferSession,
    TransferState,
)

__all__ = [
    "PartSpec",
    "TransferPlan",
    "AttemptRecord",
    "InvalidStateTransition",
    "PartResult",
    "PartStatus",
    "TransferDirection",
    "TransferSession",
    "TransferState",
]
