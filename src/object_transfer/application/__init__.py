"""Application layer: part worker, transfer coordinator and service."""

from object_transfer.application.part_worker import PartTransferWorker
from object_transfer.application.transfer_coordinator import (
    CoordinatorSettings,
    TransferCoordinator,
)
from object_transfer.application.transfer_service import TransferService

__all__ = [
    "PartTransferWorker",
    "CoordinatorSettings",
    "TransferCoordinator",
    "TransferService",
]
