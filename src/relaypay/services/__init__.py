"""Services built on the orchestrator: transfer requests, reconciliation, relayer status."""

from relaypay.services.reconciler import ReconcileReport, TransferReconciler
from relaypay.services.relayer_monitor import (
    RelayerStatus,
    get_all_relayer_status,
    get_relayer_status,
)
from relaypay.services.transfer_service import (
    TransferService,
    get_transfer_service,
    reset_transfer_service,
)

__all__ = [
    "ReconcileReport",
    "TransferReconciler",
    "RelayerStatus",
    "get_all_relayer_status",
    "get_relayer_status",
    "TransferService",
    "get_transfer_service",
    "reset_transfer_service",
]
