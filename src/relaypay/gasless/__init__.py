"""Sponsor-paid (gasless) USDC transfers."""

from relaypay.gasless.base import (
    ChainStatus,
    PreparedTransfer,
    SubmittedTransfer,
    TransferContext,
    TransferResult,
    TransferStrategy,
)
from relaypay.gasless.orchestrator import GaslessTransferOrchestrator

__all__ = [
    "ChainStatus",
    "PreparedTransfer",
    "SubmittedTransfer",
    "TransferContext",
    "TransferResult",
    "TransferStrategy",
    "GaslessTransferOrchestrator",
]
