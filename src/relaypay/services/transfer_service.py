"""Transfer request boundary.

Accepts a transfer request, serialises it per (user, network), creates the
ledger record and runs the orchestrator under a wall-clock bound. A request
that exceeds the bound is reported as TransferTimedOut and its record stays
pending, flagged for reconciliation; it is never marked failed here.
"""

import asyncio
import logging
from typing import Optional

from relaypay.chains import AmountLike, Network, validate_amount
from relaypay.config import Settings, get_settings
from relaypay.errors import TransferNotFound, TransferTimedOut
from relaypay.gasless.base import TransferResult
from relaypay.gasless.orchestrator import GaslessTransferOrchestrator
from relaypay.ledger.models import Transfer, TransferStatus
from relaypay.ledger.repository import TransferLedger
from relaypay.utils.locks import transfer_lock

logger = logging.getLogger(__name__)


class TransferService:
    """Entry point for gasless transfer requests."""

    def __init__(
        self,
        orchestrator: GaslessTransferOrchestrator,
        ledger: TransferLedger,
        settings: Optional[Settings] = None,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.settings = settings or get_settings()

    async def request_transfer(
        self,
        user_id: int,
        network: Network,
        destination_address: str,
        amount: AmountLike,
        timeout: Optional[float] = None,
    ) -> TransferResult:
        """Execute a gasless transfer for a user.

        Args:
            user_id: Internal user ID
            network: Network to transfer on ("evm"/"base" or "solana")
            destination_address: Recipient address
            amount: USDC amount
            timeout: Wall-clock bound in seconds (defaults to settings)

        Raises:
            UnsupportedNetwork, InvalidAmount: Before any record is created
            TransferInProgress: Another transfer of the user on this network is running
            TransferTimedOut: Outcome unknown; the record stays pending
            TransferError, WalletError, OracleUnavailable: Record marked failed
        """
        network = Network.parse(network)
        value = validate_amount(amount)
        timeout = timeout if timeout is not None else self.settings.transfer_timeout

        async with transfer_lock(
            user_id,
            network.value,
            timeout=self.settings.transfer_lock_timeout,
            operation="gasless_transfer",
        ):
            record = await self.ledger.create_transfer(
                user_id, network.value, value, destination_address
            )
            logger.info(
                f"Transfer {record.id} accepted: {value} USDC on {network.value} "
                f"for user {user_id} -> {destination_address}"
            )

            try:
                return await asyncio.wait_for(
                    self.orchestrator.execute_gasless_transfer(
                        user_id=user_id,
                        network=network,
                        destination_address=destination_address,
                        amount=value,
                        transfer_id=record.id,
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise await self._timed_out(record.id, timeout)

    async def _timed_out(self, transfer_id: int, timeout: float) -> TransferTimedOut:
        record = await self.ledger.update_status(
            transfer_id,
            TransferStatus.PENDING,
            error_code=TransferTimedOut.code,
            needs_reconciliation=True,
        )
        logger.warning(
            f"Transfer {transfer_id} exceeded {timeout}s; left {record.status} "
            f"(tx {record.tx_hash or 'not submitted'}) for reconciliation"
        )
        return TransferTimedOut(
            f"Transfer {transfer_id} did not complete within {timeout}s; "
            f"its outcome will be reconciled",
            tx_hash=record.tx_hash,
            permit_tx_hash=record.permit_tx_hash,
        )

    async def get_transfer(self, transfer_id: int) -> Transfer:
        record = await self.ledger.get_transfer(transfer_id)
        if record is None:
            raise TransferNotFound(f"Transfer {transfer_id} not found")
        return record


# Cached instance
_service: Optional[TransferService] = None


def get_transfer_service() -> TransferService:
    """Get the shared transfer service."""
    global _service
    if _service is None:
        from relaypay.gasless.factory import get_orchestrator

        _service = TransferService(get_orchestrator(), TransferLedger())
    return _service


def reset_transfer_service() -> None:
    global _service
    _service = None
