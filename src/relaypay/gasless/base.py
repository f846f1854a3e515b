"""Base interfaces for gasless transfer strategies.

Gasless transfer flow:
1. Orchestrator checks relayer, amount, destination and balances
2. Strategy builds and signs the transaction(s) with user + relayer keys
3. Strategy submits; the relayer pays all network fees
4. Tx hash is recorded on the ledger as pending
5. Strategy waits for confirmation (bounded by a timeout)
6. Ledger record becomes confirmed or failed
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from relaypay.chains import ChainConfig, Network
from relaypay.errors import RpcError, TransferTimedOut
from relaypay.relayer import Relayer
from relaypay.wallet.store import DecryptedKeys

logger = logging.getLogger(__name__)


class ChainStatus(str, Enum):
    """On-chain state of a submitted transaction."""

    PENDING = "pending"        # Known to the node, not yet confirmed
    CONFIRMED = "confirmed"
    FAILED = "failed"
    NOT_FOUND = "not_found"    # Unknown to the node (dropped or never sent)


@dataclass
class TransferContext:
    """Everything a strategy needs for one transfer."""
    transfer_id: int
    user_id: int
    network: Network
    amount: Decimal
    base_units: int
    destination: str
    keys: DecryptedKeys
    relayer: Relayer
    # Persists hashes of transactions as soon as they reach the network
    on_broadcast: Optional[Callable[..., Awaitable[None]]] = None

    async def record_broadcast(self, **hashes) -> None:
        if self.on_broadcast is not None:
            await self.on_broadcast(**hashes)


@dataclass
class PreparedTransfer:
    """Signed, not yet submitted transfer."""
    source_address: str
    fee_payer: str
    estimated_fee: Optional[Decimal] = None        # In native units, logging only
    destination_account_created: bool = False
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class SubmittedTransfer:
    """Transfer accepted by the network, awaiting confirmation."""
    tx_hash: str
    source_address: str
    fee_payer: str
    permit_tx_hash: Optional[str] = None
    estimated_fee: Optional[Decimal] = None
    destination_account_created: bool = False


@dataclass
class TransferResult:
    """Uniform result of a confirmed gasless transfer."""
    success: bool
    tx_hash: str
    network: Network
    amount: Decimal
    fee_payer: str
    explorer_url: str
    transfer_id: Optional[int] = None
    source_address: Optional[str] = None
    destination_address: Optional[str] = None
    permit_tx_hash: Optional[str] = None
    destination_account_created: bool = False
    estimated_fee: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transfer_id": self.transfer_id,
            "tx_hash": self.tx_hash,
            "permit_tx_hash": self.permit_tx_hash,
            "network": self.network.value,
            "amount": str(self.amount),
            "fee_payer": self.fee_payer,
            "source_address": self.source_address,
            "destination_address": self.destination_address,
            "destination_account_created": self.destination_account_created,
            "estimated_fee": str(self.estimated_fee) if self.estimated_fee is not None else None,
            "explorer_url": self.explorer_url,
        }


class TransferStrategy(ABC):
    """Abstract base class for network-specific gasless transfers."""

    network: Network

    def __init__(
        self,
        chain: ChainConfig,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        """Initialize strategy.

        Args:
            chain: Network configuration (RPC, token, relayer minimum)
            confirmation_timeout: Seconds to wait for each confirmation
            poll_interval: Seconds between status polls
        """
        self.chain = chain
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @property
    def minimum_relayer_balance(self) -> Decimal:
        """Native balance the relayer must hold to accept a transfer."""
        return self.chain.min_relayer_balance

    @abstractmethod
    def validate_destination(self, address: str) -> str:
        """Check a destination address.

        Returns:
            Normalized address

        Raises:
            InvalidDestination: If the address is not valid on this network
        """
        pass

    @abstractmethod
    def source_address(self, keys: DecryptedKeys) -> str:
        """Address the user's funds are sent from."""
        pass

    @abstractmethod
    async def build(self, ctx: TransferContext) -> PreparedTransfer:
        """Build and sign everything needed for the transfer.

        Raises:
            SubmissionFailed: If chain data needed for signing is unavailable
        """
        pass

    @abstractmethod
    async def submit(self, ctx: TransferContext, prepared: PreparedTransfer) -> SubmittedTransfer:
        """Broadcast the prepared transfer.

        Raises:
            SubmissionFailed: Nothing was accepted by the network
            OnChainExecutionFailed: A prerequisite transaction reverted
            TransferTimedOut: A prerequisite transaction did not confirm in time
        """
        pass

    @abstractmethod
    async def confirm(self, ctx: TransferContext, submitted: SubmittedTransfer) -> None:
        """Wait until the transfer is confirmed.

        Raises:
            OnChainExecutionFailed: The transaction failed on chain
            TransferTimedOut: No confirmation within the timeout
        """
        pass

    @abstractmethod
    async def check_status(self, tx_hash: str) -> ChainStatus:
        """One-shot status lookup, used by reconciliation."""
        pass

    @abstractmethod
    async def estimate_transfer_cost(self) -> Decimal:
        """Native fee the relayer pays for one transfer at current prices."""
        pass

    async def _wait_for(
        self,
        check_once: Callable[[], Awaitable[Optional[bool]]],
        tx_hash: str,
        label: str,
    ) -> bool:
        """Poll ``check_once`` until it returns a value or the timeout passes.

        ``check_once`` returns None while pending. RPC errors while polling are
        treated as pending.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout

        while True:
            try:
                outcome = await check_once()
            except RpcError as e:
                logger.warning(f"Status poll for {label} {tx_hash} failed: {e}")
                outcome = None

            if outcome is not None:
                return outcome

            if loop.time() >= deadline:
                raise TransferTimedOut(
                    f"{label} {tx_hash} not confirmed after {self.confirmation_timeout}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.poll_interval)
