"""Relayer funding status.

Operators top up relayers by hand, so this reports how much each relayer
holds, the minimum the orchestrator enforces and roughly how many more
transfers the balance covers.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from relaypay.chains import Network
from relaypay.errors import OracleUnavailable, RpcError
from relaypay.gasless.base import TransferStrategy
from relaypay.oracle import BalanceOracle
from relaypay.relayer import RelayerRegistry

logger = logging.getLogger(__name__)


@dataclass
class RelayerStatus:
    network: Network
    configured: bool
    native_symbol: str
    minimum_balance: Decimal
    address: Optional[str] = None
    balance: Optional[Decimal] = None
    estimated_transfers: Optional[int] = None
    status: str = "not_configured"
    error: Optional[str] = None

    @property
    def needs_funding(self) -> bool:
        return self.configured and self.status != "healthy"

    def to_dict(self) -> dict:
        return {
            "network": self.network.value,
            "configured": self.configured,
            "address": self.address,
            "balance": str(self.balance) if self.balance is not None else None,
            "minimum_balance": str(self.minimum_balance),
            "native_symbol": self.native_symbol,
            "status": self.status,
            "needs_funding": self.needs_funding,
            "estimated_transfers": self.estimated_transfers,
            "error": self.error,
        }


async def get_relayer_status(
    network: Network,
    strategy: TransferStrategy,
    relayers: RelayerRegistry,
    oracle: BalanceOracle,
) -> RelayerStatus:
    """Funding status of the relayer on one network."""
    status = RelayerStatus(
        network=network,
        configured=relayers.is_configured(network),
        native_symbol=strategy.chain.native_symbol,
        minimum_balance=strategy.minimum_relayer_balance,
    )
    if not status.configured:
        return status

    relayer = relayers.get(network)
    status.address = relayer.address

    try:
        status.balance = await oracle.get_native_balance(relayer.address, network)
    except OracleUnavailable as e:
        status.status = "unknown"
        status.error = e.message
        return status

    status.status = "healthy" if status.balance >= status.minimum_balance else "low"
    if status.status == "low":
        logger.warning(
            f"{network.value} relayer {relayer.address} is low: "
            f"{status.balance} {status.native_symbol} < {status.minimum_balance}"
        )

    try:
        cost = await strategy.estimate_transfer_cost()
    except RpcError as e:
        logger.warning(f"Could not estimate {network.value} transfer cost: {e}")
        return status

    if cost > 0:
        status.estimated_transfers = int(status.balance / cost)
    return status


async def get_all_relayer_status(
    strategies: dict[Network, TransferStrategy],
    relayers: RelayerRegistry,
    oracle: BalanceOracle,
) -> list[RelayerStatus]:
    return [
        await get_relayer_status(network, strategies[network], relayers, oracle)
        for network in Network
    ]
