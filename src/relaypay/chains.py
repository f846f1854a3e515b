"""Supported networks, USDC amounts and explorer links.

Two networks are supported:
- evm: Base mainnet, USDC via EIP-2612 permit + transferFrom
- solana: Solana mainnet, USDC SPL token with a sponsored fee payer
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from relaypay.config import Settings, get_settings
from relaypay.errors import InvalidAmount, UnsupportedNetwork

# USDC uses 6 decimals on both networks
USDC_DECIMALS = 6

LAMPORTS_PER_SOL = 1_000_000_000
WEI_PER_ETH = 10**18

AmountLike = Union[Decimal, int, str, float]


class Network(str, Enum):
    """Network a transfer is executed on."""

    EVM = "evm"
    SOLANA = "solana"

    @classmethod
    def parse(cls, value: Union["Network", str]) -> "Network":
        """Resolve a network name, accepting common aliases."""
        if isinstance(value, Network):
            return value
        network = _ALIASES.get(str(value).strip().lower())
        if network is None:
            raise UnsupportedNetwork(f"Unsupported network: {value}")
        return network


_ALIASES = {
    "evm": Network.EVM,
    "base": Network.EVM,
    "solana": Network.SOLANA,
    "sol": Network.SOLANA,
}


@dataclass
class ChainConfig:
    """Configuration for a network."""

    network: Network
    name: str
    native_symbol: str
    rpc_url: str
    explorer_url: str
    token_address: str
    min_relayer_balance: Decimal
    token_decimals: int = USDC_DECIMALS
    chain_id: Optional[int] = None  # EVM only


def get_chain_config(network: Network, settings: Optional[Settings] = None) -> ChainConfig:
    """Build the configuration of a network from settings."""
    settings = settings or get_settings()
    if network == Network.EVM:
        return ChainConfig(
            network=network,
            name="Base",
            native_symbol="ETH",
            rpc_url=settings.base_rpc_url,
            explorer_url=settings.base_explorer_url,
            token_address=settings.base_usdc_address,
            min_relayer_balance=settings.evm_min_relayer_balance,
            chain_id=settings.base_chain_id,
        )
    if network == Network.SOLANA:
        return ChainConfig(
            network=network,
            name="Solana",
            native_symbol="SOL",
            rpc_url=settings.solana_rpc_url,
            explorer_url=settings.solana_explorer_url,
            token_address=settings.solana_usdc_mint,
            min_relayer_balance=settings.solana_min_relayer_balance,
        )
    raise UnsupportedNetwork(f"Unsupported network: {network}")


def explorer_url(network: Network, tx_hash: str, settings: Optional[Settings] = None) -> str:
    """Explorer link for a transaction."""
    return f"{get_chain_config(network, settings).explorer_url}{tx_hash}"


# ======================
# Amounts
# ======================


def to_decimal(value: AmountLike) -> Decimal:
    """Convert user input to Decimal without float artifacts."""
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmount(f"Invalid amount: {value!r}")


def validate_amount(value: AmountLike, decimals: int = USDC_DECIMALS) -> Decimal:
    """Check that an amount is positive, finite and within token precision.

    Raises:
        InvalidAmount: If any check fails
    """
    amount = to_decimal(value)

    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {value}")

    exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > decimals:
        raise InvalidAmount(f"Amount {value} has more than {decimals} decimal places")

    return amount


def to_base_units(amount: AmountLike, decimals: int = USDC_DECIMALS) -> int:
    """Convert a token amount to integer base units.

    Digits beyond the token precision are truncated, never rounded up, so the
    user is never debited more than requested.
    """
    value = to_decimal(amount)
    quantum = Decimal(1).scaleb(-decimals)
    truncated = value.quantize(quantum, rounding=ROUND_DOWN)
    return int(truncated.scaleb(decimals))


def from_base_units(units: int, decimals: int = USDC_DECIMALS) -> Decimal:
    """Convert integer base units back to a token amount."""
    quantum = Decimal(1).scaleb(-decimals)
    return (Decimal(units).scaleb(-decimals)).quantize(quantum)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def wei_to_eth(wei: int) -> Decimal:
    return Decimal(wei) / Decimal(WEI_PER_ETH)
