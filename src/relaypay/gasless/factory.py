"""Factory for the gasless transfer orchestrator and its collaborators.

Everything is built once from settings and cached; tests call
reset_orchestrator() or construct the orchestrator directly.
"""

import logging
from typing import Optional

from relaypay.chains import Network, get_chain_config
from relaypay.clients.evm import ERC20PermitToken, EVMRpcClient
from relaypay.clients.solana import SolanaRpcClient
from relaypay.config import Settings, get_settings
from relaypay.crypto import get_encryption_provider
from relaypay.gasless.base import TransferStrategy
from relaypay.gasless.evm import EVMPermitStrategy
from relaypay.gasless.orchestrator import GaslessTransferOrchestrator
from relaypay.gasless.solana import SolanaFeePayerStrategy
from relaypay.ledger.repository import TransferLedger
from relaypay.oracle import BalanceOracle
from relaypay.relayer import RelayerRegistry
from relaypay.wallet.store import ScopedWalletKeys

logger = logging.getLogger(__name__)

# Cached instance
_orchestrator: Optional[GaslessTransferOrchestrator] = None


def build_strategies(
    evm_rpc: EVMRpcClient,
    evm_token: ERC20PermitToken,
    solana_client: SolanaRpcClient,
    settings: Settings,
) -> dict[Network, TransferStrategy]:
    """One strategy per network."""
    return {
        Network.EVM: EVMPermitStrategy(
            get_chain_config(Network.EVM, settings),
            evm_rpc,
            evm_token,
            permit_deadline_seconds=settings.permit_deadline_seconds,
            permit_gas_limit=settings.permit_gas_limit,
            transfer_gas_limit=settings.transfer_gas_limit,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.confirmation_poll_interval,
        ),
        Network.SOLANA: SolanaFeePayerStrategy(
            get_chain_config(Network.SOLANA, settings),
            solana_client,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.confirmation_poll_interval,
        ),
    }


def create_orchestrator(settings: Optional[Settings] = None) -> GaslessTransferOrchestrator:
    """Wire RPC clients, relayers, oracle, key store and ledger from settings."""
    settings = settings or get_settings()

    evm_rpc = EVMRpcClient(settings.base_rpc_url)
    evm_token = ERC20PermitToken(evm_rpc, settings.base_usdc_address)
    solana_client = SolanaRpcClient(settings.solana_rpc_url)

    oracle = BalanceOracle(evm_rpc, evm_token, solana_client, settings.solana_usdc_mint)
    keys = ScopedWalletKeys(
        get_encryption_provider(settings.encryption_key),
        allow_plaintext=settings.allow_plaintext_wallets,
    )

    return GaslessTransferOrchestrator(
        strategies=build_strategies(evm_rpc, evm_token, solana_client, settings),
        relayers=RelayerRegistry.from_settings(settings),
        oracle=oracle,
        keys=keys,
        ledger=TransferLedger(),
        settings=settings,
    )


def get_orchestrator() -> GaslessTransferOrchestrator:
    """Get the shared orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator()
        configured = [n.value for n in _orchestrator.relayers.configured_networks()]
        logger.info(f"Gasless orchestrator ready; relayers configured for: {configured or 'none'}")
    return _orchestrator


def reset_orchestrator() -> None:
    """Drop the cached orchestrator (useful for testing)."""
    global _orchestrator
    _orchestrator = None


async def close_orchestrator() -> None:
    """Close RPC connections held by the shared orchestrator and drop it."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.oracle.solana_client.close()
    _orchestrator = None
