"""Relayer (fee payer) registry.

A relayer is a platform-owned signing identity per network that pays
network fees for user transfers. The registry is built once from settings
and passed to the orchestrator, so tests can inject their own relayers.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair

from relaypay.chains import Network
from relaypay.config import Settings, get_settings
from relaypay.errors import RelayerNotConfigured
from relaypay.wallet.keys import load_evm_account, load_solana_keypair

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relayer:
    """Fee-paying identity on one network."""

    network: Network
    address: str
    signer: Union[LocalAccount, Keypair]

    def __repr__(self) -> str:
        return f"Relayer(network={self.network.value}, address={self.address})"


class RelayerRegistry:
    """Relayer identities keyed by network."""

    def __init__(self, relayers: Optional[dict[Network, Relayer]] = None):
        self._relayers = dict(relayers or {})

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RelayerRegistry":
        """Load relayer keys from the environment.

        Unset keys leave the network unconfigured. Malformed keys raise
        immediately so a bad deployment fails at startup.
        """
        settings = settings or get_settings()
        relayers: dict[Network, Relayer] = {}

        if settings.relayer_private_key:
            account = load_evm_account(settings.relayer_private_key)
            relayers[Network.EVM] = Relayer(Network.EVM, account.address, account)
            logger.info(f"EVM relayer loaded: {account.address}")
        else:
            logger.warning("RELAYER_PRIVATE_KEY not set - EVM gasless transfers disabled")

        if settings.solana_relayer_private_key:
            keypair = load_solana_keypair(settings.solana_relayer_private_key)
            relayers[Network.SOLANA] = Relayer(Network.SOLANA, str(keypair.pubkey()), keypair)
            logger.info(f"Solana relayer loaded: {keypair.pubkey()}")
        else:
            logger.warning("SOLANA_RELAYER_PRIVATE_KEY not set - Solana gasless transfers disabled")

        return cls(relayers)

    def is_configured(self, network: Network) -> bool:
        return Network.parse(network) in self._relayers

    def configured_networks(self) -> list[Network]:
        return [network for network in Network if network in self._relayers]

    def get(self, network: Network) -> Relayer:
        """Relayer for a network.

        Raises:
            RelayerNotConfigured: If no relayer key was provided
        """
        network = Network.parse(network)
        relayer = self._relayers.get(network)
        if relayer is None:
            logger.critical(f"Gasless transfer requested but no {network.value} relayer is configured")
            raise RelayerNotConfigured(f"No relayer configured for {network.value}")
        return relayer
