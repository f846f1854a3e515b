"""Balance oracle: on-chain USDC and native balances.

A Solana owner without a USDC associated token account simply holds zero.
Any RPC failure is raised as OracleUnavailable; a failed read is never
reported as a zero balance.
"""

import asyncio
import logging
from decimal import Decimal

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from relaypay.chains import Network, from_base_units, lamports_to_sol, wei_to_eth
from relaypay.clients.evm import ERC20PermitToken, EVMRpcClient
from relaypay.clients.solana import SolanaRpcClient
from relaypay.errors import OracleUnavailable, RpcError

logger = logging.getLogger(__name__)


class BalanceOracle:
    """Reads balances from Base and Solana."""

    def __init__(
        self,
        evm_client: EVMRpcClient,
        evm_token: ERC20PermitToken,
        solana_client: SolanaRpcClient,
        solana_mint: str,
    ):
        self.evm_client = evm_client
        self.evm_token = evm_token
        self.solana_client = solana_client
        self.solana_mint = Pubkey.from_string(solana_mint)

    async def get_token_balance(self, address: str, network: Network) -> Decimal:
        """USDC balance of an address.

        Raises:
            OracleUnavailable: If the chain could not be queried
        """
        network = Network.parse(network)
        try:
            if network == Network.EVM:
                units = await self.evm_token.balance_of(address)
            else:
                units = await self._solana_token_units(address)
        except RpcError as e:
            logger.warning(f"USDC balance lookup failed for {address} on {network.value}: {e}")
            raise OracleUnavailable(f"Could not read USDC balance on {network.value}: {e}")

        return from_base_units(units)

    async def _solana_token_units(self, owner: str) -> int:
        token_account = get_associated_token_address(Pubkey.from_string(owner), self.solana_mint)
        if not await self.solana_client.account_exists(token_account):
            return 0
        return await self.solana_client.get_token_account_balance(token_account)

    async def get_native_balance(self, address: str, network: Network) -> Decimal:
        """ETH or SOL balance of an address.

        Raises:
            OracleUnavailable: If the chain could not be queried
        """
        network = Network.parse(network)
        try:
            if network == Network.EVM:
                return wei_to_eth(await self.evm_client.get_balance(address))
            lamports = await self.solana_client.get_balance(Pubkey.from_string(address))
            return lamports_to_sol(lamports)
        except RpcError as e:
            logger.warning(f"Native balance lookup failed for {address} on {network.value}: {e}")
            raise OracleUnavailable(f"Could not read native balance on {network.value}: {e}")

    async def get_wallet_balances(self, addresses: dict[Network, str]) -> dict[Network, Decimal]:
        """USDC balance of one address per network, read concurrently.

        Raises:
            OracleUnavailable: If any network could not be queried
        """
        networks = list(addresses)
        balances = await asyncio.gather(
            *(self.get_token_balance(addresses[network], network) for network in networks)
        )
        return dict(zip(networks, balances))
