"""Solana RPC client built on solana-py's AsyncClient.

Wraps the handful of calls the transfer flow needs and converts solana-py
exceptions into RpcError.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException
from solana.rpc.models import TxOpts
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from relaypay.errors import RpcError

logger = logging.getLogger(__name__)

_CONFIRMED_STATES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


@dataclass
class SignatureStatus:
    """Status of a submitted transaction signature."""

    found: bool
    confirmed: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SolanaRpcClient:
    """Async Solana RPC client."""

    def __init__(self, rpc_url: str, commitment: Commitment = Confirmed, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = AsyncClient(rpc_url, commitment=commitment, timeout=timeout)

    async def close(self) -> None:
        await self._client.close()

    async def get_balance(self, pubkey: Pubkey) -> int:
        """Native balance in lamports."""
        try:
            resp = await self._client.get_balance(pubkey, commitment=self.commitment)
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"getBalance failed: {e}", method="getBalance")
        return resp.value

    async def account_exists(self, pubkey: Pubkey) -> bool:
        try:
            resp = await self._client.get_account_info(pubkey, commitment=self.commitment)
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"getAccountInfo failed: {e}", method="getAccountInfo")
        return resp.value is not None

    async def get_token_account_balance(self, token_account: Pubkey) -> int:
        """Balance of an existing token account in base units."""
        try:
            resp = await self._client.get_token_account_balance(
                token_account, commitment=self.commitment
            )
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(
                f"getTokenAccountBalance failed: {e}", method="getTokenAccountBalance"
            )
        return int(resp.value.amount)

    async def get_latest_blockhash(self) -> Hash:
        try:
            resp = await self._client.get_latest_blockhash(commitment=self.commitment)
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"getLatestBlockhash failed: {e}", method="getLatestBlockhash")
        return resp.value.blockhash

    async def get_fee_for_message(self, message: Message) -> Optional[int]:
        """Fee in lamports the cluster would charge for a message."""
        try:
            resp = await self._client.get_fee_for_message(message, commitment=self.commitment)
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"getFeeForMessage failed: {e}", method="getFeeForMessage")
        return resp.value

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Submit a signed transaction once, with preflight simulation.

        Returns:
            Transaction signature (base58)
        """
        opts = TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
        try:
            resp = await self._client.send_raw_transaction(raw_tx, opts=opts)
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"sendTransaction failed: {e}", method="sendTransaction")
        return str(resp.value)

    async def get_signature_status(
        self, signature: str, search_history: bool = False
    ) -> SignatureStatus:
        """Status of a signature.

        Without search_history the node only consults its recent status
        cache; older signatures need the ledger history lookup.
        """
        try:
            resp = await self._client.get_signature_statuses(
                [Signature.from_string(signature)], search_transaction_history=search_history
            )
        except (RPCException, SolanaRpcException) as e:
            raise RpcError(f"getSignatureStatuses failed: {e}", method="getSignatureStatuses")

        status = resp.value[0] if resp.value else None
        if status is None:
            return SignatureStatus(found=False)
        if status.err is not None:
            return SignatureStatus(found=True, error=str(status.err))
        return SignatureStatus(
            found=True,
            confirmed=status.confirmation_status in _CONFIRMED_STATES,
        )
