"""Gasless USDC transfers on Base via EIP-2612 permit.

The user never sends a transaction. They sign a Permit off-chain granting
the relayer an allowance; the relayer then submits permit() followed by
transferFrom() and pays gas for both. transferFrom is only sent once the
permit transaction has a successful receipt.
"""

import logging
import time
from decimal import Decimal

from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import Web3

from relaypay.chains import ChainConfig, Network, wei_to_eth
from relaypay.clients.evm import ERC20PermitToken, EVMRpcClient, receipt_succeeded
from relaypay.errors import (
    InvalidDestination,
    OnChainExecutionFailed,
    RpcError,
    SubmissionFailed,
    TransferTimedOut,
)
from relaypay.gasless.base import (
    ChainStatus,
    PreparedTransfer,
    SubmittedTransfer,
    TransferContext,
    TransferStrategy,
)
from relaypay.wallet.keys import load_evm_account
from relaypay.wallet.store import DecryptedKeys

logger = logging.getLogger(__name__)

PERMIT_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


def build_permit_message(
    token_name: str,
    token_version: str,
    chain_id: int,
    token_address: str,
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
) -> dict:
    """EIP-712 typed data for an EIP-2612 Permit."""
    return {
        "types": PERMIT_TYPES,
        "primaryType": "Permit",
        "domain": {
            "name": token_name,
            "version": token_version,
            "chainId": chain_id,
            "verifyingContract": token_address,
        },
        "message": {
            "owner": owner,
            "spender": spender,
            "value": value,
            "nonce": nonce,
            "deadline": deadline,
        },
    }


class EVMPermitStrategy(TransferStrategy):
    """Permit + transferFrom with the relayer as spender and gas payer."""

    network = Network.EVM

    def __init__(
        self,
        chain: ChainConfig,
        rpc: EVMRpcClient,
        token: ERC20PermitToken,
        permit_deadline_seconds: int = 3600,
        permit_gas_limit: int = 100_000,
        transfer_gas_limit: int = 70_000,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        super().__init__(chain, confirmation_timeout, poll_interval)
        self.rpc = rpc
        self.token = token
        self.token_address = Web3.to_checksum_address(token.address)
        self.permit_deadline_seconds = permit_deadline_seconds
        self.permit_gas_limit = permit_gas_limit
        self.transfer_gas_limit = transfer_gas_limit

    def validate_destination(self, address: str) -> str:
        if not isinstance(address, str) or not Web3.is_address(address):
            raise InvalidDestination(f"Invalid EVM address: {address}")
        return Web3.to_checksum_address(address)

    def source_address(self, keys: DecryptedKeys) -> str:
        return load_evm_account(keys.evm_private_key).address

    async def build(self, ctx: TransferContext) -> PreparedTransfer:
        """Sign the user's Permit for the relayer."""
        owner = load_evm_account(ctx.keys.evm_private_key)
        spender = ctx.relayer.address

        try:
            token_name = await self.token.name()
            token_version = await self.token.version()
            nonce = await self.token.nonces(owner.address)
            gas_price = await self.rpc.gas_price()
        except RpcError as e:
            raise SubmissionFailed(f"Could not prepare permit: {e}")

        deadline = int(time.time()) + self.permit_deadline_seconds
        typed_data = build_permit_message(
            token_name=token_name,
            token_version=token_version,
            chain_id=self.chain.chain_id,
            token_address=self.token_address,
            owner=owner.address,
            spender=spender,
            value=ctx.base_units,
            nonce=nonce,
            deadline=deadline,
        )
        signed = owner.sign_message(encode_typed_data(full_message=typed_data))

        estimated_fee = wei_to_eth(gas_price * (self.permit_gas_limit + self.transfer_gas_limit))
        logger.info(
            f"Transfer {ctx.transfer_id}: permit signed by {owner.address} "
            f"(nonce {nonce}, deadline {deadline}); estimated relayer gas {estimated_fee} ETH"
        )

        return PreparedTransfer(
            source_address=owner.address,
            fee_payer=spender,
            estimated_fee=estimated_fee,
            payload={
                "deadline": deadline,
                "v": signed.v,
                "r": signed.r.to_bytes(32, "big"),
                "s": signed.s.to_bytes(32, "big"),
                "gas_price": gas_price,
            },
        )

    async def _send(self, relayer: LocalAccount, data: str, gas_limit: int, gas_price: int, label: str) -> str:
        """Sign and broadcast a relayer transaction to the token contract."""
        try:
            nonce = await self.rpc.get_transaction_count(relayer.address, "pending")
            tx = {
                "to": self.token_address,
                "value": 0,
                "data": data,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self.chain.chain_id,
            }
            signed = relayer.sign_transaction(tx)
            return await self.rpc.send_raw_transaction(signed.raw_transaction)
        except RpcError as e:
            raise SubmissionFailed(f"{label} broadcast failed: {e}")

    async def _await_receipt(self, tx_hash: str, label: str) -> bool:
        async def check_once():
            receipt = await self.rpc.get_transaction_receipt(tx_hash)
            if receipt is None:
                return None
            return receipt_succeeded(receipt)

        return await self._wait_for(check_once, tx_hash, label)

    async def submit(self, ctx: TransferContext, prepared: PreparedTransfer) -> SubmittedTransfer:
        """Send permit, wait for it, then send transferFrom."""
        relayer: LocalAccount = ctx.relayer.signer
        owner = prepared.source_address
        payload = prepared.payload

        permit_data = self.token.encode_permit(
            owner,
            relayer.address,
            ctx.base_units,
            payload["deadline"],
            payload["v"],
            payload["r"],
            payload["s"],
        )
        permit_hash = await self._send(
            relayer, permit_data, self.permit_gas_limit, payload["gas_price"], "permit"
        )
        logger.info(f"Transfer {ctx.transfer_id}: permit submitted {permit_hash}")
        await ctx.record_broadcast(
            permit_tx_hash=permit_hash, source_address=owner, fee_payer=relayer.address
        )

        try:
            permit_ok = await self._await_receipt(permit_hash, "permit")
        except TransferTimedOut as e:
            raise TransferTimedOut(e.message, permit_tx_hash=permit_hash)

        if not permit_ok:
            raise OnChainExecutionFailed(
                f"permit transaction {permit_hash} reverted", permit_tx_hash=permit_hash
            )

        transfer_data = self.token.encode_transfer_from(owner, ctx.destination, ctx.base_units)
        try:
            tx_hash = await self._send(
                relayer, transfer_data, self.transfer_gas_limit, payload["gas_price"], "transferFrom"
            )
        except SubmissionFailed as e:
            raise SubmissionFailed(
                f"{e.message} (permit {permit_hash} confirmed; allowance expires at deadline)",
                permit_tx_hash=permit_hash,
            )
        logger.info(f"Transfer {ctx.transfer_id}: transferFrom submitted {tx_hash}")

        return SubmittedTransfer(
            tx_hash=tx_hash,
            source_address=owner,
            fee_payer=relayer.address,
            permit_tx_hash=permit_hash,
            estimated_fee=prepared.estimated_fee,
        )

    async def confirm(self, ctx: TransferContext, submitted: SubmittedTransfer) -> None:
        try:
            ok = await self._await_receipt(submitted.tx_hash, "transferFrom")
        except TransferTimedOut as e:
            raise TransferTimedOut(
                e.message, tx_hash=submitted.tx_hash, permit_tx_hash=submitted.permit_tx_hash
            )

        if not ok:
            # No automatic retry; the unused allowance lapses at the permit deadline
            raise OnChainExecutionFailed(
                f"transferFrom transaction {submitted.tx_hash} reverted "
                f"after permit {submitted.permit_tx_hash} succeeded",
                tx_hash=submitted.tx_hash,
                permit_tx_hash=submitted.permit_tx_hash,
            )

    async def check_status(self, tx_hash: str) -> ChainStatus:
        receipt = await self.rpc.get_transaction_receipt(tx_hash)
        if receipt is not None:
            return ChainStatus.CONFIRMED if receipt_succeeded(receipt) else ChainStatus.FAILED
        if await self.rpc.get_transaction(tx_hash) is None:
            return ChainStatus.NOT_FOUND
        return ChainStatus.PENDING

    async def estimate_transfer_cost(self) -> Decimal:
        gas_price = await self.rpc.gas_price()
        return wei_to_eth(gas_price * (self.permit_gas_limit + self.transfer_gas_limit))
