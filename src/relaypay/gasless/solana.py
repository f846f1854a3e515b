"""Gasless USDC transfers on Solana with a sponsoring fee payer.

One transaction carries everything: an optional idempotent instruction
creating the recipient's associated token account (rent paid by the
relayer) and a transfer_checked instruction authorised by the user. The
relayer is the fee payer, so both the relayer and the user sign before
submission.
"""

import logging
from decimal import Decimal
from typing import Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from relaypay.chains import ChainConfig, Network, lamports_to_sol
from relaypay.clients.solana import SolanaRpcClient
from relaypay.errors import (
    InvalidDestination,
    OnChainExecutionFailed,
    RpcError,
    SubmissionFailed,
)
from relaypay.gasless.base import (
    ChainStatus,
    PreparedTransfer,
    SubmittedTransfer,
    TransferContext,
    TransferStrategy,
)
from relaypay.wallet.keys import load_solana_keypair, solana_address_from_key
from relaypay.wallet.store import DecryptedKeys

logger = logging.getLogger(__name__)

# Base fee per signature when the cluster cannot quote one
DEFAULT_LAMPORTS_PER_SIGNATURE = 5000


def build_transfer_instructions(
    owner: Pubkey,
    destination: Pubkey,
    mint: Pubkey,
    amount: int,
    decimals: int,
    fee_payer: Pubkey,
    create_destination_account: bool,
) -> list[Instruction]:
    """Instructions moving ``amount`` base units from owner to destination."""
    source_ata = get_associated_token_address(owner, mint)
    destination_ata = get_associated_token_address(destination, mint)

    instructions = []
    if create_destination_account:
        instructions.append(
            create_idempotent_associated_token_account(payer=fee_payer, owner=destination, mint=mint)
        )
    instructions.append(
        transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source_ata,
                mint=mint,
                dest=destination_ata,
                owner=owner,
                amount=amount,
                decimals=decimals,
            )
        )
    )
    return instructions


def build_sponsored_transaction(
    instructions: list[Instruction],
    user: Keypair,
    relayer: Keypair,
    blockhash: Hash,
) -> Transaction:
    """Compile with the relayer as fee payer and sign with both keys."""
    message = Message.new_with_blockhash(instructions, relayer.pubkey(), blockhash)
    return Transaction([relayer, user], message, blockhash)


class SolanaFeePayerStrategy(TransferStrategy):
    """Single co-signed transaction with the relayer paying fees and rent."""

    network = Network.SOLANA

    def __init__(
        self,
        chain: ChainConfig,
        client: SolanaRpcClient,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        super().__init__(chain, confirmation_timeout, poll_interval)
        self.client = client
        self.mint = Pubkey.from_string(chain.token_address)

    def validate_destination(self, address: str) -> str:
        try:
            return str(Pubkey.from_string(address))
        except (ValueError, TypeError):
            raise InvalidDestination(f"Invalid Solana address: {address}")

    def source_address(self, keys: DecryptedKeys) -> str:
        return solana_address_from_key(keys.solana_private_key)

    async def _estimate_fee(self, message: Message) -> Decimal:
        """Quoted fee in SOL. Only used for logging."""
        lamports: Optional[int] = None
        try:
            lamports = await self.client.get_fee_for_message(message)
        except RpcError as e:
            logger.warning(f"Fee quote unavailable, assuming base fee: {e}")
        if lamports is None:
            lamports = DEFAULT_LAMPORTS_PER_SIGNATURE * message.header.num_required_signatures
        return lamports_to_sol(lamports)

    async def build(self, ctx: TransferContext) -> PreparedTransfer:
        user = load_solana_keypair(ctx.keys.solana_private_key)
        relayer: Keypair = ctx.relayer.signer
        destination = Pubkey.from_string(ctx.destination)
        destination_ata = get_associated_token_address(destination, self.mint)

        try:
            create_account = not await self.client.account_exists(destination_ata)
            blockhash = await self.client.get_latest_blockhash()
        except RpcError as e:
            raise SubmissionFailed(f"Could not prepare Solana transaction: {e}")

        instructions = build_transfer_instructions(
            owner=user.pubkey(),
            destination=destination,
            mint=self.mint,
            amount=ctx.base_units,
            decimals=self.chain.token_decimals,
            fee_payer=relayer.pubkey(),
            create_destination_account=create_account,
        )
        transaction = build_sponsored_transaction(instructions, user, relayer, blockhash)

        estimated_fee = await self._estimate_fee(transaction.message)
        logger.info(
            f"Transfer {ctx.transfer_id}: {len(instructions)} instruction(s), "
            f"destination account {'created' if create_account else 'exists'}, "
            f"estimated relayer fee {estimated_fee} SOL"
        )

        return PreparedTransfer(
            source_address=str(user.pubkey()),
            fee_payer=str(relayer.pubkey()),
            estimated_fee=estimated_fee,
            destination_account_created=create_account,
            payload={"transaction": transaction},
        )

    async def submit(self, ctx: TransferContext, prepared: PreparedTransfer) -> SubmittedTransfer:
        transaction: Transaction = prepared.payload["transaction"]
        try:
            signature = await self.client.send_raw_transaction(bytes(transaction))
        except RpcError as e:
            raise SubmissionFailed(f"Solana transaction rejected: {e}")

        logger.info(f"Transfer {ctx.transfer_id}: submitted {signature}")
        return SubmittedTransfer(
            tx_hash=signature,
            source_address=prepared.source_address,
            fee_payer=prepared.fee_payer,
            estimated_fee=prepared.estimated_fee,
            destination_account_created=prepared.destination_account_created,
        )

    async def confirm(self, ctx: TransferContext, submitted: SubmittedTransfer) -> None:
        errors: list[str] = []

        async def check_once():
            status = await self.client.get_signature_status(submitted.tx_hash)
            if status.failed:
                errors.append(status.error)
                return False
            return True if status.confirmed else None

        if not await self._wait_for(check_once, submitted.tx_hash, "transaction"):
            raise OnChainExecutionFailed(
                f"Transaction failed: {errors[-1]}", tx_hash=submitted.tx_hash
            )

    async def check_status(self, tx_hash: str) -> ChainStatus:
        # Reconciliation runs long after the status cache has rolled over
        status = await self.client.get_signature_status(tx_hash, search_history=True)
        if not status.found:
            return ChainStatus.NOT_FOUND
        if status.failed:
            return ChainStatus.FAILED
        return ChainStatus.CONFIRMED if status.confirmed else ChainStatus.PENDING

    async def estimate_transfer_cost(self) -> Decimal:
        # Two signatures (relayer + user); account rent is not included
        return lamports_to_sol(DEFAULT_LAMPORTS_PER_SIGNATURE * 2)
