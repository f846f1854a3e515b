"""Gasless transfer orchestrator.

Checks, in order and before anything touches the chain:
1. a relayer is configured for the network
2. the amount is positive, finite and within USDC precision
3. the destination address is valid for the network
4. the relayer holds enough native balance to pay fees
5. the user holds at least the requested USDC

It then hands the transfer to the network's strategy and records every
outcome on the ledger. Errors raised after broadcast whose outcome is
unknown leave the record pending and flagged for reconciliation.
"""

import asyncio
import logging
from decimal import Decimal
from functools import partial
from typing import Optional, Protocol

from relaypay.chains import AmountLike, Network, explorer_url, to_base_units, validate_amount
from relaypay.config import Settings, get_settings
from relaypay.errors import (
    InsufficientRelayerBalance,
    InsufficientUserBalance,
    RelayerNotConfigured,
    RelayPayError,
    SubmissionFailed,
    TransferUnconfirmed,
)
from relaypay.gasless.base import TransferContext, TransferResult, TransferStrategy
from relaypay.ledger.models import Transfer, TransferStatus
from relaypay.oracle import BalanceOracle
from relaypay.relayer import RelayerRegistry
from relaypay.wallet.store import DecryptedKeys

logger = logging.getLogger(__name__)


class KeySource(Protocol):
    async def get_decrypted_keys(self, user_id: int) -> DecryptedKeys: ...


class Ledger(Protocol):
    async def update_status(self, transfer_id: int, status: TransferStatus, **fields) -> Transfer: ...


class GaslessTransferOrchestrator:
    """Executes sponsor-paid USDC transfers on any supported network."""

    def __init__(
        self,
        strategies: dict[Network, TransferStrategy],
        relayers: RelayerRegistry,
        oracle: BalanceOracle,
        keys: KeySource,
        ledger: Ledger,
        settings: Optional[Settings] = None,
    ):
        missing = [network.value for network in Network if network not in strategies]
        if missing:
            raise ValueError(f"No transfer strategy for: {', '.join(missing)}")
        for network, strategy in strategies.items():
            if strategy.network != network:
                raise ValueError(f"Strategy {type(strategy).__name__} registered for {network.value}")

        self.strategies = dict(strategies)
        self.relayers = relayers
        self.oracle = oracle
        self.keys = keys
        self.ledger = ledger
        self.settings = settings or get_settings()

    def get_strategy(self, network: Network) -> TransferStrategy:
        return self.strategies[Network.parse(network)]

    def is_configured(self, network: Network) -> bool:
        return self.relayers.is_configured(network)

    async def execute_gasless_transfer(
        self,
        user_id: int,
        network: Network,
        destination_address: str,
        amount: AmountLike,
        transfer_id: int,
    ) -> TransferResult:
        """Run one transfer end to end.

        Args:
            user_id: Owner of the source wallet
            network: Network to transfer on
            destination_address: Recipient address
            amount: USDC amount in token units
            transfer_id: Pending ledger record for this transfer

        Returns:
            TransferResult of the confirmed transfer

        Raises:
            TransferError: Classified failure; the ledger is already updated
            WalletError: The user's keys could not be loaded
            OracleUnavailable: A balance could not be read
        """
        submitted = None
        try:
            network = Network.parse(network)
            strategy = self.get_strategy(network)
            relayer = self.relayers.get(network)
            value = validate_amount(amount, strategy.chain.token_decimals)
            destination = strategy.validate_destination(destination_address)

            await self._check_relayer_balance(strategy, relayer.address)

            keys = await self.keys.get_decrypted_keys(user_id)
            source = strategy.source_address(keys)
            await self._check_user_balance(network, source, value)

            ctx = TransferContext(
                transfer_id=transfer_id,
                user_id=user_id,
                network=network,
                amount=value,
                base_units=to_base_units(value, strategy.chain.token_decimals),
                destination=destination,
                keys=keys,
                relayer=relayer,
                on_broadcast=partial(self._record_broadcast, transfer_id),
            )

            prepared = await strategy.build(ctx)
            submitted = await strategy.submit(ctx, prepared)
            await self._record_broadcast(
                transfer_id,
                tx_hash=submitted.tx_hash,
                permit_tx_hash=submitted.permit_tx_hash,
                source_address=submitted.source_address,
                fee_payer=submitted.fee_payer,
            )

            await strategy.confirm(ctx, submitted)

        except TransferUnconfirmed as e:
            await self._mark_unconfirmed(transfer_id, e)
            raise
        except RelayPayError as e:
            await self._mark_failed(transfer_id, e, submitted)
            raise
        except Exception as e:
            if submitted is None:
                error = SubmissionFailed(f"Unexpected error before submission: {e}")
                await self._mark_failed(transfer_id, error, submitted)
            else:
                error = TransferUnconfirmed(
                    f"Unexpected error after submission: {e}", tx_hash=submitted.tx_hash
                )
                await self._mark_unconfirmed(transfer_id, error)
            logger.exception(f"Transfer {transfer_id} raised an unexpected error")
            raise error from e

        await self.ledger.update_status(
            transfer_id,
            TransferStatus.CONFIRMED,
            tx_hash=submitted.tx_hash,
            fee_payer=submitted.fee_payer,
        )
        logger.info(
            f"Transfer {transfer_id} confirmed: {value} USDC on {network.value} "
            f"{submitted.source_address} -> {destination}, tx {submitted.tx_hash}"
        )

        return TransferResult(
            success=True,
            tx_hash=submitted.tx_hash,
            network=network,
            amount=value,
            fee_payer=submitted.fee_payer,
            explorer_url=explorer_url(network, submitted.tx_hash, self.settings),
            transfer_id=transfer_id,
            source_address=submitted.source_address,
            destination_address=destination,
            permit_tx_hash=submitted.permit_tx_hash,
            destination_account_created=submitted.destination_account_created,
            estimated_fee=submitted.estimated_fee,
        )

    async def _record_broadcast(self, transfer_id: int, **fields) -> None:
        """Attach broadcast hashes to the pending record.

        The write runs shielded and finishes before a cancellation of the
        transfer (request timeout) propagates, so a hash that reached the
        network always reaches the ledger.
        """
        write = asyncio.ensure_future(
            self.ledger.update_status(transfer_id, TransferStatus.PENDING, **fields)
        )
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await write
            raise

    async def _check_relayer_balance(self, strategy: TransferStrategy, relayer_address: str) -> None:
        balance = await self.oracle.get_native_balance(relayer_address, strategy.network)
        required = strategy.minimum_relayer_balance
        if balance < required:
            symbol = strategy.chain.native_symbol
            logger.critical(
                f"{strategy.network.value} relayer {relayer_address} has {balance} {symbol}, "
                f"needs {required} {symbol} - top up required"
            )
            raise InsufficientRelayerBalance(
                f"Relayer balance too low: {balance} {symbol} (minimum {required} {symbol})",
                observed_balance=balance,
                required=required,
            )

    async def _check_user_balance(self, network: Network, address: str, amount: Decimal) -> None:
        balance = await self.oracle.get_token_balance(address, network)
        if balance < amount:
            raise InsufficientUserBalance(
                f"Insufficient USDC balance: have {balance}, need {amount}",
                observed_balance=balance,
                requested=amount,
            )

    async def _mark_failed(self, transfer_id: int, error: RelayPayError, submitted) -> None:
        if isinstance(error, RelayerNotConfigured):
            logger.critical(f"Transfer {transfer_id} rejected: {error.message}")
        else:
            logger.warning(f"Transfer {transfer_id} failed [{error.code}]: {error.message}")

        await self.ledger.update_status(
            transfer_id,
            TransferStatus.FAILED,
            failure_reason=error.message,
            error_code=error.code,
            tx_hash=getattr(error, "tx_hash", None) or (submitted.tx_hash if submitted else None),
            permit_tx_hash=getattr(error, "permit_tx_hash", None),
        )

    async def _mark_unconfirmed(self, transfer_id: int, error: TransferUnconfirmed) -> None:
        logger.warning(f"Transfer {transfer_id} left pending [{error.code}]: {error.message}")
        await self.ledger.update_status(
            transfer_id,
            TransferStatus.PENDING,
            tx_hash=error.tx_hash,
            permit_tx_hash=error.permit_tx_hash,
            error_code=error.code,
            needs_reconciliation=True,
        )

