"""Tests for the transfer request boundary (lock, record, timeout)."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from relaypay.chains import Network
from relaypay.config import Settings
from relaypay.errors import (
    InvalidAmount,
    TransferInProgress,
    TransferNotFound,
    TransferTimedOut,
    UnsupportedNetwork,
)
from relaypay.gasless.base import TransferResult
from relaypay.ledger.models import TransferStatus
from relaypay.services.transfer_service import TransferService
from relaypay.utils.locks import transfer_lock

DESTINATION = "0x2222222222222222222222222222222222222222"


async def _hang(**kwargs):
    await asyncio.sleep(10)


def _result(transfer_id: int) -> TransferResult:
    return TransferResult(
        success=True,
        tx_hash="0xtransfer",
        network=Network.EVM,
        amount=Decimal("10"),
        fee_payer="0xrelayer",
        explorer_url="https://basescan.org/tx/0xtransfer",
        transfer_id=transfer_id,
    )


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock()
    orchestrator.execute_gasless_transfer = AsyncMock(
        side_effect=lambda **kwargs: _result(kwargs["transfer_id"])
    )
    return orchestrator


@pytest.fixture
def settings():
    return Settings(transfer_timeout=5, transfer_lock_timeout=0.05)


@pytest.fixture
def service(orchestrator, transfer_ledger, settings):
    return TransferService(orchestrator, transfer_ledger, settings)


class TestRequestTransfer:
    """Tests for accepted transfer requests."""

    @pytest.mark.asyncio
    async def test_creates_record_and_runs_orchestrator(
        self, service, orchestrator, transfer_ledger, funded_user
    ):
        user_id, _ = funded_user

        result = await service.request_transfer(user_id, "base", DESTINATION, "10")

        kwargs = orchestrator.execute_gasless_transfer.await_args.kwargs
        assert kwargs["network"] == Network.EVM
        assert kwargs["amount"] == Decimal("10")
        assert kwargs["user_id"] == user_id

        record = await transfer_ledger.get_transfer(result.transfer_id)
        assert record.user_id == user_id
        assert record.network == "evm"
        assert record.amount == Decimal("10")
        assert record.destination_address == DESTINATION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("network,amount,error", [
        ("tron", "10", UnsupportedNetwork),
        ("evm", "0", InvalidAmount),
        ("solana", "1.1234567", InvalidAmount),
    ])
    async def test_rejected_before_record(
        self, service, orchestrator, transfer_ledger, funded_user, network, amount, error
    ):
        user_id, _ = funded_user

        with pytest.raises(error):
            await service.request_transfer(user_id, network, DESTINATION, amount)

        orchestrator.execute_gasless_transfer.assert_not_awaited()
        assert await transfer_ledger.get_pending_transfers() == []

    @pytest.mark.asyncio
    async def test_concurrent_request_same_network(self, service, orchestrator, funded_user):
        user_id, _ = funded_user

        async with transfer_lock(user_id, "evm"):
            with pytest.raises(TransferInProgress):
                await service.request_transfer(user_id, Network.EVM, DESTINATION, "1")

        orchestrator.execute_gasless_transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_network_not_blocked(self, service, funded_user):
        user_id, _ = funded_user

        async with transfer_lock(user_id, "solana"):
            result = await service.request_transfer(user_id, Network.EVM, DESTINATION, "1")

        assert result.success is True


class TestTimeout:
    """Tests for the wall-clock bound on a transfer."""

    @pytest.mark.asyncio
    async def test_timeout_leaves_record_pending(self, service, orchestrator, transfer_ledger, funded_user):
        user_id, _ = funded_user

        async def slow(**kwargs):
            await transfer_ledger.update_status(
                kwargs["transfer_id"], TransferStatus.PENDING, tx_hash="0xinflight"
            )
            await asyncio.sleep(10)

        orchestrator.execute_gasless_transfer.side_effect = slow

        with pytest.raises(TransferTimedOut) as exc:
            await service.request_transfer(user_id, "evm", DESTINATION, "1", timeout=0.1)

        assert exc.value.tx_hash == "0xinflight"
        (record,) = await transfer_ledger.get_pending_transfers()
        assert record.status == TransferStatus.PENDING
        assert record.needs_reconciliation is True
        assert record.error_code == "TRANSFER_TIMED_OUT"

    @pytest.mark.asyncio
    async def test_timeout_before_submission(self, service, orchestrator, transfer_ledger, funded_user):
        user_id, _ = funded_user
        orchestrator.execute_gasless_transfer.side_effect = _hang

        with pytest.raises(TransferTimedOut) as exc:
            await service.request_transfer(user_id, "solana", DESTINATION, "1", timeout=0.05)

        assert exc.value.tx_hash is None
        (record,) = await transfer_ledger.get_pending_transfers()
        assert record.needs_reconciliation is True

    @pytest.mark.asyncio
    async def test_lock_released_after_timeout(self, service, orchestrator, funded_user):
        user_id, _ = funded_user
        orchestrator.execute_gasless_transfer.side_effect = _hang

        with pytest.raises(TransferTimedOut):
            await service.request_transfer(user_id, "evm", DESTINATION, "1", timeout=0.05)

        orchestrator.execute_gasless_transfer.side_effect = lambda **kwargs: _result(kwargs["transfer_id"])
        result = await service.request_transfer(user_id, "evm", DESTINATION, "1")
        assert result.success is True


class TestGetTransfer:
    """Tests for record lookup."""

    @pytest.mark.asyncio
    async def test_missing(self, service):
        with pytest.raises(TransferNotFound):
            await service.get_transfer(12345)
