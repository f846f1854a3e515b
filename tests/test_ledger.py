"""Tests for the ledger module."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import InvalidRequestError

from relaypay.chains import Network
from relaypay.errors import TransferNotFound
from relaypay.ledger.models import TransferStatus
from relaypay.ledger.repository import LedgerRepository

DESTINATION = "0x000000000000000000000000000000000000dEaD"


async def _user_id(repo: LedgerRepository, external_id: str = "ext-1") -> int:
    user = await repo.get_or_create_user(external_id)
    return user.id


class TestUserOperations:
    """Tests for user operations."""

    @pytest.mark.asyncio
    async def test_create_user(self, ledger_repo: LedgerRepository, db_session):
        """Test user creation."""
        user = await ledger_repo.get_or_create_user("ext-123", email="a@example.com")
        await db_session.commit()

        assert user.id is not None
        assert user.external_id == "ext-123"
        assert user.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_get_existing_user(self, ledger_repo: LedgerRepository, db_session):
        """Test retrieving existing user."""
        user1 = await ledger_repo.get_or_create_user("ext-111")
        await db_session.commit()

        user2 = await ledger_repo.get_or_create_user("ext-111")

        assert user1.id == user2.id
        assert (await ledger_repo.get_user(user1.id)).external_id == "ext-111"

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger_repo: LedgerRepository):
        assert await ledger_repo.get_user_by_external_id("nobody") is None

    @pytest.mark.asyncio
    async def test_transfers_are_never_lazy_loaded(self, session_scope):
        """History goes through get_user_transfers, never the relationship."""
        async with session_scope() as session:
            await LedgerRepository(session).get_or_create_user("ext-lazy")

        async with session_scope() as session:
            user = await LedgerRepository(session).get_user_by_external_id("ext-lazy")
            with pytest.raises(InvalidRequestError):
                user.transfers


class TestTransferRecords:
    """Tests for transfer record lifecycle."""

    @pytest.mark.asyncio
    async def test_create_pending(self, ledger_repo: LedgerRepository, db_session):
        user_id = await _user_id(ledger_repo)

        transfer = await ledger_repo.create_transfer(
            user_id, Network.EVM, Decimal("12.5"), DESTINATION
        )
        await db_session.commit()

        assert transfer.id is not None
        assert transfer.status == TransferStatus.PENDING
        assert transfer.network == "evm"
        assert transfer.amount == Decimal("12.5")
        assert transfer.tx_hash is None
        assert transfer.needs_reconciliation is False

    @pytest.mark.asyncio
    async def test_create_rejects_non_positive(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)

        with pytest.raises(ValueError, match="positive"):
            await ledger_repo.create_transfer(user_id, "evm", Decimal("0"), DESTINATION)

    @pytest.mark.asyncio
    async def test_attach_tx_hash_keeps_pending(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "solana", Decimal("1"), "dest")

        updated = await ledger_repo.update_transfer_status(
            transfer.id, TransferStatus.PENDING, tx_hash="sig-1", fee_payer="relayer"
        )

        assert updated.status == TransferStatus.PENDING
        assert updated.tx_hash == "sig-1"
        assert updated.fee_payer == "relayer"
        assert updated.submitted_at is not None
        assert updated.completed_at is None

    @pytest.mark.asyncio
    async def test_permit_hash_marks_submission(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), "0xdest")

        updated = await ledger_repo.update_transfer_status(
            transfer.id, TransferStatus.PENDING, permit_tx_hash="0xpermit"
        )

        assert updated.tx_hash is None
        assert updated.submitted_at is not None

    @pytest.mark.asyncio
    async def test_confirm(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)

        confirmed = await ledger_repo.update_transfer_status(
            transfer.id, TransferStatus.CONFIRMED, tx_hash="0xabc"
        )

        assert confirmed.status == TransferStatus.CONFIRMED
        assert confirmed.completed_at is not None

    @pytest.mark.asyncio
    async def test_confirm_clears_reconciliation_flag(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)
        await ledger_repo.update_transfer_status(
            transfer.id, "pending", tx_hash="0xabc", needs_reconciliation=True
        )

        confirmed = await ledger_repo.update_transfer_status(transfer.id, "confirmed")

        assert confirmed.needs_reconciliation is False

    @pytest.mark.asyncio
    async def test_failed_requires_reason(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)

        with pytest.raises(ValueError, match="failure reason"):
            await ledger_repo.update_transfer_status(transfer.id, TransferStatus.FAILED)

        failed = await ledger_repo.update_transfer_status(
            transfer.id,
            TransferStatus.FAILED,
            failure_reason="Insufficient USDC balance",
            error_code="INSUFFICIENT_USER_BALANCE",
        )
        assert failed.status == TransferStatus.FAILED
        assert failed.error_code == "INSUFFICIENT_USER_BALANCE"

    @pytest.mark.asyncio
    async def test_terminal_status_never_changes(self, ledger_repo: LedgerRepository):
        """A confirmed record ignores later failed or pending updates."""
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)
        await ledger_repo.update_transfer_status(transfer.id, "confirmed", tx_hash="0xabc")

        after_fail = await ledger_repo.update_transfer_status(
            transfer.id, "failed", failure_reason="late failure", tx_hash="0xother"
        )
        after_pending = await ledger_repo.update_transfer_status(
            transfer.id, "pending", needs_reconciliation=True
        )

        assert after_fail.status == TransferStatus.CONFIRMED
        assert after_fail.tx_hash == "0xabc"
        assert after_fail.failure_reason is None
        assert after_pending.status == TransferStatus.CONFIRMED
        assert after_pending.needs_reconciliation is False

    @pytest.mark.asyncio
    async def test_repeated_failure_is_idempotent(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)
        first = await ledger_repo.update_transfer_status(
            transfer.id, "failed", failure_reason="first"
        )
        completed_at = first.completed_at

        second = await ledger_repo.update_transfer_status(
            transfer.id, "failed", failure_reason="second"
        )

        assert second.failure_reason == "first"
        assert second.completed_at == completed_at

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        transfer = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)

        with pytest.raises(ValueError, match="Cannot update"):
            await ledger_repo.update_transfer_status(transfer.id, "pending", amount=Decimal("2"))

    @pytest.mark.asyncio
    async def test_missing_transfer(self, ledger_repo: LedgerRepository):
        with pytest.raises(TransferNotFound):
            await ledger_repo.update_transfer_status(999, "confirmed")


class TestTransferQueries:
    """Tests for history and pending queries."""

    @pytest.mark.asyncio
    async def test_user_history(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        for amount in ("1", "2", "3"):
            await ledger_repo.create_transfer(user_id, "evm", Decimal(amount), DESTINATION)

        history = await ledger_repo.get_user_transfers(user_id, limit=2)

        assert len(history) == 2
        assert history[0].amount == Decimal("3")

    @pytest.mark.asyncio
    async def test_history_filters_and_count(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        other_id = await _user_id(ledger_repo, "ext-2")
        evm = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)
        sol = await ledger_repo.create_transfer(user_id, Network.SOLANA, Decimal("2"), "dest")
        await ledger_repo.create_transfer(other_id, "evm", Decimal("5"), DESTINATION)
        await ledger_repo.update_transfer_status(sol.id, TransferStatus.CONFIRMED, tx_hash="sig")

        evm_only = await ledger_repo.get_user_transfers(user_id, network=Network.EVM)
        confirmed = await ledger_repo.get_user_transfers(user_id, status="confirmed")
        second_page = await ledger_repo.get_user_transfers(user_id, limit=1, offset=1)

        assert [t.id for t in evm_only] == [evm.id]
        assert [t.id for t in confirmed] == [sol.id]
        assert [t.id for t in second_page] == [evm.id]
        assert await ledger_repo.count_user_transfers(user_id) == 2
        assert await ledger_repo.count_user_transfers(user_id, network="solana") == 1
        assert await ledger_repo.count_user_transfers(user_id, status=TransferStatus.PENDING) == 1

    @pytest.mark.asyncio
    async def test_pending_filters(self, ledger_repo: LedgerRepository):
        user_id = await _user_id(ledger_repo)
        evm = await ledger_repo.create_transfer(user_id, "evm", Decimal("1"), DESTINATION)
        sol = await ledger_repo.create_transfer(user_id, "solana", Decimal("1"), "dest")
        done = await ledger_repo.create_transfer(user_id, "solana", Decimal("1"), "dest")
        await ledger_repo.update_transfer_status(sol.id, "pending", tx_hash="sig")
        await ledger_repo.update_transfer_status(done.id, "confirmed", tx_hash="sig2")

        pending = await ledger_repo.get_pending_transfers()
        solana_only = await ledger_repo.get_pending_transfers(Network.SOLANA)
        submitted = await ledger_repo.get_pending_transfers(submitted_only=True)

        assert [t.id for t in pending] == [evm.id, sol.id]
        assert [t.id for t in solana_only] == [sol.id]
        assert [t.id for t in submitted] == [sol.id]


class TestTransferLedger:
    """Tests for the session-per-call ledger used by the orchestrator."""

    @pytest.mark.asyncio
    async def test_changes_are_committed(self, transfer_ledger, funded_user):
        user_id, _ = funded_user

        record = await transfer_ledger.create_transfer(user_id, "solana", Decimal("2"), "dest")
        await transfer_ledger.update_status(record.id, TransferStatus.PENDING, tx_hash="sig")

        stored = await transfer_ledger.get_transfer(record.id)
        assert stored.tx_hash == "sig"
        assert stored.status == TransferStatus.PENDING
        assert stored.to_dict()["created_at"] is not None

        pending = await transfer_ledger.get_pending_transfers("solana", submitted_only=True)
        assert [t.id for t in pending] == [record.id]
