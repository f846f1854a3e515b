"""Repository for users and transfer records."""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from relaypay.errors import TransferNotFound
from relaypay.ledger.models import Transfer, TransferStatus, User

logger = logging.getLogger(__name__)

# Fields a status update may set alongside the status
UPDATABLE_FIELDS = frozenset({
    "tx_hash",
    "permit_tx_hash",
    "source_address",
    "fee_payer",
    "failure_reason",
    "error_code",
    "needs_reconciliation",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # User operations
    async def get_or_create_user(self, external_id: str, email: Optional[str] = None) -> User:
        """Get existing user or create a new one."""
        user = await self.get_user_by_external_id(external_id)

        if user is None:
            user = User(external_id=external_id, email=email)
            self.session.add(user)
            await self.session.flush()

        return user

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        stmt = select(User).where(User.external_id == external_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user(self, user_id: int) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Transfer operations
    async def create_transfer(
        self,
        user_id: int,
        network: str,
        amount: Decimal,
        destination_address: str,
    ) -> Transfer:
        """Create a pending transfer record."""
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")

        transfer = Transfer(
            user_id=user_id,
            network=str(getattr(network, "value", network)),
            amount=amount,
            destination_address=destination_address,
            status=TransferStatus.PENDING,
        )
        self.session.add(transfer)
        await self.session.flush()
        return transfer

    async def get_transfer(self, transfer_id: int) -> Optional[Transfer]:
        stmt = select(Transfer).where(Transfer.id == transfer_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_transfer_status(
        self,
        transfer_id: int,
        status: Union[TransferStatus, str],
        **fields,
    ) -> Transfer:
        """Move a transfer along pending -> confirmed/failed.

        Updating a pending record with status PENDING only attaches fields
        (tx hash, fee payer, ...). Terminal records are never modified:
        repeated or conflicting updates return the record unchanged.

        Raises:
            TransferNotFound: If the record does not exist
            ValueError: On unknown fields or a failure without a reason
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update transfer fields: {sorted(unknown)}")

        status = TransferStatus(status)
        transfer = await self.get_transfer(transfer_id)
        if transfer is None:
            raise TransferNotFound(f"Transfer {transfer_id} not found")

        current = TransferStatus(transfer.status)
        if current.is_terminal:
            if status != current:
                logger.warning(
                    f"Ignoring {status.value} update for transfer {transfer_id}: "
                    f"already {current.value}"
                )
            return transfer

        if status == TransferStatus.FAILED and not (
            fields.get("failure_reason") or transfer.failure_reason
        ):
            raise ValueError("A failed transfer needs a failure reason")

        for name, value in fields.items():
            if value is not None:
                setattr(transfer, name, value)

        if (fields.get("tx_hash") or fields.get("permit_tx_hash")) and transfer.submitted_at is None:
            transfer.submitted_at = _utcnow()

        if status.is_terminal:
            transfer.status = status
            transfer.completed_at = _utcnow()
            if status == TransferStatus.CONFIRMED:
                transfer.needs_reconciliation = False

        await self.session.flush()
        return transfer

    @staticmethod
    def _user_transfers_filter(
        user_id: int, network: Optional[str] = None, status: Optional[str] = None
    ) -> list:
        conditions = [Transfer.user_id == user_id]
        if network:
            conditions.append(Transfer.network == str(getattr(network, "value", network)))
        if status:
            conditions.append(Transfer.status == TransferStatus(status).value)
        return conditions

    async def get_user_transfers(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
        network: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[Transfer]:
        """Get transfer history for a user, newest first."""
        stmt = (
            select(Transfer)
            .where(*self._user_transfers_filter(user_id, network, status))
            .order_by(Transfer.created_at.desc(), Transfer.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_user_transfers(
        self, user_id: int, network: Optional[str] = None, status: Optional[str] = None
    ) -> int:
        stmt = select(func.count(Transfer.id)).where(
            *self._user_transfers_filter(user_id, network, status)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def get_pending_transfers(
        self, network: Optional[str] = None, submitted_only: bool = False
    ) -> list[Transfer]:
        """Get pending transfers, oldest first (for reconciliation)."""
        stmt = select(Transfer).where(Transfer.status == TransferStatus.PENDING)
        if network:
            stmt = stmt.where(Transfer.network == str(getattr(network, "value", network)))
        if submitted_only:
            stmt = stmt.where(Transfer.tx_hash.is_not(None))
        stmt = stmt.order_by(Transfer.created_at, Transfer.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class TransferLedger:
    """Ledger facade used by the orchestrator.

    Each call runs in its own committed session, so a submitted tx hash is
    durable before the orchestrator starts waiting for confirmation.
    """

    def __init__(self, session_scope: Optional[SessionScope] = None):
        if session_scope is None:
            from relaypay.ledger.database import get_db

            session_scope = get_db
        self._session_scope = session_scope

    async def create_transfer(
        self, user_id: int, network: str, amount: Decimal, destination_address: str
    ) -> Transfer:
        async with self._session_scope() as session:
            transfer = await LedgerRepository(session).create_transfer(
                user_id, network, amount, destination_address
            )
            await session.commit()
            return transfer

    async def get_transfer(self, transfer_id: int) -> Optional[Transfer]:
        async with self._session_scope() as session:
            return await LedgerRepository(session).get_transfer(transfer_id)

    async def update_status(
        self, transfer_id: int, status: Union[TransferStatus, str], **fields
    ) -> Transfer:
        async with self._session_scope() as session:
            transfer = await LedgerRepository(session).update_transfer_status(
                transfer_id, status, **fields
            )
            await session.commit()
            return transfer

    async def get_pending_transfers(
        self, network: Optional[str] = None, submitted_only: bool = False
    ) -> list[Transfer]:
        async with self._session_scope() as session:
            return await LedgerRepository(session).get_pending_transfers(
                network, submitted_only
            )
