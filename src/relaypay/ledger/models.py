"""SQLAlchemy models for users, custodial wallets and transfer records."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TransferStatus(str, Enum):
    """Status of a gasless transfer.

    Transitions are monotonic: pending -> confirmed or pending -> failed.
    """

    PENDING = "pending"        # Created, submitted or awaiting confirmation
    CONFIRMED = "confirmed"    # Confirmed on chain
    FAILED = "failed"          # Rejected before or after submission

    @property
    def is_terminal(self) -> bool:
        return self != TransferStatus.PENDING


class User(Base):
    """Platform user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    wallet: Mapped[Optional["Wallet"]] = relationship(back_populates="user", lazy="selectin")
    transfers: Mapped[list["Transfer"]] = relationship(back_populates="user", lazy="raise")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, external_id={self.external_id})>"


class Wallet(Base):
    """Custodial EVM + Solana wallet of a user.

    Private key columns hold ciphertext when is_encrypted is True and legacy
    plaintext otherwise. The flag only ever flips False -> True.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    evm_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    evm_private_key: Mapped[str] = mapped_column(Text, nullable=False)
    solana_address: Mapped[str] = mapped_column(String(44), unique=True, nullable=False)
    solana_private_key: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    migrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="wallet")

    def public_info(self) -> dict:
        """Wallet fields that are safe to expose."""
        return {
            "evm_address": self.evm_address,
            "solana_address": self.solana_address,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<Wallet(user_id={self.user_id}, evm={self.evm_address}, solana={self.solana_address})>"


class Transfer(Base):
    """Record of a sponsored USDC transfer. Never deleted."""

    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    network: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 6), nullable=False)
    destination_address: Mapped[str] = mapped_column(String(255), nullable=False)
    source_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    permit_tx_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    fee_payer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[TransferStatus] = mapped_column(
        String(20), default=TransferStatus.PENDING, nullable=False
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    needs_reconciliation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="transfers")

    __table_args__ = (
        Index("ix_transfers_user_network", "user_id", "network"),
        Index("ix_transfers_status", "status"),
    )

    # Fetch server defaults (created_at) on insert
    __mapper_args__ = {"eager_defaults": True}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "network": self.network,
            "amount": str(self.amount),
            "destination_address": self.destination_address,
            "source_address": self.source_address,
            "tx_hash": self.tx_hash,
            "permit_tx_hash": self.permit_tx_hash,
            "fee_payer": self.fee_payer,
            "status": TransferStatus(self.status).value,
            "failure_reason": self.failure_reason,
            "error_code": self.error_code,
            "needs_reconciliation": self.needs_reconciliation,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
