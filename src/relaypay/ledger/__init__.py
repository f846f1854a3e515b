"""Ledger module for users, wallets and transfer records."""

from relaypay.ledger.database import close_db, get_db, init_db
from relaypay.ledger.models import Base, Transfer, TransferStatus, User, Wallet
from relaypay.ledger.repository import LedgerRepository, TransferLedger

__all__ = [
    # Models
    "Base",
    "User",
    "Wallet",
    "Transfer",
    # Enums
    "TransferStatus",
    # Database
    "get_db",
    "init_db",
    "close_db",
    "LedgerRepository",
    "TransferLedger",
]
