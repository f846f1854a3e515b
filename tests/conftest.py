"""Pytest configuration and fixtures."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["RELAYER_PRIVATE_KEY"] = ""
os.environ["SOLANA_RELAYER_PRIVATE_KEY"] = ""
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["DEBUG"] = "false"

from relaypay.crypto import EncryptionProvider
from relaypay.ledger.models import Base
from relaypay.ledger.repository import LedgerRepository, TransferLedger
from relaypay.utils.locks import clear_transfer_locks
from relaypay.wallet.store import ScopedWalletKeys, WalletStore


@pytest.fixture(autouse=True)
def _reset_transfer_locks():
    """Locks are module-global; start every test without any."""
    clear_transfer_locks()
    yield
    clear_transfer_locks()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def session_scope(session_factory):
    """Session scope equivalent to get_db(), bound to the test engine."""

    @asynccontextmanager
    async def scope():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


@pytest.fixture
def encryptor() -> EncryptionProvider:
    return EncryptionProvider(TEST_ENCRYPTION_KEY)


@pytest_asyncio.fixture
async def wallet_store(db_session, encryptor) -> WalletStore:
    return WalletStore(db_session, encryptor)


@pytest.fixture
def transfer_ledger(session_scope) -> TransferLedger:
    return TransferLedger(session_scope)


@pytest.fixture
def wallet_keys(session_scope, encryptor) -> ScopedWalletKeys:
    return ScopedWalletKeys(encryptor, session_scope=session_scope)


@pytest_asyncio.fixture
async def funded_user(session_scope, encryptor):
    """A committed user with a provisioned wallet.

    Returns (user_id, WalletAddresses).
    """
    async with session_scope() as session:
        user = await LedgerRepository(session).get_or_create_user("user-1", "user1@example.com")
        addresses = await WalletStore(session, encryptor).provision_wallet(user.id)
        user_id = user.id
    return user_id, addresses
