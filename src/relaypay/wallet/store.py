"""Custodial wallet storage.

Wallet rows hold one EVM and one Solana keypair per user. Private keys are
encrypted with the EncryptionProvider. Rows created before encryption was
introduced carry is_encrypted=False and must be migrated explicitly with
migrate_legacy_wallet(); the flag is the only thing that decides how a
stored key is read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from relaypay.crypto import EncryptionProvider
from relaypay.errors import KeyNotFound, KeypairMismatch, WalletNotMigrated
from relaypay.ledger.models import Wallet
from relaypay.ledger.repository import SessionScope
from relaypay.wallet.keys import (
    evm_address_from_key,
    generate_evm_keypair,
    generate_solana_keypair,
    solana_address_from_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletAddresses:
    evm_address: str
    solana_address: str


@dataclass(frozen=True)
class DecryptedKeys:
    """Plaintext private keys. Keep short-lived and never log."""

    evm_private_key: str
    solana_private_key: str

    def __repr__(self) -> str:
        return "DecryptedKeys(evm_private_key='***', solana_private_key='***')"


class WalletStore:
    """Key and wallet store backed by the database."""

    def __init__(
        self,
        session: AsyncSession,
        encryptor: EncryptionProvider,
        allow_plaintext: bool = False,
    ):
        self.session = session
        self.encryptor = encryptor
        self.allow_plaintext = allow_plaintext

    async def _get_wallet(self, user_id: int, active_only: bool = True) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.user_id == user_id)
        if active_only:
            stmt = stmt.where(Wallet.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_wallet(self, user_id: int) -> Wallet:
        wallet = await self._get_wallet(user_id)
        if wallet is None:
            raise KeyNotFound(f"No active wallet for user {user_id}")
        return wallet

    async def get_wallet_addresses(self, user_id: int) -> WalletAddresses:
        """Public addresses of a user's wallet. Never touches key material."""
        wallet = await self._require_wallet(user_id)
        return WalletAddresses(
            evm_address=wallet.evm_address,
            solana_address=wallet.solana_address,
        )

    async def get_decrypted_keys(self, user_id: int) -> DecryptedKeys:
        """Decrypt a user's private keys for signing.

        Raises:
            KeyNotFound: No active wallet
            DecryptionFailed: Ciphertext does not authenticate
            WalletNotMigrated: Legacy plaintext row while plaintext reads are off
            KeypairMismatch: A key does not derive the stored address
        """
        wallet = await self._require_wallet(user_id)

        if wallet.is_encrypted:
            keys = DecryptedKeys(
                evm_private_key=self.encryptor.decrypt(wallet.evm_private_key),
                solana_private_key=self.encryptor.decrypt(wallet.solana_private_key),
            )
        elif self.allow_plaintext:
            logger.warning(f"Reading unmigrated plaintext wallet of user {user_id}")
            keys = DecryptedKeys(
                evm_private_key=wallet.evm_private_key,
                solana_private_key=wallet.solana_private_key,
            )
        else:
            raise WalletNotMigrated(
                f"Wallet of user {user_id} holds plaintext keys; run the encryption migration"
            )

        _verify_keypairs(wallet, keys)
        return keys

    async def provision_wallet(self, user_id: int) -> WalletAddresses:
        """Return the user's wallet, creating it on first call.

        Concurrent callers race on the unique user_id constraint; the loser
        rolls back to a savepoint and returns the winner's wallet. Other
        pending work in the caller's session is kept.
        """
        existing = await self._get_wallet(user_id, active_only=False)
        if existing is not None:
            return WalletAddresses(existing.evm_address, existing.solana_address)

        evm = generate_evm_keypair()
        solana = generate_solana_keypair()

        wallet = Wallet(
            user_id=user_id,
            evm_address=evm.address,
            evm_private_key=self.encryptor.encrypt(evm.private_key),
            solana_address=solana.address,
            solana_private_key=self.encryptor.encrypt(solana.private_key),
            is_active=True,
            is_encrypted=True,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(wallet)
        except IntegrityError:
            existing = await self._get_wallet(user_id, active_only=False)
            if existing is None:
                raise
            logger.info(f"Wallet for user {user_id} was created concurrently")
            return WalletAddresses(existing.evm_address, existing.solana_address)

        logger.info(f"Provisioned wallet for user {user_id}: {evm.address} / {solana.address}")
        return WalletAddresses(evm.address, solana.address)

    async def migrate_legacy_wallet(self, user_id: int) -> bool:
        """Encrypt the plaintext keys of a legacy wallet.

        Returns:
            True if the wallet was migrated, False if it was already encrypted

        Raises:
            KeyNotFound: No wallet for the user
            KeypairMismatch: Stored keys do not match stored addresses
        """
        wallet = await self._get_wallet(user_id, active_only=False)
        if wallet is None:
            raise KeyNotFound(f"No wallet for user {user_id}")
        if wallet.is_encrypted:
            return False

        keys = DecryptedKeys(wallet.evm_private_key, wallet.solana_private_key)
        _verify_keypairs(wallet, keys)

        wallet.evm_private_key = self.encryptor.encrypt(keys.evm_private_key)
        wallet.solana_private_key = self.encryptor.encrypt(keys.solana_private_key)
        wallet.is_encrypted = True
        wallet.migrated_at = datetime.now(timezone.utc)
        await self.session.flush()

        logger.info(f"Migrated wallet of user {user_id} to encrypted storage")
        return True

    async def list_legacy_wallets(self) -> list[Wallet]:
        stmt = select(Wallet).where(Wallet.is_encrypted.is_(False)).order_by(Wallet.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def deactivate_wallet(self, user_id: int) -> bool:
        """Soft-delete a wallet. Returns False if there was nothing to deactivate."""
        wallet = await self._get_wallet(user_id)
        if wallet is None:
            return False
        wallet.is_active = False
        await self.session.flush()
        logger.info(f"Deactivated wallet of user {user_id}")
        return True


def _verify_keypairs(wallet: Wallet, keys: DecryptedKeys) -> None:
    try:
        evm_address = evm_address_from_key(keys.evm_private_key)
        solana_address = solana_address_from_key(keys.solana_private_key)
    except ValueError as e:
        raise KeypairMismatch(f"Wallet of user {wallet.user_id} holds an unreadable key: {e}")

    if evm_address.lower() != wallet.evm_address.lower():
        raise KeypairMismatch(f"EVM key of user {wallet.user_id} does not match stored address")
    if solana_address != wallet.solana_address:
        raise KeypairMismatch(f"Solana key of user {wallet.user_id} does not match stored address")


class ScopedWalletKeys:
    """Key source for the orchestrator; opens one session per lookup."""

    def __init__(
        self,
        encryptor: EncryptionProvider,
        allow_plaintext: bool = False,
        session_scope: Optional[SessionScope] = None,
    ):
        if session_scope is None:
            from relaypay.ledger.database import get_db

            session_scope = get_db
        self._encryptor = encryptor
        self._allow_plaintext = allow_plaintext
        self._session_scope = session_scope

    async def get_decrypted_keys(self, user_id: int) -> DecryptedKeys:
        async with self._session_scope() as session:
            store = WalletStore(session, self._encryptor, self._allow_plaintext)
            return await store.get_decrypted_keys(user_id)

    async def get_wallet_addresses(self, user_id: int) -> WalletAddresses:
        async with self._session_scope() as session:
            store = WalletStore(session, self._encryptor, self._allow_plaintext)
            return await store.get_wallet_addresses(user_id)
