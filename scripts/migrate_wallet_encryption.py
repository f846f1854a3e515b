#!/usr/bin/env python3
"""Encrypt legacy plaintext wallets.

Wallets created before key encryption was introduced carry
is_encrypted=False. This script encrypts their private keys with
ENCRYPTION_KEY, after checking every key still derives its stored address.
Already encrypted wallets are left untouched, so the script can be re-run.

Usage:
    python scripts/migrate_wallet_encryption.py [--dry-run]

Options:
    --dry-run  List legacy wallets without changing them
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from relaypay.config import get_settings
from relaypay.crypto import get_encryption_provider
from relaypay.errors import WalletError
from relaypay.ledger.database import close_db, get_db, init_db
from relaypay.wallet.store import WalletStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def migrate(dry_run: bool = False) -> dict:
    """Encrypt every legacy wallet, one transaction per wallet."""
    settings = get_settings()
    encryptor = get_encryption_provider(settings.encryption_key)

    async with get_db() as session:
        legacy = await WalletStore(session, encryptor).list_legacy_wallets()
        user_ids = [wallet.user_id for wallet in legacy]

    logger.info(f"Found {len(user_ids)} legacy wallet(s)")
    result = {"found": len(user_ids), "migrated": 0, "failed": []}

    if dry_run:
        for user_id in user_ids:
            logger.info(f"  Would migrate wallet of user {user_id}")
        return result

    for user_id in user_ids:
        try:
            async with get_db() as session:
                if await WalletStore(session, encryptor).migrate_legacy_wallet(user_id):
                    result["migrated"] += 1
                    logger.info(f"  Migrated wallet of user {user_id}")
        except WalletError as e:
            logger.error(f"  Wallet of user {user_id} not migrated: {e.message}")
            result["failed"].append(user_id)

    return result


async def main():
    parser = argparse.ArgumentParser(description="Encrypt legacy plaintext wallets")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")

    args = parser.parse_args()

    # Initialize database
    await init_db()

    logger.info("=" * 60)
    logger.info("WALLET ENCRYPTION MIGRATION")
    logger.info("=" * 60)

    if args.dry_run:
        logger.info("DRY RUN MODE - No changes will be made")

    try:
        result = await migrate(dry_run=args.dry_run)
    finally:
        await close_db()

    logger.info("=" * 60)
    logger.info(f"Found:    {result['found']}")
    logger.info(f"Migrated: {result['migrated']}")
    if result["failed"]:
        logger.warning(f"Failed:   {result['failed']} (keys do not match stored addresses)")
        sys.exit(1)

    return result


if __name__ == "__main__":
    asyncio.run(main())
