#!/usr/bin/env python3
"""Gasless Transfer Reconciliation Script.

Looks up pending transfers on chain by their tx hash and reports (or, with
--fix, records) the real outcome. Run after a timeout, crash or RPC outage
left records pending.

Usage:
    python scripts/reconcile.py [--network solana] [--fix]

Options:
    --network  Only reconcile one network (evm/base or solana)
    --fix      Mark confirmed/failed transfers on the ledger
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from relaypay.gasless.factory import close_orchestrator, get_orchestrator
from relaypay.ledger.database import close_db, init_db
from relaypay.ledger.repository import TransferLedger
from relaypay.services.reconciler import TransferReconciler

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Gasless Transfer Reconciliation")
    parser.add_argument("--network", type=str, help="Only reconcile one network")
    parser.add_argument("--fix", action="store_true", help="Record confirmed/failed outcomes")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    args = parser.parse_args()

    # Initialize database
    await init_db()

    logger.info("=" * 60)
    logger.info("GASLESS TRANSFER RECONCILIATION")
    logger.info("=" * 60)

    if not args.fix:
        logger.info("DRY RUN MODE - No changes will be made (use --fix to apply)")

    try:
        orchestrator = get_orchestrator()
        reconciler = TransferReconciler(orchestrator.strategies, TransferLedger())
        report = await reconciler.reconcile_pending(fix=args.fix, network=args.network)
    finally:
        await close_orchestrator()
        await close_db()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return report

    # Summary
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)

    for entry in report.entries:
        chain_status = entry.chain_status.value if entry.chain_status else "-"
        logger.info(
            f"#{entry.transfer_id} [{entry.network}] {entry.tx_hash or '(no tx hash)'}: "
            f"{chain_status} -> {entry.action}"
        )

    logger.info(f"Checked:       {report.checked}")
    logger.info(f"Confirmed:     {report.confirmed}")
    logger.info(f"Failed:        {report.failed}")
    logger.info(f"Still pending: {report.still_pending}")
    logger.info(f"Unresolved:    {report.unresolved}")

    return report


if __name__ == "__main__":
    asyncio.run(main())
