"""Reconciliation of transfers whose outcome was not observed.

A transfer left pending (timeout, crash, lost RPC connection) is looked up
on chain by its tx hash. Records without a tx hash never reached the
network as far as the ledger knows; they are reported for manual review
and not changed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from relaypay.chains import Network
from relaypay.errors import OnChainExecutionFailed, RpcError
from relaypay.gasless.base import ChainStatus, TransferStrategy
from relaypay.ledger.models import TransferStatus
from relaypay.ledger.repository import TransferLedger

logger = logging.getLogger(__name__)


@dataclass
class ReconcileEntry:
    transfer_id: int
    network: str
    tx_hash: Optional[str]
    chain_status: Optional[ChainStatus]
    action: str


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    still_pending: int = 0
    unresolved: int = 0
    entries: list[ReconcileEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "confirmed": self.confirmed,
            "failed": self.failed,
            "still_pending": self.still_pending,
            "unresolved": self.unresolved,
            "entries": [
                {
                    "transfer_id": e.transfer_id,
                    "network": e.network,
                    "tx_hash": e.tx_hash,
                    "chain_status": e.chain_status.value if e.chain_status else None,
                    "action": e.action,
                }
                for e in self.entries
            ],
        }


class TransferReconciler:
    """Resolves pending ledger records against the chain."""

    def __init__(self, strategies: dict[Network, TransferStrategy], ledger: TransferLedger):
        self.strategies = strategies
        self.ledger = ledger

    async def reconcile_pending(
        self, fix: bool = False, network: Optional[Network] = None
    ) -> ReconcileReport:
        """Check every pending transfer.

        Args:
            fix: Apply confirmed/failed outcomes to the ledger. Without it the
                pass only reports what it would do.
            network: Restrict to one network
        """
        network_value = Network.parse(network).value if network else None
        pending = await self.ledger.get_pending_transfers(network_value)
        report = ReconcileReport()

        for record in pending:
            report.checked += 1

            if not record.tx_hash:
                report.unresolved += 1
                action = "manual_review" if record.needs_reconciliation else "in_flight"
                report.entries.append(
                    ReconcileEntry(record.id, record.network, None, None, action)
                )
                if record.needs_reconciliation:
                    logger.warning(
                        f"Transfer {record.id} flagged without a tx hash; needs manual review"
                    )
                continue

            strategy = self.strategies[Network.parse(record.network)]
            try:
                status = await strategy.check_status(record.tx_hash)
            except RpcError as e:
                logger.warning(f"Transfer {record.id}: status lookup failed, skipping: {e}")
                report.unresolved += 1
                report.entries.append(
                    ReconcileEntry(record.id, record.network, record.tx_hash, None, "skipped")
                )
                continue

            action = await self._apply(record.id, status, fix)
            if status == ChainStatus.CONFIRMED:
                report.confirmed += 1
            elif status == ChainStatus.FAILED:
                report.failed += 1
            elif status == ChainStatus.PENDING:
                report.still_pending += 1
            else:
                report.unresolved += 1
            report.entries.append(
                ReconcileEntry(record.id, record.network, record.tx_hash, status, action)
            )

        logger.info(
            f"Reconciliation {'applied' if fix else 'dry run'}: {report.checked} checked, "
            f"{report.confirmed} confirmed, {report.failed} failed, "
            f"{report.still_pending} pending, {report.unresolved} unresolved"
        )
        return report

    async def _apply(self, transfer_id: int, status: ChainStatus, fix: bool) -> str:
        if status == ChainStatus.CONFIRMED:
            if fix:
                await self.ledger.update_status(transfer_id, TransferStatus.CONFIRMED)
                logger.info(f"Transfer {transfer_id} reconciled as confirmed")
                return "marked_confirmed"
            return "would_confirm"

        if status == ChainStatus.FAILED:
            if fix:
                await self.ledger.update_status(
                    transfer_id,
                    TransferStatus.FAILED,
                    failure_reason="Transaction failed on chain (reconciled)",
                    error_code=OnChainExecutionFailed.code,
                )
                logger.info(f"Transfer {transfer_id} reconciled as failed")
                return "marked_failed"
            return "would_fail"

        if status == ChainStatus.NOT_FOUND:
            logger.warning(f"Transfer {transfer_id}: tx not found on chain; needs manual review")
            return "manual_review"

        return "wait"
