"""Data retention worker for resolved payment records.

Runs daily at 02:00 UTC and deletes completed, failed and timed-out
payments older than the retention period. Open payments are never touched.
"""
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from checkout import metrics
from checkout.services.payment_store import PaymentStore
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

SWEEP_NAME = "cleanup"


class CleanupSweep:
    """Deletes resolved payments past the retention period."""

    def __init__(self, store: PaymentStore, retention_days: int = 30, batch_size: int = 1000):
        """
        Initialize the sweep.

        Args:
            store: Payment record store
            retention_days: Days to keep resolved payments
            batch_size: Rows deleted per transaction
        """
        self.store = store
        self.retention_days = retention_days
        self.batch_size = batch_size

    async def run(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Delete old resolved payments.

        Returns:
            Dictionary with the deletion count and cutoff
        """
        cutoff_date = (now or utcnow()) - timedelta(days=self.retention_days)

        logger.info(
            "deleting_old_payments",
            cutoff_date=cutoff_date.isoformat(),
            retention_days=self.retention_days,
        )

        deleted = await self.store.delete_terminal_before(cutoff_date, batch_size=self.batch_size)
        metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome="deleted").inc(deleted)

        logger.info(
            "payment_cleanup_complete",
            total_deleted=deleted,
            cutoff_date=cutoff_date.isoformat(),
        )

        return {"deleted": deleted, "cutoff": cutoff_date.isoformat()}
