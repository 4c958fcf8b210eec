"""Reconciliation sweep: catch gateway outcomes the customer never reported.

Runs every 20 minutes over the most recent open payments that reached the
gateway. Covers customers who paid but closed the tab before the callback
was verified, and payments the gateway saw attempted but never captured.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Optional

import structlog

from checkout import metrics
from checkout.adapters.razorpay_adapter import GatewayAdapter
from checkout.exceptions import InvalidTransition
from checkout.models.payment import Payment
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_store import PaymentStore
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

SWEEP_NAME = "reconciliation"

NOT_CAPTURED_REASON = "Payment attempted but not captured"


class ReconciliationSweep:
    """Aligns open payments with the gateway's view of their orders."""

    def __init__(
        self,
        store: PaymentStore,
        gateway: GatewayAdapter,
        linkage: OrderLinkageNotifier,
        window: timedelta = timedelta(hours=2),
        limit: int = 30,
        concurrency: int = 5,
        batch_delay: float = 0.1,
        retry_delay: timedelta = timedelta(minutes=5),
    ):
        """
        Initialize the sweep.

        Args:
            store: Payment record store
            gateway: Gateway adapter
            linkage: Order linkage notifier
            window: Only payments created this recently are examined
            limit: Most recent payments examined per pass
            concurrency: Payments reconciled concurrently per sub-batch
            batch_delay: Seconds to pause between sub-batches
            retry_delay: Retry sweep delay armed for attempted payments
        """
        self.store = store
        self.gateway = gateway
        self.linkage = linkage
        self.window = window
        self.limit = limit
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.retry_delay = retry_delay

    async def run(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Run one pass.

        Returns:
            Dict with counts per outcome
        """
        now = now or utcnow()
        payments = await self.store.find_for_reconciliation(now, window=self.window, limit=self.limit)

        logger.info("reconciliation_started", payments_count=len(payments))

        counts = {"processed": len(payments), "completed": 0, "failed": 0, "unchanged": 0, "errors": 0}

        for start in range(0, len(payments), self.concurrency):
            batch = payments[start : start + self.concurrency]
            results = await asyncio.gather(
                *(self.reconcile_payment(payment) for payment in batch),
                return_exceptions=True,
            )

            for payment, result in zip(batch, results):
                if isinstance(result, BaseException):
                    outcome = "errors"
                    logger.error(
                        "reconciliation_payment_error",
                        payment_id=str(payment.id),
                        error=str(result),
                        exc_info=result,
                    )
                else:
                    outcome = result
                counts[outcome] += 1
                metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome=outcome).inc()

            if start + self.concurrency < len(payments):
                await asyncio.sleep(self.batch_delay)

        logger.info("reconciliation_completed", **counts)
        return counts

    async def reconcile_payment(self, payment: Payment) -> str:
        """
        Reconcile one payment with its gateway order.

        Returns:
            ``"completed"``, ``"failed"`` or ``"unchanged"``

        Raises:
            GatewayUnavailable: Gateway could not be reached
            GatewayRejected: Gateway refused the lookup
        """
        if not payment.gateway_order_id:
            return "unchanged"

        order = await self.gateway.fetch_order(payment.gateway_order_id)
        remote_status = order["status"]

        try:
            if remote_status == "paid":
                payment = await self.store.mark_verified(payment.id)
                logger.info("payment_reconciled", payment_id=str(payment.id), gateway_status=remote_status)
                await self.linkage.push_status(payment, "completed", transaction_id=payment.gateway_payment_id)
                return "completed"

            if remote_status == "attempted":
                payment = await self.store.mark_failed(payment.id, NOT_CAPTURED_REASON, retry_in=self.retry_delay)
                logger.info("payment_reconciled", payment_id=str(payment.id), gateway_status=remote_status)
                await self.linkage.push_status(payment, "failed", note="Payment not captured")
                return "failed"
        except InvalidTransition:
            # Resolved concurrently by verification or another sweep
            return "unchanged"

        return "unchanged"
