"""Payment retry worker for failed payments.

This worker runs periodically to:
1. Check failed payments whose next retry is due
2. Ask the gateway whether the order was paid after all (false negative)
3. Otherwise schedule the next retry from the backoff table
"""
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog

from checkout import metrics
from checkout.adapters.razorpay_adapter import GatewayAdapter
from checkout.exceptions import GatewayRejected, GatewayUnavailable, InvalidTransition, RetryExhausted
from checkout.models.payment import Payment
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_store import PaymentStore
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

SWEEP_NAME = "retry"

DEFAULT_RETRY_DELAYS_MINUTES = (5, 15, 30)


def retry_delay(retry_count: int, delays_minutes: Sequence[int] = DEFAULT_RETRY_DELAYS_MINUTES) -> timedelta:
    """
    Backoff for the next retry, indexed by retries already consumed.

    Counts beyond the table use its last entry.
    """
    index = min(retry_count, len(delays_minutes) - 1)
    return timedelta(minutes=delays_minutes[index])


class RetrySweep:
    """Re-checks failed payments against the gateway on a backoff schedule."""

    def __init__(
        self,
        store: PaymentStore,
        gateway: GatewayAdapter,
        linkage: OrderLinkageNotifier,
        delays_minutes: Sequence[int] = DEFAULT_RETRY_DELAYS_MINUTES,
    ):
        self.store = store
        self.gateway = gateway
        self.linkage = linkage
        self.delays_minutes = tuple(delays_minutes)

    async def run(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Process payment retries for failed payments.

        Gateway outages leave the payment untouched for the next pass;
        a gateway rejection fails it for good.

        Returns:
            Dict with counts of processed retries
        """
        now = now or utcnow()
        due = await self.store.find_due_for_retry(now)

        logger.info("payment_retry_started", payments_count=len(due))

        counts = {
            "processed": len(due),
            "recovered": 0,
            "rescheduled": 0,
            "abandoned": 0,
            "deferred": 0,
            "skipped": 0,
            "errors": 0,
        }

        for payment in due:
            try:
                outcome = await self._retry(payment, now)
            except InvalidTransition:
                outcome = "skipped"
            except Exception as e:
                outcome = "errors"
                logger.exception("payment_retry_error", payment_id=str(payment.id), exc_info=e)

            counts[outcome] += 1
            metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome=outcome).inc()

        logger.info("payment_retry_completed", **counts)
        return counts

    async def _retry(self, payment: Payment, now: datetime) -> str:
        if not payment.gateway_order_id:
            await self.store.mark_failed(payment.id, "No gateway order to retry", now=now)
            logger.warning("payment_retry_abandoned", payment_id=str(payment.id), reason="missing gateway order")
            return "abandoned"

        try:
            order = await self.gateway.fetch_order(payment.gateway_order_id)
        except GatewayUnavailable as e:
            # Not counted against retry_count; the next pass tries again
            logger.warning("payment_retry_gateway_unavailable", payment_id=str(payment.id), error=e.message)
            return "deferred"
        except GatewayRejected as e:
            await self.store.mark_failed(payment.id, f"Gateway rejected retry check: {e.message}", now=now)
            logger.warning("payment_retry_abandoned", payment_id=str(payment.id), reason=e.message)
            return "abandoned"

        if order["status"] == "paid":
            payment = await self.store.mark_verified(payment.id)
            logger.info(
                "payment_retry_succeeded",
                payment_id=str(payment.id),
                gateway_order_id=payment.gateway_order_id,
                retry_count=payment.retry_count,
            )
            await self.linkage.push_status(payment, "completed", transaction_id=payment.gateway_payment_id)
            return "recovered"

        delay = retry_delay(payment.retry_count, self.delays_minutes)
        try:
            payment = await self.store.schedule_retry(payment.id, delay, now=now)
        except RetryExhausted:
            await self.store.mark_failed(payment.id, payment.failure_reason or "Retries exhausted", now=now)
            return "abandoned"

        logger.info(
            "payment_retry_scheduled",
            payment_id=str(payment.id),
            gateway_status=order["status"],
            retry_count=payment.retry_count,
            next_retry_at=payment.next_retry_at.isoformat(),
        )
        return "rescheduled"
