"""Expiry sweep: time out payments whose checkout session has lapsed.

Runs every 5 minutes. A pending or processing payment past its
``timeout_at`` is moved to ``timeout``; its order (if any) is told the
payment failed, and the customer gets an email with a retry link.
"""
from datetime import datetime
from typing import Optional

import structlog

from checkout import metrics
from checkout.exceptions import InvalidTransition
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_store import PaymentStore
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

SWEEP_NAME = "expiry"


class ExpirySweep:
    """Moves expired open payments to ``timeout``."""

    def __init__(self, store: PaymentStore, linkage: OrderLinkageNotifier):
        self.store = store
        self.linkage = linkage

    async def run(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Run one pass.

        Returns:
            Dict with counts of processed payments
        """
        now = now or utcnow()
        expired = await self.store.find_expired(now)

        logger.info("expiry_sweep_started", payments_count=len(expired))

        timed_out = 0
        skipped = 0
        notified = 0
        errors = 0

        for payment in expired:
            try:
                payment = await self.store.mark_timeout(payment.id)
            except InvalidTransition:
                # Verified or cancelled since the query ran
                skipped += 1
                metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome="skipped").inc()
                continue
            except Exception as e:
                errors += 1
                metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome="error").inc()
                logger.exception("expiry_sweep_payment_error", payment_id=str(payment.id), exc_info=e)
                continue

            timed_out += 1
            metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome="timeout").inc()
            logger.info(
                "payment_timed_out",
                payment_id=str(payment.id),
                timeout_at=payment.timeout_at.isoformat(),
            )

            try:
                await self.linkage.push_status(payment, "failed", note="Payment timeout")
                if await self.linkage.notify_timeout(payment):
                    notified += 1
            except Exception as e:
                errors += 1
                metrics.payment_sweep_records_total.labels(sweep=SWEEP_NAME, outcome="error").inc()
                logger.exception("expiry_sweep_notification_error", payment_id=str(payment.id), exc_info=e)

        logger.info(
            "expiry_sweep_completed",
            timed_out=timed_out,
            skipped=skipped,
            notified=notified,
            errors=errors,
        )

        return {
            "processed": len(expired),
            "timed_out": timed_out,
            "skipped": skipped,
            "notified": notified,
            "errors": errors,
        }
