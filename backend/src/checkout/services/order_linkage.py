"""Pushes payment outcomes to the order collaborator and the customer.

Everything here is best-effort: a failed push or email is logged and
swallowed so it never undoes or blocks the payment transition that caused it.
"""
from typing import Optional

import structlog

from checkout import metrics
from checkout.integrations.notification_service import NotificationService
from checkout.integrations.order_service import OrderClient
from checkout.integrations.user_service import UserDirectory
from checkout.models.payment import AttachedOrder, Payment, PendingOrder

logger = structlog.get_logger(__name__)


class OrderLinkageNotifier:
    """Order status pushes and timeout emails for resolved payments."""

    def __init__(
        self,
        order_client: OrderClient,
        user_directory: UserDirectory,
        notifier: NotificationService,
        frontend_url: str,
    ):
        self.order_client = order_client
        self.user_directory = user_directory
        self.notifier = notifier
        self.frontend_url = frontend_url.rstrip("/")

    async def push_status(
        self,
        payment: Payment,
        status: str,
        transaction_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """
        Push the payment status into the attached order.

        Payments without a persisted order are skipped; the order picks the
        outcome up when it is attached.

        Returns:
            True if the order service accepted the update
        """
        link = payment.order_link
        if not isinstance(link, AttachedOrder):
            metrics.order_status_pushes_total.labels(status=status, result="skipped").inc()
            return False

        try:
            delivered = await self.order_client.update_payment_status(
                link.order_ref, status, transaction_id=transaction_id, note=note
            )
        except Exception as e:
            metrics.order_status_pushes_total.labels(status=status, result="failed").inc()
            logger.warning(
                "order_status_push_failed",
                payment_id=str(payment.id),
                order_ref=link.order_ref,
                status=status,
                error=str(e),
            )
            return False

        metrics.order_status_pushes_total.labels(status=status, result="delivered" if delivered else "failed").inc()
        return delivered

    async def notify_timeout(self, payment: Payment) -> bool:
        """
        Email the customer that their payment session expired.

        Returns:
            True if an email was sent
        """
        try:
            contact = await self.user_directory.get_user(payment.user_ref)
        except Exception as e:
            logger.warning("timeout_email_user_lookup_failed", payment_id=str(payment.id), error=str(e))
            return False

        if contact is None:
            logger.info("timeout_email_skipped_no_contact", payment_id=str(payment.id), user_ref=payment.user_ref)
            return False

        link = payment.order_link
        if isinstance(link, AttachedOrder):
            order_id = link.order_ref
            retry_url = f"{self.frontend_url}/user/orders/{link.order_ref}/retry-payment"
        elif isinstance(link, PendingOrder):
            order_id = link.token
            retry_url = f"{self.frontend_url}/user/payment/retry"
        else:
            order_id = "Unknown"
            retry_url = f"{self.frontend_url}/user/payment/retry"

        try:
            await self.notifier.send_payment_timeout_email(
                contact.email,
                {
                    "user_name": contact.name,
                    "order_id": order_id,
                    "amount": payment.amount,
                    "currency": payment.currency,
                    "retry_url": retry_url,
                },
            )
        except Exception as e:
            logger.warning("timeout_email_failed", payment_id=str(payment.id), error=str(e))
            return False

        logger.info("timeout_email_sent", payment_id=str(payment.id), order_id=order_id)
        return True
