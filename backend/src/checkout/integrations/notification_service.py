"""Notification service integration for customer emails."""
from decimal import Decimal
from pathlib import Path
from typing import Any, TypedDict

import structlog
from jinja2 import Environment, FileSystemLoader

from checkout.utils.currency import format_amount

logger = structlog.get_logger(__name__)


class PaymentTimeoutEmail(TypedDict):
    """Template variables for the payment timeout email."""

    user_name: str
    order_id: str
    amount: Decimal
    currency: str
    retry_url: str


class NotificationService:
    """
    Service for sending customer email notifications.

    In production, this would integrate with providers like:
    - SendGrid / AWS SES for email
    """

    def __init__(self, api_key: str | None = None, timeout_minutes: int = 30):
        """
        Initialize notification service.

        Args:
            api_key: API key for notification provider
            timeout_minutes: Payment session length quoted in timeout emails
        """
        self.api_key = api_key
        self.timeout_minutes = timeout_minutes

        templates_dir = Path(__file__).parent.parent / "templates"
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=True,
        )
        self.env.filters["format_currency"] = format_amount

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        template: str | None = None,
    ) -> dict[str, Any]:
        """
        Send email notification.

        Args:
            to: Recipient email address
            subject: Email subject
            body: Email body (HTML)
            template: Template name, for logging

        Returns:
            Dictionary with send status
        """
        logger.info(
            "email_notification",
            to=to,
            subject=subject,
            template=template,
            body_length=len(body),
            has_api_key=self.api_key is not None,
        )

        return {
            "status": "sent",
            "provider": "mock",
            "to": to,
            "subject": subject,
        }

    def render_payment_timeout(self, data: PaymentTimeoutEmail) -> str:
        """Render the timeout email body."""
        template = self.env.get_template("payment_timeout.html")
        return template.render(timeout_minutes=self.timeout_minutes, **data)

    async def send_payment_timeout_email(self, user_email: str, data: PaymentTimeoutEmail) -> dict[str, Any]:
        """
        Tell the customer their payment session expired and how to retry.

        Args:
            user_email: Recipient email address
            data: Order id, amount, currency, customer name and retry link

        Returns:
            Send status dictionary
        """
        return await self.send_email(
            to=user_email,
            subject="Payment Timeout - Action Required",
            body=self.render_payment_timeout(data),
            template="payment_timeout",
        )
