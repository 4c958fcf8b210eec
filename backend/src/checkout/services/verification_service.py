"""Verification of the gateway checkout callback.

Turns the ``(gateway_order_id, gateway_payment_id, signature)`` triple sent by
the customer's browser into a completed payment, retrying transient gateway
faults a few times inside the request before handing the payment over to the
retry sweep.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from checkout import metrics
from checkout.adapters.razorpay_adapter import GatewayAdapter
from checkout.exceptions import (
    GatewayRejected,
    InvalidTransition,
    NotFound,
    PaymentError,
    PaymentNotCaptured,
    RetryExhausted,
    SignatureMismatch,
)
from checkout.models.payment import Payment, PaymentStatus
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_store import PaymentStore

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class VerificationResult:
    """Outcome of a successful checkout callback verification."""

    success: bool
    payment_id: UUID
    payment: Payment
    duplicate: bool = False


class VerificationWorkflow:
    """
    Verifies a checkout callback with bounded local retries.

    Attempt ``n`` that fails with a retryable fault waits ``backoff_base ** n``
    seconds before attempt ``n + 1``. Non-retryable faults end the workflow
    immediately.
    """

    def __init__(
        self,
        store: PaymentStore,
        gateway: GatewayAdapter,
        linkage: OrderLinkageNotifier,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        first_retry_delay: timedelta = timedelta(minutes=5),
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the workflow.

        Args:
            store: Payment record store
            gateway: Gateway adapter
            linkage: Order linkage notifier
            max_attempts: In-request verification attempts
            backoff_base: Base of the exponential wait between attempts
            first_retry_delay: When the retry sweep first looks at a payment
                whose verification was exhausted
            sleep: Awaitable used for backoff waits
        """
        self.store = store
        self.gateway = gateway
        self.linkage = linkage
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.first_retry_delay = first_retry_delay
        self._sleep = sleep

    async def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> VerificationResult:
        """
        Verify a checkout callback.

        Returns:
            The result, with ``duplicate`` set when the payment had already
            been completed by an earlier call or a sweep

        Raises:
            SignatureMismatch: Callback signature is invalid
            NotFound: No payment holds the gateway order id
            GatewayRejected: Gateway refused the lookup
            InvalidTransition: Payment was already expired or cancelled
            RetryExhausted: Transient faults persisted through every attempt
        """
        log = logger.bind(gateway_order_id=gateway_order_id, gateway_payment_id=gateway_payment_id)

        if not self.gateway.verify_signature(gateway_order_id, gateway_payment_id, signature):
            await self._reject_signature(gateway_order_id)

        payment: Optional[Payment] = None
        last_error: Optional[PaymentError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                payment = await self.store.get_by_gateway_order_id(gateway_order_id)
                if payment is None:
                    raise NotFound(f"No payment for gateway order {gateway_order_id}")

                if payment.status == PaymentStatus.COMPLETED:
                    return self._duplicate(payment)

                await self.store.record_verification_attempt(payment.id)

                gateway_payment = await self.gateway.fetch_payment(gateway_payment_id)
                if gateway_payment["status"] != "captured":
                    raise PaymentNotCaptured(gateway_payment_id, gateway_payment["status"])

                try:
                    payment = await self.store.mark_verified(payment.id, gateway_payment_id)
                except InvalidTransition:
                    current = await self.store.get(payment.id)
                    if current.status == PaymentStatus.COMPLETED:
                        return self._duplicate(current)
                    raise

                metrics.payment_verifications_total.labels(outcome="verified").inc()
                log.info("payment_verified", payment_id=str(payment.id), attempt=attempt)
                await self.linkage.push_status(payment, "completed", transaction_id=gateway_payment_id)
                return VerificationResult(success=True, payment_id=payment.id, payment=payment)

            except PaymentError as e:
                if not e.retryable:
                    await self._handle_permanent(e, payment)
                    raise

                last_error = e
                log.warning(
                    "payment_verification_attempt_failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=e.message,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff_base**attempt)

        return await self._exhausted(payment, last_error)

    async def _reject_signature(self, gateway_order_id: str) -> None:
        metrics.payment_verifications_total.labels(outcome="signature_mismatch").inc()
        payment = await self.store.get_by_gateway_order_id(gateway_order_id)

        if payment is not None:
            try:
                await self.store.mark_failed(payment.id, "Invalid payment signature")
            except InvalidTransition:
                logger.warning(
                    "signature_mismatch_on_resolved_payment",
                    payment_id=str(payment.id),
                    status=payment.status.value,
                )

        logger.warning(
            "payment_signature_rejected",
            gateway_order_id=gateway_order_id,
            payment_id=str(payment.id) if payment else None,
        )
        raise SignatureMismatch(
            f"Invalid signature for gateway order {gateway_order_id}",
            payment_id=payment.id if payment else None,
        )

    async def _handle_permanent(self, error: PaymentError, payment: Optional[Payment]) -> None:
        if isinstance(error, NotFound):
            metrics.payment_verifications_total.labels(outcome="not_found").inc()
        elif isinstance(error, GatewayRejected):
            metrics.payment_verifications_total.labels(outcome="rejected").inc()
            if payment is not None:
                try:
                    await self.store.mark_failed(payment.id, f"Gateway rejected verification: {error.message}")
                except InvalidTransition as e:
                    logger.info("payment_already_resolved", payment_id=str(payment.id), status=e.context["current_status"])
        else:
            metrics.payment_verifications_total.labels(outcome="invalid").inc()

        logger.warning(
            "payment_verification_failed",
            payment_id=str(payment.id) if payment else None,
            error_code=error.error_code,
            error=error.message,
        )

    async def _exhausted(self, payment: Optional[Payment], last_error: Optional[PaymentError]) -> VerificationResult:
        reason = f"Verification failed after {self.max_attempts} attempts: {last_error.message if last_error else 'unknown error'}"
        metrics.payment_verifications_total.labels(outcome="exhausted").inc()

        if payment is not None:
            try:
                await self.store.mark_failed(payment.id, reason, retry_in=self.first_retry_delay)
            except InvalidTransition:
                # A sweep resolved it while we were retrying
                current = await self.store.get(payment.id)
                if current.status == PaymentStatus.COMPLETED:
                    return self._duplicate(current)

        logger.error("payment_verification_exhausted", payment_id=str(payment.id) if payment else None, reason=reason)
        raise RetryExhausted(reason, payment_id=payment.id if payment else None, attempts=self.max_attempts)

    def _duplicate(self, payment: Payment) -> VerificationResult:
        metrics.payment_verifications_total.labels(outcome="duplicate").inc()
        logger.info("payment_already_verified", payment_id=str(payment.id))
        return VerificationResult(success=True, payment_id=payment.id, payment=payment, duplicate=True)
