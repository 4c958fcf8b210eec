"""Payment service: the operations exposed to checkout, orders and operators."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Sequence, Union
from uuid import UUID

import structlog

from checkout import metrics
from checkout.adapters.razorpay_adapter import GatewayAdapter
from checkout.exceptions import GatewayRejected, GatewayUnavailable, InvalidTransition, NotFound, ValidationError
from checkout.models.payment import AttachedOrder, Payment, PaymentMethod, PaymentStatus, parse_order_link
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_store import PaymentStats, PaymentStore
from checkout.services.verification_service import VerificationResult, VerificationWorkflow
from checkout.utils.currency import convert_to_smallest_unit, get_currency_decimal_places, validate_currency
from checkout.workers.reconciliation import ReconciliationSweep
from checkout.workers.scheduler import Scheduler

logger = structlog.get_logger(__name__)


@dataclass
class InitiatedPayment:
    """What checkout needs to open the gateway's payment page."""

    payment_id: UUID
    gateway_order_id: str
    amount: Decimal
    currency: str
    key_id: str
    timeout_at: datetime


@dataclass
class PaymentMethodOption:
    """A payment method offered at checkout."""

    id: str
    name: str
    description: str
    icon: str
    enabled: bool = True
    min_order_amount: Optional[Decimal] = None
    max_order_amount: Optional[Decimal] = None


DEFAULT_ONLINE_METHODS = ("card", "upi", "netbanking", "wallet")

PAYMENT_METHOD_DETAILS = {
    PaymentMethod.CARD: ("Credit / Debit Card", "Pay with Visa, MasterCard, RuPay", "credit-card"),
    PaymentMethod.UPI: ("UPI", "Pay with any UPI app", "smartphone"),
    PaymentMethod.NETBANKING: ("Net Banking", "Pay with your bank account", "bank"),
    PaymentMethod.WALLET: ("Digital Wallets", "Pay with Paytm, PhonePe, etc.", "wallet"),
    PaymentMethod.COD: ("Cash on Delivery", "Pay when you receive your order", "cash"),
}


class PaymentService:
    """
    Facade over the payment lifecycle.

    Thin: every state change is delegated to the store, the verification
    workflow or a sweep.
    """

    def __init__(
        self,
        store: PaymentStore,
        gateway: GatewayAdapter,
        verification: VerificationWorkflow,
        reconciliation: ReconciliationSweep,
        linkage: OrderLinkageNotifier,
        scheduler: Scheduler,
        key_id: str,
        default_currency: str = "INR",
        online_methods: Sequence[str] = DEFAULT_ONLINE_METHODS,
        online_enabled: bool = True,
        cod_enabled: bool = False,
        cod_min_order_amount: Decimal = Decimal("0"),
        cod_max_order_amount: Decimal = Decimal("5000"),
    ):
        self.store = store
        self.gateway = gateway
        self.verification = verification
        self.reconciliation = reconciliation
        self.linkage = linkage
        self.scheduler = scheduler
        self.key_id = key_id
        self.default_currency = default_currency
        self.online_methods = tuple(online_methods)
        self.online_enabled = online_enabled
        self.cod_enabled = cod_enabled
        self.cod_min_order_amount = cod_min_order_amount
        self.cod_max_order_amount = cod_max_order_amount

    async def initiate_payment(
        self,
        user_ref: str,
        amount: Union[Decimal, int, float, str],
        currency: Optional[str] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.ONLINE,
        order_ref: Optional[str] = None,
    ) -> InitiatedPayment:
        """
        Create a payment and its gateway order.

        Args:
            user_ref: Paying customer
            amount: Amount in major units
            currency: ISO currency code, defaults to the configured currency
            method: Payment instrument
            order_ref: Persisted order reference or ``temp_`` token

        Raises:
            ValidationError: Bad amount, currency or method
            GatewayUnavailable: Gateway unreachable; the payment is failed
            GatewayRejected: Gateway refused the order; the payment is failed
        """
        currency = (currency or self.default_currency).upper()
        if not validate_currency(currency):
            raise ValidationError(f"Unsupported currency: {currency}", field="currency")
        amount = _parse_amount(amount, currency)
        method = _parse_method(method)
        if not user_ref:
            raise ValidationError("User reference is required", field="user_ref")

        payment = await self.store.create(
            user_ref=user_ref,
            amount=amount,
            currency=currency,
            method=method,
            order_link=parse_order_link(order_ref),
        )

        try:
            gateway_order_id = await self.gateway.create_remote_order(
                convert_to_smallest_unit(amount, currency),
                currency,
                receipt=f"order_{payment.id.hex}",
            )
        except (GatewayUnavailable, GatewayRejected) as e:
            await self.store.mark_failed(payment.id, f"Gateway order creation failed: {e.message}")
            logger.error("gateway_order_creation_failed", payment_id=str(payment.id), error=e.message)
            raise

        payment = await self.store.attach_gateway_order_id(payment.id, gateway_order_id)

        return InitiatedPayment(
            payment_id=payment.id,
            gateway_order_id=gateway_order_id,
            amount=payment.amount,
            currency=payment.currency,
            key_id=self.key_id,
            timeout_at=payment.timeout_at,
        )

    async def verify_payment(
        self, gateway_order_id: str, gateway_payment_id: str, signature: str
    ) -> VerificationResult:
        """Verify the gateway checkout callback. See ``VerificationWorkflow.verify``."""
        return await self.verification.verify(gateway_order_id, gateway_payment_id, signature)

    async def get_payment(self, payment_id: UUID) -> Payment:
        return await self.store.get(payment_id)

    async def list_payments(
        self,
        user_ref: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> list[Payment]:
        return await self.store.list_payments(user_ref=user_ref, status=status, page=page, page_size=page_size)

    async def get_payment_stats(self) -> PaymentStats:
        return await self.store.stats()

    def list_payment_methods(self) -> list[PaymentMethodOption]:
        """
        Payment methods to offer at checkout.

        Configured gateway methods come first, in configured order, followed
        by cash on delivery with its order amount limits when enabled.
        Unknown configured methods are skipped.
        """
        options = []
        if self.online_enabled:
            for method_id in self.online_methods:
                try:
                    method = PaymentMethod(method_id.lower())
                except ValueError:
                    logger.warning("unknown_payment_method_configured", method=method_id)
                    continue
                if method not in PAYMENT_METHOD_DETAILS or method == PaymentMethod.COD:
                    continue
                options.append(_method_option(method))

        if self.cod_enabled:
            options.append(
                _method_option(
                    PaymentMethod.COD,
                    min_order_amount=self.cod_min_order_amount,
                    max_order_amount=self.cod_max_order_amount,
                )
            )
        return options

    async def attach_order(self, payment_id: UUID, order_ref: str) -> Payment:
        """
        Link the order created after checkout to its payment.

        A payment that already completed pushes its outcome into the order
        right away.
        """
        if not isinstance(parse_order_link(order_ref), AttachedOrder):
            raise ValidationError("A persisted order reference is required", field="order_ref")

        payment = await self.store.attach_order(payment_id, order_ref)
        if payment.status == PaymentStatus.COMPLETED:
            await self.linkage.push_status(payment, "completed", transaction_id=payment.gateway_payment_id)
        return payment

    async def synchronize_payment(self, payment_id: UUID) -> dict[str, Any]:
        """
        Reconcile a single payment with the gateway on demand.

        Returns:
            ``{"payment_id", "status", "synchronized"}``; ``synchronized`` is
            False when there was nothing to ask the gateway
        """
        payment = await self.store.get(payment_id)
        if payment.is_terminal or payment.status == PaymentStatus.FAILED or not payment.gateway_order_id:
            return {"payment_id": payment.id, "status": payment.status, "synchronized": False}

        outcome = await self.reconciliation.reconcile_payment(payment)
        payment = await self.store.get(payment_id)
        logger.info("payment_synchronized", payment_id=str(payment_id), outcome=outcome, status=payment.status.value)
        return {"payment_id": payment.id, "status": payment.status, "synchronized": True}

    async def retry_payment(self, payment_id: UUID, user_ref: str, delay_minutes: int = 5) -> Payment:
        """
        Schedule a manual retry for the caller's failed payment.

        Raises:
            NotFound: Unknown payment or owned by someone else
            InvalidTransition: Payment is not failed
            RetryExhausted: No retries left
        """
        payment = await self.store.get(payment_id)
        if payment.user_ref != user_ref:
            raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        if payment.status != PaymentStatus.FAILED:
            raise InvalidTransition(payment_id, payment.status, "retry")
        if delay_minutes < 0:
            raise ValidationError("Retry delay cannot be negative", field="delay_minutes")

        payment = await self.store.schedule_retry(payment_id, timedelta(minutes=delay_minutes))
        logger.info(
            "payment_retry_requested",
            payment_id=str(payment_id),
            retry_count=payment.retry_count,
            next_retry_at=payment.next_retry_at.isoformat(),
        )
        return payment

    async def cancel_payment(
        self, payment_id: UUID, user_ref: Optional[str] = None, reason: str = "Cancelled by customer"
    ) -> Payment:
        """Cancel an unresolved payment, optionally checking ownership."""
        if user_ref is not None:
            payment = await self.store.get(payment_id)
            if payment.user_ref != user_ref:
                raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)

        payment = await self.store.cancel(payment_id, reason)
        logger.info("payment_cancelled", payment_id=str(payment_id), reason=reason)
        await self.linkage.push_status(payment, "cancelled", note=reason)
        return payment

    async def refund_payment(
        self,
        gateway_payment_id: str,
        amount: Optional[Union[Decimal, int, float, str]] = None,
        reason: str = "Customer request",
    ) -> dict[str, Any]:
        """
        Refund a completed payment at the gateway, fully when no amount is given.

        The payment record itself is not changed; the order gets a
        ``refunded`` status with the refund id.

        Raises:
            NotFound: No payment completed with this gateway payment id
            InvalidTransition: Payment is not completed
            ValidationError: Amount is not positive or exceeds the payment
        """
        payment = await self.store.get_by_gateway_payment_id(gateway_payment_id)
        if payment is None:
            raise NotFound(f"No payment for gateway payment {gateway_payment_id}")
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidTransition(payment.id, payment.status, "refund")

        amount_minor_units = None
        if amount is not None:
            refund_amount = _parse_amount(amount, payment.currency)
            if refund_amount > payment.amount:
                raise ValidationError("Refund amount exceeds the payment amount", field="amount")
            amount_minor_units = convert_to_smallest_unit(refund_amount, payment.currency)

        try:
            refund = await self.gateway.refund(gateway_payment_id, amount_minor_units, reason=reason)
        except (GatewayUnavailable, GatewayRejected):
            metrics.payment_refunds_total.labels(status="failed").inc()
            raise

        metrics.payment_refunds_total.labels(status="success").inc()
        logger.info(
            "payment_refunded",
            payment_id=str(payment.id),
            refund_id=refund.get("id"),
            amount=refund.get("amount"),
        )
        await self.linkage.push_status(
            payment,
            "refunded",
            transaction_id=refund.get("id"),
            note=f"Refund {refund.get('id')}: {reason}",
        )
        return refund

    async def trigger_expiry_sweep(self) -> Optional[Any]:
        return await self.scheduler.run_now("expiry")

    async def trigger_retry_sweep(self) -> Optional[Any]:
        return await self.scheduler.run_now("retry")

    async def trigger_reconciliation_sweep(self) -> Optional[Any]:
        return await self.scheduler.run_now("reconciliation")

    async def trigger_cleanup_sweep(self) -> Optional[Any]:
        return await self.scheduler.run_now("cleanup")


def _parse_amount(value: Union[Decimal, int, float, str], currency: str) -> Decimal:
    """Parse an amount in major units, rounded to the currency's smallest unit."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value}", field="amount") from None
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value}", field="amount")

    smallest_unit = Decimal(1).scaleb(-get_currency_decimal_places(currency))
    # Checked after rounding, e.g. 0.004 INR is zero paise
    amount = amount.quantize(smallest_unit, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")
    return amount


def _parse_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).lower())
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {value}", field="method") from None


def _method_option(method: PaymentMethod, **limits: Optional[Decimal]) -> PaymentMethodOption:
    name, description, icon = PAYMENT_METHOD_DETAILS[method]
    return PaymentMethodOption(id=method.value, name=name, description=description, icon=icon, **limits)
