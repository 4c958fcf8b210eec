"""Payment record store.

The only component allowed to change a payment's state. Every status change
is a compare-and-set ``UPDATE ... WHERE id = :id AND status IN (:expected)``:
when the row no longer matches, the caller gets ``InvalidTransition`` instead
of silently overwriting a concurrent writer's result.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout import metrics
from checkout.database import session_scope
from checkout.exceptions import DuplicateGatewayOrder, InvalidTransition, NotFound, RetryExhausted
from checkout.models.payment import (
    OPEN_STATUSES,
    PURGEABLE_STATUSES,
    RESOLVABLE_STATUSES,
    AttachedOrder,
    OrderLink,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PendingOrder,
    VerificationStatus,
)
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class StatusBucket:
    """Aggregate for one payment status."""

    status: PaymentStatus
    count: int
    total_amount: Decimal


@dataclass
class PaymentStats:
    """Snapshot of the payment table."""

    by_status: list[StatusBucket]
    total: int
    pending: int
    expired: int


class PaymentStore:
    """Persistence and guarded state transitions for ``Payment`` records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_window: timedelta = timedelta(minutes=30),
        max_retries: int = 3,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory for short-lived sessions, one per operation
            timeout_window: Time from creation until a payment expires
            max_retries: Scheduled retries allowed per payment
        """
        self._session_factory = session_factory
        self.timeout_window = timeout_window
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # Creation and linkage
    # ------------------------------------------------------------------

    async def create(
        self,
        user_ref: str,
        amount: Decimal,
        currency: str,
        method: PaymentMethod,
        order_link: OrderLink,
    ) -> Payment:
        """
        Create a pending payment that expires after the timeout window.

        Args:
            user_ref: Owner of the payment
            amount: Amount in major units
            currency: ISO currency code
            method: Payment instrument
            order_link: Persisted order, pending order token, or nothing

        Returns:
            The new payment
        """
        now = utcnow()
        payment = Payment(
            user_ref=user_ref,
            amount=amount,
            currency=currency.upper(),
            method=method,
            status=PaymentStatus.PENDING,
            verification_status=VerificationStatus.PENDING,
            verification_attempts=0,
            retry_count=0,
            max_retries=self.max_retries,
            timeout_at=now + self.timeout_window,
            created_at=now,
            updated_at=now,
            extra_metadata={},
        )

        if isinstance(order_link, AttachedOrder):
            payment.order_ref = order_link.order_ref
        elif isinstance(order_link, PendingOrder):
            payment.pending_order_token = order_link.token
            payment.extra_metadata = {"pending_order_token": order_link.token}

        async with session_scope(self._session_factory) as session:
            session.add(payment)

        metrics.payments_created_total.labels(currency=payment.currency, method=method.value).inc()
        logger.info(
            "payment_created",
            payment_id=str(payment.id),
            user_ref=user_ref,
            amount=str(amount),
            currency=payment.currency,
            timeout_at=payment.timeout_at.isoformat(),
        )
        return payment

    async def attach_gateway_order_id(self, payment_id: UUID, gateway_order_id: str) -> Payment:
        """
        Record the gateway order id and move the payment to processing.

        Raises:
            DuplicateGatewayOrder: If another payment already holds the id
            InvalidTransition: If the payment is no longer pending
        """
        async with self._session_factory() as session:
            existing = await session.execute(
                select(Payment.id).where(
                    Payment.gateway_order_id == gateway_order_id,
                    Payment.id != payment_id,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateGatewayOrder(gateway_order_id, payment_id=payment_id)

        try:
            payment = await self._transition(
                payment_id,
                expected=(PaymentStatus.PENDING,),
                target="processing",
                values={
                    "gateway_order_id": gateway_order_id,
                    "status": PaymentStatus.PROCESSING,
                },
                extra_conditions=(Payment.gateway_order_id.is_(None),),
            )
        except IntegrityError as e:
            # Lost the race against another payment claiming the same id
            raise DuplicateGatewayOrder(gateway_order_id, payment_id=payment_id) from e

        logger.info("gateway_order_attached", payment_id=str(payment_id), gateway_order_id=gateway_order_id)
        return payment

    async def attach_order(self, payment_id: UUID, order_ref: str) -> Payment:
        """
        Link the persisted order to the payment, exactly once.

        Re-attaching the same order is a no-op; attaching a different one is
        rejected. Allowed in any status because the order is usually created
        after the payment has completed.
        """
        payment = await self.get(payment_id)
        if payment.order_ref == order_ref:
            return payment
        if payment.order_ref is not None:
            raise InvalidTransition(payment_id, f"linked to order {payment.order_ref}", f"order {order_ref}")

        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.order_ref.is_(None))
                .values(order_ref=order_ref, pending_order_token=None)
                .execution_options(synchronize_session=False)
            )
            updated = result.rowcount

        if updated == 0:
            current = await self.get(payment_id)
            if current.order_ref == order_ref:
                return current
            raise InvalidTransition(payment_id, f"linked to order {current.order_ref}", f"order {order_ref}")

        logger.info(
            "order_attached",
            payment_id=str(payment_id),
            order_ref=order_ref,
            pending_order_token=payment.pending_order_token,
        )
        return await self.get(payment_id)

    # ------------------------------------------------------------------
    # Guarded transitions
    # ------------------------------------------------------------------

    async def mark_verified(self, payment_id: UUID, gateway_payment_id: Optional[str] = None) -> Payment:
        """
        Mark the payment completed.

        Allowed from pending, processing and failed (a failed payment may turn
        out to be a false negative). Keeps the stored gateway payment id when
        none is given.
        """
        now = utcnow()
        values: dict[str, Any] = {
            "status": PaymentStatus.COMPLETED,
            "verification_status": VerificationStatus.VERIFIED,
            "completed_at": now,
            "next_retry_at": None,
        }
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id

        return await self._transition(payment_id, RESOLVABLE_STATUSES, "completed", values)

    async def mark_failed(
        self,
        payment_id: UUID,
        reason: str,
        retry_in: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Mark the payment failed.

        Args:
            payment_id: Payment to fail
            reason: Failure reason stored for support
            retry_in: Arm the retry sweep this far in the future; ``None``
                disarms any pending retry
            now: Clock reading for the failure and retry timestamps
        """
        now = now or utcnow()
        return await self._transition(
            payment_id,
            RESOLVABLE_STATUSES,
            "failed",
            {
                "status": PaymentStatus.FAILED,
                "verification_status": VerificationStatus.FAILED,
                "failed_at": now,
                "failure_reason": reason,
                "next_retry_at": now + retry_in if retry_in is not None else None,
            },
        )

    async def schedule_retry(self, payment_id: UUID, delay: timedelta, now: Optional[datetime] = None) -> Payment:
        """
        Consume one scheduled retry and arm the next one.

        Only valid while failed and below ``max_retries``. The next retry is
        due ``delay`` after ``now`` (the current time by default).

        Raises:
            RetryExhausted: If no retries are left
            InvalidTransition: If the payment is no longer failed
        """
        try:
            return await self._transition(
                payment_id,
                (PaymentStatus.FAILED,),
                "retry",
                {
                    "retry_count": Payment.retry_count + 1,
                    "next_retry_at": (now or utcnow()) + delay,
                },
                extra_conditions=(Payment.retry_count < Payment.max_retries,),
            )
        except InvalidTransition as e:
            if e.current_status == PaymentStatus.FAILED:
                raise RetryExhausted(f"Payment {payment_id} has no retries left", payment_id=payment_id) from e
            raise

    async def mark_timeout(self, payment_id: UUID) -> Payment:
        """Expire an unresolved payment."""
        return await self._transition(
            payment_id,
            OPEN_STATUSES,
            "timeout",
            {
                "status": PaymentStatus.TIMEOUT,
                "verification_status": VerificationStatus.TIMEOUT,
                "next_retry_at": None,
            },
        )

    async def cancel(self, payment_id: UUID, reason: str = "Cancelled by customer") -> Payment:
        """Cancel a payment that has not been resolved yet."""
        return await self._transition(
            payment_id,
            RESOLVABLE_STATUSES,
            "cancelled",
            {
                "status": PaymentStatus.CANCELLED,
                "failure_reason": reason,
                "next_retry_at": None,
            },
        )

    async def record_verification_attempt(self, payment_id: UUID) -> Payment:
        """Count one in-request verification attempt."""
        return await self._transition(
            payment_id,
            RESOLVABLE_STATUSES,
            "verification attempt",
            {
                "verification_attempts": Payment.verification_attempts + 1,
                "last_verification_attempt_at": utcnow(),
            },
        )

    async def _transition(
        self,
        payment_id: UUID,
        expected: Iterable[PaymentStatus],
        target: str,
        values: dict[str, Any],
        extra_conditions: Sequence[Any] = (),
    ) -> Payment:
        expected = tuple(expected)
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id, Payment.status.in_(expected), *extra_conditions)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            if result.rowcount == 0:
                current = await session.get(Payment, payment_id)
                if current is None:
                    raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)
                logger.info(
                    "payment_transition_rejected",
                    payment_id=str(payment_id),
                    current_status=current.status.value,
                    target=target,
                )
                raise InvalidTransition(payment_id, current.status, target)

            payment = await session.get(Payment, payment_id, populate_existing=True)

        if "status" in values:
            metrics.payment_transitions_total.labels(status=payment.status.value).inc()
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, payment_id: UUID) -> Payment:
        """
        Get payment by ID.

        Raises:
            NotFound: If the payment does not exist
        """
        payment = await self.find(payment_id)
        if payment is None:
            raise NotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        return payment

    async def find(self, payment_id: UUID) -> Optional[Payment]:
        """Get payment by ID, or None."""
        async with self._session_factory() as session:
            return await session.get(Payment, payment_id)

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Payment]:
        """Find the payment holding a gateway order id."""
        return await self._one(select(Payment).where(Payment.gateway_order_id == gateway_order_id))

    async def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Optional[Payment]:
        """Find the payment completed with a gateway payment id."""
        return await self._one(
            select(Payment)
            .where(Payment.gateway_payment_id == gateway_payment_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )

    async def list_payments(
        self,
        user_ref: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> list[Payment]:
        """
        List payments with optional filters, newest first.

        Args:
            user_ref: Filter by owner
            status: Filter by payment status
            page: Page number
            page_size: Results per page
        """
        query = select(Payment)

        if user_ref:
            query = query.where(Payment.user_ref == user_ref)
        if status:
            query = query.where(Payment.status == status)

        query = query.order_by(Payment.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        return await self._all(query)

    async def find_expired(self, now: Optional[datetime] = None) -> list[Payment]:
        """Unresolved payments whose deadline has passed."""
        now = now or utcnow()
        return await self._all(
            select(Payment)
            .where(Payment.status.in_(OPEN_STATUSES), Payment.timeout_at < now)
            .order_by(Payment.timeout_at)
        )

    async def find_due_for_retry(self, now: Optional[datetime] = None) -> list[Payment]:
        """
        Failed payments due for a scheduled retry.

        A payment is due if:
        - Status is FAILED
        - next_retry_at is in the past or now
        - retry_count < max_retries
        """
        now = now or utcnow()
        return await self._all(
            select(Payment)
            .where(
                Payment.status == PaymentStatus.FAILED,
                Payment.next_retry_at.isnot(None),
                Payment.next_retry_at <= now,
                Payment.retry_count < Payment.max_retries,
            )
            .order_by(Payment.next_retry_at)
        )

    async def find_for_reconciliation(
        self,
        now: Optional[datetime] = None,
        window: timedelta = timedelta(hours=2),
        limit: int = 30,
    ) -> list[Payment]:
        """Most recent unresolved payments that reached the gateway."""
        now = now or utcnow()
        return await self._all(
            select(Payment)
            .where(
                Payment.status.in_(OPEN_STATUSES),
                Payment.gateway_order_id.isnot(None),
                Payment.created_at >= now - window,
            )
            .order_by(Payment.created_at.desc())
            .limit(limit)
        )

    async def delete_terminal_before(self, cutoff: datetime, batch_size: int = 1000) -> int:
        """
        Delete resolved payments created before the cutoff.

        Deletes in batches to avoid long-running transactions. Pending and
        processing records are never touched.

        Returns:
            Number of payments deleted
        """
        total_deleted = 0

        while True:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(Payment.id)
                    .where(Payment.created_at < cutoff, Payment.status.in_(PURGEABLE_STATUSES))
                    .limit(batch_size)
                )
                ids_to_delete = [row[0] for row in result.fetchall()]

                if not ids_to_delete:
                    break

                await session.execute(
                    delete(Payment)
                    .where(Payment.id.in_(ids_to_delete), Payment.status.in_(PURGEABLE_STATUSES))
                    .execution_options(synchronize_session=False)
                )

            total_deleted += len(ids_to_delete)
            logger.info("payments_batch_deleted", batch_size=len(ids_to_delete), total_deleted=total_deleted)

        return total_deleted

    async def stats(self) -> PaymentStats:
        """Count and amount per status, plus headline totals."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
                .group_by(Payment.status)
                .order_by(Payment.status)
            )
            rows = result.all()

        buckets = [
            StatusBucket(status=status, count=count, total_amount=Decimal(str(total)))
            for status, count, total in rows
        ]
        counts = {bucket.status: bucket.count for bucket in buckets}

        return PaymentStats(
            by_status=buckets,
            total=sum(counts.values()),
            pending=counts.get(PaymentStatus.PENDING, 0),
            expired=counts.get(PaymentStatus.TIMEOUT, 0),
        )

    async def _one(self, query: Any) -> Optional[Payment]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def _all(self, query: Any) -> list[Payment]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
