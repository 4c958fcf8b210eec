"""Payment model for checkout payment attempts."""
import enum
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Enum as SQLEnum, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from checkout.models.base import Base

TEMP_ORDER_PREFIX = "temp_"


class PaymentStatus(enum.Enum):
    """Payment lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.TIMEOUT, PaymentStatus.CANCELLED})
OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
RESOLVABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED)
# Only these are removed by the cleanup sweep; cancelled records are kept for audit
PURGEABLE_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.TIMEOUT)


class VerificationStatus(enum.Enum):
    """Status of the verification sub-process, tracked for observability."""

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    TIMEOUT = "timeout"


class PaymentMethod(enum.Enum):
    """Payment instrument chosen at checkout."""

    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    COD = "cod"
    ONLINE = "online"


@dataclass(frozen=True)
class AttachedOrder:
    """Payment belongs to a persisted order."""

    order_ref: str


@dataclass(frozen=True)
class PendingOrder:
    """Order not persisted yet; token correlates the checkout to it."""

    token: str


@dataclass(frozen=True)
class NoOrder:
    """No order information at all."""


OrderLink = Union[AttachedOrder, PendingOrder, NoOrder]


def parse_order_link(value: Optional[str]) -> OrderLink:
    """
    Classify the order reference sent by checkout.

    Checkout creates the payment before the order exists and sends a
    ``temp_``-prefixed token in that case.
    """
    if not value:
        return NoOrder()
    if value.startswith(TEMP_ORDER_PREFIX):
        return PendingOrder(token=value)
    return AttachedOrder(order_ref=value)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Payment(Base):
    """
    One checkout attempt against the payment gateway.

    A single order may accumulate several payments across retries.
    """

    __tablename__ = "payments"

    order_ref = Column(String, nullable=True, index=True)
    pending_order_token = Column(String, nullable=True)
    user_ref = Column(String, nullable=False, index=True)
    gateway_order_id = Column(String, nullable=True, unique=True)
    gateway_payment_id = Column(String, nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Major units (e.g. rupees)
    currency = Column(String(3), nullable=False, default="INR")
    method = Column(
        SQLEnum(PaymentMethod, name="paymentmethod", values_callable=_enum_values),
        nullable=False,
        default=PaymentMethod.ONLINE,
    )
    status = Column(
        SQLEnum(PaymentStatus, name="paymentstatus", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    verification_status = Column(
        SQLEnum(VerificationStatus, name="verificationstatus", values_callable=_enum_values),
        nullable=False,
        default=VerificationStatus.PENDING,
    )
    verification_attempts = Column(Integer, nullable=False, default=0)
    last_verification_attempt_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    timeout_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    extra_metadata = Column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )

    __table_args__ = (
        CheckConstraint("retry_count <= max_retries", name="ck_payments_retry_bound"),
        Index("ix_payments_status_timeout_at", "status", "timeout_at"),
        Index("ix_payments_status_retry", "status", "retry_count", "next_retry_at"),
        Index("ix_payments_user_status_created", "user_ref", "status", "created_at"),
    )

    @property
    def order_link(self) -> OrderLink:
        """Tagged view over the order columns."""
        if self.order_ref:
            return AttachedOrder(order_ref=self.order_ref)
        if self.pending_order_token:
            return PendingOrder(token=self.pending_order_token)
        return NoOrder()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, gateway_order_id={self.gateway_order_id}, status={self.status.value}, amount={self.amount})>"
