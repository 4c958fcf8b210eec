"""Pydantic schemas for payment endpoints."""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from checkout.models.payment import PaymentMethod, PaymentStatus, VerificationStatus


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_ref: str
    order_ref: Optional[str] = None
    pending_order_token: Optional[str] = None
    gateway_order_id: Optional[str] = Field(None, description="Razorpay order id")
    gateway_payment_id: Optional[str] = Field(None, description="Razorpay payment id")
    amount: Decimal = Field(..., description="Amount in major units")
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    verification_status: VerificationStatus
    verification_attempts: int = 0
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None
    timeout_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentList(BaseModel):
    """Schema for paginated list of payments."""

    items: List[PaymentResponse]
    page: int
    page_size: int


class PaymentInitiate(BaseModel):
    """Schema for creating a payment before redirecting to the gateway."""

    user_ref: str = Field(..., min_length=1)
    amount: Decimal = Field(..., description="Amount in major units", gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    method: PaymentMethod = PaymentMethod.ONLINE
    order_ref: Optional[str] = Field(None, description="Order id, or a temp_ token when the order is not saved yet")


class PaymentInitiateResponse(BaseModel):
    """Everything checkout needs to open the gateway payment page."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: UUID
    gateway_order_id: str
    amount: Decimal
    currency: str
    key_id: str
    timeout_at: datetime


class PaymentVerify(BaseModel):
    """Gateway checkout callback, accepted under the gateway's field names too."""

    model_config = ConfigDict(populate_by_name=True)

    gateway_order_id: str = Field(..., alias="razorpay_order_id")
    gateway_payment_id: str = Field(..., alias="razorpay_payment_id")
    signature: str = Field(..., alias="razorpay_signature")


class PaymentVerifyResponse(BaseModel):
    success: bool
    payment_id: UUID
    status: PaymentStatus
    duplicate: bool = False


class StatusBucketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: PaymentStatus
    count: int
    total_amount: Decimal


class PaymentStatsResponse(BaseModel):
    """Schema for payment statistics."""

    model_config = ConfigDict(from_attributes=True)

    by_status: List[StatusBucketResponse]
    total: int
    pending: int
    expired: int


class AttachOrderRequest(BaseModel):
    order_ref: str = Field(..., min_length=1)


class PaymentRetryRequest(BaseModel):
    """Schema for a customer-requested retry."""

    user_ref: str = Field(..., min_length=1)
    delay_minutes: int = Field(5, ge=0, le=24 * 60)


class PaymentCancelRequest(BaseModel):
    user_ref: Optional[str] = None
    reason: str = "Cancelled by customer"


class PaymentSyncResponse(BaseModel):
    payment_id: UUID
    status: PaymentStatus
    synchronized: bool


class RefundRequest(BaseModel):
    """Schema for refunding a completed payment."""

    gateway_payment_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, description="Partial refund in major units; full refund when omitted", gt=0)
    reason: str = "Customer request"


class RefundResponse(BaseModel):
    refund_id: Optional[str] = None
    gateway_payment_id: str
    amount: Optional[int] = Field(None, description="Refunded amount in minor units")
    status: Optional[str] = None


class SweepResponse(BaseModel):
    """Result of a manually triggered sweep."""

    sweep: str
    skipped: bool = False
    result: Optional[dict[str, Any]] = None


class PaymentMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    icon: str
    enabled: bool = True
    min_order_amount: Optional[Decimal] = Field(None, description="Smallest eligible order, major units")
    max_order_amount: Optional[Decimal] = Field(None, description="Largest eligible order, major units")


class PaymentMethodList(BaseModel):
    """Payment methods offered at checkout."""

    payment_methods: List[PaymentMethodResponse]
