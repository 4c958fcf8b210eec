"""Payment endpoints for checkout, order linkage and operations."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from checkout.api.deps import get_payment_service
from checkout.exceptions import ValidationError
from checkout.models.payment import PaymentStatus
from checkout.schemas.payment import (
    AttachOrderRequest,
    PaymentCancelRequest,
    PaymentInitiate,
    PaymentInitiateResponse,
    PaymentList,
    PaymentMethodList,
    PaymentMethodResponse,
    PaymentResponse,
    PaymentRetryRequest,
    PaymentStatsResponse,
    PaymentSyncResponse,
    PaymentVerify,
    PaymentVerifyResponse,
    RefundRequest,
    RefundResponse,
    SweepResponse,
)
from checkout.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])

SWEEPS = ("expiry", "retry", "reconciliation", "cleanup")


@router.post("/orders", response_model=PaymentInitiateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_order(
    request: PaymentInitiate,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    """
    Create a payment and its Razorpay order.

    Call before opening the gateway checkout. ``order_ref`` may be a
    ``temp_`` token when the order is saved only after payment.
    """
    initiated = await service.initiate_payment(
        user_ref=request.user_ref,
        amount=request.amount,
        currency=request.currency,
        method=request.method,
        order_ref=request.order_ref,
    )
    return PaymentInitiateResponse.model_validate(initiated)


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    request: PaymentVerify,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentVerifyResponse:
    """
    Verify the gateway checkout callback.

    Safe to call more than once; a repeated call reports ``duplicate``.
    """
    result = await service.verify_payment(
        request.gateway_order_id,
        request.gateway_payment_id,
        request.signature,
    )
    return PaymentVerifyResponse(
        success=result.success,
        payment_id=result.payment_id,
        status=result.payment.status,
        duplicate=result.duplicate,
    )


@router.get("/stats", response_model=PaymentStatsResponse)
async def get_payment_stats(service: PaymentService = Depends(get_payment_service)) -> PaymentStatsResponse:
    """Payment counts and amounts per status."""
    stats = await service.get_payment_stats()
    return PaymentStatsResponse.model_validate(stats)


@router.get("/methods", response_model=PaymentMethodList)
async def list_payment_methods(service: PaymentService = Depends(get_payment_service)) -> PaymentMethodList:
    """Payment methods available at checkout, with COD order limits when offered."""
    return PaymentMethodList(
        payment_methods=[PaymentMethodResponse.model_validate(option) for option in service.list_payment_methods()]
    )


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    request: RefundRequest,
    service: PaymentService = Depends(get_payment_service),
) -> RefundResponse:
    """Refund a completed payment, fully or partially."""
    refund = await service.refund_payment(
        request.gateway_payment_id,
        amount=request.amount,
        reason=request.reason,
    )
    return RefundResponse(
        refund_id=refund.get("id"),
        gateway_payment_id=request.gateway_payment_id,
        amount=refund.get("amount"),
        status=refund.get("status"),
    )


@router.post("/sweeps/{sweep}", response_model=SweepResponse)
async def trigger_sweep(
    sweep: str,
    service: PaymentService = Depends(get_payment_service),
) -> SweepResponse:
    """
    Run a sweep now.

    Returns ``skipped`` when a pass of the same sweep is already running.
    """
    triggers = {
        "expiry": service.trigger_expiry_sweep,
        "retry": service.trigger_retry_sweep,
        "reconciliation": service.trigger_reconciliation_sweep,
        "cleanup": service.trigger_cleanup_sweep,
    }
    if sweep not in triggers:
        raise ValidationError(f"Unknown sweep: {sweep}. Expected one of {', '.join(SWEEPS)}", field="sweep")

    result = await triggers[sweep]()
    return SweepResponse(sweep=sweep, skipped=result is None, result=result)


@router.get("", response_model=PaymentList)
async def list_payments(
    user_ref: Optional[str] = Query(None, description="Filter by user"),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status", description="Filter by payment status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(100, ge=1, le=1000, description="Results per page"),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentList:
    """
    List payments with optional filters, newest first.

    - **user_ref**: Filter by user
    - **status**: Filter by payment status
    - **page**: Page number for pagination
    - **page_size**: Number of results per page
    """
    payments = await service.list_payments(user_ref=user_ref, status=status_filter, page=page, page_size=page_size)
    return PaymentList(
        items=[PaymentResponse.model_validate(p) for p in payments],
        page=page,
        page_size=page_size,
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """Get payment details by ID."""
    payment = await service.get_payment(payment_id)
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/attach-order", response_model=PaymentResponse)
async def attach_order(
    payment_id: UUID,
    request: AttachOrderRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """
    Link the order saved after checkout to its payment.

    Idempotent for the same order; a different order is rejected with 409.
    """
    payment = await service.attach_order(payment_id, request.order_ref)
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/sync", response_model=PaymentSyncResponse)
async def synchronize_payment(
    payment_id: UUID,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentSyncResponse:
    """Reconcile one open payment with the gateway now."""
    result = await service.synchronize_payment(payment_id)
    return PaymentSyncResponse(**result)


@router.post("/{payment_id}/retry", response_model=PaymentResponse)
async def retry_payment(
    payment_id: UUID,
    request: PaymentRetryRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """
    Schedule a retry for a failed payment.

    Can only retry payments in FAILED status with retries left.
    """
    payment = await service.retry_payment(payment_id, request.user_ref, delay_minutes=request.delay_minutes)
    return PaymentResponse.model_validate(payment)


@router.post("/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(
    payment_id: UUID,
    request: PaymentCancelRequest,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """Cancel a payment that has not been resolved yet."""
    payment = await service.cancel_payment(payment_id, user_ref=request.user_ref, reason=request.reason)
    return PaymentResponse.model_validate(payment)
