"""Tests for the payment service facade."""
from decimal import Decimal
from uuid import uuid4

import pytest

from checkout.container import Container
from checkout.exceptions import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransition,
    NotFound,
    RetryExhausted,
    ValidationError,
)
from checkout.models.payment import NoOrder, PaymentMethod, PaymentStatus
from checkout.services.payment_service import PaymentService
from tests.utils.factories import GatewayIdFactory


@pytest.fixture
def service(container: Container):
    return container.payment_service


@pytest.mark.asyncio
async def test_initiate_payment_creates_gateway_order(service, store, gateway) -> None:
    initiated = await service.initiate_payment("user_1", "499.50", currency="inr", method="upi", order_ref="ord_1")

    created = gateway.created_orders[0]
    assert created["amount"] == 49950
    assert created["currency"] == "INR"
    assert created["receipt"] == f"order_{initiated.payment_id.hex}"
    assert initiated.gateway_order_id == created["id"]
    assert initiated.key_id == "rzp_test_key"

    payment = await store.get(initiated.payment_id)
    assert payment.status == PaymentStatus.PROCESSING
    assert payment.amount == Decimal("499.50")
    assert payment.method == PaymentMethod.UPI
    assert payment.order_ref == "ord_1"


@pytest.mark.asyncio
async def test_initiate_payment_with_pending_order(service, store) -> None:
    initiated = await service.initiate_payment("user_1", 100, order_ref="temp_cart42")

    payment = await store.get(initiated.payment_id)
    assert payment.order_ref is None
    assert payment.pending_order_token == "temp_cart42"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"amount": 0}, "amount"),
        ({"amount": "-5"}, "amount"),
        ({"amount": "ten"}, "amount"),
        ({"amount": "0.004"}, "amount"),
        ({"amount": "0.4", "currency": "JPY"}, "amount"),
        ({"amount": 10, "currency": "XYZ"}, "currency"),
        ({"amount": 10, "method": "cheque"}, "method"),
    ],
)
async def test_initiate_payment_validation(service, gateway, kwargs, field) -> None:
    with pytest.raises(ValidationError) as exc_info:
        await service.initiate_payment("user_1", **kwargs)

    assert exc_info.value.field == field
    assert gateway.created_orders == []


@pytest.mark.asyncio
async def test_initiate_payment_gateway_failure_fails_payment(service, store, gateway) -> None:
    gateway.create_errors.append(GatewayUnavailable("Gateway timeout after 10.0s"))

    with pytest.raises(GatewayUnavailable):
        await service.initiate_payment("user_1", 250)

    [payment] = await store.list_payments(user_ref="user_1")
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason.startswith("Gateway order creation failed")


@pytest.mark.asyncio
async def test_attach_order_pushes_completed_outcome(service, store, order_client, make_payment) -> None:
    payment = await make_payment({"order_link": NoOrder()})
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    attached = await service.attach_order(payment.id, "ord_late")

    assert attached.order_ref == "ord_late"
    assert order_client.calls == [
        {"order_ref": "ord_late", "status": "completed", "transaction_id": gateway_payment_id, "note": None}
    ]


@pytest.mark.asyncio
async def test_attach_order_requires_persisted_order(service, make_payment) -> None:
    payment = await make_payment()

    with pytest.raises(ValidationError):
        await service.attach_order(payment.id, "temp_abc")


@pytest.mark.asyncio
async def test_attach_order_conflict(service, make_payment) -> None:
    payment = await make_payment()

    with pytest.raises(InvalidTransition):
        await service.attach_order(payment.id, "ord_other")


@pytest.mark.asyncio
async def test_retry_payment(service, store, make_payment) -> None:
    payment = await make_payment(status=PaymentStatus.FAILED, failure_reason="Declined")

    retried = await service.retry_payment(payment.id, payment.user_ref, delay_minutes=10)

    assert retried.status == PaymentStatus.FAILED
    assert retried.retry_count == 1
    assert retried.next_retry_at is not None


@pytest.mark.asyncio
async def test_retry_payment_checks_ownership_and_status(service, make_payment) -> None:
    failed = await make_payment(status=PaymentStatus.FAILED)
    processing = await make_payment()

    with pytest.raises(NotFound):
        await service.retry_payment(failed.id, "someone_else")
    with pytest.raises(InvalidTransition):
        await service.retry_payment(processing.id, processing.user_ref)


@pytest.mark.asyncio
async def test_retry_payment_exhausted(service, make_payment) -> None:
    payment = await make_payment(status=PaymentStatus.FAILED, retry_count=3)

    with pytest.raises(RetryExhausted):
        await service.retry_payment(payment.id, payment.user_ref)


@pytest.mark.asyncio
async def test_cancel_payment(service, order_client, make_payment) -> None:
    payment = await make_payment()

    cancelled = await service.cancel_payment(payment.id, payment.user_ref, reason="Changed my mind")

    assert cancelled.status == PaymentStatus.CANCELLED
    assert order_client.calls[0]["status"] == "cancelled"
    assert order_client.calls[0]["note"] == "Changed my mind"


@pytest.mark.asyncio
async def test_cancel_completed_payment_is_rejected(service, store, make_payment) -> None:
    payment = await make_payment()
    await store.mark_verified(payment.id, GatewayIdFactory.payment_id())

    with pytest.raises(InvalidTransition):
        await service.cancel_payment(payment.id)


@pytest.mark.asyncio
async def test_full_refund(service, store, gateway, order_client, make_payment) -> None:
    payment = await make_payment({"amount": Decimal("300.00")})
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    refund = await service.refund_payment(gateway_payment_id)

    assert refund["amount"] is None
    assert gateway.refunds[0]["payment_id"] == gateway_payment_id
    assert order_client.calls[-1]["status"] == "refunded"
    assert order_client.calls[-1]["transaction_id"] == refund["id"]
    assert (await store.get(payment.id)).status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_partial_refund_in_minor_units(service, store, gateway, make_payment) -> None:
    payment = await make_payment({"amount": Decimal("300.00")})
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    await service.refund_payment(gateway_payment_id, amount="120.25", reason="One item returned")

    assert gateway.refunds[0]["amount"] == 12025
    assert gateway.refunds[0]["notes"] == {"reason": "One item returned"}


@pytest.mark.asyncio
async def test_refund_rejections(service, store, gateway, make_payment) -> None:
    payment = await make_payment({"amount": Decimal("300.00")})
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    with pytest.raises(ValidationError):
        await service.refund_payment(gateway_payment_id, amount="300.01")
    with pytest.raises(NotFound):
        await service.refund_payment("pay_unknown")

    gateway.refund_errors.append(GatewayRejected("Gateway rejected request: already refunded", status_code=400))
    with pytest.raises(GatewayRejected):
        await service.refund_payment(gateway_payment_id)
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_synchronize_payment(service, gateway, make_payment) -> None:
    payment = await make_payment()
    gateway.order_statuses[payment.gateway_order_id] = "paid"

    result = await service.synchronize_payment(payment.id)

    assert result == {"payment_id": payment.id, "status": PaymentStatus.COMPLETED, "synchronized": True}

    again = await service.synchronize_payment(payment.id)
    assert again["synchronized"] is False


@pytest.mark.asyncio
async def test_get_unknown_payment(service) -> None:
    with pytest.raises(NotFound):
        await service.get_payment(uuid4())


@pytest.mark.asyncio
async def test_trigger_sweeps(service, make_payment) -> None:
    await make_payment()

    expiry = await service.trigger_expiry_sweep()
    retry = await service.trigger_retry_sweep()
    reconciliation = await service.trigger_reconciliation_sweep()
    cleanup = await service.trigger_cleanup_sweep()

    assert expiry["processed"] == 0
    assert retry["processed"] == 0
    assert reconciliation["processed"] == 1
    assert reconciliation["unchanged"] == 1
    assert cleanup["deleted"] == 0


@pytest.mark.asyncio
async def test_amount_rounds_to_smallest_unit(service, store, gateway) -> None:
    initiated = await service.initiate_payment("user_1", "10.005")

    assert initiated.amount == Decimal("10.01")
    assert gateway.created_orders[0]["amount"] == 1001


@pytest.mark.asyncio
async def test_partial_refund_below_smallest_unit_is_rejected(service, store, gateway, make_payment) -> None:
    payment = await make_payment({"amount": Decimal("300.00")})
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    with pytest.raises(ValidationError):
        await service.refund_payment(gateway_payment_id, amount="0.001")
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_default_payment_methods(service) -> None:
    methods = service.list_payment_methods()

    assert [method.id for method in methods] == ["card", "upi", "netbanking", "wallet"]
    assert all(method.enabled for method in methods)
    assert methods[0].name == "Credit / Debit Card"
    assert methods[0].min_order_amount is None


@pytest.mark.asyncio
async def test_payment_methods_with_cash_on_delivery(container: Container) -> None:
    service = PaymentService(
        container.store,
        container.gateway,
        container.verification,
        container.reconciliation_sweep,
        container.linkage,
        container.scheduler,
        key_id="rzp_test_key",
        online_methods=["UPI", "crypto", "cod", "card"],
        cod_enabled=True,
        cod_min_order_amount=Decimal("100"),
        cod_max_order_amount=Decimal("2500"),
    )

    methods = service.list_payment_methods()

    assert [method.id for method in methods] == ["upi", "card", "cod"]
    cod = methods[-1]
    assert cod.name == "Cash on Delivery"
    assert cod.min_order_amount == Decimal("100")
    assert cod.max_order_amount == Decimal("2500")


@pytest.mark.asyncio
async def test_online_methods_can_be_switched_off(container: Container) -> None:
    service = PaymentService(
        container.store,
        container.gateway,
        container.verification,
        container.reconciliation_sweep,
        container.linkage,
        container.scheduler,
        key_id="rzp_test_key",
        online_enabled=False,
        cod_enabled=True,
    )

    assert [method.id for method in service.list_payment_methods()] == ["cod"]
