"""HTTP tests for the payment endpoints."""
from typing import AsyncGenerator
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from checkout.container import Container
from checkout.exceptions import GatewayUnavailable
from checkout.main import create_app
from checkout.models.payment import PaymentStatus
from tests.conftest import sign
from tests.utils.factories import GatewayIdFactory


@pytest_asyncio.fixture
async def client(container: Container) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(container=container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.mark.asyncio
async def test_checkout_flow(client: httpx.AsyncClient, gateway, order_client) -> None:
    response = await client.post(
        "/v1/payments/orders",
        json={"user_ref": "user_1", "amount": "999.00", "currency": "INR", "method": "card", "order_ref": "ord_9"},
    )
    assert response.status_code == 201
    created = response.json()
    assert created["key_id"] == "rzp_test_key"
    assert gateway.created_orders[0]["amount"] == 99900

    gateway_order_id = created["gateway_order_id"]
    gateway_payment_id = GatewayIdFactory.payment_id()
    callback = {
        "razorpay_order_id": gateway_order_id,
        "razorpay_payment_id": gateway_payment_id,
        "razorpay_signature": sign(gateway_order_id, gateway_payment_id),
    }

    response = await client.post("/v1/payments/verify", json=callback)
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "payment_id": created["payment_id"],
        "status": "completed",
        "duplicate": False,
    }

    response = await client.post("/v1/payments/verify", json=callback)
    assert response.json()["duplicate"] is True

    response = await client.get(f"/v1/payments/{created['payment_id']}")
    payment = response.json()
    assert payment["status"] == "completed"
    assert payment["gateway_payment_id"] == gateway_payment_id
    assert payment["verification_status"] == "verified"
    assert order_client.calls[0]["status"] == "completed"


@pytest.mark.asyncio
async def test_tampered_signature_returns_payment_id(client: httpx.AsyncClient, make_payment) -> None:
    payment = await make_payment()

    response = await client.post(
        "/v1/payments/verify",
        json={
            "gateway_order_id": payment.gateway_order_id,
            "gateway_payment_id": GatewayIdFactory.payment_id(),
            "signature": "0" * 64,
        },
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "SignatureMismatch"
    assert body["payment_id"] == str(payment.id)
    assert body["details"][0]["code"] == "invalid_signature"
    assert response.headers["x-request-id"].startswith("req_")


@pytest.mark.asyncio
async def test_request_validation_error(client: httpx.AsyncClient) -> None:
    response = await client.post("/v1/payments/orders", json={"user_ref": "user_1", "amount": -1})

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["details"][0]["code"] == "invalid_amount"


@pytest.mark.asyncio
async def test_unsupported_currency_is_bad_request(client: httpx.AsyncClient) -> None:
    response = await client.post("/v1/payments/orders", json={"user_ref": "user_1", "amount": 10, "currency": "XYZ"})

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "currency"


@pytest.mark.asyncio
async def test_unknown_payment(client: httpx.AsyncClient) -> None:
    response = await client.get(f"/v1/payments/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["details"][0]["code"] == "payment_not_found"


@pytest.mark.asyncio
async def test_gateway_outage_sets_retry_after(client: httpx.AsyncClient, gateway) -> None:
    gateway.create_errors.append(GatewayUnavailable("Gateway timeout after 10.0s"))

    response = await client.post("/v1/payments/orders", json={"user_ref": "user_1", "amount": 10})

    assert response.status_code == 503
    assert response.headers["retry-after"] == "30"


@pytest.mark.asyncio
async def test_attach_order_conflict(client: httpx.AsyncClient, make_payment) -> None:
    payment = await make_payment()

    same = await client.post(f"/v1/payments/{payment.id}/attach-order", json={"order_ref": payment.order_ref})
    other = await client.post(f"/v1/payments/{payment.id}/attach-order", json={"order_ref": "ord_other"})

    assert same.status_code == 200
    assert other.status_code == 409


@pytest.mark.asyncio
async def test_list_and_stats(client: httpx.AsyncClient, make_payment) -> None:
    first = await make_payment({"user_ref": "user_a"})
    await make_payment({"user_ref": "user_b"}, status=PaymentStatus.FAILED)

    response = await client.get("/v1/payments", params={"user_ref": "user_a"})
    assert [item["id"] for item in response.json()["items"]] == [str(first.id)]

    response = await client.get("/v1/payments", params={"status": "failed"})
    assert len(response.json()["items"]) == 1

    response = await client.get("/v1/payments/stats")
    stats = response.json()
    assert stats["total"] == 2
    assert stats["pending"] == 0
    assert {bucket["status"] for bucket in stats["by_status"]} == {"processing", "failed"}


@pytest.mark.asyncio
async def test_retry_and_cancel(client: httpx.AsyncClient, make_payment) -> None:
    failed = await make_payment(status=PaymentStatus.FAILED)
    open_payment = await make_payment()

    response = await client.post(f"/v1/payments/{failed.id}/retry", json={"user_ref": failed.user_ref})
    assert response.status_code == 200
    assert response.json()["retry_count"] == 1

    response = await client.post(f"/v1/payments/{open_payment.id}/retry", json={"user_ref": open_payment.user_ref})
    assert response.status_code == 409

    response = await client.post(f"/v1/payments/{open_payment.id}/cancel", json={})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_refund_endpoint(client: httpx.AsyncClient, store, make_payment) -> None:
    payment = await make_payment()
    gateway_payment_id = GatewayIdFactory.payment_id()
    await store.mark_verified(payment.id, gateway_payment_id)

    response = await client.post("/v1/payments/refund", json={"gateway_payment_id": gateway_payment_id})

    assert response.status_code == 200
    assert response.json()["refund_id"] == "rfnd_1"


@pytest.mark.asyncio
async def test_sync_endpoint(client: httpx.AsyncClient, gateway, make_payment) -> None:
    payment = await make_payment()
    gateway.order_statuses[payment.gateway_order_id] = "attempted"

    response = await client.post(f"/v1/payments/{payment.id}/sync")

    assert response.status_code == 200
    assert response.json() == {"payment_id": str(payment.id), "status": "failed", "synchronized": True}


@pytest.mark.asyncio
async def test_trigger_sweep(client: httpx.AsyncClient) -> None:
    response = await client.post("/v1/payments/sweeps/expiry")
    assert response.status_code == 200
    assert response.json()["skipped"] is False
    assert response.json()["result"]["processed"] == 0

    response = await client.post("/v1/payments/sweeps/everything")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_health_endpoints(client: httpx.AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"

    response = await client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["checks"] == {"database": "connected", "scheduler": "stopped"}


@pytest.mark.asyncio
async def test_payment_methods_endpoint(client: httpx.AsyncClient) -> None:
    response = await client.get("/v1/payments/methods")

    assert response.status_code == 200
    methods = response.json()["payment_methods"]
    assert [method["id"] for method in methods] == ["card", "upi", "netbanking", "wallet"]
    assert methods[1] == {
        "id": "upi",
        "name": "UPI",
        "description": "Pay with any UPI app",
        "icon": "smartphone",
        "enabled": True,
        "min_order_amount": None,
        "max_order_amount": None,
    }


@pytest.mark.asyncio
async def test_sub_unit_amount_is_bad_request(client: httpx.AsyncClient, gateway) -> None:
    response = await client.post("/v1/payments/orders", json={"user_ref": "user_1", "amount": "0.004"})

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "amount"
    assert gateway.created_orders == []
