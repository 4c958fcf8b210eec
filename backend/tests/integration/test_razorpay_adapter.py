"""Tests for the Razorpay adapter using httpx mock transports."""
import hashlib
import hmac
import json

import httpx
import pytest

from checkout.adapters.razorpay_adapter import RazorpayAdapter, compute_signature
from checkout.exceptions import GatewayRejected, GatewayUnavailable

BASE_URL = "https://api.razorpay.test/v1"


def _adapter(handler) -> RazorpayAdapter:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RazorpayAdapter("rzp_test_key", "secret", base_url=BASE_URL, client=client)


@pytest.mark.asyncio
async def test_create_remote_order_sends_minor_units() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc", "status": "created"})

    adapter = _adapter(handler)
    gateway_order_id = await adapter.create_remote_order(50000, "inr", receipt="order_" + "x" * 60)

    assert gateway_order_id == "order_abc"
    assert seen["path"] == "/v1/orders"
    assert seen["body"]["amount"] == 50000
    assert seen["body"]["currency"] == "INR"
    assert seen["body"]["payment_capture"] == 1
    assert len(seen["body"]["receipt"]) == 40
    await adapter.aclose()


@pytest.mark.asyncio
async def test_fetch_order_and_payment_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/orders/order_1"):
            return httpx.Response(200, json={"id": "order_1", "status": "paid"})
        return httpx.Response(200, json={"id": "pay_1", "status": "captured"})

    adapter = _adapter(handler)

    assert (await adapter.fetch_order("order_1"))["status"] == "paid"
    payment = await adapter.fetch_payment("pay_1")
    assert payment["status"] == "captured"
    assert payment["raw"]["id"] == "pay_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [500, 502, 503, 429])
async def test_server_errors_are_unavailable(status_code: int) -> None:
    adapter = _adapter(lambda request: httpx.Response(status_code, json={}))

    with pytest.raises(GatewayUnavailable):
        await adapter.fetch_order("order_1")


@pytest.mark.asyncio
async def test_network_errors_are_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    adapter = _adapter(handler)

    with pytest.raises(GatewayUnavailable):
        await adapter.fetch_payment("pay_1")


@pytest.mark.asyncio
async def test_client_errors_are_rejected_with_description() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
        )

    adapter = _adapter(handler)

    with pytest.raises(GatewayRejected) as exc_info:
        await adapter.fetch_payment("pay_missing")

    assert exc_info.value.status_code == 400
    assert "The id provided does not exist" in exc_info.value.message


@pytest.mark.asyncio
async def test_refund_sends_amount_and_reason() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "rfnd_1", "amount": 10000, "status": "processed"})

    adapter = _adapter(handler)
    refund = await adapter.refund("pay_1", 10000, reason="Damaged item")

    assert refund["id"] == "rfnd_1"
    assert seen["path"] == "/v1/payments/pay_1/refund"
    assert seen["body"] == {"speed": "normal", "notes": {"reason": "Damaged item"}, "amount": 10000}


def test_verify_signature() -> None:
    adapter = _adapter(lambda request: httpx.Response(200))
    signature = compute_signature("secret", "order_1", "pay_1")

    assert adapter.verify_signature("order_1", "pay_1", signature) is True
    assert adapter.verify_signature("order_1", "pay_2", signature) is False
    assert adapter.verify_signature("order_1", "pay_1", "") is False
    assert adapter.verify_signature("", "pay_1", signature) is False


def test_compute_signature_matches_known_value() -> None:
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert compute_signature("secret", "order_1", "pay_1") == expected
