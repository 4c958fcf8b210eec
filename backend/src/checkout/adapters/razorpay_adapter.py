"""Razorpay payment gateway adapter."""
import hashlib
import hmac
from typing import Any, Optional, Protocol

import httpx
import structlog

from checkout.config import Settings
from checkout.exceptions import GatewayRejected, GatewayUnavailable

logger = structlog.get_logger(__name__)


class GatewayAdapter(Protocol):
    """Operations the payment engine needs from a gateway."""

    async def create_remote_order(self, amount_minor_units: int, currency: str, receipt: str) -> str: ...

    async def fetch_payment(self, gateway_payment_id: str) -> dict[str, Any]: ...

    async def fetch_order(self, gateway_order_id: str) -> dict[str, Any]: ...

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool: ...

    async def refund(
        self, gateway_payment_id: str, amount_minor_units: Optional[int] = None, reason: str = "Customer request"
    ) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """HMAC-SHA256 hex digest of ``"{order_id}|{payment_id}"`` keyed by the secret."""
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayAdapter:
    """
    Adapter for the Razorpay Orders and Payments REST API.

    Stateless apart from the pooled HTTP client. Does not retry: callers
    decide based on the error class.

    - ``GatewayUnavailable``: network failure, timeout, 429 or 5xx
    - ``GatewayRejected``: any other 4xx
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the adapter.

        Args:
            key_id: Razorpay key id
            key_secret: Razorpay key secret (API auth and callback signatures)
            base_url: REST API base URL
            timeout: Per-request timeout in seconds
            client: Pre-built HTTP client (tests pass one with a mock transport)
        """
        self._key_secret = key_secret
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            headers={"User-Agent": "Checkout-Payments/1.0"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RazorpayAdapter":
        """Build the adapter from application settings."""
        return cls(
            key_id=settings.razorpay_key_id,
            key_secret=settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
            timeout=settings.gateway_timeout_seconds,
        )

    async def create_remote_order(self, amount_minor_units: int, currency: str, receipt: str) -> str:
        """
        Create a gateway order the customer pays against.

        Args:
            amount_minor_units: Amount in paise/cents
            currency: ISO currency code
            receipt: Merchant receipt id (max 40 chars)

        Returns:
            Gateway order id
        """
        order = await self._request(
            "POST",
            "/orders",
            json={
                "amount": amount_minor_units,
                "currency": currency.upper(),
                "receipt": receipt[:40],
                "payment_capture": 1,
            },
        )
        logger.info(
            "gateway_order_created",
            gateway_order_id=order.get("id"),
            amount=amount_minor_units,
            currency=currency,
        )
        return order["id"]

    async def fetch_payment(self, gateway_payment_id: str) -> dict[str, Any]:
        """
        Retrieve a payment.

        Returns:
            ``{"status": <created|authorized|captured|refunded|failed>, "raw": <payload>}``
        """
        payment = await self._request("GET", f"/payments/{gateway_payment_id}")
        return {"status": payment.get("status"), "raw": payment}

    async def fetch_order(self, gateway_order_id: str) -> dict[str, Any]:
        """
        Retrieve an order.

        Returns:
            ``{"status": <created|attempted|paid>, "raw": <payload>}``
        """
        order = await self._request("GET", f"/orders/{gateway_order_id}")
        return {"status": order.get("status"), "raw": order}

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Check the checkout callback signature in constant time."""
        if not gateway_order_id or not gateway_payment_id or not signature:
            logger.warning(
                "signature_parameters_missing",
                has_order_id=bool(gateway_order_id),
                has_payment_id=bool(gateway_payment_id),
                has_signature=bool(signature),
            )
            return False

        expected = compute_signature(self._key_secret, gateway_order_id, gateway_payment_id)
        is_valid = hmac.compare_digest(expected, signature)
        if not is_valid:
            logger.warning("signature_mismatch", gateway_order_id=gateway_order_id)
        return is_valid

    async def refund(
        self,
        gateway_payment_id: str,
        amount_minor_units: Optional[int] = None,
        reason: str = "Customer request",
    ) -> dict[str, Any]:
        """
        Refund a captured payment, fully when no amount is given.

        Returns:
            Refund record from the gateway
        """
        body: dict[str, Any] = {"speed": "normal", "notes": {"reason": reason}}
        if amount_minor_units is not None:
            body["amount"] = amount_minor_units

        refund = await self._request("POST", f"/payments/{gateway_payment_id}/refund", json=body)
        logger.info(
            "gateway_refund_created",
            gateway_payment_id=gateway_payment_id,
            refund_id=refund.get("id"),
            amount=refund.get("amount"),
        )
        return refund

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayUnavailable(f"Gateway timeout after {self.timeout}s", path=path) from e
        except httpx.HTTPError as e:
            raise GatewayUnavailable(f"Gateway request failed: {e}", path=path) from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("gateway_unavailable", path=path, status_code=response.status_code)
            raise GatewayUnavailable(f"Gateway returned HTTP {response.status_code}", path=path)

        if response.status_code >= 400:
            description = _error_description(response)
            logger.warning("gateway_rejected", path=path, status_code=response.status_code, error=description)
            raise GatewayRejected(
                f"Gateway rejected request: {description}",
                status_code=response.status_code,
                path=path,
            )

        return response.json()


def _error_description(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return response.text[:200]
    return error.get("description") or error.get("code") or f"HTTP {response.status_code}"
