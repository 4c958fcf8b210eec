"""Order service client used to push payment outcomes into orders."""
from typing import Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class OrderClient(Protocol):
    """What the payment engine needs from the order collaborator."""

    async def update_payment_status(
        self,
        order_ref: str,
        status: str,
        transaction_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool: ...

    async def aclose(self) -> None: ...


class OrderServiceClient:
    """
    HTTP client for the order service.

    ``PATCH {base_url}/orders/{order_ref}/payment-status`` with the payment
    status, gateway transaction id and an optional note for the order's
    status history.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the client.

        Args:
            base_url: Order service base URL
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (tests pass one with a mock transport)
        """
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def update_payment_status(
        self,
        order_ref: str,
        status: str,
        transaction_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """
        Update the order's payment status.

        Returns:
            False when the order does not exist, True otherwise

        Raises:
            httpx.HTTPError: On network failure or an unexpected status
        """
        body = {"payment_status": status, "transaction_id": transaction_id, "note": note}
        response = await self._client.patch(f"/orders/{order_ref}/payment-status", json=body)

        if response.status_code == 404:
            logger.warning("order_not_found_for_payment_update", order_ref=order_ref, status=status)
            return False

        response.raise_for_status()
        logger.info("order_payment_status_updated", order_ref=order_ref, status=status, transaction_id=transaction_id)
        return True

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
