"""User directory client for addressing customer emails."""
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UserContact:
    email: str
    name: str


class UserDirectory(Protocol):
    async def get_user(self, user_ref: str) -> Optional[UserContact]: ...

    async def aclose(self) -> None: ...


class UserServiceClient:
    """HTTP client for ``GET {base_url}/users/{user_ref}``."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get_user(self, user_ref: str) -> Optional[UserContact]:
        """
        Look up a user's contact details.

        Returns:
            The contact, or None when the user is unknown or has no email
        """
        response = await self._client.get(f"/users/{user_ref}")
        if response.status_code == 404:
            return None
        response.raise_for_status()

        user = response.json()
        email = user.get("email")
        if not email:
            logger.warning("user_without_email", user_ref=user_ref)
            return None
        return UserContact(email=email, name=user.get("name") or "Customer")

    async def aclose(self) -> None:
        await self._client.aclose()
