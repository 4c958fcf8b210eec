"""Pytest configuration and fixtures for async testing."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncGenerator, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from checkout.adapters.razorpay_adapter import compute_signature
from checkout.config import Settings
from checkout.container import Container, build_container
from checkout.database import Base, create_session_factory
from checkout.exceptions import PaymentError
from checkout.integrations.notification_service import NotificationService
from checkout.integrations.user_service import UserContact
from checkout.models.payment import Payment
from checkout.services.payment_store import PaymentStore
from tests.utils.factories import GatewayIdFactory, PaymentFactory

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"


def sign(gateway_order_id: str, gateway_payment_id: str) -> str:
    """Signature the gateway would send for a genuine checkout callback."""
    return compute_signature(TEST_KEY_SECRET, gateway_order_id, gateway_payment_id)


class FakeGateway:
    """
    In-memory gateway.

    Statuses are configured per id; ``*_errors`` lists are consumed one per
    call before the configured status is returned.
    """

    def __init__(self):
        self.payment_statuses: dict[str, str] = {}
        self.order_statuses: dict[str, str] = {}
        self.payment_errors: list[PaymentError] = []
        self.order_errors: list[PaymentError] = []
        self.create_errors: list[PaymentError] = []
        self.refund_errors: list[PaymentError] = []
        self.created_orders: list[dict[str, Any]] = []
        self.refunds: list[dict[str, Any]] = []
        self.fetch_payment_calls = 0
        self.fetch_order_calls = 0

    async def create_remote_order(self, amount_minor_units: int, currency: str, receipt: str) -> str:
        if self.create_errors:
            raise self.create_errors.pop(0)
        gateway_order_id = GatewayIdFactory.order_id()
        self.created_orders.append(
            {"id": gateway_order_id, "amount": amount_minor_units, "currency": currency, "receipt": receipt}
        )
        self.order_statuses[gateway_order_id] = "created"
        return gateway_order_id

    async def fetch_payment(self, gateway_payment_id: str) -> dict[str, Any]:
        self.fetch_payment_calls += 1
        if self.payment_errors:
            raise self.payment_errors.pop(0)
        status = self.payment_statuses.get(gateway_payment_id, "captured")
        return {"status": status, "raw": {"id": gateway_payment_id, "status": status}}

    async def fetch_order(self, gateway_order_id: str) -> dict[str, Any]:
        self.fetch_order_calls += 1
        if self.order_errors:
            raise self.order_errors.pop(0)
        status = self.order_statuses.get(gateway_order_id, "created")
        return {"status": status, "raw": {"id": gateway_order_id, "status": status}}

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not gateway_order_id or not gateway_payment_id or not signature:
            return False
        return sign(gateway_order_id, gateway_payment_id) == signature

    async def refund(
        self, gateway_payment_id: str, amount_minor_units: Optional[int] = None, reason: str = "Customer request"
    ) -> dict[str, Any]:
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        refund = {
            "id": f"rfnd_{len(self.refunds) + 1}",
            "payment_id": gateway_payment_id,
            "amount": amount_minor_units,
            "status": "processed",
            "notes": {"reason": reason},
        }
        self.refunds.append(refund)
        return refund

    async def aclose(self) -> None:
        pass


@dataclass
class FakeOrderClient:
    calls: list[dict[str, Any]] = field(default_factory=list)
    fail: bool = False

    async def update_payment_status(
        self,
        order_ref: str,
        status: str,
        transaction_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        if self.fail:
            raise httpx.ConnectError("order service down")
        self.calls.append({"order_ref": order_ref, "status": status, "transaction_id": transaction_id, "note": note})
        return True

    async def aclose(self) -> None:
        pass


@dataclass
class FakeUserDirectory:
    missing: set[str] = field(default_factory=set)

    async def get_user(self, user_ref: str) -> Optional[UserContact]:
        if user_ref in self.missing:
            return None
        return UserContact(email=f"{user_ref}@example.com", name=f"Customer {user_ref}")

    async def aclose(self) -> None:
        pass


class RecordingNotificationService(NotificationService):
    """Renders real templates but records emails instead of sending them."""

    def __init__(self):
        super().__init__(api_key=None, timeout_minutes=30)
        self.sent: list[dict[str, Any]] = []

    async def send_email(self, to: str, subject: str, body: str, template: str | None = None) -> dict[str, Any]:
        self.sent.append({"to": to, "subject": subject, "body": body, "template": template})
        return {"status": "sent", "provider": "test", "to": to, "subject": subject}


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        razorpay_key_id=TEST_KEY_ID,
        razorpay_key_secret=TEST_KEY_SECRET,
        scheduler_enabled=False,
        app_env="test",
        frontend_url="https://shop.example.com",
        reconciliation_batch_delay_ms=0,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh database for each test.

    NullPool gives every session its own connection, like the server pool.
    """
    test_engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def order_client() -> FakeOrderClient:
    return FakeOrderClient()


@pytest.fixture
def user_directory() -> FakeUserDirectory:
    return FakeUserDirectory()


@pytest.fixture
def notifier() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def container(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: FakeGateway,
    order_client: FakeOrderClient,
    user_directory: FakeUserDirectory,
    notifier: RecordingNotificationService,
    sleep: RecordingSleep,
) -> Container:
    """Component graph wired to fakes and the test database."""
    return build_container(
        test_settings,
        session_factory=session_factory,
        gateway=gateway,
        order_client=order_client,
        user_directory=user_directory,
        notifier=notifier,
        sleep=sleep,
    )


@pytest.fixture
def store(container: Container) -> PaymentStore:
    return container.store


@pytest.fixture
def set_fields(session_factory: async_sessionmaker[AsyncSession]):
    """Force column values, bypassing the guarded transitions."""

    async def _set_fields(payment_id, **values: Any) -> None:
        async with session_factory() as session:
            await session.execute(update(Payment).where(Payment.id == payment_id).values(**values))
            await session.commit()

    return _set_fields


@pytest.fixture
def make_payment(store: PaymentStore, gateway: FakeGateway, set_fields):
    """
    Create a payment, optionally attached to a gateway order and forced into a state.

    Returns the reloaded payment.
    """

    async def _make_payment(
        overrides: dict[str, Any] | None = None,
        gateway_order_id: str | None = None,
        with_gateway_order: bool = True,
        **fields: Any,
    ) -> Payment:
        payment = await store.create(**PaymentFactory.create(overrides))
        if with_gateway_order:
            gateway_order_id = gateway_order_id or GatewayIdFactory.order_id()
            await store.attach_gateway_order_id(payment.id, gateway_order_id)
            gateway.order_statuses.setdefault(gateway_order_id, "created")
        if fields:
            await set_fields(payment.id, **fields)
        return await store.get(payment.id)

    return _make_payment
