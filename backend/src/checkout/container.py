"""Composition root: builds the payment engine's component graph.

Nothing in the package holds a module-level service instance. The API
lifespan and the arq worker each build a ``Container`` from settings, and
tests build one with fake collaborators.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from checkout.adapters.razorpay_adapter import GatewayAdapter, RazorpayAdapter
from checkout.config import Settings
from checkout.database import create_engine, create_session_factory
from checkout.integrations.notification_service import NotificationService
from checkout.integrations.order_service import OrderClient, OrderServiceClient
from checkout.integrations.user_service import UserDirectory, UserServiceClient
from checkout.services.order_linkage import OrderLinkageNotifier
from checkout.services.payment_service import PaymentService
from checkout.services.payment_store import PaymentStore
from checkout.services.verification_service import Sleep, VerificationWorkflow
from checkout.workers.cleanup import CleanupSweep
from checkout.workers.expiry import ExpirySweep
from checkout.workers.payment_retry import RetrySweep, retry_delay
from checkout.workers.reconciliation import ReconciliationSweep
from checkout.workers.scheduler import Scheduler

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Optional[AsyncEngine]
    session_factory: async_sessionmaker[AsyncSession]
    gateway: GatewayAdapter
    order_client: OrderClient
    user_directory: UserDirectory
    notifier: NotificationService
    store: PaymentStore
    linkage: OrderLinkageNotifier
    verification: VerificationWorkflow
    expiry_sweep: ExpirySweep
    retry_sweep: RetrySweep
    reconciliation_sweep: ReconciliationSweep
    cleanup_sweep: CleanupSweep
    scheduler: Scheduler
    payment_service: PaymentService

    async def aclose(self) -> None:
        """Stop the scheduler and release HTTP clients and the engine."""
        if self.scheduler.is_running:
            await self.scheduler.stop()
        await self.gateway.aclose()
        await self.order_client.aclose()
        await self.user_directory.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    gateway: Optional[GatewayAdapter] = None,
    order_client: Optional[OrderClient] = None,
    user_directory: Optional[UserDirectory] = None,
    notifier: Optional[NotificationService] = None,
    sleep: Sleep = asyncio.sleep,
) -> Container:
    """
    Wire every component from settings.

    Any collaborator passed in replaces the one built from settings. When a
    session factory is given, the caller owns its engine.
    """
    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)

    gateway = gateway or RazorpayAdapter.from_settings(settings)
    order_client = order_client or OrderServiceClient(
        settings.order_service_url, timeout=settings.collaborator_timeout_seconds
    )
    user_directory = user_directory or UserServiceClient(
        settings.user_service_url, timeout=settings.collaborator_timeout_seconds
    )
    notifier = notifier or NotificationService(
        api_key=settings.notification_api_key,
        timeout_minutes=settings.payment_timeout_minutes,
    )

    store = PaymentStore(
        session_factory,
        timeout_window=timedelta(minutes=settings.payment_timeout_minutes),
        max_retries=settings.max_retries,
    )
    linkage = OrderLinkageNotifier(order_client, user_directory, notifier, settings.frontend_url)
    first_retry = retry_delay(0, settings.retry_delays_minutes)

    verification = VerificationWorkflow(
        store,
        gateway,
        linkage,
        max_attempts=settings.verification_max_attempts,
        backoff_base=settings.verification_backoff_base,
        first_retry_delay=first_retry,
        sleep=sleep,
    )
    expiry_sweep = ExpirySweep(store, linkage)
    retry_sweep = RetrySweep(store, gateway, linkage, delays_minutes=settings.retry_delays_minutes)
    reconciliation_sweep = ReconciliationSweep(
        store,
        gateway,
        linkage,
        window=timedelta(hours=settings.reconciliation_window_hours),
        limit=settings.reconciliation_batch_limit,
        concurrency=settings.reconciliation_concurrency,
        batch_delay=settings.reconciliation_batch_delay_ms / 1000,
        retry_delay=first_retry,
    )
    cleanup_sweep = CleanupSweep(store, retention_days=settings.cleanup_retention_days)

    scheduler = Scheduler()
    scheduler.add_interval_task("expiry", expiry_sweep.run, settings.expiry_sweep_interval_seconds)
    scheduler.add_interval_task("retry", retry_sweep.run, settings.retry_sweep_interval_seconds)
    scheduler.add_interval_task(
        "reconciliation", reconciliation_sweep.run, settings.reconciliation_sweep_interval_seconds
    )
    scheduler.add_daily_task("cleanup", cleanup_sweep.run, settings.cleanup_hour_utc)

    payment_service = PaymentService(
        store,
        gateway,
        verification,
        reconciliation_sweep,
        linkage,
        scheduler,
        key_id=settings.razorpay_key_id,
        default_currency=settings.default_currency,
        online_methods=settings.online_payment_methods,
        online_enabled=settings.online_payments_enabled,
        cod_enabled=settings.cod_enabled,
        cod_min_order_amount=settings.cod_min_order_amount,
        cod_max_order_amount=settings.cod_max_order_amount,
    )

    logger.info("container_built", env=settings.app_env, scheduled_tasks=scheduler.task_names)

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        order_client=order_client,
        user_directory=user_directory,
        notifier=notifier,
        store=store,
        linkage=linkage,
        verification=verification,
        expiry_sweep=expiry_sweep,
        retry_sweep=retry_sweep,
        reconciliation_sweep=reconciliation_sweep,
        cleanup_sweep=cleanup_sweep,
        scheduler=scheduler,
        payment_service=payment_service,
    )
