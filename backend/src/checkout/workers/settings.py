"""
ARQ worker running the payment sweeps out of process.

Use this instead of the in-process scheduler when the API runs with
``SCHEDULER_ENABLED=false``, e.g. with several API replicas.

Usage:
    arq checkout.workers.settings.WorkerSettings
"""
from typing import Any

import structlog
from arq import cron
from arq.connections import RedisSettings

from checkout.config import settings
from checkout.container import build_container
from checkout.middleware.logging import setup_logging

logger = structlog.get_logger(__name__)


def _every(seconds: int) -> set[int]:
    minutes = max(seconds // 60, 1)
    return set(range(0, 60, minutes))


async def startup(ctx: dict[str, Any]) -> None:
    setup_logging()
    ctx["container"] = build_container(settings)
    logger.info("sweep_worker_started")


async def shutdown(ctx: dict[str, Any]) -> None:
    await ctx["container"].aclose()
    logger.info("sweep_worker_stopped")


async def run_expiry_sweep(ctx: dict[str, Any]) -> Any:
    return await ctx["container"].scheduler.run_now("expiry")


async def run_retry_sweep(ctx: dict[str, Any]) -> Any:
    return await ctx["container"].scheduler.run_now("retry")


async def run_reconciliation_sweep(ctx: dict[str, Any]) -> Any:
    return await ctx["container"].scheduler.run_now("reconciliation")


async def run_cleanup_sweep(ctx: dict[str, Any]) -> Any:
    return await ctx["container"].scheduler.run_now("cleanup")


class WorkerSettings:
    """
    ARQ worker settings for the payment sweeps.

    Schedule:
    - Expiry: every 5 minutes
    - Retry: every 10 minutes
    - Reconciliation: every 20 minutes
    - Cleanup: daily at 02:00 UTC
    """

    functions = [
        run_expiry_sweep,
        run_retry_sweep,
        run_reconciliation_sweep,
        run_cleanup_sweep,
    ]

    cron_jobs = [
        cron(run_expiry_sweep, minute=_every(settings.expiry_sweep_interval_seconds), unique=True, timeout=600),
        cron(run_retry_sweep, minute=_every(settings.retry_sweep_interval_seconds), unique=True, timeout=600),
        cron(
            run_reconciliation_sweep,
            minute=_every(settings.reconciliation_sweep_interval_seconds),
            unique=True,
            timeout=600,
        ),
        cron(run_cleanup_sweep, hour={settings.cleanup_hour_utc}, minute={0}, unique=True, timeout=3600),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))
