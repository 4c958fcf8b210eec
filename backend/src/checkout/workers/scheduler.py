"""In-process scheduler for the payment sweeps.

Each named task runs either on a fixed interval or once a day at a given UTC
hour. A task never overlaps itself: a tick that arrives while the previous
pass is still running is skipped, not queued. Different tasks may overlap.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from checkout import metrics
from checkout.utils.clock import utcnow

logger = structlog.get_logger(__name__)

SweepFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    name: str
    func: SweepFunc
    interval_seconds: Optional[float] = None
    daily_hour_utc: Optional[int] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_run_at: Optional[datetime] = None
    last_result: Any = None

    def seconds_until_next_run(self, now: datetime) -> float:
        """Delay before the next tick."""
        if self.interval_seconds is not None:
            return self.interval_seconds

        next_run = now.replace(hour=self.daily_hour_utc, minute=0, second=0, microsecond=0)
        if next_run <= now:
            next_run += timedelta(days=1)
        return (next_run - now).total_seconds()


class Scheduler:
    """Holds named sweep tasks and runs them as asyncio tasks."""

    def __init__(self):
        self._tasks: dict[str, ScheduledTask] = {}
        self._running: dict[str, asyncio.Task] = {}

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    @property
    def is_running(self) -> bool:
        return bool(self._running)

    def add_interval_task(self, name: str, func: SweepFunc, seconds: float) -> None:
        """Register a task that runs every ``seconds``."""
        self._register(ScheduledTask(name=name, func=func, interval_seconds=seconds))

    def add_daily_task(self, name: str, func: SweepFunc, hour_utc: int) -> None:
        """Register a task that runs once a day at ``hour_utc``:00 UTC."""
        if not 0 <= hour_utc <= 23:
            raise ValueError(f"hour_utc must be between 0 and 23, got {hour_utc}")
        self._register(ScheduledTask(name=name, func=func, daily_hour_utc=hour_utc))

    def get_task(self, name: str) -> ScheduledTask:
        try:
            return self._tasks[name]
        except KeyError:
            raise KeyError(f"Unknown scheduled task: {name}") from None

    def start(self) -> None:
        """Start every registered task loop."""
        for name, task in self._tasks.items():
            if name not in self._running:
                self._running[name] = asyncio.create_task(self._loop(task), name=f"sweep:{name}")
        logger.info("scheduler_started", tasks=self.task_names)

    async def stop(self) -> None:
        """Cancel all task loops and wait for them to finish."""
        running = list(self._running.values())
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)
        self._running.clear()
        logger.info("scheduler_stopped")

    async def run_now(self, name: str) -> Optional[Any]:
        """
        Run a task immediately, outside its schedule.

        Returns:
            The task's result, or None when a pass was already running

        Raises:
            KeyError: Unknown task name
        """
        return await self._run(self.get_task(name))

    async def _loop(self, task: ScheduledTask) -> None:
        while True:
            await asyncio.sleep(task.seconds_until_next_run(utcnow()))
            try:
                await self._run(task)
            except Exception as e:
                # A failing pass must not kill the schedule
                logger.exception("sweep_failed", sweep=task.name, exc_info=e)

    async def _run(self, task: ScheduledTask) -> Optional[Any]:
        if task.lock.locked():
            metrics.payment_sweep_runs_total.labels(sweep=task.name, status="skipped").inc()
            logger.info("sweep_skipped_still_running", sweep=task.name)
            return None

        async with task.lock:
            start_time = time.perf_counter()
            try:
                result = await task.func()
            except Exception:
                metrics.payment_sweep_runs_total.labels(sweep=task.name, status="failed").inc()
                raise
            finally:
                metrics.payment_sweep_duration_seconds.labels(sweep=task.name).observe(
                    time.perf_counter() - start_time
                )

            task.last_run_at = utcnow()
            task.last_result = result
            metrics.payment_sweep_runs_total.labels(sweep=task.name, status="completed").inc()
            return result

    def _register(self, task: ScheduledTask) -> None:
        if task.name in self._tasks:
            raise ValueError(f"Task {task.name} is already registered")
        self._tasks[task.name] = task
