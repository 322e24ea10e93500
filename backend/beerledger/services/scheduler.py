"""Periodic background jobs running on the asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Run a blocking callable every ``interval`` seconds in a worker thread.

    A run that is still in progress when the next tick comes due is not
    overlapped; the job simply waits for it before sleeping again.
    """

    def __init__(self, name: str, func: Callable[[], Any], interval: float) -> None:
        if interval <= 0:
            raise ValueError("Job interval must be positive")
        self.name = name
        self.func = func
        self.interval = float(interval)
        self.runs = 0
        self.failures = 0
        self._task: Optional[asyncio.Task] = None
        self._running = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        if self._running.locked():
            logger.debug("Job %s still running, skipping", self.name)
            return None
        async with self._running:
            try:
                return await asyncio.to_thread(self.func)
            except Exception:
                self.failures += 1
                logger.exception("Scheduled job %s failed", self.name)
                return None
            finally:
                self.runs += 1

    async def _loop(self) -> None:
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.debug("Job %s cancelled", self.name)
            raise

    def start(self) -> asyncio.Task:
        if not self.started:
            self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"job:{self.name}")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class JobScheduler:
    def __init__(self) -> None:
        self.jobs: Dict[str, PeriodicJob] = {}

    def add_job(self, name: str, func: Callable[[], Any], interval: float) -> PeriodicJob:
        if name in self.jobs:
            raise ValueError(f"Job {name} is already registered")
        job = PeriodicJob(name, func, interval)
        self.jobs[name] = job
        return job

    def start(self) -> List[asyncio.Task]:
        return [job.start() for job in self.jobs.values()]

    async def shutdown(self) -> None:
        await asyncio.gather(*(job.stop() for job in self.jobs.values()))


def build_scheduler(
    *,
    sync=None,
    game_service=None,
    retention=None,
    settings: Optional[Settings] = None,
) -> JobScheduler:
    """Register the standard jobs for whichever services are provided."""
    cfg = settings or default_settings
    scheduler = JobScheduler()
    if sync is not None:
        scheduler.add_job("ledger-dispatch", sync.flush, cfg.LEDGER_DISPATCH_INTERVAL_SECONDS)
        scheduler.add_job("reconciliation", sync.reconcile_all, cfg.RECONCILE_INTERVAL_SECONDS)
    if game_service is not None:
        scheduler.add_job("autoplay", game_service.autoplay_all, cfg.AUTOPLAY_INTERVAL_SECONDS)
    if retention is not None:
        scheduler.add_job("retention", retention.run, cfg.RETENTION_INTERVAL_SECONDS)
    return scheduler
