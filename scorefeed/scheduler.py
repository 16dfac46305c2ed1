"""
Periodic background refresh.

One loop task per scheduler. Each tick starts the job unless the previous
run is still going, in which case the tick is skipped. A failing job is
logged and never stops the loop. stop() waits for a run in progress.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class RefreshScheduler:
    """
    Fires an async job every `every` seconds with a reentrancy guard.

    Example:
        scheduler = RefreshScheduler(name="hot-datasets")
        scheduler.schedule(7200, refresh_hot_datasets)
        ...
        await scheduler.stop()
    """

    def __init__(self, name: str = "refresh") -> None:
        self.name = name
        self._job: Optional[Job] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._job_task: Optional[asyncio.Task] = None
        self._running = False
        self._stats = {"runs": 0, "skipped": 0, "failures": 0}
        self._last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        """True while a job run is in progress."""
        return self._running

    @property
    def scheduled(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def schedule(self, every: float, job: Job, run_immediately: bool = True) -> None:
        """Start the timer. Must be called from a running event loop."""
        if every <= 0:
            raise ValueError("every must be positive")
        if self.scheduled:
            raise RuntimeError(f"Scheduler '{self.name}' is already running")
        self._job = job
        self._loop_task = asyncio.create_task(self._run_loop(every, run_immediately))
        logger.info("Scheduler '%s' started (every %.1fs)", self.name, every)

    async def stop(self) -> None:
        """Disarm the timer and wait for a job already running to finish."""
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        job_task, self._job_task = self._job_task, None
        if job_task is not None and not job_task.done():
            logger.info("Scheduler '%s': waiting for the running job to finish", self.name)
            await asyncio.gather(job_task, return_exceptions=True)

        if task is not None:
            logger.info("Scheduler '%s' stopped", self.name)

    def tick(self) -> bool:
        """
        Start one job run unless the previous one is still in progress.

        Returns True if a run was started, False if the tick was skipped.
        """
        if self._job is None:
            raise RuntimeError("No job scheduled")
        if self._running:
            self._stats["skipped"] += 1
            logger.warning(
                "Scheduler '%s': previous run still in progress, skipping tick",
                self.name,
            )
            return False
        self._running = True
        self._job_task = asyncio.create_task(self._run_job(self._job))
        return True

    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "running": self._running,
            "scheduled": self.scheduled,
            "last_error": self._last_error,
        }

    async def _run_loop(self, every: float, run_immediately: bool) -> None:
        if not run_immediately:
            await asyncio.sleep(every)
        while True:
            self.tick()
            await asyncio.sleep(every)

    async def _run_job(self, job: Job) -> None:
        self._stats["runs"] += 1
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._stats["failures"] += 1
            self._last_error = str(exc)
            logger.exception("Scheduler '%s': job failed", self.name)
        finally:
            self._running = False
