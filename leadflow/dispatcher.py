"""
Automation event dispatcher loop.

A single background task that runs one dispatch cycle, waits for the poll
interval (or a stop request), and repeats. Started and stopped by the
application lifespan.
"""
import asyncio
import time
from dataclasses import asdict
from typing import Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.config import settings
from leadflow.database import AsyncSessionLocal
from leadflow.logging_config import get_logger
from leadflow.routes.metrics import track_dispatch_cycle
from leadflow.sentry_config import capture_exception
from leadflow.services.automation_service import AutomationService, DispatchSummary
from leadflow.services.webhook_service import build_webhook_client

log = get_logger(component="dispatcher")


class AutomationEventDispatcher:
    """
    Polls for due automation events and delivers them.

    Every cycle gets its own database session and HTTP client, so nothing
    leaks from one cycle into the next. A failing cycle is logged and the
    loop carries on at the next tick.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        client_factory: Callable[[], httpx.AsyncClient] = build_webhook_client,
        interval: float | None = None,
        grace: float | None = None
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.interval = settings.AUTOMATION_POLL_INTERVAL_SECONDS if interval is None else interval
        self.grace = settings.AUTOMATION_SHUTDOWN_GRACE_SECONDS if grace is None else grace
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self) -> asyncio.Task:
        """Start the loop as a background task. Calling it twice returns the same task."""
        if self.is_running:
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self.run(), name="automation-event-dispatcher")
        log.info("automation_dispatcher_started", interval_seconds=self.interval)
        return self._task

    async def stop(self) -> None:
        """
        Ask the loop to exit and wait for the in-flight cycle.

        After the grace period the task is cancelled, which also aborts any
        webhook request still in progress.
        """
        self._stop.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=self.grace)
        except asyncio.TimeoutError:
            log.warning("automation_dispatcher_cancelled", grace_seconds=self.grace)
        finally:
            self._task = None
        log.info("automation_dispatcher_stopped")

    async def run(self) -> None:
        """Dispatch, wait, repeat until stopped."""
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    async def run_once(self) -> DispatchSummary | None:
        """
        Run a single dispatch cycle.

        Returns the cycle's summary, or None when the cycle failed. Failures
        are logged and reported, never raised; cancellation still propagates.
        """
        started = time.perf_counter()
        try:
            async with self.session_factory() as db, self.client_factory() as client:
                summary = await AutomationService(db, http_client=client).dispatch_pending()
        except Exception:
            track_dispatch_cycle("error", time.perf_counter() - started)
            if not self._stop.is_set():
                self._report_failure()
            return None

        busy = summary.attempted > 0 or summary.conflicts > 0
        track_dispatch_cycle("ok" if busy else "idle", time.perf_counter() - started, summary.selected)
        if busy:
            log.info("automation_dispatch_cycle_completed", **asdict(summary))
        return summary

    def _report_failure(self) -> None:
        """Log and report the exception being handled; reporting errors stay inside the loop."""
        log.warning("automation_dispatch_cycle_failed", exc_info=True)
        try:
            capture_exception()
        except Exception as e:
            log.warning("automation_dispatch_report_failed", error=str(e))
