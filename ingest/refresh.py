"""
Snapshot Refresher
==================

Re-runs the aggregation whenever the backend signals a change. Bursts of
notifications are debounced into a single refresh, and refreshes never overlap,
so every report is built from one complete snapshot.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from analytics.report import DashboardReport, build_report
from ingest.backend_client import BackendError, Snapshot
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


async def poll_notifications(interval_seconds: float, limit: Optional[int] = None) -> AsyncIterator[int]:
    """Yields a tick every `interval_seconds`, for backends without change feeds."""
    count = 0
    while limit is None or count < limit:
        await asyncio.sleep(interval_seconds)
        yield count
        count += 1


class SnapshotRefresher:
    def __init__(self,
                 fetch_snapshot: Callable[[], Awaitable[Snapshot]],
                 on_report: Callable[[DashboardReport], None],
                 config: Settings = None,
                 debounce_seconds: Optional[float] = None):
        self.fetch_snapshot = fetch_snapshot
        self.on_report = on_report
        self.config = config or default_settings
        self.debounce_seconds = (self.config.debounce_seconds
                                 if debounce_seconds is None else debounce_seconds)
        self.last_report: Optional[DashboardReport] = None
        self.refresh_count = 0

        self._lock = asyncio.Lock()
        self._waiting: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    async def refresh(self) -> DashboardReport:
        """Fetches a snapshot and rebuilds the report from it."""
        async with self._lock:
            snapshot = await self.fetch_snapshot()
            report = build_report(snapshot.students, snapshot.submissions,
                                  snapshot.quizzes, self.config)
            report.skipped = snapshot.skipped + report.skipped
            self.last_report = report
            self.refresh_count += 1
            self.on_report(report)
            return report

    async def _refresh_after_quiet_period(self):
        await asyncio.sleep(self.debounce_seconds)
        # From here on newer notifications schedule their own refresh
        self._waiting = None
        try:
            await self.refresh()
        except BackendError as e:
            logger.error("Refresh failed, keeping the previous report: %s", e)

    def notify(self):
        """Schedules a refresh, restarting the quiet period if one is already pending."""
        if self._waiting is not None:
            self._waiting.cancel()
            self._tasks.discard(self._waiting)

        task = asyncio.create_task(self._refresh_after_quiet_period())
        self._waiting = task
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced refresh failed", exc_info=task.exception())

    async def drain(self):
        """Waits for every scheduled refresh to finish."""
        while self._tasks:
            # Failures are logged by _task_done
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, notifications: AsyncIterator) -> Optional[DashboardReport]:
        """Refreshes once, then after every debounced burst of notifications."""
        await self.refresh()
        async for _ in notifications:
            self.notify()
        await self.drain()
        return self.last_report
