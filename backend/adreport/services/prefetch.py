"""
Period B Prefetch
=================

WHAT: Loads the comparison window (Period B) for all four tabs in the
background, after the primary load and at idle priority.

WHY: Comparison is usually switched on after the report is already on
screen. Fetching Period B while the user reads Period A makes the toggle
instant, but it must never compete with a primary load.

RULES:
- Waits until the primary load is idle, at most ``idle_timeout`` seconds,
  then runs anyway
- Scheduling again cancels the previous prefetch
- Results go to the caller's ``on_loaded``; the caller decides whether they
  are still wanted
"""

import asyncio
import logging
import time
from datetime import date
from typing import Callable, Dict, Optional

from adreport.schemas import ALL_TABS, TabType
from adreport.services.tab_loader import TabData, TabDataLoader
from adreport.telemetry.load_trace import LoadEventType, LoadTelemetry
from adreport.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.05


class PeriodBPrefetcher:
    """Runs at most one Period B load at a time."""

    def __init__(
        self,
        is_busy: Callable[[], bool],
        idle_timeout: float = 5.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        telemetry: Optional[LoadTelemetry] = None,
    ):
        self._is_busy = is_busy
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.telemetry = telemetry or LoadTelemetry()
        self._task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(
        self,
        loader: TabDataLoader,
        date_from: date,
        date_to: date,
        attribution: Optional[str],
        on_loaded: Callable[[Dict[TabType, Optional[TabData]]], None],
        on_finished: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        """Start a prefetch, cancelling the one in flight. Must run inside the event loop."""
        self.cancel()
        self._task = asyncio.create_task(
            self._run(loader, date_from, date_to, attribution, on_loaded, on_finished)
        )
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("[PREFETCH] Cancelled running Period B prefetch")
        self._task = None

    async def wait_until_idle(self) -> bool:
        """True once the primary load is idle, False if the timeout ran out first."""
        deadline = time.monotonic() + self.idle_timeout
        while self._is_busy():
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True

    async def _run(
        self,
        loader: TabDataLoader,
        date_from: date,
        date_to: date,
        attribution: Optional[str],
        on_loaded: Callable[[Dict[TabType, Optional[TabData]]], None],
        on_finished: Optional[Callable[[], None]],
    ) -> None:
        try:
            if not await self.wait_until_idle():
                logger.info(f"[PREFETCH] Primary load still busy after {self.idle_timeout}s, prefetching anyway")

            started = time.perf_counter()
            results = await asyncio.gather(*[
                loader.load_tab(tab, date_from, date_to, attribution) for tab in ALL_TABS
            ])
            on_loaded(dict(zip(ALL_TABS, results)))
            self.telemetry.record(
                LoadEventType.PREFETCH_COMPLETED,
                stage="period_b",
                duration_ms=(time.perf_counter() - started) * 1000,
                date_from=date_from.isoformat(),
                date_to=date_to.isoformat(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[PREFETCH] Period B prefetch failed: {e}")
            capture_exception(e, extra={"date_from": date_from.isoformat(), "date_to": date_to.isoformat()})
            self.telemetry.record(LoadEventType.LOAD_FAILED, stage="period_b", success=False, reason=str(e))
        finally:
            # A superseded prefetch must not reset the state of its successor
            if self._task is asyncio.current_task():
                self._task = None
                if on_finished is not None:
                    on_finished()
