"""
Report Cache Service
====================

WHAT: Owns the loaded data of one open report and decides, on every
parameter change, whether to do nothing, restore a cached window, wait for
accounts, or reload.

WHY: Report parameters change often (date pickers, attribution, selections)
and a full reload fans out into dozens of requests. Most changes either map
to data already loaded or only narrow the visible window.

FLOW (evaluate):
    1. No workspace or report          -> no-op
    2. Signature unchanged             -> nothing to load
    3. Signature in multi-window cache -> restore synchronously
    4. No ad accounts yet              -> bounded retry loop
    5. Otherwise                       -> reload all four tabs

Loads are guarded by a token: only the latest load may commit, and it
commits all four tabs at once. Period B is prefetched afterwards when
comparison is enabled.

REFERENCES:
    - adreport/services/cache_signature.py: signature and multi-window cache
    - adreport/services/tab_loader.py: per-tab loads
    - adreport/services/prefetch.py: Period B
    - adreport/routers/report_data.py: HTTP sessions wrapping this service
"""

import asyncio
import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from adreport.deps import Settings, get_settings
from adreport.schemas import ALL_TABS, ReportParams, TabType
from adreport.services.cache_signature import (
    CacheSignature,
    MultiWindowCache,
    ReportCache,
    TabMap,
    compute_signature,
    signatures_equal,
)
from adreport.services.prefetch import PeriodBPrefetcher
from adreport.services.tab_loader import TabData, TabDataLoader, parse_date_key
from adreport.telemetry.load_trace import LoadEventType, LoadTelemetry
from adreport.telemetry.sentry import capture_exception, capture_message

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Failed to load analytics data"


def slice_tab_data(tab_data: TabData, date_from: date, date_to: date) -> TabData:
    """Restrict a loaded tab to ``[date_from, date_to]``; dates that do not parse are dropped."""

    def in_range(date_key: str) -> bool:
        parsed = parse_date_key(date_key)
        return parsed is not None and date_from <= parsed <= date_to

    return replace(
        tab_data,
        metrics_data={k: v for k, v in tab_data.metrics_data.items() if in_range(k)},
        table_rows=[row for row in tab_data.table_rows if in_range(row.date)],
    )


class ReportCacheService:
    """
    Data cache of one report view.

    Usage (inside the event loop):
        service = ReportCacheService(FbAdsClient.from_settings(settings))
        service.evaluate(params)
        await service.wait_idle()
        campaigns = service.get_tab_data(TabType.CAMPAIGNS)
    """

    def __init__(
        self,
        client: Any,
        settings: Optional[Settings] = None,
        telemetry: Optional[LoadTelemetry] = None,
    ):
        settings = settings or get_settings()
        self.client = client
        self.telemetry = telemetry or LoadTelemetry()
        self.retry_attempts = settings.ACCOUNT_RETRY_ATTEMPTS
        self.retry_interval = settings.ACCOUNT_RETRY_INTERVAL_SECONDS

        self.multi_cache = MultiWindowCache()
        self.cache: Optional[ReportCache] = None
        self.is_loading = False
        self.is_loading_period_b = False
        self.loading_tabs: Set[TabType] = set()
        self.error: Optional[str] = None

        self.prefetcher = PeriodBPrefetcher(
            is_busy=lambda: self.is_loading,
            idle_timeout=settings.PREFETCH_IDLE_TIMEOUT_SECONDS,
            telemetry=self.telemetry,
        )

        self._params: Optional[ReportParams] = None
        self._signature: Optional[CacheSignature] = None
        self._load_token = 0
        self._load_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._prefetch_key: Optional[Tuple[str, str, str]] = None
        self._force_reload = False
        self._subscribers: List[Callable[[], None]] = []

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` on every state change; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as e:
                logger.error(f"[REPORT_CACHE] Subscriber failed: {e}")

    @property
    def signature(self) -> Optional[CacheSignature]:
        return self._signature

    @property
    def params(self) -> Optional[ReportParams]:
        return self._params

    def state(self) -> Dict[str, Any]:
        cache = self.cache
        return {
            "is_loading": self.is_loading,
            "is_loading_period_b": self.is_loading_period_b,
            "loading_tabs": [tab for tab in ALL_TABS if tab in self.loading_tabs],
            "error": self.error,
            "signature": self._signature.to_dict() if self._signature else None,
            "period_b_signature": list(cache.period_b_signature) if cache and cache.period_b_signature else None,
            "cached_signatures": len(self.multi_cache),
        }

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def evaluate(self, params: ReportParams) -> None:
        """React to the latest report parameters. Must be called inside the event loop."""
        self._params = params
        if not params.workspace_id or not params.report_id:
            return

        signature = compute_signature(params)
        if signatures_equal(signature, self._signature):
            if not self.is_loading:
                self._maybe_prefetch(params, signature)
            return

        cached = None if self._force_reload else self.multi_cache.lookup(signature)
        if cached is not None:
            self._restore(signature, cached)
            self._maybe_prefetch(params, signature)
            return

        if not params.account_ids:
            self._schedule_account_retry()
            return

        self._cancel_retry()
        self._force_reload = False
        self._start_reload(params, signature)

    def refresh_cache(self) -> None:
        """Forget the current signature so the next evaluate reloads from the network."""
        self._signature = None
        self._force_reload = True
        logger.info("[REPORT_CACHE] Cache refresh requested")

    def _restore(self, signature: CacheSignature, cached: ReportCache) -> None:
        self._cancel_retry()
        self._invalidate_load()
        self._signature = signature
        self.cache = cached
        self.error = None
        self.is_loading = False
        self.loading_tabs = set()
        self.telemetry.record(
            LoadEventType.CACHE_RESTORED,
            load_date_from=signature.load_date_from,
            load_date_to=signature.load_date_to,
        )
        self._notify()

    # =========================================================================
    # ACCOUNT RETRY
    # =========================================================================

    def _schedule_account_retry(self) -> None:
        self._cancel_retry()
        self._retry_task = asyncio.create_task(self._retry_until_accounts())

    def _cancel_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

    async def _retry_until_accounts(self) -> None:
        for attempt in range(self.retry_attempts):
            await asyncio.sleep(self.retry_interval)
            latest = self._params
            if latest is not None and latest.account_ids:
                logger.debug(f"[REPORT_CACHE] Accounts available after {attempt + 1} retries")
                self._retry_task = None
                self.evaluate(latest)
                return

        self._retry_task = None
        logger.warning(
            f"[REPORT_CACHE] No ad accounts after {self.retry_attempts} retries, load skipped"
        )
        capture_message(
            "Report load skipped: no ad accounts",
            level="warning",
            extra={"report_id": self._params.report_id if self._params else None},
        )
        self.telemetry.record(
            LoadEventType.RETRY_EXHAUSTED,
            success=False,
            attempts=self.retry_attempts,
        )

    # =========================================================================
    # RELOAD
    # =========================================================================

    def _invalidate_load(self) -> None:
        self._load_token += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

    def _start_reload(self, params: ReportParams, signature: CacheSignature) -> None:
        self._invalidate_load()
        token = self._load_token

        self.prefetcher.cancel()
        self.is_loading_period_b = False

        self._signature = signature
        self.is_loading = True
        self.loading_tabs = set(ALL_TABS)
        self.error = None
        self._notify()

        self._load_task = asyncio.create_task(self._reload(params, signature, token))

    def _is_current(self, token: int) -> bool:
        return token == self._load_token

    async def _load_one(self, loader: TabDataLoader, tab: TabType, params: ReportParams, token: int) -> Optional[TabData]:
        data = await loader.load_tab(tab, params.load_date_from, params.load_date_to, params.attribution)
        if self._is_current(token):
            self.loading_tabs.discard(tab)
            self._notify()
        return data

    async def _reload(self, params: ReportParams, signature: CacheSignature, token: int) -> None:
        loader = TabDataLoader.from_params(self.client, params, self.telemetry)
        self.telemetry.record(
            LoadEventType.LOAD_STARTED,
            token=token,
            load_date_from=signature.load_date_from,
            load_date_to=signature.load_date_to,
            accounts=len(signature.account_ids),
        )

        try:
            with self.telemetry.track_stage("reload"):
                results = await asyncio.gather(*[
                    self._load_one(loader, tab, params, token) for tab in ALL_TABS
                ])
        except asyncio.CancelledError:
            self.telemetry.record(LoadEventType.LOAD_DISCARDED, token=token, reason="cancelled")
            raise
        except Exception as e:
            if not self._is_current(token):
                self.telemetry.record(LoadEventType.LOAD_DISCARDED, token=token, reason="superseded")
                return
            logger.error(f"[REPORT_CACHE] Error loading report data: {e}")
            capture_exception(e, extra={"report_id": signature.report_id})
            self.error = LOAD_ERROR_MESSAGE
            self.is_loading = False
            self.loading_tabs = set()
            # Nothing was loaded for this signature; evaluating it again retries
            self._signature = None
            self.telemetry.record(LoadEventType.LOAD_FAILED, token=token, success=False, reason=str(e))
            self._notify()
            return

        if not self._is_current(token):
            self.telemetry.record(LoadEventType.LOAD_DISCARDED, token=token, reason="superseded")
            return

        cache = ReportCache(tabs=dict(zip(ALL_TABS, results)), signature=signature)
        self.cache = cache
        self.is_loading = False
        self.loading_tabs = set()
        self.multi_cache.store(signature, cache)
        self._load_task = None
        self.telemetry.record(LoadEventType.LOAD_COMPLETED, token=token)
        self._notify()

        # Parameters may have changed while loading without changing the signature
        self._maybe_prefetch(self._params or params, signature)

    # =========================================================================
    # PERIOD B
    # =========================================================================

    @staticmethod
    def _period_b_window(params: ReportParams) -> Optional[Tuple[str, str]]:
        if not params.compare_enabled or not params.period_b_from or not params.period_b_to:
            return None
        return (params.period_b_from.isoformat(), params.period_b_to.isoformat())

    def _maybe_prefetch(self, params: ReportParams, signature: CacheSignature) -> None:
        window = self._period_b_window(params)
        cache = self.cache
        if window is None or cache is None:
            return
        if cache.period_b_signature == window:
            return
        # The same window for a different primary signature still needs its own load
        key = (signature.serialize(), window[0], window[1])
        if self.prefetcher.is_running and self._prefetch_key == key:
            return

        self._prefetch_key = key
        self.is_loading_period_b = True
        self._notify()
        self.prefetcher.schedule(
            TabDataLoader.from_params(self.client, params, self.telemetry),
            params.period_b_from,
            params.period_b_to,
            params.attribution,
            on_loaded=lambda tabs: self._commit_period_b(signature, window, tabs),
            on_finished=self._prefetch_finished,
        )

    def _commit_period_b(self, signature: CacheSignature, window: Tuple[str, str], tabs: TabMap) -> None:
        if not signatures_equal(signature, self._signature) or self.cache is None:
            logger.debug("[PREFETCH] Primary signature changed, Period B discarded")
            self.telemetry.record(LoadEventType.LOAD_DISCARDED, stage="period_b", reason="superseded")
            return

        updated = replace(self.cache, period_b=tabs, period_b_signature=window)
        self.cache = updated
        self.multi_cache.store(signature, updated)

    def _prefetch_finished(self) -> None:
        self._prefetch_key = None
        self.is_loading_period_b = False
        self._notify()

    # =========================================================================
    # READS
    # =========================================================================

    def get_tab_data(self, tab: TabType, use_period_b: bool = False) -> Optional[TabData]:
        """
        Data of one tab.

        Period A is sliced to the current display range on every call.
        Period B is returned exactly as loaded.
        """
        cache = self.cache
        if cache is None:
            return None
        if use_period_b:
            return (cache.period_b or {}).get(tab)

        data = cache.tabs.get(tab)
        if data is None or self._params is None:
            return data
        display_from, display_to = self._params.display_range
        return slice_tab_data(data, display_from, display_to)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _pending_tasks(self, include_prefetch: bool = True) -> List[asyncio.Task]:
        tasks = [self._retry_task, self._load_task]
        if include_prefetch:
            tasks.append(self.prefetcher.task)
        return [t for t in tasks if t is not None and not t.done()]

    async def wait_primary(self) -> None:
        """Wait until no retry or Period A load is pending; a Period B prefetch may keep running."""
        while True:
            pending = self._pending_tasks(include_prefetch=False)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no retry, load or prefetch is pending (tasks may schedule successors)."""
        while True:
            pending = self._pending_tasks()
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        self._cancel_retry()
        self._invalidate_load()
        self.prefetcher.cancel()
        self.is_loading = False
        self.is_loading_period_b = False
        self.loading_tabs = set()
        self._subscribers.clear()
