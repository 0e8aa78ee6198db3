"""
Tab Data Loader
===============

WHAT: Loads one report tab (campaigns, adsets, ads or creatives) across every
selected ad account for a date range and turns raw insights into:
- ``metrics_data``: date_key -> item_id -> metric_key -> value
- item metadata and hierarchy for the tab
- pre-built table rows, one per calendar day, newest first

WHY: The report shows four object levels side by side. Loading them as four
independent, account-parallel jobs keeps one slow or broken account from
blanking the whole report.

REFERENCES:
    - adreport/services/hierarchy.py: object lists -> metadata/hierarchy
    - adreport/metrics/sanitizer.py: insight -> numeric metrics
    - adreport/services/report_cache_service.py: runs four loaders per reload
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from adreport.metrics.registry import is_summable
from adreport.metrics.sanitizer import normalize_insight_metrics
from adreport.schemas import ReportParams, TabType
from adreport.services.hierarchy import AccountHierarchy, HierarchyEntry, HierarchyResolver, ItemMetadata
from adreport.telemetry.load_trace import LoadEventType, LoadTelemetry
from adreport.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

DATE_KEY_FORMAT = "%d.%m.%Y"
API_DATE_FORMAT = "%Y-%m-%d"

MetricsData = Dict[str, Dict[str, Dict[str, float]]]


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass
class CachedTableItem:
    id: str
    key: str
    name: str
    subtitle: str
    status: str
    thumbnail: str
    metrics: Dict[str, float]


@dataclass
class CachedTableRow:
    """One calendar day; ``id`` is the date key itself."""
    id: str
    date: str
    items: List[CachedTableItem] = field(default_factory=list)


@dataclass
class TabData:
    metrics_data: MetricsData = field(default_factory=dict)
    items_metadata: Dict[str, ItemMetadata] = field(default_factory=dict)
    hierarchy_data: Dict[str, HierarchyEntry] = field(default_factory=dict)
    available_metric_keys: List[str] = field(default_factory=list)
    table_rows: List[CachedTableRow] = field(default_factory=list)
    loaded_at: float = field(default_factory=time.time)


def format_date_key(value: date) -> str:
    return value.strftime(DATE_KEY_FORMAT)


def parse_date_key(date_key: str) -> Optional[date]:
    try:
        return datetime.strptime(date_key, DATE_KEY_FORMAT).date()
    except (TypeError, ValueError):
        return None


def insight_date_key(date_start: Any) -> str:
    """``2025-01-15`` -> ``15.01.2025``; unparsable values are kept as given."""
    raw = str(date_start or "")
    try:
        return datetime.strptime(raw[:10], API_DATE_FORMAT).strftime(DATE_KEY_FORMAT)
    except ValueError:
        return raw


def date_keys_descending(date_from: date, date_to: date) -> List[str]:
    """Every calendar day in the inclusive range, newest first."""
    keys: List[str] = []
    current = date_to
    while current >= date_from:
        keys.append(format_date_key(current))
        current -= timedelta(days=1)
    return keys


def build_table_rows(
    metrics_data: MetricsData,
    items_metadata: Mapping[str, ItemMetadata],
    selected_ids: Sequence[str],
    date_from: date,
    date_to: date,
) -> List[CachedTableRow]:
    """
    Materialize one row per day of the range.

    A selected item appears on a day only if at least one of its metrics is
    positive that day. Days without items still get an (empty) row.
    """
    rows: List[CachedTableRow] = []
    for date_key in date_keys_descending(date_from, date_to):
        day_metrics = metrics_data.get(date_key, {})
        items: List[CachedTableItem] = []
        for item_id in selected_ids:
            metrics = day_metrics.get(item_id)
            if not metrics or not any(v > 0 for v in metrics.values()):
                continue
            meta = items_metadata.get(item_id)
            items.append(CachedTableItem(
                id=item_id,
                key=f"{date_key}-{item_id}",
                name=(meta.name if meta else None) or item_id,
                subtitle=(meta.subtitle if meta else None) or "",
                status=(meta.status if meta else None) or "Unknown",
                thumbnail=(meta.thumbnail if meta else None) or "",
                metrics=dict(metrics),
            ))
        rows.append(CachedTableRow(id=date_key, date=date_key, items=items))
    return rows


# =============================================================================
# LOADER
# =============================================================================

class TabDataLoader:
    """
    Loads tabs for one workspace and account set.

    Usage:
        loader = TabDataLoader.from_params(client, params, telemetry)
        campaigns = await loader.load_tab(TabType.CAMPAIGNS, date_from, date_to, "7d_click")
    """

    def __init__(
        self,
        client: Any,
        workspace_id: Optional[str],
        account_ids: Sequence[str],
        selections_by_tab: Optional[Mapping[TabType, Sequence[str]]] = None,
        account_name_map: Optional[Mapping[str, str]] = None,
        telemetry: Optional[LoadTelemetry] = None,
    ):
        self.client = client
        self.workspace_id = workspace_id
        self.account_ids = list(account_ids)
        self.selections_by_tab = {tab: list(ids) for tab, ids in (selections_by_tab or {}).items()}
        self.account_name_map = dict(account_name_map or {})
        self.telemetry = telemetry or LoadTelemetry()

    @classmethod
    def from_params(
        cls, client: Any, params: ReportParams, telemetry: Optional[LoadTelemetry] = None
    ) -> "TabDataLoader":
        return cls(
            client=client,
            workspace_id=params.workspace_id,
            account_ids=params.account_ids,
            selections_by_tab=params.selections_by_tab,
            account_name_map=params.account_name_map,
            telemetry=telemetry,
        )

    async def load_tab(
        self,
        tab: TabType,
        date_from: date,
        date_to: date,
        attribution: Optional[str] = None,
    ) -> Optional[TabData]:
        """
        Load one tab.

        Returns:
            None when there is no workspace or no account to load from,
            an empty TabData when nothing is selected on this tab,
            otherwise the merged data of every account.
        """
        if not self.workspace_id or not self.account_ids:
            return None

        selected_ids = self.selections_by_tab.get(tab) or []
        if not selected_ids:
            return TabData()

        level = tab.insight_level
        metrics_data: MetricsData = {}
        items_metadata: Dict[str, ItemMetadata] = {}
        hierarchy_data: Dict[str, HierarchyEntry] = {}
        metric_keys: Set[str] = set()
        resolver = HierarchyResolver(self.client, self.workspace_id, self.account_name_map)

        with self.telemetry.track_stage(f"tab:{tab.value}"):
            results = await asyncio.gather(*[
                self._load_account(resolver, tab, level, account_id, date_from, date_to, attribution)
                for account_id in self.account_ids
            ])

            for insights, resolved in results:
                items_metadata.update(resolved.items_metadata)
                hierarchy_data.update(resolved.hierarchy)
                self._merge_insights(tab, level, insights, resolved, metrics_data, metric_keys)

        self.telemetry.sample_metric_keys(tab.value, metric_keys)

        tab_data = TabData(
            metrics_data=metrics_data,
            items_metadata=items_metadata,
            hierarchy_data=hierarchy_data,
            available_metric_keys=sorted(metric_keys),
            table_rows=build_table_rows(metrics_data, items_metadata, selected_ids, date_from, date_to),
        )
        self.telemetry.record(
            LoadEventType.TAB_LOADED,
            stage=tab.value,
            dates=len(metrics_data),
            items=len(items_metadata),
            metric_keys=len(metric_keys),
        )
        return tab_data

    async def _load_account(
        self,
        resolver: HierarchyResolver,
        tab: TabType,
        level: str,
        account_id: str,
        date_from: date,
        date_to: date,
        attribution: Optional[str],
    ) -> tuple:
        """Insights and hierarchy of one account; failures leave the account empty."""
        insights_call = self.client.get_insights(
            self.workspace_id,
            account_id,
            level,
            date_from.strftime(API_DATE_FORMAT),
            date_to.strftime(API_DATE_FORMAT),
            attribution or None,
        )
        insights_result, resolved = await asyncio.gather(
            insights_call,
            resolver.resolve(tab, account_id),
            return_exceptions=True,
        )

        if isinstance(resolved, BaseException):
            self._account_failed(tab, account_id, "hierarchy", resolved)
            resolved = AccountHierarchy()

        insights: List[Dict[str, Any]] = []
        if isinstance(insights_result, BaseException):
            self._account_failed(tab, account_id, "insights", insights_result)
        elif insights_result and insights_result.get("success"):
            insights = list(insights_result.get("insights") or [])

        return insights, resolved

    def _account_failed(self, tab: TabType, account_id: str, stage: str, error: BaseException) -> None:
        if isinstance(error, asyncio.CancelledError):
            raise error
        logger.error(f"[TAB_LOADER] Error loading {stage} for {tab.value}/{account_id}: {error}")
        capture_exception(error, extra={"tab": tab.value, "account_id": account_id, "stage": stage})
        self.telemetry.record(
            LoadEventType.ACCOUNT_FAILED,
            stage=tab.value,
            success=False,
            account_id=account_id,
            reason=f"{stage}: {error}",
        )

    def _merge_insights(
        self,
        tab: TabType,
        level: str,
        insights: List[Dict[str, Any]],
        resolved: AccountHierarchy,
        metrics_data: MetricsData,
        metric_keys: Set[str],
    ) -> None:
        skipped = 0
        for insight in insights:
            item_id = insight.get(f"{level}_id") or insight.get("object_id")
            if tab is TabType.CREATIVES:
                ad_id = insight.get("ad_id") or insight.get("object_id")
                item_id = resolved.ad_to_creative.get(ad_id) if ad_id else None
            if not item_id:
                skipped += 1
                continue

            date_key = insight_date_key(insight.get("date_start"))
            metrics = normalize_insight_metrics(insight)
            metric_keys.update(metrics.keys())

            day = metrics_data.setdefault(date_key, {})
            existing = day.get(item_id)
            if existing is not None:
                # Several ads can share one creative; several accounts can report one item
                for key, value in metrics.items():
                    if is_summable(key):
                        existing[key] = existing.get(key, 0.0) + value
                    else:
                        existing[key] = value
            else:
                day[item_id] = metrics

        if skipped:
            self.telemetry.record(LoadEventType.INSIGHT_SKIPPED, stage=tab.value, count=skipped)
