"""
Analytics Data View
===================

WHAT: Applies a table view's filters, sorts and selection to loaded rows and
produces everything the report needs for tables, cards and charts:
- filtered day rows with metrics recomputed from surviving items
- the same filters applied to the comparison period
- top-level totals with period-over-period change

WHY: Totals must always reflect exactly what is visible. Ratios are never
summed: bases are summed and each derived metric is recalculated once, per
row and again at the top level.

ORDER:
    1. Date level: date sort, date condition, selected dates, numeric
       conditions on the incoming row metrics
    2. Item level (per row): global search, status, parent filter, metric
       sorts, text and numeric conditions, selected items
    3. Row metrics recomputed from surviving items
    4. Rows re-sorted by metric sorts

REFERENCES:
    - adreport/metrics/registry.py: aggregation rules
    - adreport/services/hierarchy.py: build_parent_info_getter
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from adreport.metrics.formulas import AggregatedMetric
from adreport.metrics.registry import aggregate_metrics, calculate, collect_base_dependencies, sum_base_metrics
from adreport.schemas import (
    DateCondition,
    FilterCondition,
    FilterMode,
    NumericCondition,
    ParentDisplay,
    ParentFilter,
    SortConfig,
    StatusCondition,
    TextCondition,
)
from adreport.services.hierarchy import ParentInfo
from adreport.services.tab_loader import CachedTableItem, CachedTableRow, parse_date_key

logger = logging.getLogger(__name__)

AnalyticsItem = CachedTableItem
ParentInfoGetter = Callable[[str], Optional[ParentInfo]]

# Columns handled by dedicated stages, never as metric columns
_NON_METRIC_COLUMNS = frozenset({"date", "status"})


@dataclass
class DateRow:
    id: str
    date: str
    items: List[AnalyticsItem] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)


@dataclass
class DataView:
    filtered_table_data: List[DateRow]
    filtered_previous_period_data: Optional[List[DateRow]]
    visible_items: List[AnalyticsItem]
    aggregated_metrics: Dict[str, AggregatedMetric]
    filtered_item_ids: List[str]
    total_rows: int
    selected_rows: int


def rows_from_table(table_rows: Iterable[CachedTableRow]) -> List[DateRow]:
    """Loaded rows as view rows, with day metrics aggregated from their items."""
    return [
        DateRow(
            id=row.id,
            date=row.date,
            items=list(row.items),
            metrics=aggregate_metrics(item.metrics for item in row.items),
        )
        for row in table_rows
    ]


# =============================================================================
# PREDICATES
# =============================================================================

def matches_numeric(value: float, condition: NumericCondition) -> bool:
    """Greater/less compare raw values, equality compares to two decimals, between is inclusive."""
    target = condition.value
    if condition.operator == "greater":
        return value > target
    if condition.operator == "less":
        return value < target
    if condition.operator == "equal":
        return round(value, 2) == round(target, 2)
    if condition.operator == "not-equal":
        return round(value, 2) != round(target, 2)
    if condition.operator == "between":
        return target <= value <= condition.value_to
    return True


def matches_text(text: str, operator: str, values: Sequence[str]) -> bool:
    """Case-insensitive; contains and equal accept any value, not-contains rejects every value."""
    text = text.lower()
    needles = [v.lower() for v in values]
    if operator == "contains":
        return any(n in text for n in needles)
    if operator == "not-contains":
        return all(n not in text for n in needles)
    if operator == "equal":
        return any(text == n for n in needles)
    return True


def matches_date(row_date: str, condition: DateCondition) -> bool:
    parsed = parse_date_key(row_date)
    if parsed is None:
        return False
    if condition.operator == "before":
        return parsed < condition.value
    if condition.operator == "after":
        return parsed > condition.value
    if condition.operator == "on":
        return parsed == condition.value
    return True


def row_sort_date(row: DateRow) -> date:
    return parse_date_key(row.date) or date.min


def _metric_columns(column_conditions: Mapping[str, Optional[FilterCondition]]):
    for column_id, condition in column_conditions.items():
        if column_id in _NON_METRIC_COLUMNS or condition is None:
            continue
        yield column_id, condition


def _metric_sorts(column_sorts: Mapping[str, Optional[SortConfig]]):
    for column_id, sort in column_sorts.items():
        if column_id in _NON_METRIC_COLUMNS or sort is None:
            continue
        yield column_id, sort


def _sort_by_metric(entries: List, column_id: str, sort: SortConfig) -> List:
    return sorted(
        entries,
        key=lambda entry: entry.metrics.get(column_id) or 0.0,
        reverse=sort.direction == "desc",
    )


# =============================================================================
# ITEM FILTERS
# =============================================================================

def _filter_items(
    items: List[AnalyticsItem],
    column_conditions: Mapping[str, Optional[FilterCondition]],
    column_sorts: Optional[Mapping[str, Optional[SortConfig]]],
    parent_filter: Optional[ParentFilter],
    parent_display: ParentDisplay,
    global_search: str,
    get_parent_info: Optional[ParentInfoGetter],
) -> List[AnalyticsItem]:
    """Item stage shared by both periods; sorts only apply when given."""
    search = (global_search or "").strip().lower()
    if search:
        items = [
            item for item in items
            if search in item.name.lower() or (item.subtitle and search in item.subtitle.lower())
        ]

    status_condition = column_conditions.get("status")
    if isinstance(status_condition, StatusCondition):
        items = [item for item in items if item.status in status_condition.values]

    if (
        parent_filter is not None
        and parent_filter.values
        and parent_display is not ParentDisplay.NONE
        and get_parent_info is not None
    ):
        kept = []
        for item in items:
            info = get_parent_info(item.id)
            if info is None:
                continue
            if matches_text(info.value, parent_filter.operator, parent_filter.values):
                kept.append(item)
        items = kept

    for column_id, sort in _metric_sorts(column_sorts or {}):
        items = _sort_by_metric(items, column_id, sort)

    for column_id, condition in _metric_columns(column_conditions):
        if isinstance(condition, TextCondition):
            items = [item for item in items if matches_text(item.name, condition.operator, condition.values)]
        elif isinstance(condition, NumericCondition):
            items = [item for item in items if matches_numeric(item.metrics.get(column_id) or 0.0, condition)]

    return items


def _with_items(row: DateRow, items: List[AnalyticsItem]) -> DateRow:
    return DateRow(
        id=row.id,
        date=row.date,
        items=items,
        metrics=aggregate_metrics(item.metrics for item in items),
    )


# =============================================================================
# PIPELINE
# =============================================================================

def build_data_view(
    table_data: Sequence[DateRow],
    column_conditions: Optional[Mapping[str, Optional[FilterCondition]]] = None,
    column_sorts: Optional[Mapping[str, Optional[SortConfig]]] = None,
    checked_items: Iterable[str] = (),
    checked_dates: Iterable[str] = (),
    parent_filter: Optional[ParentFilter] = None,
    parent_display: ParentDisplay = ParentDisplay.NONE,
    global_search: str = "",
    get_parent_info: Optional[ParentInfoGetter] = None,
    filter_mode: FilterMode = "all",
    previous_period_data: Optional[Sequence[DateRow]] = None,
) -> DataView:
    """
    Filter, sort and aggregate one table view.

    ``checked_items`` holds item keys (``date-itemId``), ``checked_dates``
    holds row ids. In selection mode an empty selection means "everything".
    """
    column_conditions = column_conditions or {}
    column_sorts = column_sorts or {}
    parent_display = ParentDisplay(parent_display)
    checked_item_keys: Set[str] = set(checked_items)
    checked_date_ids: Set[str] = set(checked_dates)
    selection = filter_mode == "selection"

    # Date level
    rows = list(table_data)
    date_sort = column_sorts.get("date")
    if date_sort is not None:
        rows = sorted(rows, key=row_sort_date, reverse=date_sort.direction == "desc")

    date_condition = column_conditions.get("date")
    if isinstance(date_condition, DateCondition):
        rows = [row for row in rows if matches_date(row.date, date_condition)]
    elif isinstance(date_condition, TextCondition):
        rows = [row for row in rows if matches_text(row.date, date_condition.operator, date_condition.values)]

    if selection and checked_date_ids:
        rows = [row for row in rows if row.id in checked_date_ids]

    for column_id, condition in _metric_columns(column_conditions):
        if isinstance(condition, NumericCondition):
            rows = [row for row in rows if matches_numeric(row.metrics.get(column_id) or 0.0, condition)]

    # Item level
    processed: List[DateRow] = []
    for row in rows:
        items = _filter_items(
            list(row.items), column_conditions, column_sorts,
            parent_filter, parent_display, global_search, get_parent_info,
        )
        if selection and checked_item_keys:
            items = [item for item in items if item.key in checked_item_keys]
        processed.append(_with_items(row, items))

    for column_id, sort in _metric_sorts(column_sorts):
        processed = _sort_by_metric(processed, column_id, sort)

    previous = None
    if previous_period_data is not None:
        previous = _filter_previous_period(
            previous_period_data, processed, checked_item_keys, selection,
            column_conditions, parent_filter, parent_display, global_search, get_parent_info,
        )

    visible_items = [item for row in processed for item in row.items]
    present_dates = {row.id for row in processed}
    logger.debug(f"[DATA_VIEW] {len(table_data)} rows -> {len(processed)} rows, {len(visible_items)} items")

    return DataView(
        filtered_table_data=processed,
        filtered_previous_period_data=previous,
        visible_items=visible_items,
        aggregated_metrics=aggregate_view_metrics(processed, previous),
        filtered_item_ids=[item.id for item in visible_items],
        total_rows=len(processed),
        selected_rows=len(checked_date_ids & present_dates),
    )


def _filter_previous_period(
    previous_period_data: Sequence[DateRow],
    current_rows: Sequence[DateRow],
    checked_item_keys: Set[str],
    selection: bool,
    column_conditions: Mapping[str, Optional[FilterCondition]],
    parent_filter: Optional[ParentFilter],
    parent_display: ParentDisplay,
    global_search: str,
    get_parent_info: Optional[ParentInfoGetter],
) -> List[DateRow]:
    """Item filters of the current view applied to the comparison period, without sorting.

    Item keys embed the date, so selection carries over by item id.
    """
    checked_ids: Set[str] = set()
    if selection:
        checked_ids = {
            item.id
            for row in current_rows
            for item in row.items
            if item.key in checked_item_keys
        }

    result: List[DateRow] = []
    for row in previous_period_data:
        items = _filter_items(
            list(row.items), column_conditions, None,
            parent_filter, parent_display, global_search, get_parent_info,
        )
        if selection and checked_ids:
            items = [item for item in items if item.id in checked_ids]
        result.append(_with_items(row, items))
    return result


def aggregate_view_metrics(
    rows: Sequence[DateRow],
    previous_rows: Optional[Sequence[DateRow]] = None,
) -> Dict[str, AggregatedMetric]:
    """
    Totals over the visible rows.

    Bases are summed across row metrics and derived metrics are calculated
    once on the sums. With a non-empty comparison period every total carries
    its change against the same calculation on the previous rows.
    """
    metric_ids: Set[str] = set()
    for row in rows:
        metric_ids.update(row.metrics.keys())

    needed = collect_base_dependencies(metric_ids)
    base = sum_base_metrics((row.metrics for row in rows), needed)
    previous_base = None
    if previous_rows:
        previous_base = sum_base_metrics((row.metrics for row in previous_rows), needed)

    totals: Dict[str, AggregatedMetric] = {}
    for metric_id in metric_ids:
        current = calculate(metric_id, base)
        if previous_base is None:
            totals[metric_id] = AggregatedMetric(total=current)
        else:
            totals[metric_id] = AggregatedMetric.compare(current, calculate(metric_id, previous_base))
    return totals
