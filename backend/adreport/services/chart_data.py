"""Chart series built from a data view.

Period A and Period B are aligned by day index, not by calendar date:
day 1 of A sits next to day 1 of B, so windows of different months overlay.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from adreport.metrics.polarity import get_metric_polarity, is_good_change
from adreport.metrics.resolver import MetricsData, get_all_conversion_variants, resolve_metrics
from adreport.metrics.sanitizer import sanitize_metric_value
from adreport.services.data_view import DataView, row_sort_date

PREVIOUS_SUFFIX = "_prev"


def prepare_time_series_data(data_view: Optional[DataView], metric_ids: Sequence[str]) -> List[Dict[str, Any]]:
    """One point per Period A day; Period B values use the ``_prev`` suffix when a matching day exists."""
    if data_view is None:
        return []

    rows_a = sorted(data_view.filtered_table_data, key=row_sort_date)
    rows_b = sorted(data_view.filtered_previous_period_data or [], key=row_sort_date)

    points: List[Dict[str, Any]] = []
    for index, row_a in enumerate(rows_a):
        point: Dict[str, Any] = {"date": row_a.date, "period": "A"}
        for metric_id in metric_ids:
            point[metric_id] = sanitize_metric_value(row_a.metrics.get(metric_id))

        if index < len(rows_b):
            row_b = rows_b[index]
            for metric_id in metric_ids:
                point[f"{metric_id}{PREVIOUS_SUFFIX}"] = sanitize_metric_value(row_b.metrics.get(metric_id))
        points.append(point)
    return points


def prepare_pie_chart_data(
    data_view: Optional[DataView],
    metric_ids: Sequence[str],
    metric_labels: Optional[Mapping[str, str]] = None,
) -> List[Dict[str, Any]]:
    """Share of each metric's total, largest first; zero slices are dropped."""
    if data_view is None:
        return []
    labels = metric_labels or {}
    aggregated = data_view.aggregated_metrics

    values = {}
    for metric_id in metric_ids:
        metric = aggregated.get(metric_id)
        values[metric_id] = sanitize_metric_value(metric.total if metric else None)

    total = sum(values.values())
    if total == 0:
        return []

    slices = [
        {
            "name": labels.get(metric_id) or metric_id,
            "value": value,
            "percentage": value / total * 100,
        }
        for metric_id, value in values.items()
        if value > 0
    ]
    slices.sort(key=lambda s: s["value"], reverse=True)
    return slices


def calculate_metric_change(data_view: Optional[DataView], metric_id: str) -> Dict[str, float]:
    """Current total, the implied previous total, and the percent change."""
    metric = data_view.aggregated_metrics.get(metric_id) if data_view is not None else None
    if metric is None:
        return {"current": 0.0, "previous": 0.0, "percent_change": 0.0}

    current = sanitize_metric_value(metric.total)
    return {
        "current": current,
        "previous": current - sanitize_metric_value(metric.change or 0),
        "percent_change": sanitize_metric_value(metric.change_percent or 0),
    }


def build_chart_data(
    data_view: DataView,
    metric_ids: Sequence[str],
    available_metric_ids: Sequence[str],
    metrics_data: Optional[MetricsData] = None,
    metric_labels: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Everything a chart panel needs for one view.

    Generic metrics are resolved against the loaded keys first; a label given
    for the generic id carries over to the concrete one.
    """
    resolved = resolve_metrics(metric_ids, available_metric_ids, metrics_data)
    labels = dict(metric_labels or {})
    for generic_id, metric_id in zip(metric_ids, resolved):
        if generic_id in labels and metric_id not in labels:
            labels[metric_id] = labels[generic_id]

    changes = []
    for metric_id in resolved:
        change = calculate_metric_change(data_view, metric_id)
        changes.append({
            "metric_id": metric_id,
            **change,
            "polarity": get_metric_polarity(metric_id).value,
            "is_good": is_good_change(metric_id, change["percent_change"]),
        })

    return {
        "metric_ids": resolved,
        "time_series": prepare_time_series_data(data_view, resolved),
        "pie": prepare_pie_chart_data(data_view, resolved, labels),
        "changes": changes,
        "conversion_variants": get_all_conversion_variants(available_metric_ids, data_view.aggregated_metrics),
    }
