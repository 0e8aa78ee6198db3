"""
Generic Metric Resolution
=========================

WHAT: Maps a generic metric a user picked (``conversions``,
``cost_per_result``) onto the concrete dynamic key the platform actually
returned (``conversions_purchase``, ``cost_per_result_lead``).

WHY: Facebook reports results per optimization goal. A messaging campaign
has ``results_messaging_conversation_started_7d`` and no plain ``results``.
Without resolution the dashboard would show an empty card.

Selection rules:
1. If the generic key itself is available, use it
2. Otherwise collect keys matching the generic's dynamic prefixes
3. For the conversions/results group, fall back to any conversion-like key,
   excluding engagement actions
4. Counts never resolve to cost or rate variants
5. Among several candidates pick the one with the largest total
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from adreport.metrics.formulas import AggregatedMetric
from adreport.metrics.registry import MetricFamily

MetricsData = Mapping[str, Mapping[str, Mapping[str, float]]]

GENERIC_TO_DYNAMIC_PATTERNS: Dict[str, List[str]] = {
    family.value: [family.prefix]
    for family in (
        MetricFamily.CONVERSIONS,
        MetricFamily.COST_PER_CONVERSION,
        MetricFamily.RESULTS,
        MetricFamily.RESULT_RATE,
        MetricFamily.COST_PER_RESULT,
        MetricFamily.ACTIONS,
        MetricFamily.UNIQUE_ACTIONS,
        MetricFamily.COST_PER_ACTION_TYPE,
        MetricFamily.COST_PER_UNIQUE_ACTION_TYPE,
    )
}

CONVERSIONS_RESULTS_GROUP_PATTERNS: List[str] = [
    "results_",
    "conversions_",
    "actions_onsite_conversion.lead",
    "actions_onsite_conversion.purchase",
    "actions_onsite_conversion.fb_pixel",
    "actions_onsite_conversion.complete_registration",
    "actions_onsite_conversion.add_to_cart",
    "actions_onsite_conversion.initiate_checkout",
    "actions_onsite_conversion.add_payment_info",
    "actions_onsite_conversion.subscribe",
    "actions_onsite_conversion.contact",
    "actions_offsite_conversion",
    "actions_lead",
    "actions_purchase",
    "actions_add_to_cart",
    "actions_complete_registration",
    "cost_per_result_",
    "cost_per_conversion_",
    "cost_per_action_type_onsite_conversion.lead",
    "cost_per_action_type_onsite_conversion.purchase",
    "cost_per_action_type_offsite_conversion",
]

# Engagement actions, not conversions
CONVERSIONS_EXCLUDE_PATTERNS: List[str] = [
    "post_net_like",
    "post_unlike",
    "post_save",
    "post_net_save",
    "post_engagement",
    "page_engagement",
    "post_reaction",
    "comment",
    "like",
    "photo_view",
]

CONVERSIONS_RESULTS_STATIC_METRICS: List[str] = [
    "results",
    "result_rate",
    "cost_per_result",
    "conversions",
    "conversion_values",
    "cost_per_conversion",
    "actions",
    "unique_actions",
    "action_values",
    "conversion_leads",
    "conversion_lead_rate",
    "cost_per_conversion_lead",
    "dda_countby_convs",
    "cost_per_dda_countby_convs",
    "dda_results",
]

METRICS_WITH_GROUP_FALLBACK = frozenset({
    "conversions",
    "cost_per_conversion",
    "results",
    "result_rate",
    "cost_per_result",
})

_COUNT_EXCLUDE_MARKERS = ("cost", "_rate", "_ctr", "_cpm", "_cpc", "_roas", "_value")
_VARIANT_EXCLUDE_MARKERS = ("cost_per_", "_rate", "_ctr", "_cpm", "_cpc", "_roas", "_value")


def find_group_metrics(available_metric_ids: Sequence[str]) -> List[str]:
    """Conversion and result metrics among the available ones, engagement excluded."""
    found: List[str] = []
    for metric_id in available_metric_ids:
        if any(excluded in metric_id for excluded in CONVERSIONS_EXCLUDE_PATTERNS):
            continue
        if metric_id in CONVERSIONS_RESULTS_STATIC_METRICS:
            found.append(metric_id)
            continue
        if any(metric_id.startswith(pattern) for pattern in CONVERSIONS_RESULTS_GROUP_PATTERNS):
            found.append(metric_id)
    return found


def _direct_matches(generic_metric_id: str, available_metric_ids: Sequence[str]) -> List[str]:
    matches: List[str] = []
    for pattern in GENERIC_TO_DYNAMIC_PATTERNS.get(generic_metric_id, []):
        matches.extend(m for m in available_metric_ids if m.startswith(pattern))
    return matches


def _metric_total(metric_id: str, metrics_data: MetricsData) -> float:
    total = 0.0
    for items in metrics_data.values():
        for item_metrics in items.values():
            value = item_metrics.get(metric_id)
            if isinstance(value, (int, float)) and value == value:
                total += value
    return total


def resolve_metric(
    generic_metric_id: str,
    available_metric_ids: Sequence[str],
    metrics_data: Optional[MetricsData] = None,
) -> str:
    """Return the concrete metric to display for ``generic_metric_id``.

    Falls back to the generic id when nothing matches.
    """
    if generic_metric_id in available_metric_ids:
        return generic_metric_id

    matching = _direct_matches(generic_metric_id, available_metric_ids)

    if not matching and generic_metric_id in METRICS_WITH_GROUP_FALLBACK:
        matching = find_group_metrics(available_metric_ids)

    # A count must not silently turn into a currency or percentage
    if generic_metric_id in ("conversions", "results") and matching:
        count_only = [
            m for m in matching
            if not any(marker in m.lower() for marker in _COUNT_EXCLUDE_MARKERS)
        ]
        if count_only:
            matching = count_only

    if not matching:
        return generic_metric_id
    if len(matching) == 1 or not metrics_data:
        return matching[0]

    # max() keeps the first candidate on ties
    return max(matching, key=lambda metric_id: _metric_total(metric_id, metrics_data))


def resolve_metrics(
    metric_ids: Sequence[str],
    available_metric_ids: Sequence[str],
    metrics_data: Optional[MetricsData] = None,
) -> List[str]:
    return [resolve_metric(m, available_metric_ids, metrics_data) for m in metric_ids]


def is_generic_metric(metric_id: str) -> bool:
    return metric_id in GENERIC_TO_DYNAMIC_PATTERNS


def is_metric_resolvable(metric_id: str, available_metric_ids: Sequence[str]) -> bool:
    """True if the metric is available directly or through resolution."""
    if metric_id in available_metric_ids:
        return True
    if _direct_matches(metric_id, available_metric_ids):
        return True
    if metric_id in METRICS_WITH_GROUP_FALLBACK:
        return bool(find_group_metrics(available_metric_ids))
    return False


def filter_resolvable_metrics(metric_ids: Sequence[str], available_metric_ids: Sequence[str]) -> List[str]:
    return [m for m in metric_ids if is_metric_resolvable(m, available_metric_ids)]


def get_available_variants(generic_metric_id: str, available_metric_ids: Sequence[str]) -> List[str]:
    """All dynamic variants of a generic metric, for a variant picker."""
    return _direct_matches(generic_metric_id, available_metric_ids)


def get_all_conversion_variants(
    available_metric_ids: Sequence[str],
    aggregated_metrics: Mapping[str, AggregatedMetric],
) -> List[Dict[str, Any]]:
    """
    Conversion counts with their totals, largest first.

    ``results_*`` and ``conversions_*`` overlap in meaning on Facebook, so
    results win when present to avoid double counting; otherwise the
    conversions variants are used. Cost, rate and value variants are skipped,
    as are variants with no positive total.
    """
    results: List[Dict[str, Any]] = []
    conversions: List[Dict[str, Any]] = []

    for metric_id in available_metric_ids:
        is_results = metric_id.startswith("results_")
        is_conversions = metric_id.startswith("conversions_")
        if not (is_results or is_conversions):
            continue
        if any(marker in metric_id for marker in _VARIANT_EXCLUDE_MARKERS):
            continue

        aggregated = aggregated_metrics.get(metric_id)
        if aggregated is None:
            continue
        total = aggregated.total or 0.0
        if total <= 0:
            continue

        entry = {
            "metric_id": metric_id,
            "value": total,
            "change_percent": aggregated.change_percent,
        }
        (results if is_results else conversions).append(entry)

    chosen = results or conversions
    chosen.sort(key=lambda entry: entry["value"], reverse=True)
    return chosen
