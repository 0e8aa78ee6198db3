"""Insight normalization.

WHAT:
    Turns one raw insight record from the dashboard API into a flat
    ``metric_key -> float`` mapping.
WHY:
    The backend already explodes Facebook's nested action arrays into flat
    keys (``actions_link_click``, ``cost_per_result_lead``). Whatever nested
    objects remain are descriptive, and numbers may arrive as strings with
    thousands separators or as the ``"--"`` placeholder.
"""

import math
from typing import Any, Dict, FrozenSet, Mapping

# Identity and descriptive fields that are never metrics
METRIC_SKIP_FIELDS: FrozenSet[str] = frozenset({
    "date_start",
    "date_stop",
    "date_preset",
    "account_id",
    "account_name",
    "account_currency",
    "account_timezone",
    "campaign_id",
    "campaign_name",
    "adset_id",
    "adset_name",
    "ad_id",
    "ad_name",
    "creative_id",
    "creative_name",
    "level",
    "objective",
    "objective_name",
    "updated_time",
    "configured_status",
    "effective_status",
})


def sanitize_metric_value(value: Any) -> float:
    """Coerce an arbitrary metric value into a finite float.

    Examples:
        >>> sanitize_metric_value("1,234.5")
        1234.5
        >>> sanitize_metric_value("--")
        0.0
        >>> sanitize_metric_value({"value": "12"})
        12.0
    """
    if value is None:
        return 0.0

    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return 1.0 if value else 0.0

    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed or trimmed == "--":
            return 0.0
        try:
            parsed = float(trimmed.replace(",", ""))
        except ValueError:
            return 0.0
        return parsed if math.isfinite(parsed) else 0.0

    if isinstance(value, Mapping) and "value" in value:
        return sanitize_metric_value(value["value"])

    return 0.0


def normalize_insight_metrics(insight: Mapping[str, Any]) -> Dict[str, float]:
    """Flatten one insight into numeric metrics.

    Zero is kept only when the API explicitly reported zero, so that a metric
    the platform returned as ``0`` stays visible while garbage coerced to 0
    disappears.
    """
    metrics: Dict[str, float] = {}

    for key, value in insight.items():
        if key in METRIC_SKIP_FIELDS:
            continue
        if isinstance(value, (Mapping, list, tuple)):
            continue

        numeric_value = sanitize_metric_value(value)
        if numeric_value != 0:
            metrics[key] = numeric_value
        elif _is_explicit_zero(value):
            metrics[key] = 0.0

    return metrics


def _is_explicit_zero(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value == 0
    return value == "0"
