"""Metric knowledge: formulas, normalization, resolution and polarity."""

from adreport.metrics.formulas import (
    AggregatedMetric,
    compute_change,
    compute_change_percent,
    safe_divide,
)
from adreport.metrics.polarity import MetricPolarity, get_metric_polarity, is_good_change
from adreport.metrics.registry import (
    FormulaKind,
    MetricFamily,
    MetricFormula,
    aggregate_metrics,
    calculate,
    collect_base_dependencies,
    dependencies_of,
    get_formula,
    is_derived,
    is_summable,
    match_family,
)
from adreport.metrics.resolver import get_all_conversion_variants, resolve_metric, resolve_metrics
from adreport.metrics.sanitizer import (
    METRIC_SKIP_FIELDS,
    normalize_insight_metrics,
    sanitize_metric_value,
)

__all__ = [
    "AggregatedMetric",
    "compute_change",
    "compute_change_percent",
    "safe_divide",
    "FormulaKind",
    "MetricFamily",
    "MetricFormula",
    "aggregate_metrics",
    "calculate",
    "collect_base_dependencies",
    "dependencies_of",
    "get_formula",
    "is_derived",
    "is_summable",
    "match_family",
    "MetricPolarity",
    "get_metric_polarity",
    "is_good_change",
    "get_all_conversion_variants",
    "resolve_metric",
    "resolve_metrics",
    "METRIC_SKIP_FIELDS",
    "normalize_insight_metrics",
    "sanitize_metric_value",
]
