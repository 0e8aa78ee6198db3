"""
Metric Registry
===============

Single source of truth for how every metric aggregates.

WHAT: Each metric key maps to exactly one formula kind:
- SUM: additive counters (impressions, clicks, spend, ...)
- CALCULATED: numerator / denominator * multiplier over summed bases

WHY: Ratios must never be summed or averaged across rows. Aggregation always
collects the dependency set of every calculated metric in view, sums only the
bases, then applies each formula once on the sums. That is what keeps CTR,
CPC and ROAS correct under any filter or selection.

DYNAMIC METRICS
---------------
The ad platform emits keys that are not known in advance
(``conversions_purchase``, ``cost_per_result_lead``). They are resolved to a
``MetricFamily`` by longest matching prefix and inherit the family's formula,
with the suffix carried into the counter dependency:

    cost_per_result_lead  ->  spend / results_lead
    result_rate_lead      ->  results_lead / impressions * 100

Keys that match neither the static table nor a family are summable.

RELATED FILES
-------------
- adreport/metrics/formulas.py: safe division and change math
- adreport/services/data_view.py: row and top-level aggregation
- adreport/services/tab_loader.py: creative merge uses is_summable
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from adreport.metrics.formulas import safe_divide


# =============================================================================
# FORMULA TYPES
# =============================================================================

class FormulaKind(Enum):
    SUM = "sum"
    CALCULATED = "calculated"


@dataclass(frozen=True)
class MetricFormula:
    """
    Aggregation rule for one metric.

    PARAMETERS:
        kind: SUM or CALCULATED
        numerator: Base metric summed into the numerator (calculated only)
        denominator: Base metric summed into the denominator (calculated only)
        multiplier: Scale applied after division (100 for percentages, 1000 for CPM)
        dependencies: Base metrics that must be summed before calculating
    """
    kind: FormulaKind
    numerator: Optional[str] = None
    denominator: Optional[str] = None
    multiplier: float = 1.0
    dependencies: Tuple[str, ...] = ()


SUM = MetricFormula(FormulaKind.SUM)


def _calc(numerator: str, denominator: str, multiplier: float = 1.0) -> MetricFormula:
    return MetricFormula(
        kind=FormulaKind.CALCULATED,
        numerator=numerator,
        denominator=denominator,
        multiplier=multiplier,
        dependencies=(numerator, denominator),
    )


# =============================================================================
# STATIC TABLE
# =============================================================================

SUMMABLE_METRICS: Tuple[str, ...] = (
    # Traffic
    "impressions", "reach", "clicks", "unique_clicks", "inline_link_clicks",
    "unique_inline_link_clicks", "outbound_clicks", "unique_outbound_clicks",
    "full_view_impressions", "full_view_reach",
    # Spend & revenue
    "spend", "social_spend", "revenue",
    # Conversions, actions, results
    "conversions", "unique_conversions", "conversion_values", "actions",
    "unique_actions", "action_values", "results", "objective_results",
    "conversion_leads", "dda_countby_convs", "dda_results",
    # Video
    "video_play_actions", "video_p25_watched_actions", "video_p50_watched_actions",
    "video_p75_watched_actions", "video_p95_watched_actions", "video_p100_watched_actions",
    "video_time_watched_actions", "video_15_sec_watched_actions", "unique_video_view_15_sec",
    "video_30_sec_watched_actions", "video_continuous_2_sec_watched_actions",
    "unique_video_continuous_2_sec_watched_actions", "video_thruplay_watched_actions",
    "video_play_curve_actions", "video_play_retention_graph_actions",
    "video_play_retention_0_to_15s_actions", "video_play_retention_20_to_60s_actions",
    # Engagement
    "inline_post_engagement", "ad_click_actions", "interactive_component_tap",
    "instagram_upcoming_event_reminders_set",
    # Products
    "product_views", "converted_product_quantity", "converted_product_value",
    "converted_product_app_custom_event_fb_mobile_purchase",
    "converted_product_app_custom_event_fb_mobile_purchase_value",
    "converted_product_website_pixel_purchase", "converted_product_website_pixel_purchase_value",
    "converted_product_offline_purchase", "converted_product_offline_purchase_value",
    "converted_product_omni_purchase", "converted_product_omni_purchase_values",
    "converted_promoted_product_app_custom_event_fb_mobile_purchase",
    "converted_promoted_product_app_custom_event_fb_mobile_purchase_value",
    "converted_promoted_product_website_pixel_purchase",
    "converted_promoted_product_website_pixel_purchase_value",
    "converted_promoted_product_offline_purchase",
    "converted_promoted_product_offline_purchase_value",
    "converted_promoted_product_omni_purchase", "converted_promoted_product_omni_purchase_values",
    "converted_promoted_product_quantity", "converted_promoted_product_value",
    "shops_assisted_purchases",
    # Catalog
    "catalog_segment_actions", "catalog_segment_value",
    # Quality
    "estimated_ad_recallers", "estimated_ad_recallers_lower_bound",
    "estimated_ad_recallers_upper_bound",
    # Landing pages
    "landing_page_views",
    # Messaging
    "marketing_messages_sent", "marketing_messages_delivered", "marketing_messages_read",
    "marketing_messages_link_btn_click", "marketing_messages_quick_reply_btn_click",
    "marketing_messages_spend", "marketing_messages_website_add_to_cart",
    "marketing_messages_website_initiate_checkout", "marketing_messages_website_purchase",
    "marketing_messages_website_purchase_values",
    "onsite_conversion_messaging_detected_purchase_deduped",
    # Instant experience & canvas
    "instant_experience_clicks_to_open", "instant_experience_clicks_to_start",
    "instant_experience_outbound_clicks", "canvas_avg_view_time", "total_card_view",
    # Attribution
    "ad_impression_actions", "total_postbacks", "total_postbacks_detailed",
    "total_postbacks_detailed_v4",
    # Rankings and benchmarks arrive as-is from the API
    "quality_ranking", "engagement_rate_ranking", "conversion_rate_ranking",
    "result_values_performance_indicator", "marketing_messages_read_rate_benchmark",
    "marketing_messages_click_rate_benchmark", "marketing_messages_spend_currency",
)

CALCULATED_METRICS: Dict[str, MetricFormula] = {
    # CTR family
    "ctr": _calc("clicks", "impressions", 100),
    "unique_ctr": _calc("unique_clicks", "impressions", 100),
    "inline_link_click_ctr": _calc("inline_link_clicks", "impressions", 100),
    "unique_inline_link_click_ctr": _calc("unique_inline_link_clicks", "impressions", 100),
    "outbound_clicks_ctr": _calc("outbound_clicks", "impressions", 100),
    "unique_outbound_clicks_ctr": _calc("unique_outbound_clicks", "impressions", 100),
    "website_ctr": _calc("clicks", "impressions", 100),
    "unique_link_clicks_ctr": _calc("unique_inline_link_clicks", "impressions", 100),
    "frequency": _calc("impressions", "reach"),
    # Cost per click
    "cpc": _calc("spend", "clicks"),
    "cost_per_unique_click": _calc("spend", "unique_clicks"),
    "cost_per_inline_link_click": _calc("spend", "inline_link_clicks"),
    "cost_per_unique_inline_link_click": _calc("spend", "unique_inline_link_clicks"),
    "cost_per_outbound_click": _calc("spend", "outbound_clicks"),
    "cost_per_unique_outbound_click": _calc("spend", "unique_outbound_clicks"),
    "cost_per_ad_click": _calc("spend", "ad_click_actions"),
    # Cost per mille
    "cpm": _calc("spend", "impressions", 1000),
    "cpp": _calc("spend", "reach", 1000),
    # Conversions
    "cost_per_conversion": _calc("spend", "conversions"),
    "cost_per_unique_conversion": _calc("spend", "unique_conversions"),
    "conversion_rate": _calc("conversions", "clicks", 100),
    # Results
    "cost_per_result": _calc("spend", "results"),
    "cost_per_objective_result": _calc("spend", "objective_results"),
    "result_rate": _calc("results", "impressions", 100),
    "objective_result_rate": _calc("objective_results", "impressions", 100),
    # Leads, DDA, actions
    "cost_per_conversion_lead": _calc("spend", "conversion_leads"),
    "conversion_lead_rate": _calc("conversion_leads", "clicks", 100),
    "cost_per_dda_countby_convs": _calc("spend", "dda_countby_convs"),
    "cost_per_action_type": _calc("spend", "actions"),
    "cost_per_unique_action_type": _calc("spend", "unique_actions"),
    # ROAS
    "purchase_roas": _calc("revenue", "spend"),
    "roas": _calc("revenue", "spend"),
    "mobile_app_purchase_roas": _calc("revenue", "spend"),
    "website_purchase_roas": _calc("revenue", "spend"),
    # Video
    "cost_per_15_sec_video_view": _calc("spend", "video_15_sec_watched_actions"),
    "cost_per_2_sec_continuous_video_view": _calc("spend", "video_continuous_2_sec_watched_actions"),
    "cost_per_thruplay": _calc("spend", "video_thruplay_watched_actions"),
    "video_view_per_impression": _calc("video_play_actions", "impressions", 100),
    "video_avg_time_watched_actions": _calc("video_time_watched_actions", "video_play_actions"),
    # Engagement, landing pages, quality, attribution
    "cost_per_inline_post_engagement": _calc("spend", "inline_post_engagement"),
    "cost_per_landing_page_view": _calc("spend", "landing_page_views"),
    "cost_per_estimated_ad_recallers": _calc("spend", "estimated_ad_recallers"),
    "cost_per_one_thousand_ad_impression": _calc("spend", "ad_impression_actions", 1000),
    # Catalog ROAS
    "catalog_segment_value_mobile_purchase_roas": _calc("catalog_segment_value", "spend"),
    "catalog_segment_value_omni_purchase_roas": _calc("catalog_segment_value", "spend"),
    "catalog_segment_value_website_purchase_roas": _calc("catalog_segment_value", "spend"),
    # Landing page ratios
    "landing_page_view_actions_per_link_click": _calc("landing_page_views", "inline_link_clicks"),
    "landing_page_view_per_link_click": _calc("landing_page_views", "inline_link_clicks", 100),
    "landing_page_view_per_purchase_rate": _calc("conversions", "landing_page_views", 100),
    "purchase_per_landing_page_view": _calc("conversions", "landing_page_views"),
    "link_clicks_per_results": _calc("inline_link_clicks", "results"),
    "purchases_per_link_click": _calc("conversions", "inline_link_clicks"),
    "average_purchases_conversion_value": _calc("conversion_values", "conversions"),
    # Messaging
    "marketing_messages_delivery_rate": _calc("marketing_messages_delivered", "marketing_messages_sent", 100),
    "marketing_messages_cost_per_delivered": _calc("marketing_messages_spend", "marketing_messages_delivered"),
    "marketing_messages_read_rate": _calc("marketing_messages_read", "marketing_messages_delivered", 100),
    "marketing_messages_link_btn_click_rate": _calc(
        "marketing_messages_link_btn_click", "marketing_messages_delivered", 100
    ),
    "marketing_messages_cost_per_link_btn_click": _calc(
        "marketing_messages_spend", "marketing_messages_link_btn_click"
    ),
    "marketing_messages_quick_reply_btn_click_rate": _calc(
        "marketing_messages_quick_reply_btn_click", "marketing_messages_delivered", 100
    ),
    "marketing_messages_media_view_rate": _calc("marketing_messages_read", "marketing_messages_delivered", 100),
    # The API reports phone calls through the quick reply counter
    "marketing_messages_phone_call_btn_click_rate": _calc(
        "marketing_messages_quick_reply_btn_click", "marketing_messages_delivered", 100
    ),
    # Ad recall
    "estimated_ad_recall_rate": _calc("estimated_ad_recallers", "reach", 100),
    "estimated_ad_recall_rate_lower_bound": _calc("estimated_ad_recallers_lower_bound", "reach", 100),
    "estimated_ad_recall_rate_upper_bound": _calc("estimated_ad_recallers_upper_bound", "reach", 100),
    # Canvas
    "canvas_avg_view_percent": _calc("canvas_avg_view_time", "impressions", 100),
}

METRIC_FORMULAS: Dict[str, MetricFormula] = {
    **{key: SUM for key in SUMMABLE_METRICS},
    **CALCULATED_METRICS,
}


# =============================================================================
# DYNAMIC FAMILIES
# =============================================================================

class MetricFamily(Enum):
    """
    Families of platform-generated metric keys.

    The value is the static base metric whose formula the family inherits;
    a dynamic key is ``f"{family.value}_{suffix}"``.
    """
    CONVERSIONS = "conversions"
    UNIQUE_CONVERSIONS = "unique_conversions"
    CONVERSION_VALUES = "conversion_values"
    COST_PER_CONVERSION = "cost_per_conversion"
    COST_PER_UNIQUE_CONVERSION = "cost_per_unique_conversion"
    RESULTS = "results"
    RESULT_RATE = "result_rate"
    COST_PER_RESULT = "cost_per_result"
    ACTIONS = "actions"
    UNIQUE_ACTIONS = "unique_actions"
    ACTION_VALUES = "action_values"
    COST_PER_ACTION_TYPE = "cost_per_action_type"
    COST_PER_UNIQUE_ACTION_TYPE = "cost_per_unique_action_type"

    @property
    def prefix(self) -> str:
        return f"{self.value}_"

    @property
    def base_formula(self) -> MetricFormula:
        return METRIC_FORMULAS[self.value]


# Counter families whose suffix carries into calculated dependencies
_SUFFIXED_COUNTERS: Set[str] = {
    family.value for family in MetricFamily if family.base_formula.kind is FormulaKind.SUM
}

# Longest prefix first so "cost_per_unique_action_type_" wins over shorter matches
_FAMILY_PATTERNS: List[Tuple[str, MetricFamily]] = sorted(
    ((family.prefix, family) for family in MetricFamily),
    key=lambda pair: len(pair[0]),
    reverse=True,
)


def match_family(metric_key: str) -> Optional[Tuple[MetricFamily, str]]:
    """
    Resolve a dynamic metric key to its family and suffix.

    Returns None for static keys and for keys matching no family.

    Examples:
        >>> match_family("cost_per_result_lead")
        (<MetricFamily.COST_PER_RESULT: 'cost_per_result'>, 'lead')
        >>> match_family("impressions") is None
        True
    """
    if metric_key in METRIC_FORMULAS:
        return None
    for prefix, family in _FAMILY_PATTERNS:
        if metric_key.startswith(prefix) and len(metric_key) > len(prefix):
            return family, metric_key[len(prefix):]
    return None


def _suffixed(dependency: str, suffix: str) -> str:
    if dependency in _SUFFIXED_COUNTERS:
        return f"{dependency}_{suffix}"
    return dependency


@lru_cache(maxsize=4096)
def get_formula(metric_key: str) -> Optional[MetricFormula]:
    """Formula for a static or dynamic key; None for unknown keys."""
    formula = METRIC_FORMULAS.get(metric_key)
    if formula is not None:
        return formula

    matched = match_family(metric_key)
    if matched is None:
        return None

    family, suffix = matched
    base = family.base_formula
    if base.kind is FormulaKind.SUM:
        return SUM

    return _calc(
        _suffixed(base.numerator, suffix),
        _suffixed(base.denominator, suffix),
        base.multiplier,
    )


# =============================================================================
# PUBLIC API
# =============================================================================

def is_summable(metric_key: str) -> bool:
    """True if the metric may be added across items and dates (unknown keys included)."""
    formula = get_formula(metric_key)
    return formula is None or formula.kind is FormulaKind.SUM


def is_derived(metric_key: str) -> bool:
    """True if the metric must be recalculated from its dependencies."""
    formula = get_formula(metric_key)
    return formula is not None and formula.kind is FormulaKind.CALCULATED


def dependencies_of(metric_key: str) -> List[str]:
    formula = get_formula(metric_key)
    return list(formula.dependencies) if formula else []


def calculate(metric_key: str, base_metrics: Mapping[str, float]) -> float:
    """
    Value of a metric given summed base metrics.

    Calculated metrics apply their formula (division by zero gives 0);
    summable metrics return their own summed value.
    """
    formula = get_formula(metric_key)
    if formula is None or formula.kind is FormulaKind.SUM:
        return base_metrics.get(metric_key, 0.0) or 0.0

    return safe_divide(
        base_metrics.get(formula.numerator, 0.0) or 0.0,
        base_metrics.get(formula.denominator, 0.0) or 0.0,
        formula.multiplier,
    )


def collect_base_dependencies(metric_keys: Iterable[str]) -> Set[str]:
    """Every metric that must be summed to produce ``metric_keys``."""
    needed: Set[str] = set()
    for key in metric_keys:
        if is_derived(key):
            needed.update(dependencies_of(key))
        else:
            needed.add(key)
    return needed


def sum_base_metrics(
    metric_maps: Iterable[Mapping[str, float]],
    needed: Iterable[str],
) -> Dict[str, float]:
    """Sum the summable members of ``needed`` across ``metric_maps``."""
    needed = list(needed)
    totals: Dict[str, float] = {key: 0.0 for key in needed}
    summable = [key for key in needed if is_summable(key)]
    for metrics in metric_maps:
        for key in summable:
            value = metrics.get(key)
            if value is not None:
                totals[key] += value
    return totals


def aggregate_metrics(metric_maps: Iterable[Mapping[str, float]]) -> Dict[str, float]:
    """
    Aggregate a set of metric maps into one, never summing a ratio.

    WHAT:
        1. Collect every key present in any map
        2. Expand calculated keys into their base dependencies
        3. Sum only the bases
        4. Apply each formula once on the sums

    The result carries exactly the keys present in the inputs.
    """
    metric_maps = list(metric_maps)
    metric_keys: Set[str] = set()
    for metrics in metric_maps:
        metric_keys.update(metrics.keys())

    base_totals = sum_base_metrics(metric_maps, collect_base_dependencies(metric_keys))
    return {key: calculate(key, base_totals) for key in metric_keys}
