"""Metric polarity: whether growth is good news.

WHAT: Tells the dashboard how to color a period-over-period change.
- UP: growth is good (impressions, CTR, ROAS)
- DOWN: decline is good (spend, CPC, cost per result)
- NEUTRAL: depends on context (frequency, benchmarks)

WHY: A +20% CPA and a +20% CTR move in the same direction but mean opposite
things for the advertiser.
"""

from enum import Enum
from typing import Dict, Optional


class MetricPolarity(Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


# Only entries the name heuristics below would get wrong, plus the core KPIs
METRIC_POLARITY: Dict[str, MetricPolarity] = {
    "impressions": MetricPolarity.UP,
    "reach": MetricPolarity.UP,
    "clicks": MetricPolarity.UP,
    "results": MetricPolarity.UP,
    "ctr": MetricPolarity.UP,
    "spend": MetricPolarity.DOWN,
    "social_spend": MetricPolarity.DOWN,
    "cpm": MetricPolarity.DOWN,
    "cpp": MetricPolarity.DOWN,
    "cpc": MetricPolarity.DOWN,
    "cost_per_result": MetricPolarity.DOWN,
    "marketing_messages_spend": MetricPolarity.DOWN,
    # More clicks per result means worse conversion
    "link_clicks_per_results": MetricPolarity.DOWN,
    # Too high means ad fatigue, too low means no reach
    "frequency": MetricPolarity.NEUTRAL,
    "video_play_curve_actions": MetricPolarity.NEUTRAL,
    "video_play_retention_graph_actions": MetricPolarity.NEUTRAL,
    "marketing_messages_read_rate_benchmark": MetricPolarity.NEUTRAL,
    "marketing_messages_click_rate_benchmark": MetricPolarity.NEUTRAL,
    "marketing_messages_spend_currency": MetricPolarity.NEUTRAL,
}

_DOWN_MARKERS = ("cost", "cpm", "cpc", "cpp", "spend")
_UP_MARKERS = ("rate", "ctr", "roas", "ranking")


def get_metric_polarity(metric_id: str) -> MetricPolarity:
    """Polarity from the explicit table, else from the metric name."""
    polarity = METRIC_POLARITY.get(metric_id)
    if polarity is not None:
        return polarity

    lowered = metric_id.lower()
    if any(marker in lowered for marker in _DOWN_MARKERS):
        return MetricPolarity.DOWN
    if any(marker in lowered for marker in _UP_MARKERS):
        return MetricPolarity.UP
    return MetricPolarity.UP


def is_good_change(metric_id: str, percent_change: float) -> Optional[bool]:
    """True for a good change, False for a bad one, None when neutral or flat."""
    if percent_change == 0:
        return None

    polarity = get_metric_polarity(metric_id)
    if polarity is MetricPolarity.NEUTRAL:
        return None

    grew = percent_change > 0
    return grew if polarity is MetricPolarity.UP else not grew
