"""Calculation primitives shared by the metric registry and the data view.

WHAT: Division with a zero guard and period-over-period change math.
WHY: Ratios such as CTR or CPA must never produce NaN or infinity, whatever
     subset of rows the user filters down to.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional


def safe_divide(numerator: float, denominator: float, multiplier: float = 1.0) -> float:
    """Return ``numerator / denominator * multiplier`` or 0 when undefined.

    Examples:
        >>> safe_divide(100, 1000, 100)
        10.0
        >>> safe_divide(5, 0)
        0.0
    """
    if not denominator:
        return 0.0
    result = (numerator / denominator) * multiplier
    if not math.isfinite(result):
        return 0.0
    return result


def compute_change(current: float, previous: float) -> float:
    """Absolute change between two period totals."""
    return current - previous


def compute_change_percent(current: float, previous: float) -> float:
    """Relative change in percent.

    A previous total of zero has no meaningful ratio: growth from nothing
    reports 100, no movement reports 0.

    Examples:
        >>> compute_change_percent(5, 0)
        100.0
        >>> compute_change_percent(5, 10)
        -50.0
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


@dataclass
class AggregatedMetric:
    """Total of one metric over the visible slice, with period-over-period change.

    ``change`` and ``change_percent`` stay None when no comparison period is given.
    """
    total: float
    change: Optional[float] = None
    change_percent: Optional[float] = None

    @classmethod
    def compare(cls, current: float, previous: float) -> "AggregatedMetric":
        return cls(
            total=current,
            change=compute_change(current, previous),
            change_percent=compute_change_percent(current, previous),
        )

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"total": self.total, "change": self.change, "change_percent": self.change_percent}
