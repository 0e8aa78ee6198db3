"""Unit tests for generic metric resolution and metric polarity.

REFERENCES:
    - adreport/metrics/resolver.py
    - adreport/metrics/polarity.py
"""

from adreport.metrics.formulas import AggregatedMetric
from adreport.metrics.polarity import MetricPolarity, get_metric_polarity, is_good_change
from adreport.metrics.resolver import (
    filter_resolvable_metrics,
    find_group_metrics,
    get_all_conversion_variants,
    get_available_variants,
    is_generic_metric,
    is_metric_resolvable,
    resolve_metric,
    resolve_metrics,
)


class TestResolveMetric:
    def test_generic_key_available_is_used_directly(self):
        assert resolve_metric("results", ["results", "results_lead"]) == "results"

    def test_single_dynamic_match(self):
        assert resolve_metric("cost_per_result", ["spend", "cost_per_result_lead"]) == "cost_per_result_lead"

    def test_largest_total_wins(self):
        metrics_data = {
            "01.01.2025": {
                "c1": {"results_lead": 3.0, "results_purchase": 10.0},
                "c2": {"results_lead": 4.0},
            }
        }
        available = ["results_lead", "results_purchase"]
        assert resolve_metric("results", available, metrics_data) == "results_purchase"

    def test_tie_keeps_first_candidate(self):
        metrics_data = {"01.01.2025": {"c1": {"results_a": 5.0, "results_b": 5.0}}}
        assert resolve_metric("results", ["results_a", "results_b"], metrics_data) == "results_a"

    def test_count_never_resolves_to_cost(self):
        """WHAT: "conversions" falls back to the group but skips cost variants.
        WHY: A count card must not silently show a currency.
        """
        available = ["cost_per_action_type_onsite_conversion.lead", "actions_onsite_conversion.lead"]
        assert resolve_metric("conversions", available) == "actions_onsite_conversion.lead"

    def test_engagement_actions_excluded_from_group(self):
        available = ["actions_post_engagement", "actions_like", "actions_lead"]
        assert find_group_metrics(available) == ["actions_lead"]

    def test_resolve_many_keeps_order(self):
        available = ["impressions", "results_lead"]
        assert resolve_metrics(["impressions", "results", "reach"], available) == [
            "impressions",
            "results_lead",
            "reach",
        ]

    def test_unresolvable_returns_generic(self):
        assert resolve_metric("results", ["impressions"]) == "results"
        assert not is_metric_resolvable("results", ["impressions"])

    def test_resolvable_helpers(self):
        available = ["impressions", "conversions_purchase"]
        assert is_generic_metric("conversions")
        assert not is_generic_metric("impressions")
        assert filter_resolvable_metrics(["impressions", "conversions", "reach"], available) == [
            "impressions",
            "conversions",
        ]
        assert get_available_variants("conversions", available) == ["conversions_purchase"]


class TestConversionVariants:
    def test_results_preferred_over_conversions(self):
        available = ["results_lead", "results_purchase", "conversions_purchase", "cost_per_result_lead"]
        aggregated = {
            "results_lead": AggregatedMetric(total=4.0),
            "results_purchase": AggregatedMetric(total=9.0, change=3.0, change_percent=50.0),
            "conversions_purchase": AggregatedMetric(total=20.0),
            "cost_per_result_lead": AggregatedMetric(total=2.0),
        }
        variants = get_all_conversion_variants(available, aggregated)
        assert [v["metric_id"] for v in variants] == ["results_purchase", "results_lead"]
        assert variants[0]["change_percent"] == 50.0

    def test_zero_totals_skipped(self):
        aggregated = {"conversions_purchase": AggregatedMetric(total=0.0)}
        assert get_all_conversion_variants(["conversions_purchase"], aggregated) == []


class TestPolarity:
    def test_explicit_table(self):
        assert get_metric_polarity("spend") is MetricPolarity.DOWN
        assert get_metric_polarity("frequency") is MetricPolarity.NEUTRAL
        assert get_metric_polarity("ctr") is MetricPolarity.UP

    def test_heuristics(self):
        assert get_metric_polarity("cost_per_action_type_lead") is MetricPolarity.DOWN
        assert get_metric_polarity("result_rate_lead") is MetricPolarity.UP
        assert get_metric_polarity("purchases") is MetricPolarity.UP

    def test_is_good_change(self):
        assert is_good_change("clicks", 10.0) is True
        assert is_good_change("cpc", 10.0) is False
        assert is_good_change("cpc", -10.0) is True
        assert is_good_change("frequency", 10.0) is None
        assert is_good_change("clicks", 0) is None
