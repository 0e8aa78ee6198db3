"""Unit tests for cache signatures and the multi-window cache (adreport/services/cache_signature.py)."""

from datetime import date

from adreport.schemas import TabType
from adreport.services.cache_signature import (
    MultiWindowCache,
    ReportCache,
    compute_signature,
    empty_tab_map,
    signatures_equal,
)

from conftest import make_params


class TestComputeSignature:
    def test_fields(self):
        signature = compute_signature(make_params(account_ids=["act_2", "act_1"]))

        assert signature.report_id == "rep-1"
        assert signature.load_date_from == "2025-01-01"
        assert signature.load_date_to == "2025-01-02"
        assert signature.attribution == "7d_click_1d_view"
        assert signature.account_ids == ("act_1", "act_2")
        assert dict(signature.selections_by_tab)["campaigns"] == ("c1", "c2")

    def test_order_of_ids_is_irrelevant(self):
        a = compute_signature(make_params(account_ids=["act_1", "act_2"]))
        b = compute_signature(make_params(
            account_ids=["act_2", "act_1"],
            selections_by_tab={TabType.CAMPAIGNS: ["c2", "c1"], TabType.ADSETS: ["s1"],
                               TabType.ADS: ["a3", "a2", "a1"], TabType.CREATIVES: ["cr2", "cr1"]},
        ))
        assert signatures_equal(a, b)
        assert a.serialize() == b.serialize()

    def test_display_dates_do_not_change_signature(self):
        """WHAT: Narrowing the display range keeps the signature.
        WHY: The visible window is re-sliced from loaded data, never refetched.
        """
        wide = compute_signature(make_params())
        narrow = compute_signature(make_params(
            display_date_from=date(2025, 1, 2), display_date_to=date(2025, 1, 2)
        ))
        assert signatures_equal(wide, narrow)

    def test_load_parameters_change_signature(self):
        base = compute_signature(make_params())
        assert not signatures_equal(base, compute_signature(make_params(load_date_to=date(2025, 1, 3))))
        assert not signatures_equal(base, compute_signature(make_params(attribution="1d_click")))
        assert not signatures_equal(base, compute_signature(make_params(account_ids=["act_9"])))
        assert not signatures_equal(
            base, compute_signature(make_params(selections_by_tab={TabType.CAMPAIGNS: ["c1"]}))
        )

    def test_missing_tabs_serialize_as_empty(self):
        signature = compute_signature(make_params(selections_by_tab={}))
        assert signature.to_dict()["selections_by_tab"] == {
            "campaigns": [], "adsets": [], "ads": [], "creatives": [],
        }

    def test_none_never_equal(self):
        signature = compute_signature(make_params())
        assert not signatures_equal(None, signature)
        assert not signatures_equal(signature, None)
        assert not signatures_equal(None, None)


class TestMultiWindowCache:
    def test_store_and_lookup_by_value(self):
        cache = MultiWindowCache()
        entry = ReportCache(signature=compute_signature(make_params()))
        cache.store(entry.signature, entry)

        assert cache.lookup(compute_signature(make_params())) is entry
        assert compute_signature(make_params()) in cache
        assert len(cache) == 1

    def test_missing_and_none(self):
        cache = MultiWindowCache()
        assert cache.lookup(None) is None
        assert cache.lookup(compute_signature(make_params())) is None

    def test_last_writer_wins(self):
        cache = MultiWindowCache()
        signature = compute_signature(make_params())
        first, second = ReportCache(signature=signature), ReportCache(signature=signature)
        cache.store(signature, first)
        cache.store(signature, second)

        assert cache.lookup(signature) is second
        assert len(cache) == 1

    def test_windows_kept_side_by_side(self):
        cache = MultiWindowCache()
        for day in (2, 3, 4):
            signature = compute_signature(make_params(load_date_to=date(2025, 1, day)))
            cache.store(signature, ReportCache(signature=signature))
        assert len(cache) == 3


def test_empty_tab_map_has_every_tab():
    assert empty_tab_map() == {
        TabType.CAMPAIGNS: None, TabType.ADSETS: None, TabType.ADS: None, TabType.CREATIVES: None,
    }
