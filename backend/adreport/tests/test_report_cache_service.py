"""Unit tests for ReportCacheService.

WHAT:
    Reload decisions (no-op, re-slice, restore, retry, reload), load tokens,
    error reporting and observers.

WHY:
    Every parameter change from the report UI goes through evaluate(); a
    wrong decision either refetches dozens of requests or shows stale data.

REFERENCES:
    - adreport/services/report_cache_service.py (module under test)
    - conftest.py: FakeFbAdsClient, fast_settings, make_params
"""

import asyncio
from datetime import date

import pytest

from adreport.schemas import ALL_TABS, TabType
from adreport.services.cache_signature import compute_signature
from adreport.services.report_cache_service import (
    LOAD_ERROR_MESSAGE,
    ReportCacheService,
    slice_tab_data,
)
from adreport.services.tab_loader import TabDataLoader
from adreport.telemetry.load_trace import LoadEventType

from conftest import FakeFbAdsClient, make_params

JAN_1 = date(2025, 1, 1)
JAN_2 = date(2025, 1, 2)
JAN_3 = date(2025, 1, 3)


def _service(client, settings) -> ReportCacheService:
    return ReportCacheService(client, settings=settings)


class TestReload:
    def test_first_evaluate_loads_all_tabs(self, fake_client, fast_settings):
        """WHAT: A new signature loads the four tabs and commits them together.
        WHY: Tabs must never show data from different loads side by side.
        """
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            assert service.is_loading is True
            assert service.loading_tabs == set(ALL_TABS)
            assert service.cache is None
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.is_loading is False
        assert service.loading_tabs == set()
        assert service.error is None
        assert sorted(c[2] for c in fake_client.insight_calls()) == ["ad", "ad", "adset", "campaign"]
        assert set(service.cache.tabs) == set(ALL_TABS)
        assert service.cache.signature == compute_signature(make_params())
        assert len(service.multi_cache) == 1

        campaigns = service.get_tab_data(TabType.CAMPAIGNS)
        assert [row.id for row in campaigns.table_rows] == ["02.01.2025", "01.01.2025"]
        assert service.telemetry.summary()[LoadEventType.LOAD_COMPLETED.value] == 1

    def test_missing_workspace_or_report_is_noop(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params(workspace_id=None))
            service.evaluate(make_params(report_id=None))
            await service.wait_idle()

        asyncio.run(scenario())
        assert service.cache is None
        assert service.signature is None
        assert fake_client.calls == []

    def test_display_change_reslices_without_fetch(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()
            calls = len(fake_client.calls)

            service.evaluate(make_params(display_date_from=JAN_2, display_date_to=JAN_2))
            assert service.is_loading is False
            await service.wait_idle()
            return calls

        calls_after_load = asyncio.run(scenario())

        assert len(fake_client.calls) == calls_after_load
        campaigns = service.get_tab_data(TabType.CAMPAIGNS)
        assert [row.id for row in campaigns.table_rows] == ["02.01.2025"]
        assert list(campaigns.metrics_data) == ["02.01.2025"]
        # The stored data keeps the full load window
        assert len(service.cache.tabs[TabType.CAMPAIGNS].table_rows) == 2

    def test_switching_back_restores_from_multi_window_cache(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()
            first = service.cache

            service.evaluate(make_params(load_date_to=JAN_3))
            await service.wait_idle()
            calls = len(fake_client.calls)

            service.evaluate(make_params())
            # Restored synchronously
            assert service.is_loading is False
            assert service.cache is first
            await service.wait_idle()
            return calls

        calls_before_restore = asyncio.run(scenario())

        assert len(fake_client.calls) == calls_before_restore
        assert len(service.multi_cache) == 2
        assert len(service.telemetry.events_of(LoadEventType.CACHE_RESTORED)) == 1

    def test_refresh_forces_network_reload(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()
            service.refresh_cache()
            assert service.signature is None
            service.evaluate(make_params())
            assert service.is_loading is True
            await service.wait_idle()

        asyncio.run(scenario())

        assert len(fake_client.insight_calls()) == 8
        assert len(service.multi_cache) == 1
        assert service.telemetry.summary()[LoadEventType.LOAD_COMPLETED.value] == 2

    def test_new_signature_cancels_in_flight_load(self, fast_settings):
        client = FakeFbAdsClient(delay=0.05)
        service = _service(client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await asyncio.sleep(0.01)
            service.evaluate(make_params(attribution="1d_click"))
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.cache.signature.attribution == "1d_click"
        assert len(service.multi_cache) == 1
        discarded = service.telemetry.events_of(LoadEventType.LOAD_DISCARDED)
        assert [e.data["reason"] for e in discarded] == ["cancelled"]


class TestAccountRetry:
    def test_accounts_appearing_during_retry_trigger_load(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)
        params = make_params(account_ids=[])

        async def scenario():
            service.evaluate(params)
            assert service.is_loading is False
            await asyncio.sleep(0)
            params.account_ids.append("act_1")
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.cache is not None
        assert service.cache.signature.account_ids == ("act_1",)
        assert not service.telemetry.events_of(LoadEventType.RETRY_EXHAUSTED)

    def test_new_evaluate_with_accounts_cancels_retry(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params(account_ids=[]))
            retry_task = service._retry_task
            service.evaluate(make_params())
            await service.wait_idle()
            return retry_task

        retry_task = asyncio.run(scenario())

        assert retry_task.cancelled()
        assert service.cache is not None
        assert len(fake_client.insight_calls()) == 4

    def test_exhausted_retries_skip_load(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params(account_ids=[]))
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.cache is None
        assert service.error is None
        assert fake_client.calls == []
        exhausted = service.telemetry.events_of(LoadEventType.RETRY_EXHAUSTED)
        assert len(exhausted) == 1
        assert exhausted[0].data["attempts"] == fast_settings.ACCOUNT_RETRY_ATTEMPTS


class TestErrors:
    def test_failed_load_sets_error_and_allows_retry(self, fake_client, fast_settings, monkeypatch):
        """WHAT: A failing load surfaces a display string; evaluating again reloads.
        WHY: The failed signature must not count as loaded.
        """
        original = TabDataLoader.load_tab
        state = {"fail": True}

        async def flaky_load_tab(self, tab, date_from, date_to, attribution=None):
            if state["fail"]:
                raise RuntimeError("backend exploded")
            return await original(self, tab, date_from, date_to, attribution)

        monkeypatch.setattr(TabDataLoader, "load_tab", flaky_load_tab)
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()
            assert service.error == LOAD_ERROR_MESSAGE
            assert service.is_loading is False
            assert service.signature is None
            assert service.cache is None

            state["fail"] = False
            service.evaluate(make_params())
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.error is None
        assert service.cache is not None
        assert len(service.telemetry.events_of(LoadEventType.LOAD_FAILED)) == 1

    def test_failing_account_is_not_a_load_error(self, fast_settings):
        client = FakeFbAdsClient(failing_accounts={"act_broken"})
        service = _service(client, fast_settings)

        async def scenario():
            service.evaluate(make_params(account_ids=["act_1", "act_broken"]))
            await service.wait_idle()

        asyncio.run(scenario())

        assert service.error is None
        assert service.get_tab_data(TabType.CAMPAIGNS).metrics_data["02.01.2025"]["c1"]["clicks"] == 150.0


class TestObservers:
    def test_subscribers_notified_until_unsubscribed(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)
        seen = []
        unsubscribe = service.subscribe(lambda: seen.append(service.is_loading))

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()
            unsubscribe()
            service.refresh_cache()
            service.evaluate(make_params())
            await service.wait_idle()

        asyncio.run(scenario())

        assert seen[0] is True
        assert seen[-1] is False
        # start + one per tab + commit
        assert len(seen) == 6

    def test_failing_subscriber_does_not_break_load(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        def broken():
            raise ValueError("listener bug")

        service.subscribe(broken)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()

        asyncio.run(scenario())
        assert service.cache is not None

    def test_state_snapshot(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            loading = service.state()
            await service.wait_idle()
            return loading

        loading = asyncio.run(scenario())
        assert loading["is_loading"] is True
        assert loading["loading_tabs"] == ALL_TABS

        state = service.state()
        assert state["is_loading"] is False
        assert state["loading_tabs"] == []
        assert state["signature"]["report_id"] == "rep-1"
        assert state["period_b_signature"] is None
        assert state["cached_signatures"] == 1


class TestSlicing:
    def test_unparsable_dates_are_dropped(self, fake_client, fast_settings):
        service = _service(fake_client, fast_settings)

        async def scenario():
            service.evaluate(make_params())
            await service.wait_idle()

        asyncio.run(scenario())

        data = service.cache.tabs[TabType.CAMPAIGNS]
        data.metrics_data["not-a-date"] = {"c1": {"clicks": 1.0}}
        sliced = slice_tab_data(data, JAN_1, JAN_2)
        assert "not-a-date" not in sliced.metrics_data
        assert sliced.items_metadata is data.items_metadata

    @pytest.mark.parametrize("use_period_b", [False, True])
    def test_no_cache_returns_none(self, fake_client, fast_settings, use_period_b):
        service = _service(fake_client, fast_settings)
        assert service.get_tab_data(TabType.ADS, use_period_b=use_period_b) is None
