"""Unit tests for FbAdsClient.

WHAT:
    Request shaping, chunked pagination, retries and typed errors, driven
    through httpx.MockTransport.

WHY:
    The loader relies on each call either returning data or raising an
    FbAdsClientError it can absorb per account.

REFERENCES:
    - adreport/services/fb_ads_client.py (module under test)
"""

import asyncio

import httpx
import pytest

from adreport.services.fb_ads_client import (
    FbAdsAuthenticationError,
    FbAdsClient,
    FbAdsClientError,
    FbAdsNotFoundError,
    FbAdsPermissionError,
    FbAdsRateLimitError,
)


def _client(handler, **kwargs) -> FbAdsClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://dashboard.test/api/v1")
    return FbAdsClient("http://dashboard.test/api/v1", retry_backoff=0, http_client=http_client, **kwargs)


class TestInsights:
    def test_query_parameters(self):
        """WHAT: Insights request carries workspace, range, level and attribution.
        WHY: The backend filters stored insights by exactly these parameters.
        """
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"success": True, "insights": [{"campaign_id": "c1"}]})

        client = _client(handler)
        result = asyncio.run(
            client.get_insights("ws-1", "act_1", "campaign", "2025-01-01", "2025-01-31", "7d_click")
        )

        assert result == {"success": True, "insights": [{"campaign_id": "c1"}]}
        assert seen["path"] == "/api/v1/facebook-marketing/insights/act_1"
        assert seen["params"] == {
            "workspaceId": "ws-1",
            "dateFrom": "2025-01-01",
            "dateTo": "2025-01-31",
            "level": "campaign",
            "attributionSetting": "7d_click",
        }

    def test_missing_attribution_is_not_sent(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"insights": []})

        asyncio.run(_client(handler).get_insights("ws-1", "act_1", "ad", "2025-01-01", "2025-01-02"))
        assert "attributionSetting" not in seen["params"]

    def test_account_id_required(self):
        client = _client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(FbAdsClientError):
            asyncio.run(client.get_insights("ws-1", "", "ad", "2025-01-01", "2025-01-02"))


class TestPagination:
    def test_remaining_chunks_fetched(self):
        """WHAT: A first page with hasMore and total > limit triggers the remaining pages.
        WHY: Accounts with thousands of ads must come back complete.
        """
        offsets = []

        def handler(request: httpx.Request) -> httpx.Response:
            offset = int(request.url.params["offset"])
            offsets.append(offset)
            ads = [{"adId": f"a{offset + i}"} for i in range(2 if offset < 4 else 1)]
            return httpx.Response(200, json={"ads": ads, "total": 5, "hasMore": offset == 0})

        client = _client(handler, chunk_limit=2)
        ads = asyncio.run(client.get_ads("ws-1", "act_1"))

        assert sorted(offsets) == [0, 2, 4]
        assert [a["adId"] for a in ads] == ["a0", "a1", "a2", "a3", "a4"]

    def test_single_page(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"campaigns": [{"campaignId": "c1"}], "total": 1, "hasMore": False})

        campaigns = asyncio.run(_client(handler).get_campaigns("ws-1", "act_1"))
        assert campaigns == [{"campaignId": "c1"}]
        assert calls == ["/api/v1/facebook/ads/campaigns/act_1"]

    def test_missing_account_returns_empty_without_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert asyncio.run(_client(handler).get_adsets("ws-1", "")) == []

    def test_creatives_accept_list_or_wrapped(self):
        client = _client(lambda request: httpx.Response(200, json={"creatives": [{"creativeId": "cr1"}]}))
        assert asyncio.run(client.get_creatives("ws-1", "act_1")) == [{"creativeId": "cr1"}]

        client = _client(lambda request: httpx.Response(200, json=[{"creativeId": "cr2"}]))
        assert asyncio.run(client.get_creatives("ws-1", "act_1")) == [{"creativeId": "cr2"}]


class TestErrors:
    def test_server_errors_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(503, json={"message": "unavailable"})
            return httpx.Response(200, json={"success": True, "insights": []})

        result = asyncio.run(_client(handler, max_retries=3).get_insights("ws-1", "act_1", "ad", "a", "b"))
        assert result["success"] is True
        assert len(attempts) == 3

    def test_rate_limit_after_retries(self):
        client = _client(lambda request: httpx.Response(429, json={"message": "slow down"}), max_retries=2)
        with pytest.raises(FbAdsRateLimitError) as exc_info:
            asyncio.run(client.get_insights("ws-1", "act_1", "ad", "a", "b"))
        assert exc_info.value.status_code == 429
        assert str(exc_info.value) == "slow down"

    def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(401, json={"message": "unauthorized"})

        with pytest.raises(FbAdsAuthenticationError):
            asyncio.run(_client(handler).get_insights("ws-1", "act_1", "ad", "a", "b"))
        assert len(attempts) == 1

    def test_not_found(self):
        client = _client(lambda request: httpx.Response(404, text="missing"))
        with pytest.raises(FbAdsNotFoundError):
            asyncio.run(client.get_campaigns("ws-1", "act_1"))

    def test_transport_errors_are_retried_then_raised(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FbAdsClientError):
            asyncio.run(_client(handler, max_retries=2).get_campaigns("ws-1", "act_1"))
        assert len(attempts) == 2


class TestAttributionSettings:
    def test_settings_for_account(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(200, json={"success": True, "attributionSettings": ["7d_click_1d_view"]})

        result = asyncio.run(_client(handler).get_attribution_settings("act_1"))
        assert result["attributionSettings"] == ["7d_click_1d_view"]
        assert seen["path"] == "/api/v1/facebook-marketing/attribution-settings/act_1"

    def test_permission_error(self):
        client = _client(lambda request: httpx.Response(403, json={"message": "forbidden"}))
        with pytest.raises(FbAdsPermissionError):
            asyncio.run(client.get_attribution_settings("act_1"))


class TestMalformedResponses:
    def test_non_json_success_raises_client_error(self):
        """WHAT: A 200 with an HTML body raises FbAdsClientError.
        WHY: Callers absorb FbAdsClientError per call; a bare ValueError would escape them.
        """
        client = _client(lambda request: httpx.Response(200, text="<html>proxy page</html>"))
        with pytest.raises(FbAdsClientError) as exc_info:
            asyncio.run(client.get_campaigns("ws-1", "act_1"))
        assert exc_info.value.status_code == 200
