"""Pytest configuration for adreport tests

WHAT: Provides a fake dashboard API client, sample account data and fast settings
WHY: Loader, cache and router tests run without network access and with
     millisecond retry intervals
REFERENCES:
    - adreport/services/fb_ads_client.py: interface the fake mirrors
    - adreport/services/report_cache_service.py: main consumer
"""

import asyncio
import copy
from datetime import date
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from adreport.deps import Settings
from adreport.schemas import ReportParams, TabType
from adreport.services.fb_ads_client import FbAdsClientError


# ============================================================================
# Sample data
# ============================================================================

ACCOUNT_ID = "act_1"

CAMPAIGNS = [
    {"id": "int-c1", "campaignId": "c1", "name": "Summer Sale", "status": "ACTIVE"},
    {"id": "int-c2", "campaignId": "c2", "name": "Winter Promo", "status": "PAUSED"},
]

ADSETS = [
    {"id": "int-s1", "adsetId": "s1", "campaignId": "c1", "name": "Lookalike", "status": "ACTIVE"},
]

ADS = [
    {"adId": "a1", "adsetId": "s1", "campaignId": "c1", "creativeId": "cr1", "name": "Ad One", "status": "ACTIVE"},
    {"adId": "a2", "adsetId": "s1", "campaignId": "c1", "creativeId": "cr1", "name": "Ad Two", "status": "ACTIVE"},
    {"adId": "a3", "adsetId": "s1", "campaignId": "c1", "creativeId": "cr2", "name": "Ad Three", "status": "PAUSED"},
]

CREATIVES = [
    {"creativeId": "cr1", "name": "Beach Video", "thumbnailUrl": "https://cdn.example.com/cr1.jpg"},
    {"creativeId": "cr2", "title": "Snow Image"},
]

INSIGHTS = {
    "campaign": [
        {"date_start": "2025-01-02", "campaign_id": "c1", "impressions": "1500", "clicks": "150", "spend": "30.00", "ctr": "10"},
        {"date_start": "2025-01-01", "campaign_id": "c1", "impressions": "1000", "clicks": "50", "spend": "20"},
        {"date_start": "2025-01-01", "campaign_id": "c2", "impressions": "500", "clicks": "0", "spend": "5"},
    ],
    "adset": [
        {"date_start": "2025-01-01", "adset_id": "s1", "impressions": "400", "clicks": "30", "spend": "8"},
    ],
    "ad": [
        {"date_start": "2025-01-01", "ad_id": "a1", "impressions": "100", "clicks": "10", "ctr": "10"},
        {"date_start": "2025-01-01", "ad_id": "a2", "impressions": "300", "clicks": "20", "ctr": "6.67"},
        {"date_start": "2025-01-01", "ad_id": "a3", "impressions": "50", "clicks": "5"},
        {"date_start": "2025-01-02", "ad_id": "zz-unknown", "impressions": "10", "clicks": "1"},
        {"date_start": "2025-01-02", "impressions": "10"},
    ],
}


class FakeFbAdsClient:
    """In-memory stand-in for FbAdsClient with a call log.

    PARAMETERS:
        insights: level -> insight rows (same rows for every account)
        failing_accounts: accounts whose insights call raises FbAdsClientError
        delay: seconds every call sleeps, to keep loads in flight
        slow_windows: (date_from, date_to) -> extra seconds for insights of that window
    """

    def __init__(
        self,
        insights: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        campaigns: Optional[List[Dict[str, Any]]] = None,
        adsets: Optional[List[Dict[str, Any]]] = None,
        ads: Optional[List[Dict[str, Any]]] = None,
        creatives: Optional[List[Dict[str, Any]]] = None,
        failing_accounts: Optional[Set[str]] = None,
        delay: float = 0.0,
        slow_windows: Optional[Dict[Tuple[str, str], float]] = None,
    ):
        self.insights = copy.deepcopy(INSIGHTS if insights is None else insights)
        self.campaigns = copy.deepcopy(CAMPAIGNS if campaigns is None else campaigns)
        self.adsets = copy.deepcopy(ADSETS if adsets is None else adsets)
        self.ads = copy.deepcopy(ADS if ads is None else ads)
        self.creatives = copy.deepcopy(CREATIVES if creatives is None else creatives)
        self.failing_accounts = set(failing_accounts or ())
        self.delay = delay
        self.slow_windows = dict(slow_windows or {})
        self.calls: List[Tuple[Any, ...]] = []

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    def insight_calls(self) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == "insights"]

    async def get_insights(self, workspace_id, ad_account_id, level, date_from, date_to, attribution_setting=None):
        self.calls.append(("insights", ad_account_id, level, date_from, date_to, attribution_setting))
        await self._pause()
        extra = self.slow_windows.get((date_from, date_to))
        if extra:
            await asyncio.sleep(extra)
        if ad_account_id in self.failing_accounts:
            raise FbAdsClientError(f"boom for {ad_account_id}", status_code=500)
        rows = [
            row for row in self.insights.get(level, [])
            if date_from <= row.get("date_start", date_from) <= date_to
        ]
        return {"success": True, "insights": copy.deepcopy(rows)}

    async def get_campaigns(self, workspace_id, ad_account_id):
        self.calls.append(("campaigns", ad_account_id))
        await self._pause()
        return copy.deepcopy(self.campaigns)

    async def get_adsets(self, workspace_id, ad_account_id):
        self.calls.append(("adsets", ad_account_id))
        await self._pause()
        return copy.deepcopy(self.adsets)

    async def get_ads(self, workspace_id, ad_account_id):
        self.calls.append(("ads", ad_account_id))
        await self._pause()
        return copy.deepcopy(self.ads)

    async def get_creatives(self, workspace_id, ad_account_id):
        self.calls.append(("creatives", ad_account_id))
        await self._pause()
        return copy.deepcopy(self.creatives)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_client() -> FakeFbAdsClient:
    return FakeFbAdsClient()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with short retry and prefetch timings."""
    return Settings(
        ACCOUNT_RETRY_ATTEMPTS=5,
        ACCOUNT_RETRY_INTERVAL_SECONDS=0.01,
        PREFETCH_IDLE_TIMEOUT_SECONDS=1.0,
        SENTRY_DSN=None,
    )


def make_params(**overrides: Any) -> ReportParams:
    """Report parameters over 1-2 Jan 2025 with every sample item selected."""
    data: Dict[str, Any] = {
        "workspace_id": "ws-1",
        "report_id": "rep-1",
        "load_date_from": date(2025, 1, 1),
        "load_date_to": date(2025, 1, 2),
        "attribution": "7d_click_1d_view",
        "account_ids": [ACCOUNT_ID],
        "selections_by_tab": {
            TabType.CAMPAIGNS: ["c1", "c2"],
            TabType.ADSETS: ["s1"],
            TabType.ADS: ["a1", "a2", "a3"],
            TabType.CREATIVES: ["cr1", "cr2"],
        },
        "account_name_map": {ACCOUNT_ID: "Main Account"},
    }
    data.update(overrides)
    return ReportParams(**data)


@pytest.fixture
def report_params():
    """Factory fixture: ``report_params(account_ids=[])`` etc."""
    return make_params
