"""Dashboard API client for Facebook Ads report data.

WHAT:
    Async wrapper over the dashboard backend's Facebook endpoints with:
    - Insights at campaign / adset / ad level per ad account
    - Object lists (campaigns, adsets, ads) fetched in parallel chunks
    - Creatives and available attribution windows
    - Typed errors and retries for transient failures

WHY:
    The report loader fans out four tabs times N accounts of requests. Each
    call must fail independently with an error the loader can log and absorb,
    and transient 429/5xx responses should not blank a whole account.

REFERENCES:
    - adreport/services/tab_loader.py: the only consumer
    - Endpoints: /facebook-marketing/insights/{accountId},
      /facebook/ads/{campaigns|adsets|ads}/{accountId}, /facebook/ads/creatives
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from adreport.deps import Settings

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_LIMIT = 100
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class FbAdsClientError(Exception):
    """Base exception for dashboard API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FbAdsAuthenticationError(FbAdsClientError):
    """Raised when the session is not authenticated (401)."""
    pass


class FbAdsPermissionError(FbAdsClientError):
    """Raised when the workspace may not read this account (403)."""
    pass


class FbAdsNotFoundError(FbAdsClientError):
    """Raised when the account or endpoint does not exist (404)."""
    pass


class FbAdsRateLimitError(FbAdsClientError):
    """Raised when rate limiting persists after all retries (429)."""
    pass


_STATUS_ERRORS = {
    401: FbAdsAuthenticationError,
    403: FbAdsPermissionError,
    404: FbAdsNotFoundError,
    429: FbAdsRateLimitError,
}


def _error_for(response: httpx.Response) -> FbAdsClientError:
    error_cls = _STATUS_ERRORS.get(response.status_code, FbAdsClientError)
    try:
        detail = response.json().get("message")
    except (ValueError, AttributeError):
        detail = None
    message = detail or f"HTTP {response.status_code} for {response.request.url.path}"
    return error_cls(message, status_code=response.status_code)


class FbAdsClient:
    """Async client for the dashboard's Facebook Ads endpoints.

    WHAT: Handles all communication with the dashboard backend for report loads
    WHY: Centralized API access with retries, chunked pagination, and typed errors

    Usage:
        client = FbAdsClient.from_settings(get_settings())
        response = await client.get_insights("ws-1", "act_1", "campaign", "2025-01-01", "2025-01-31")
        campaigns = await client.get_campaigns("ws-1", "act_1")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        max_retries: int = 3,
        chunk_limit: int = DEFAULT_CHUNK_LIMIT,
        retry_backoff: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Dashboard API root (e.g., "https://app.example.com/api/v1")
            timeout: Per-request timeout in seconds
            max_retries: Attempts for transient errors (429, 5xx, network)
            chunk_limit: Page size for chunked object lists
            retry_backoff: Base delay in seconds, multiplied by the attempt number
            http_client: Optional shared httpx client (its base_url is used as-is)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.chunk_limit = chunk_limit
        self.retry_backoff = retry_backoff
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "FbAdsClient":
        return cls(
            base_url=settings.API_BASE_URL,
            timeout=settings.API_TIMEOUT_SECONDS,
            max_retries=settings.API_MAX_RETRIES,
            chunk_limit=settings.CHUNK_LIMIT,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"x-request-from": "internal"},
        ) as client:
            yield client

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON document with retry logic.

        Raises:
            FbAdsClientError: (or a subclass) on failure after all retries
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        last_error: Optional[FbAdsClientError] = None

        for attempt in range(self.max_retries):
            try:
                async with self._session() as client:
                    response = await client.get(path, params=query)
            except httpx.RequestError as e:
                last_error = FbAdsClientError(f"Request error for {path}: {e}")
                logger.warning(
                    f"[FB_ADS_CLIENT] Request error: {e} (attempt {attempt + 1}/{self.max_retries})"
                )
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise FbAdsClientError(
                            f"Invalid JSON from {path}: {e}", status_code=response.status_code
                        ) from e

                last_error = _error_for(response)
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise last_error

                logger.warning(
                    f"[FB_ADS_CLIENT] HTTP {response.status_code} for {path} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_backoff * (attempt + 1))

        raise last_error or FbAdsClientError(f"Failed after {self.max_retries} attempts: {path}")

    # =========================================================================
    # PAGINATION
    # =========================================================================

    async def fetch_all_chunks(
        self,
        path: str,
        workspace_id: str,
        data_key: str,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch every page of an object list.

        WHAT: The first page reports ``total``; remaining pages are requested
        concurrently and concatenated in offset order.
        WHY: Large accounts have thousands of ads; sequential paging dominated load time.
        """
        limit = self.chunk_limit
        base_params = {"workspaceId": workspace_id, "limit": limit, **(extra_params or {})}

        first = await self._get(path, {**base_params, "offset": 0})
        items = list(first.get(data_key) or [])
        total = first.get("total") or len(items)

        if not first.get("hasMore") or total <= limit:
            return items

        remaining_chunks = -(-(total - limit) // limit)
        pages = await asyncio.gather(*[
            self._get(path, {**base_params, "offset": (i + 1) * limit})
            for i in range(remaining_chunks)
        ])
        for page in pages:
            items.extend(page.get(data_key) or [])

        logger.debug(f"[FB_ADS_CLIENT] Fetched {len(items)} {data_key} in {remaining_chunks + 1} chunks")
        return items

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def get_insights(
        self,
        workspace_id: str,
        ad_account_id: str,
        level: str,
        date_from: str,
        date_to: str,
        attribution_setting: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Raw daily insights for one account at one object level.

        Returns:
            ``{"success": bool, "insights": [...]}``
        """
        if not ad_account_id:
            raise FbAdsClientError("ad_account_id is required for fetching insights")

        data = await self._get(
            f"/facebook-marketing/insights/{ad_account_id}",
            {
                "workspaceId": workspace_id,
                "dateFrom": date_from,
                "dateTo": date_to,
                "level": level,
                "attributionSetting": attribution_setting,
            },
        )
        return {
            "success": bool(data.get("success", True)),
            "insights": list(data.get("insights") or []),
        }

    async def get_campaigns(self, workspace_id: str, ad_account_id: str) -> List[Dict[str, Any]]:
        if not ad_account_id:
            logger.warning("[FB_ADS_CLIENT] get_campaigns: no ad account id provided")
            return []
        return await self.fetch_all_chunks(f"/facebook/ads/campaigns/{ad_account_id}", workspace_id, "campaigns")

    async def get_adsets(self, workspace_id: str, ad_account_id: str) -> List[Dict[str, Any]]:
        if not ad_account_id:
            logger.warning("[FB_ADS_CLIENT] get_adsets: no ad account id provided")
            return []
        return await self.fetch_all_chunks(f"/facebook/ads/adsets/{ad_account_id}", workspace_id, "adsets")

    async def get_ads(self, workspace_id: str, ad_account_id: str) -> List[Dict[str, Any]]:
        if not ad_account_id:
            logger.warning("[FB_ADS_CLIENT] get_ads: no ad account id provided")
            return []
        return await self.fetch_all_chunks(f"/facebook/ads/ads/{ad_account_id}", workspace_id, "ads")

    async def get_creatives(self, workspace_id: str, ad_account_id: str) -> List[Dict[str, Any]]:
        data = await self._get(
            "/facebook/ads/creatives",
            {"workspaceId": workspace_id, "adAccountId": ad_account_id},
        )
        if isinstance(data, dict):
            return list(data.get("creatives") or [])
        return list(data or [])

    async def get_attribution_settings(self, ad_account_id: str) -> Dict[str, Any]:
        """Attribution windows present in the account's stored insights."""
        if not ad_account_id:
            return {"success": False, "attributionSettings": []}
        return await self._get(f"/facebook-marketing/attribution-settings/{ad_account_id}")
