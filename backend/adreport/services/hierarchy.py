"""
Account hierarchy resolution.

WHAT: Builds, per ad account, the lookups that stitch every report item onto
its full account > campaign > adset > ad > creative chain:
- campaign and adset name maps (keyed by platform id and internal id)
- ad -> creative and creative -> ad maps
- item metadata (name, subtitle, status, thumbnail) for the active tab
- a denormalized ancestor chain per item

WHY: Every row must support "group/filter by parent" without walking a tree
at view time, and creative insights are reported against the owning ad.

REFERENCES:
    - adreport/services/tab_loader.py: runs one resolver per (tab, account)
    - adreport/services/data_view.py: consumes ParentInfo for parent filters
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from adreport.schemas import ParentDisplay, TabType
from adreport.services.fb_ads_client import FbAdsClientError

logger = logging.getLogger(__name__)


STATUS_MAP: Dict[str, str] = {
    "ACTIVE": "Active",
    "PAUSED": "Paused",
    "PENDING_REVIEW": "Pending Review",
    "DISAPPROVED": "Disapproved",
    "ARCHIVED": "Archived",
    "COMPLETED": "Completed",
    "DELETED": "Deleted",
    "IN_PROCESS": "In Process",
    "WITH_ISSUES": "With Issues",
    "CAMPAIGN_PAUSED": "Campaign Paused",
    "ADSET_PAUSED": "Adset Paused",
    "PENDING_BILLING_INFO": "Pending Billing",
    "PREAPPROVED": "Preapproved",
}

CREATIVE_STATUS = "Active"


def normalize_status(status: Optional[str]) -> str:
    """Map a platform status enum to its display label; unknown values pass through."""
    if not status:
        return "Unknown"
    return STATUS_MAP.get(status, status)


@dataclass
class ItemMetadata:
    name: Optional[str]
    status: str
    subtitle: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class HierarchyEntry:
    """Denormalized ancestor chain of one item."""
    account: Optional[str] = None
    account_name: Optional[str] = None
    campaign: Optional[str] = None
    campaign_name: Optional[str] = None
    adset: Optional[str] = None
    adset_name: Optional[str] = None
    ad: Optional[str] = None
    ad_name: Optional[str] = None


@dataclass
class AccountHierarchy:
    """Everything the loader needs from one account's object lists."""
    items_metadata: Dict[str, ItemMetadata] = field(default_factory=dict)
    hierarchy: Dict[str, HierarchyEntry] = field(default_factory=dict)
    campaign_names: Dict[str, str] = field(default_factory=dict)
    adset_names: Dict[str, str] = field(default_factory=dict)
    ad_to_creative: Dict[str, str] = field(default_factory=dict)
    creative_to_ad: Dict[str, str] = field(default_factory=dict)


class HierarchyResolver:
    """Resolves object lists of one account into metadata and hierarchy.

    Campaigns are always needed (names for every chain); adsets for the
    adset/ad/creative tabs; ads for the ad/creative tabs; creatives only for
    the creative tab. Each list call fails independently: the failure is
    logged and the corresponding map stays empty.
    """

    def __init__(self, client: Any, workspace_id: str, account_name_map: Optional[Mapping[str, str]] = None):
        self.client = client
        self.workspace_id = workspace_id
        self.account_name_map = dict(account_name_map or {})

    def account_name(self, account_id: str) -> str:
        return self.account_name_map.get(account_id) or account_id

    async def _fetch(
        self,
        kind: str,
        account_id: str,
        fetcher: Callable[[str, str], Awaitable[List[Dict[str, Any]]]],
    ) -> List[Dict[str, Any]]:
        try:
            objects = await fetcher(self.workspace_id, account_id)
        except FbAdsClientError as e:
            logger.error(f"[HIERARCHY] Error fetching {kind} for {account_id}: {e}")
            return []
        return objects if isinstance(objects, list) else []

    async def resolve(self, tab: TabType, account_id: str) -> AccountHierarchy:
        needs_adsets = tab in (TabType.ADSETS, TabType.ADS, TabType.CREATIVES)
        needs_ads = tab in (TabType.ADS, TabType.CREATIVES)

        needs_creatives = tab is TabType.CREATIVES

        async def nothing() -> List[Dict[str, Any]]:
            return []

        campaigns, adsets, ads, creatives = await asyncio.gather(
            self._fetch("campaigns", account_id, self.client.get_campaigns),
            self._fetch("adsets", account_id, self.client.get_adsets) if needs_adsets else nothing(),
            self._fetch("ads", account_id, self.client.get_ads) if needs_ads else nothing(),
            self._fetch("creatives", account_id, self.client.get_creatives) if needs_creatives else nothing(),
        )

        # Maps are applied parent first once every list is in
        resolved = AccountHierarchy()
        self._apply_campaigns(resolved, tab, account_id, campaigns)
        self._apply_adsets(resolved, tab, account_id, adsets)
        ad_chains = self._apply_ads(resolved, tab, account_id, ads)
        if needs_creatives:
            self._apply_creatives(resolved, account_id, creatives, ad_chains)

        logger.debug(
            f"[HIERARCHY] {tab.value}/{account_id}: {len(resolved.items_metadata)} items, "
            f"{len(resolved.campaign_names)} campaign names, {len(resolved.ad_to_creative)} ad->creative links"
        )
        return resolved

    def _apply_campaigns(
        self, resolved: AccountHierarchy, tab: TabType, account_id: str, campaigns: List[Dict[str, Any]]
    ) -> None:
        for c in campaigns:
            fb_id = c.get("campaignId") or c.get("id")
            if not fb_id:
                continue
            name = c.get("name") or fb_id
            resolved.campaign_names[fb_id] = name
            if c.get("id") and c["id"] != fb_id:
                resolved.campaign_names[c["id"]] = name

            if tab is TabType.CAMPAIGNS:
                resolved.items_metadata[fb_id] = ItemMetadata(
                    name=c.get("name"),
                    status=normalize_status(c.get("status") or c.get("effectiveStatus")),
                    subtitle=fb_id,
                )
                resolved.hierarchy[fb_id] = HierarchyEntry(
                    account=account_id,
                    account_name=self.account_name(account_id),
                    campaign=fb_id,
                    campaign_name=name,
                )

    def _apply_adsets(
        self, resolved: AccountHierarchy, tab: TabType, account_id: str, adsets: List[Dict[str, Any]]
    ) -> None:
        for a in adsets:
            fb_id = a.get("adsetId") or a.get("id")
            if not fb_id:
                continue
            campaign_id = a.get("campaignId") or (a.get("campaign") or {}).get("campaignId")
            name = a.get("name") or fb_id
            resolved.adset_names[fb_id] = name
            if a.get("id") and a["id"] != fb_id:
                resolved.adset_names[a["id"]] = name

            if tab is TabType.ADSETS:
                resolved.items_metadata[fb_id] = ItemMetadata(
                    name=a.get("name"),
                    status=normalize_status(a.get("status") or a.get("effectiveStatus")),
                    subtitle=fb_id,
                )
                resolved.hierarchy[fb_id] = HierarchyEntry(
                    account=account_id,
                    account_name=self.account_name(account_id),
                    campaign=campaign_id,
                    campaign_name=resolved.campaign_names.get(campaign_id, campaign_id),
                    adset=fb_id,
                    adset_name=name,
                )

    def _apply_ads(
        self, resolved: AccountHierarchy, tab: TabType, account_id: str, ads: List[Dict[str, Any]]
    ) -> Dict[str, HierarchyEntry]:
        chains: Dict[str, HierarchyEntry] = {}
        for a in ads:
            fb_id = a.get("adId") or a.get("id")
            if not fb_id:
                continue
            parent = a.get("adset") or {}
            campaign_id = a.get("campaignId") or parent.get("campaignId")
            adset_id = a.get("adsetId") or parent.get("adsetId")
            creative_id = a.get("creativeId")

            if creative_id:
                resolved.ad_to_creative[fb_id] = creative_id
                resolved.creative_to_ad[creative_id] = fb_id

            chains[fb_id] = HierarchyEntry(
                account=account_id,
                account_name=self.account_name(account_id),
                campaign=campaign_id,
                campaign_name=resolved.campaign_names.get(campaign_id, campaign_id),
                adset=adset_id,
                adset_name=resolved.adset_names.get(adset_id, adset_id),
                ad=fb_id,
                ad_name=a.get("name") or fb_id,
            )

            if tab is TabType.ADS:
                resolved.items_metadata[fb_id] = ItemMetadata(
                    name=a.get("name"),
                    status=normalize_status(a.get("status") or a.get("effectiveStatus")),
                    subtitle=fb_id,
                )
                resolved.hierarchy[fb_id] = chains[fb_id]
        return chains

    def _apply_creatives(
        self,
        resolved: AccountHierarchy,
        account_id: str,
        creatives: List[Dict[str, Any]],
        ad_chains: Dict[str, HierarchyEntry],
    ) -> None:
        for c in creatives:
            fb_id = c.get("creativeId") or c.get("id")
            if not fb_id:
                continue
            ad_id = c.get("adId") or resolved.creative_to_ad.get(fb_id)

            resolved.items_metadata[fb_id] = ItemMetadata(
                name=c.get("name") or c.get("title") or fb_id,
                status=CREATIVE_STATUS,
                subtitle=fb_id,
                thumbnail=c.get("thumbnailUrl") or c.get("imageUrl"),
            )

            parent = ad_chains.get(ad_id) if ad_id else None
            if parent is not None:
                resolved.hierarchy[fb_id] = HierarchyEntry(
                    account=account_id,
                    account_name=self.account_name(account_id),
                    campaign=parent.campaign,
                    campaign_name=parent.campaign_name,
                    adset=parent.adset,
                    adset_name=parent.adset_name,
                    ad=ad_id,
                    ad_name=parent.ad_name or ad_id,
                )
            else:
                resolved.hierarchy[fb_id] = HierarchyEntry(
                    account=account_id,
                    account_name=self.account_name(account_id),
                )


# =============================================================================
# PARENT INFO
# =============================================================================

@dataclass(frozen=True)
class ParentInfo:
    label: str
    value: str
    id: str


_PARENT_FIELDS = {
    ParentDisplay.ACCOUNT: ("Account", "account", "account_name"),
    ParentDisplay.CAMPAIGN: ("Campaign", "campaign", "campaign_name"),
    ParentDisplay.ADSET: ("Ad Set", "adset", "adset_name"),
    ParentDisplay.AD: ("Ad", "ad", "ad_name"),
}


def build_parent_info_getter(
    hierarchy_data: Mapping[str, HierarchyEntry],
    parent_display: ParentDisplay,
) -> Callable[[str], Optional[ParentInfo]]:
    """Return ``item_id -> ParentInfo`` for the chosen parent level.

    The value reads ``"Name (id)"`` when a distinct name is known, else the id.
    Items without an ancestor at that level yield None.
    """
    fields = _PARENT_FIELDS.get(parent_display)

    def get_parent_info(item_id: str) -> Optional[ParentInfo]:
        entry = hierarchy_data.get(item_id)
        if entry is None or fields is None:
            return None
        label, id_attr, name_attr = fields
        parent_id = getattr(entry, id_attr)
        if not parent_id:
            return None
        name = getattr(entry, name_attr)
        value = f"{name} ({parent_id})" if name and name != parent_id else parent_id
        return ParentInfo(label=label, value=value, id=parent_id)

    return get_parent_info
