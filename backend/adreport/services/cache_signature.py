"""
Cache Signature and Multi-Window Cache
======================================

WHAT: A signature captures every parameter that changes which data must be
fetched: report, load window, attribution, accounts and per-tab selections.
Display dates are deliberately absent: narrowing the visible window only
re-slices data already loaded.

The multi-window cache keeps every successfully loaded ``ReportCache`` keyed
by its serialized signature, so switching back to a previous window restores
instantly without a network call.

REFERENCES:
    - adreport/services/report_cache_service.py: signature gate and restore
    - adreport/services/prefetch.py: writes Period B into the current entry
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

from adreport.schemas import ALL_TABS, ReportParams, TabType
from adreport.services.tab_loader import TabData

logger = logging.getLogger(__name__)

TabMap = Dict[TabType, Optional[TabData]]


def empty_tab_map() -> TabMap:
    return {tab: None for tab in ALL_TABS}


@dataclass(frozen=True)
class CacheSignature:
    report_id: str
    load_date_from: str
    load_date_to: str
    attribution: str
    account_ids: Tuple[str, ...]
    selections_by_tab: Tuple[Tuple[str, Tuple[str, ...]], ...]

    def serialize(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["account_ids"] = list(self.account_ids)
        data["selections_by_tab"] = {tab: list(ids) for tab, ids in self.selections_by_tab}
        return data


@dataclass
class ReportCache:
    """Loaded data valid for one signature."""
    tabs: TabMap = field(default_factory=empty_tab_map)
    period_b: Optional[TabMap] = None
    signature: Optional[CacheSignature] = None
    period_b_signature: Optional[Tuple[str, str]] = None


def compute_signature(params: ReportParams) -> CacheSignature:
    """Signature of the data ``params`` requires; ids are sorted so order never matters."""
    return CacheSignature(
        report_id=params.report_id or "",
        load_date_from=params.load_date_from.isoformat(),
        load_date_to=params.load_date_to.isoformat(),
        attribution=params.attribution or "",
        account_ids=tuple(sorted(params.account_ids)),
        selections_by_tab=tuple(
            (tab.value, tuple(sorted(params.selections_for(tab))))
            for tab in ALL_TABS
        ),
    )


def signatures_equal(a: Optional[CacheSignature], b: Optional[CacheSignature]) -> bool:
    """Equality by serialized form; a missing signature never equals anything."""
    if a is None or b is None:
        return False
    return a.serialize() == b.serialize()


class MultiWindowCache:
    """
    Every loaded window, keyed by serialized signature.

    Entries are only added or overwritten (last writer wins), never evicted;
    the cache lives as long as its service.
    """

    def __init__(self):
        self._entries: Dict[str, ReportCache] = {}

    def lookup(self, signature: Optional[CacheSignature]) -> Optional[ReportCache]:
        if signature is None:
            return None
        return self._entries.get(signature.serialize())

    def store(self, signature: CacheSignature, cache: ReportCache) -> None:
        self._entries[signature.serialize()] = cache
        logger.debug(f"[REPORT_CACHE] Stored window {signature.load_date_from}..{signature.load_date_to} ({len(self._entries)} cached)")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signature: CacheSignature) -> bool:
        return signature.serialize() in self._entries
