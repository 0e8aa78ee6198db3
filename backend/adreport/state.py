"""
Application State
=================

Report sessions that persist across HTTP requests.

WHY this exists:
- A ReportCacheService holds loaded windows in memory; creating one per
  request would throw the multi-window cache away
- Each open report (browser tab) gets its own session id and service

WHERE it's used:
- adreport/routers/report_data.py: resolves sessions per request
- adreport/main.py: closes every session on shutdown

Nothing is persisted: a restart starts with an empty registry.
"""

import logging
from typing import Any, Callable, Dict, Optional

from adreport.deps import Settings, get_settings
from adreport.services.fb_ads_client import FbAdsClient
from adreport.services.report_cache_service import ReportCacheService
from adreport.telemetry.load_trace import LoadTelemetry

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Session id -> ReportCacheService, created on first use."""

    def __init__(
        self,
        client_factory: Optional[Callable[[], Any]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._client_factory = client_factory or (lambda: FbAdsClient.from_settings(self.settings))
        self._sessions: Dict[str, ReportCacheService] = {}

    def get(self, session_id: str) -> Optional[ReportCacheService]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> ReportCacheService:
        service = self._sessions.get(session_id)
        if service is None:
            service = ReportCacheService(
                self._client_factory(),
                settings=self.settings,
                telemetry=LoadTelemetry(),
            )
            self._sessions[session_id] = service
            logger.info(f"[STATE] Created report session {session_id} ({len(self._sessions)} open)")
        return service

    def close(self, session_id: str) -> bool:
        service = self._sessions.pop(session_id, None)
        if service is None:
            return False
        service.close()
        logger.info(f"[STATE] Closed report session {session_id}")
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)


# Singleton shared by all requests for the lifetime of the app
_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """FastAPI dependency; tests override it with a registry using a fake client."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
