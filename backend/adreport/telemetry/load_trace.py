"""
Report Load Telemetry
=====================

Structured observability for report cache loads.

WHY THIS FILE EXISTS
--------------------
Loading a report fans out into four tabs times N ad accounts of network
calls. When numbers look wrong on the dashboard we need to know:
- Which accounts failed and why
- How many insight rows were dropped because they could not be mapped
- Which metric keys the platform actually returned
- How long each tab took

This collector is injected into the loader and the cache service instead of
module-level debug flags, so every service instance owns its own trace.

USAGE
-----
    telemetry = LoadTelemetry()
    with telemetry.track_stage("tab:campaigns"):
        data = await loader.load_tab(...)
    telemetry.summary()

RELATED FILES
-------------
- adreport/services/tab_loader.py: emits account/insight events
- adreport/services/report_cache_service.py: emits load lifecycle events
"""

from __future__ import annotations

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Generator, Iterable, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class LoadEventType(Enum):
    """Types of load telemetry events."""
    LOAD_STARTED = "load.started"
    LOAD_COMPLETED = "load.completed"
    LOAD_FAILED = "load.failed"
    LOAD_DISCARDED = "load.discarded"
    CACHE_RESTORED = "cache.restored"
    RETRY_EXHAUSTED = "retry.exhausted"
    TAB_LOADED = "tab.loaded"
    ACCOUNT_FAILED = "account.failed"
    INSIGHT_SKIPPED = "insight.skipped"
    METRIC_KEYS_SAMPLED = "metric_keys.sampled"
    PREFETCH_COMPLETED = "prefetch.completed"
    STAGE_COMPLETED = "stage.completed"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class LoadEvent:
    """
    Single telemetry event.

    PARAMETERS:
        event_type: Category of event
        timestamp: When it happened (ISO format)
        stage: Optional stage name (tab name, account id, ...)
        duration_ms: How long the operation took
        success: Whether the operation succeeded
        data: Additional structured data

    LOGGING FORMAT:
        event=tab.loaded | stage=campaigns | duration_ms=12.40
    """
    event_type: LoadEventType
    timestamp: str
    stage: Optional[str] = None
    duration_ms: Optional[float] = None
    success: bool = True
    data: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "stage": self.stage,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "data": self.data,
        }

    def to_log_line(self) -> str:
        """Format as structured log line."""
        parts = [f"event={self.event_type.value}"]

        if self.stage:
            parts.append(f"stage={self.stage}")

        if self.duration_ms is not None:
            parts.append(f"duration_ms={self.duration_ms:.2f}")

        if not self.success:
            parts.append("success=false")

        for key in ["account_id", "tab", "reason", "count"]:
            if key in self.data:
                parts.append(f"{key}={self.data[key]}")

        return " | ".join(parts)


# =============================================================================
# COLLECTOR
# =============================================================================

class LoadTelemetry:
    """
    Collector for report load events.

    WHAT: Keeps a bounded in-memory buffer of events and mirrors each one to
    the standard logger.

    WHY: Tests and the HTTP state endpoint can inspect what happened during
    the last loads without scraping logs.

    PARAMETERS:
        max_events: Buffer size; oldest events are dropped first
        log_level: Level used when mirroring events to the logger
    """

    def __init__(self, max_events: int = 500, log_level: int = logging.DEBUG):
        self._events: Deque[LoadEvent] = deque(maxlen=max_events)
        self._log_level = log_level
        self._metric_keys_sampled = False

    def record(
        self,
        event_type: LoadEventType,
        stage: Optional[str] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        **data: Any,
    ) -> LoadEvent:
        event = LoadEvent(
            event_type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            stage=stage,
            duration_ms=duration_ms,
            success=success,
            data=data,
        )
        self._events.append(event)
        level = self._log_level if success else logging.WARNING
        logger.log(level, f"[LOAD_TRACE] {event.to_log_line()}")
        return event

    @contextmanager
    def track_stage(self, stage: str) -> Generator[None, None, None]:
        """
        Context manager timing one stage of a load.

        USAGE:
            with telemetry.track_stage("tab:creatives"):
                await loader.load_tab(...)
        """
        started = time.perf_counter()
        try:
            yield
        except BaseException as e:
            self.record(
                LoadEventType.STAGE_COMPLETED,
                stage=stage,
                duration_ms=(time.perf_counter() - started) * 1000,
                success=False,
                reason=type(e).__name__,
            )
            raise
        else:
            self.record(
                LoadEventType.STAGE_COMPLETED,
                stage=stage,
                duration_ms=(time.perf_counter() - started) * 1000,
            )

    def sample_metric_keys(self, tab: str, keys: Iterable[str]) -> None:
        """Record the observed metric keys once per collector."""
        if self._metric_keys_sampled:
            return
        self._metric_keys_sampled = True
        all_keys = sorted(keys)
        self.record(
            LoadEventType.METRIC_KEYS_SAMPLED,
            stage=tab,
            count=len(all_keys),
            actions_keys=[k for k in all_keys if k.startswith("actions_")],
            results_keys=[k for k in all_keys if k.startswith("results_")],
            sample=all_keys[:30],
        )

    @property
    def events(self) -> List[LoadEvent]:
        return list(self._events)

    def events_of(self, event_type: LoadEventType) -> List[LoadEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def summary(self) -> Dict[str, int]:
        """Count of events per type."""
        counts: Dict[str, int] = {}
        for event in self._events:
            counts[event.event_type.value] = counts.get(event.event_type.value, 0) + 1
        return counts

    def clear(self) -> None:
        self._events.clear()
        self._metric_keys_sampled = False
