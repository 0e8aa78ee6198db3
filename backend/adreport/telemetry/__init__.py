"""
Telemetry Module
================

Observability stack for the report engine.

Components:
- sentry.py: Error tracking for absorbed failures
- load_trace.py: Per-service load event collector

Usage:
    from adreport.telemetry import init_observability

    # Initialize on app startup
    init_observability()
"""

from adreport.telemetry.sentry import (
    init_sentry,
    capture_exception,
    capture_message,
)
from adreport.telemetry.load_trace import LoadEvent, LoadEventType, LoadTelemetry


def init_observability() -> dict:
    """
    Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization, e.g. {"sentry": False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "LoadEvent",
    "LoadEventType",
    "LoadTelemetry",
]
