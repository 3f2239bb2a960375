"""API routers for RTM-Triage."""

from . import alerts, health, triage

__all__ = [
    "alerts",
    "health",
    "triage",
]
