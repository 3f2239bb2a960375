"""Triage components: SLA tracking, priority ranking, lifecycle and queue view."""

from .lifecycle import AlertLifecycleManager
from .queue import QueueFilters, TriageQueuePage, build_triage_queue
from .ranking import PriorityRanker, assign_ranks, rank_alerts
from .sla import SLACalculator

__all__ = [
    "AlertLifecycleManager",
    "PriorityRanker",
    "QueueFilters",
    "SLACalculator",
    "TriageQueuePage",
    "assign_ranks",
    "build_triage_queue",
    "rank_alerts",
]
