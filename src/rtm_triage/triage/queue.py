"""Triage queue view: filtering, sorting, pagination and summary counts."""

import math
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from rtm_triage.core.exceptions import ValidationError
from rtm_triage.core.models import Alert, AlertStatus, Severity
from rtm_triage.scoring.risk import risk_level
from rtm_triage.triage.ranking import rank_alerts
from rtm_triage.triage.sla import (
    SLA_APPROACHING,
    SLA_BREACHED,
    SLA_STATUSES,
    SLACalculator,
)

UNCLAIMED = "unclaimed"
MAX_PAGE_SIZE = 200


class QueueFilters(BaseModel):
    """Optional filters over an organization's queue."""
    statuses: Optional[List[AlertStatus]] = None
    severities: Optional[List[Severity]] = None
    min_risk: Optional[float] = Field(None, ge=0.0, le=10.0)
    max_risk: Optional[float] = Field(None, ge=0.0, le=10.0)
    claimed_by: Optional[str] = None  # "unclaimed" or a clinician id
    sla_status: Optional[str] = None

    @field_validator("sla_status")
    @classmethod
    def validate_sla_status(cls, v):
        if v is not None and v not in SLA_STATUSES:
            raise ValueError(f"sla_status must be one of {list(SLA_STATUSES)}")
        return v


class QueueEntry(BaseModel):
    alert: Alert
    risk_level: str
    sla_status: str
    time_remaining_minutes: Optional[int] = None
    is_claimed: bool = False


class QueueSummary(BaseModel):
    total: int = 0
    pending: int = 0
    breached: int = 0
    approaching: int = 0
    unclaimed: int = 0


class TriageQueuePage(BaseModel):
    organization_id: str
    entries: List[QueueEntry] = Field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0
    sort_by: str = "priority_rank"
    summary: QueueSummary = Field(default_factory=QueueSummary)


def _by_priority(alerts: Sequence[Alert]) -> List[Alert]:
    # Stored rank first; unranked alerts follow in the order the ranker would give them
    ranked = sorted((a for a in alerts if a.priority_rank is not None), key=lambda a: a.priority_rank)
    unranked = rank_alerts([a for a in alerts if a.priority_rank is None])
    return ranked + unranked


def _by_deadline(alerts: Sequence[Alert]) -> List[Alert]:
    return sorted(
        alerts,
        key=lambda a: (
            a.sla_breach_time is None,
            a.sla_breach_time or a.triggered_at,
            a.alert_id,
        ),
    )


SORTERS: Dict[str, Callable[[Sequence[Alert]], List[Alert]]] = {
    "priority_rank": _by_priority,
    "risk_score": rank_alerts,
    "sla_breach_time": _by_deadline,
    "triggered_at": lambda alerts: sorted(alerts, key=lambda a: (a.triggered_at, a.alert_id)),
}


def build_triage_queue(
    organization_id: str,
    alerts: Sequence[Alert],
    sla: SLACalculator,
    filters: Optional[QueueFilters] = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "priority_rank",
    now: Optional[datetime] = None,
) -> TriageQueuePage:
    """Assemble one page of the triage queue from an organization's alerts.

    Status and severity filters apply to the stored record; claim, risk and
    SLA filters apply to the derived view. The summary counts cover every
    alert that passed the filters, not just the returned page.
    """
    if sort_by not in SORTERS:
        raise ValidationError(f"sort_by must be one of {sorted(SORTERS)}")
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    filters = filters or QueueFilters()
    now = now or sla.clock()

    selected = []
    for alert in alerts:
        if alert.organization_id != organization_id:
            continue
        if filters.statuses and alert.status not in filters.statuses:
            continue
        if filters.severities and alert.severity not in filters.severities:
            continue
        if filters.min_risk is not None and alert.risk_score < filters.min_risk:
            continue
        if filters.max_risk is not None and alert.risk_score > filters.max_risk:
            continue
        if filters.claimed_by == UNCLAIMED and alert.is_claimed:
            continue
        if filters.claimed_by not in (None, UNCLAIMED) and alert.claimed_by != filters.claimed_by:
            continue
        sla_status = sla.sla_status(alert, now)
        if filters.sla_status and sla_status != filters.sla_status:
            continue
        selected.append((alert, sla_status))

    status_of = {alert.alert_id: status for alert, status in selected}
    ordered = SORTERS[sort_by]([alert for alert, _ in selected])

    summary = QueueSummary(
        total=len(ordered),
        pending=sum(1 for a in ordered if a.status == AlertStatus.PENDING),
        breached=sum(1 for s in status_of.values() if s == SLA_BREACHED),
        approaching=sum(1 for s in status_of.values() if s == SLA_APPROACHING),
        unclaimed=sum(1 for a in ordered if not a.is_claimed),
    )

    start = (page - 1) * limit
    entries = [
        QueueEntry(
            alert=alert,
            risk_level=risk_level(alert.risk_score),
            sla_status=status_of[alert.alert_id],
            time_remaining_minutes=sla.time_remaining_minutes(alert, now),
            is_claimed=alert.is_claimed,
        )
        for alert in ordered[start:start + limit]
    ]

    return TriageQueuePage(
        organization_id=organization_id,
        entries=entries,
        page=page,
        limit=limit,
        total=len(ordered),
        total_pages=math.ceil(len(ordered) / limit) if ordered else 0,
        sort_by=sort_by,
        summary=summary,
    )
