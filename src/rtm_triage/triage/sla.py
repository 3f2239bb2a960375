"""
SLA tracking for clinical alerts.

The response deadline of an alert is fixed once, at creation, from its
severity and trigger time. Breach state is always derived from the
deadline and the current time, never stored.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from rtm_triage.core.config.manager import SLAConfig
from rtm_triage.core.models import SLA_TRACKED_STATUSES, Alert, Severity, utcnow

SLA_BREACHED = "breached"
SLA_APPROACHING = "approaching"
SLA_OK = "ok"
SLA_NOT_APPLICABLE = "n/a"

SLA_STATUSES = (SLA_BREACHED, SLA_APPROACHING, SLA_OK, SLA_NOT_APPLICABLE)


class SLACalculator:
    """Derives SLA deadlines, breach state and escalation timing."""

    def __init__(
        self,
        config: Optional[SLAConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or SLAConfig()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def window(self, severity: Severity) -> timedelta:
        return timedelta(minutes=self.config.windows_minutes[Severity(severity).value])

    def sla_breach_time(self, severity: Severity, triggered_at: datetime) -> datetime:
        """Deadline for a first response: trigger time plus the severity window."""
        return triggered_at + self.window(severity)

    def _tracked(self, alert: Alert) -> bool:
        return alert.status in SLA_TRACKED_STATUSES and alert.sla_breach_time is not None

    def is_breached(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return self._tracked(alert) and now > alert.sla_breach_time

    def time_remaining_minutes(
        self, alert: Alert, now: Optional[datetime] = None
    ) -> Optional[int]:
        """Whole minutes until the deadline, negative once breached."""
        if not self._tracked(alert):
            return None
        now = now or self.clock()
        remaining = (alert.sla_breach_time - now).total_seconds() / 60.0
        return math.floor(remaining)

    def sla_status(self, alert: Alert, now: Optional[datetime] = None) -> str:
        if not self._tracked(alert):
            return SLA_NOT_APPLICABLE
        now = now or self.clock()
        if now > alert.sla_breach_time:
            return SLA_BREACHED
        buffer = timedelta(minutes=self.config.warning_buffer_minutes)
        if alert.sla_breach_time - now <= buffer:
            return SLA_APPROACHING
        return SLA_OK

    def minutes_since_breach(self, alert: Alert, now: Optional[datetime] = None) -> int:
        if not self.is_breached(alert, now):
            return 0
        now = now or self.clock()
        return int((now - alert.sla_breach_time).total_seconds() // 60)

    def escalation_due(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        """True when a breached alert has waited past its escalation delay.

        Severities without a configured delay never escalate, and an alert
        escalates at most once.
        """
        if alert.is_escalated:
            return False
        delay = self.config.escalation_delay_minutes.get(alert.severity.value)
        if delay is None:
            return False
        now = now or self.clock()
        if not self.is_breached(alert, now):
            return False
        return now - alert.sla_breach_time >= timedelta(minutes=delay)
