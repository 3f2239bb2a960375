"""
Triage engine for RTM-Triage.

This module wires signal extraction, risk scoring, SLA tracking, priority
ranking and the alert lifecycle to storage, and exposes the operations
the API, CLI and scheduler call.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from rtm_triage.audit.logger import AuditLogger
from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.core.exceptions import (
    AlertNotFoundError,
    AlertTerminalError,
    ConflictError,
    StorageError,
    ValidationError,
)
from rtm_triage.core.models import (
    SLA_TRACKED_STATUSES,
    TERMINAL_STATUSES,
    Alert,
    AlertCreate,
    AlertStatus,
    BulkAcknowledgeResult,
    MaintenanceReport,
    RiskScoreResult,
    Severity,
    utcnow,
)
from rtm_triage.scoring.risk import RiskScorer
from rtm_triage.scoring.signals import SignalExtractor
from rtm_triage.storage.base import AlertStore, ObservationSource
from rtm_triage.storage.redis import RedisQueueCache
from rtm_triage.triage.lifecycle import AlertLifecycleManager
from rtm_triage.triage.queue import QueueFilters, TriageQueuePage, build_triage_queue
from rtm_triage.triage.ranking import PriorityRanker
from rtm_triage.triage.sla import SLACalculator

ACTIVE_STATUSES = frozenset(s for s in AlertStatus if s not in TERMINAL_STATUSES)


class TriageEngine:
    """Facade over the scoring, SLA, ranking and lifecycle components."""

    def __init__(
        self,
        store: AlertStore,
        source: ObservationSource,
        config_manager: Optional[ConfigManager] = None,
        audit_logger: Optional[AuditLogger] = None,
        queue_cache: Optional[RedisQueueCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config_manager or ConfigManager(config_data={})
        self.audit_logger = audit_logger
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        scoring_config = self.config.get_scoring_config()
        self.ranking_config = self.config.get_ranking_config()
        self.scorer = RiskScorer(scoring_config)
        self.signals = SignalExtractor(
            source, self.config.get_signal_config(), scoring_config, clock
        )
        self.sla = SLACalculator(self.config.get_sla_config(), clock)
        self.ranker = PriorityRanker(store, self.ranking_config, audit_logger, queue_cache)
        self.lifecycle = AlertLifecycleManager(
            store, self.config.get_lifecycle_config(), audit_logger, clock
        )

    # Scoring and SLA

    async def compute_risk_score(self, alert: Alert) -> RiskScoreResult:
        """Extract the alert's signals and score it. Never fails on missing data."""
        observations, adherence = await self.signals.extract_signals(
            alert.patient_id, alert.metric_id
        )
        metric = await self.signals.get_metric_definition(alert.metric_id)
        result = self.scorer.compute_risk_score(alert, observations, adherence, metric)
        if result.missing_signals:
            self.logger.debug(
                f"Alert {alert.alert_id} scored with missing signals: {result.missing_signals}"
            )
        return result

    def sla_breach_time(self, severity: Severity, triggered_at: datetime) -> datetime:
        return self.sla.sla_breach_time(severity, triggered_at)

    @staticmethod
    def _components(result: RiskScoreResult) -> Dict:
        return {**result.components, "missing_signals": list(result.missing_signals)}

    async def get_alert(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def register_alert(self, payload: AlertCreate) -> Alert:
        """Score, fix the SLA deadline, persist and rank a newly triggered alert.

        Args:
            payload: Alert submitted by the rule engine

        Returns:
            The stored alert, ranked within its organization when the ranking
            write succeeded
        """
        if payload.alert_id and await self.store.get_alert(payload.alert_id):
            raise ConflictError(f"Alert {payload.alert_id} already exists", payload.alert_id)

        triggered_at = payload.triggered_at or self.clock()
        if triggered_at.tzinfo is None:
            triggered_at = triggered_at.replace(tzinfo=timezone.utc)

        alert = Alert(
            alert_id=payload.alert_id or str(uuid4()),
            organization_id=payload.organization_id,
            patient_id=payload.patient_id,
            rule_id=payload.rule_id,
            metric_id=payload.metric_id,
            severity=payload.severity,
            triggered_at=triggered_at,
            sla_breach_time=self.sla.sla_breach_time(payload.severity, triggered_at),
            message=payload.message,
            context=payload.context,
        )
        result = await self.compute_risk_score(alert)
        alert.risk_score = result.risk_score
        alert.risk_components = self._components(result)

        created = await self.store.create_alert(alert)
        if self.audit_logger:
            self.audit_logger.log_alert_registered(created)
        self.logger.info(
            f"Registered alert {created.alert_id} ({created.severity.value}) "
            f"with risk {created.risk_score}"
        )

        await self._refresh_ranks(created.organization_id)
        return await self.get_alert(created.alert_id)

    async def _rescore(self, alert: Alert) -> Alert:
        if alert.is_terminal:
            raise AlertTerminalError(alert.alert_id, "rescore", alert.status.value)
        result = await self.compute_risk_score(alert)
        updated = await self.store.update_risk_score(
            alert.alert_id, result.risk_score, self._components(result)
        )
        if updated is None:
            current = await self.get_alert(alert.alert_id)
            raise AlertTerminalError(alert.alert_id, "rescore", current.status.value)
        if self.audit_logger:
            self.audit_logger.log_risk_rescored(updated, alert.risk_score)
        return updated

    async def rescore_alert(self, alert_id: str) -> Alert:
        """Recompute an alert's risk score. The SLA deadline is left untouched."""
        updated = await self._rescore(await self.get_alert(alert_id))
        await self._refresh_ranks(updated.organization_id)
        return await self.get_alert(alert_id)

    async def rescore_patient_metric(
        self, patient_id: str, metric_id: Optional[str] = None
    ) -> List[Alert]:
        """Rescore a patient's active alerts after new observations arrive."""
        active = await self.store.list_alerts(statuses=ACTIVE_STATUSES)
        targets = [
            a for a in active
            if a.patient_id == patient_id and (metric_id is None or a.metric_id == metric_id)
        ]

        rescored = []
        for alert in targets:
            try:
                rescored.append(await self._rescore(alert))
            except AlertTerminalError:
                # Resolved while the batch ran
                continue

        for organization_id in sorted({a.organization_id for a in rescored}):
            await self._refresh_ranks(organization_id)
        return rescored

    async def recalculate_sla(
        self, alert_id: str, reason: str, actor_id: Optional[str] = None
    ) -> Alert:
        """Recompute the SLA deadline from the current SLA windows.

        This is the only path that moves a deadline after creation, and it is
        always audited.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to recalculate an SLA deadline")

        alert = await self.get_alert(alert_id)
        if alert.is_terminal:
            raise AlertTerminalError(alert_id, "recalculate SLA for", alert.status.value)

        new_breach_time = self.sla.sla_breach_time(alert.severity, alert.triggered_at)
        updated = await self.store.update_sla_breach_time(alert_id, new_breach_time)
        if updated is None:
            current = await self.get_alert(alert_id)
            raise AlertTerminalError(alert_id, "recalculate SLA for", current.status.value)

        if self.audit_logger:
            self.audit_logger.log_sla_recalculated(
                updated, alert.sla_breach_time, reason, actor_id
            )
        self.logger.warning(
            f"SLA deadline for alert {alert_id} recalculated: "
            f"{alert.sla_breach_time} -> {new_breach_time} ({reason})"
        )
        return updated

    # Ranking

    async def recalculate_priority_ranks(self, organization_id: str) -> int:
        return await self.ranker.recalculate_priority_ranks(organization_id)

    async def _refresh_ranks(self, organization_id: str) -> Optional[int]:
        """Event-driven re-rank; a failure leaves the prior ranking for the next run."""
        try:
            return await self.ranker.recalculate_priority_ranks(organization_id)
        except StorageError as e:
            self.logger.error(f"Re-ranking {organization_id} failed, prior ranking kept: {e}")
            return None

    async def _sync_rank(self, alert: Alert) -> Alert:
        # Re-rank when the alert entered or left the ranked set
        ranked = alert.status in self.ranking_config.ranked_statuses
        if ranked != (alert.priority_rank is not None):
            await self._refresh_ranks(alert.organization_id)
            return await self.get_alert(alert.alert_id)
        return alert

    async def refresh_all_ranks(self) -> Dict[str, int]:
        """Re-rank every organization that has active alerts."""
        active = await self.store.list_alerts(statuses=ACTIVE_STATUSES)
        counts = {}
        for organization_id in sorted({a.organization_id for a in active}):
            count = await self._refresh_ranks(organization_id)
            if count is not None:
                counts[organization_id] = count
        return counts

    # Lifecycle

    async def claim(self, alert_id: str, clinician_id: str) -> Alert:
        return await self._sync_rank(await self.lifecycle.claim(alert_id, clinician_id))

    async def unclaim(self, alert_id: str, clinician_id: str) -> Alert:
        return await self._sync_rank(await self.lifecycle.unclaim(alert_id, clinician_id))

    async def acknowledge(self, alert_id: str, clinician_id: Optional[str] = None) -> Alert:
        return await self._sync_rank(await self.lifecycle.acknowledge(alert_id, clinician_id))

    async def bulk_acknowledge(
        self, alert_ids: Iterable[str], clinician_id: Optional[str] = None
    ) -> BulkAcknowledgeResult:
        result = await self.lifecycle.bulk_acknowledge(alert_ids, clinician_id)
        if result.succeeded and AlertStatus.ACKNOWLEDGED not in self.ranking_config.ranked_statuses:
            organizations = set()
            for alert_id in result.succeeded:
                organizations.add((await self.get_alert(alert_id)).organization_id)
            for organization_id in sorted(organizations):
                await self._refresh_ranks(organization_id)
        return result

    async def resolve(
        self,
        alert_id: str,
        notes: str,
        time_spent_minutes: int,
        resolved_by: str,
        intervention_type: Optional[str] = None,
        patient_outcome: Optional[str] = None,
    ) -> Alert:
        alert = await self.lifecycle.resolve(
            alert_id, notes, time_spent_minutes, resolved_by,
            intervention_type, patient_outcome,
        )
        await self._refresh_ranks(alert.organization_id)
        return alert

    async def snooze(
        self, alert_id: str, snoozed_by: str, until: Optional[datetime] = None
    ) -> Alert:
        return await self._sync_rank(await self.lifecycle.snooze(alert_id, snoozed_by, until))

    async def suppress(self, alert_id: str, reason: str, suppressed_by: str) -> Alert:
        alert = await self.lifecycle.suppress(alert_id, reason, suppressed_by)
        await self._refresh_ranks(alert.organization_id)
        return alert

    # Queue and maintenance

    async def get_triage_queue(
        self,
        organization_id: str,
        filters: Optional[QueueFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "priority_rank",
        now: Optional[datetime] = None,
    ) -> TriageQueuePage:
        """One page of an organization's queue.

        Without a status filter the queue shows the ranked statuses, minus
        snoozed alerts, which keep their rank but stay hidden until they expire.
        """
        filters = filters or QueueFilters()
        if filters.statuses:
            statuses = set(filters.statuses)
        else:
            statuses = set(self.ranking_config.ranked_statuses) - {AlertStatus.SNOOZED}
        alerts = await self.store.list_alerts(organization_id=organization_id, statuses=statuses)
        return build_triage_queue(
            organization_id, alerts, self.sla, filters, page, limit, sort_by, now or self.clock()
        )

    async def _escalate_breaches(self, now: datetime) -> List[Alert]:
        tracked = await self.store.list_alerts(statuses=SLA_TRACKED_STATUSES)
        escalated = []
        for alert in tracked:
            if not self.sla.escalation_due(alert, now):
                continue
            updated = await self.store.transition_alert(
                alert.alert_id,
                {alert.status},
                {"is_escalated": True, "escalated_at": now},
            )
            if updated is None:
                continue
            minutes = self.sla.minutes_since_breach(alert, now)
            if self.audit_logger:
                self.audit_logger.log_sla_escalation(updated, minutes)
            self.logger.warning(
                f"Alert {alert.alert_id} ({alert.severity.value}) escalated "
                f"{minutes} minutes after SLA breach"
            )
            escalated.append(updated)
        return escalated

    async def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """Reactivate snoozes, release stale claims, escalate breaches, re-rank.

        Organizations whose ranked set changed are re-ranked once at the end.
        """
        now = now or self.clock()
        reactivated = await self.lifecycle.reactivate_expired_snoozes(now)
        released = await self.lifecycle.release_stale_claims(now)
        escalated = await self._escalate_breaches(now)

        touched = sorted({a.organization_id for a in reactivated + released})
        reranked = []
        for organization_id in touched:
            if await self._refresh_ranks(organization_id) is not None:
                reranked.append(organization_id)

        return MaintenanceReport(
            reactivated_snoozes=len(reactivated),
            released_claims=len(released),
            escalated=len(escalated),
            reranked_organizations=reranked,
        )

    async def health_check(self) -> bool:
        return await self.store.health_check()
