"""
In-memory storage backends for RTM-Triage.

Used for local development and tests. Conditional writes are serialized
through a single asyncio lock, which gives the same compare-and-swap
guarantees as the PostgreSQL backend within one process.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from rtm_triage.core.exceptions import ConflictError, StorageError
from rtm_triage.core.models import (
    TERMINAL_STATUSES,
    Alert,
    AlertStatus,
    MedicationAdherence,
    MetricDefinition,
    Observation,
    utcnow,
)
from rtm_triage.storage.base import AlertStore, ObservationSource, compact_ranks


class InMemoryAlertStore(AlertStore):
    """Alert store kept in a process-local dictionary."""

    def __init__(self):
        self._alerts: Dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        pass

    def _apply(self, alert: Alert, changes: Dict[str, Any]) -> Alert:
        data = alert.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        updated = Alert.model_validate(data)
        self._alerts[alert.alert_id] = updated
        return updated.model_copy(deep=True)

    async def create_alert(self, alert: Alert) -> Alert:
        async with self._lock:
            if alert.alert_id in self._alerts:
                raise ConflictError(f"Alert {alert.alert_id} already exists", alert.alert_id)
            self._alerts[alert.alert_id] = alert.model_copy(deep=True)
            return alert.model_copy(deep=True)

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def list_alerts(
        self,
        organization_id: Optional[str] = None,
        statuses: Optional[Collection[AlertStatus]] = None,
    ) -> List[Alert]:
        return [
            alert.model_copy(deep=True)
            for alert in self._alerts.values()
            if (organization_id is None or alert.organization_id == organization_id)
            and (statuses is None or alert.status in statuses)
        ]

    async def claim_alert(
        self, alert_id: str, clinician_id: str, claimed_at: datetime
    ) -> Optional[Alert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if (
                alert is None
                or alert.claimed_by is not None
                or alert.status not in (AlertStatus.PENDING, AlertStatus.ACKNOWLEDGED)
            ):
                return None
            new_status = (
                AlertStatus.CLAIMED
                if alert.status == AlertStatus.PENDING
                else alert.status
            )
            return self._apply(
                alert,
                {"claimed_by": clinician_id, "claimed_at": claimed_at, "status": new_status},
            )

    async def transition_alert(
        self,
        alert_id: str,
        from_statuses: Collection[AlertStatus],
        changes: Dict[str, Any],
        expected_claimed_by: Optional[str] = None,
        expect_unclaimed: bool = False,
    ) -> Optional[Alert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in from_statuses:
                return None
            if expected_claimed_by is not None and alert.claimed_by != expected_claimed_by:
                return None
            if expect_unclaimed and alert.claimed_by is not None:
                return None
            return self._apply(alert, changes)

    async def update_risk_score(
        self, alert_id: str, risk_score: float, components: Dict[str, Any]
    ) -> Optional[Alert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status in TERMINAL_STATUSES:
                return None
            return self._apply(
                alert, {"risk_score": risk_score, "risk_components": dict(components)}
            )

    async def update_sla_breach_time(
        self, alert_id: str, sla_breach_time: datetime
    ) -> Optional[Alert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status in TERMINAL_STATUSES:
                return None
            return self._apply(alert, {"sla_breach_time": sla_breach_time})

    async def write_priority_ranks(
        self,
        organization_id: str,
        ranks: Dict[str, int],
        ranked_statuses: Collection[AlertStatus],
    ) -> int:
        async with self._lock:
            # Validate the whole batch before touching any record
            for alert_id in ranks:
                alert = self._alerts.get(alert_id)
                if alert is None or alert.organization_id != organization_id:
                    raise StorageError(
                        f"Cannot rank alert {alert_id}: not in organization {organization_id}"
                    )
            if sorted(ranks.values()) != list(range(1, len(ranks) + 1)):
                raise StorageError("Priority ranks must be a dense 1..N permutation")

            # Alerts resolved or suppressed after the ranking was computed drop out
            surviving = {a for a in ranks if self._alerts[a].status in ranked_statuses}
            ranks = compact_ranks(ranks, surviving)

            staged = {}
            for alert_id, alert in self._alerts.items():
                if alert.organization_id != organization_id:
                    continue
                new_rank = ranks.get(alert_id)
                if alert.priority_rank != new_rank:
                    staged[alert_id] = alert.model_copy(update={"priority_rank": new_rank})
            self._alerts.update(staged)
            return len(ranks)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryObservationSource(ObservationSource):
    """Observation source backed by lists, for development and tests."""

    def __init__(self):
        self._observations: Dict[tuple, List[Observation]] = defaultdict(list)
        self._adherence: Dict[str, List[MedicationAdherence]] = defaultdict(list)
        self._metrics: Dict[str, MetricDefinition] = {}

    def add_observation(self, observation: Observation) -> None:
        key = (observation.patient_id, observation.metric_id)
        self._observations[key].append(observation)
        self._observations[key].sort(key=lambda o: o.recorded_at)

    def add_adherence(self, patient_id: str, record: MedicationAdherence) -> None:
        self._adherence[patient_id].append(record)
        self._adherence[patient_id].sort(key=lambda a: a.taken_at)

    def add_metric(self, metric: MetricDefinition) -> None:
        self._metrics[metric.metric_id] = metric

    async def get_observations(
        self, patient_id: str, metric_id: str, since: datetime, limit: int
    ) -> List[Observation]:
        series = [
            o for o in self._observations.get((patient_id, metric_id), [])
            if o.recorded_at >= since
        ]
        return series[-limit:]

    async def get_adherence(
        self, patient_id: str, since: datetime
    ) -> List[MedicationAdherence]:
        return [a for a in self._adherence.get(patient_id, []) if a.taken_at >= since]

    async def get_metric_definition(self, metric_id: str) -> Optional[MetricDefinition]:
        return self._metrics.get(metric_id)
