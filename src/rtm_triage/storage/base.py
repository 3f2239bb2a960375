"""
Base storage interfaces for RTM-Triage.

This module provides the abstract base classes for the alert store the
engine owns and the read-only clinical data source it consumes, ensuring
a consistent interface across storage implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Collection, Dict, List, Optional

from rtm_triage.core.models import (
    Alert,
    AlertStatus,
    MedicationAdherence,
    MetricDefinition,
    Observation,
)


def compact_ranks(ranks: Dict[str, int], surviving: Collection[str]) -> Dict[str, int]:
    """Drop alerts not in surviving and renumber the rest densely, keeping order."""
    ordered = sorted((alert_id for alert_id in ranks if alert_id in surviving), key=ranks.get)
    return {alert_id: rank for rank, alert_id in enumerate(ordered, start=1)}


class AlertStore(ABC):
    """Abstract base class for alert persistence.

    Every mutating method is a single atomic conditional write: the change is
    applied only when the stored alert still matches the expected state, and
    None is returned otherwise so the caller can report the conflict.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    async def create_alert(self, alert: Alert) -> Alert:
        """Insert a new alert."""
        pass

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """Get an alert by id."""
        pass

    @abstractmethod
    async def list_alerts(
        self,
        organization_id: Optional[str] = None,
        statuses: Optional[Collection[AlertStatus]] = None,
    ) -> List[Alert]:
        """List alerts, optionally filtered by organization and status."""
        pass

    @abstractmethod
    async def claim_alert(
        self, alert_id: str, clinician_id: str, claimed_at: datetime
    ) -> Optional[Alert]:
        """Atomically claim an unclaimed PENDING or ACKNOWLEDGED alert.

        Succeeds iff the current claim owner is null. A PENDING alert moves to
        CLAIMED; an unclaimed ACKNOWLEDGED alert keeps its status.
        """
        pass

    @abstractmethod
    async def transition_alert(
        self,
        alert_id: str,
        from_statuses: Collection[AlertStatus],
        changes: Dict[str, Any],
        expected_claimed_by: Optional[str] = None,
        expect_unclaimed: bool = False,
    ) -> Optional[Alert]:
        """Apply changes iff the alert's status is in from_statuses.

        When expected_claimed_by is given the stored claimant must match too;
        with expect_unclaimed the alert must still have no claimant.
        """
        pass

    @abstractmethod
    async def update_risk_score(
        self, alert_id: str, risk_score: float, components: Dict[str, Any]
    ) -> Optional[Alert]:
        """Store a recomputed risk score on a non-terminal alert."""
        pass

    @abstractmethod
    async def update_sla_breach_time(
        self, alert_id: str, sla_breach_time: datetime
    ) -> Optional[Alert]:
        """Replace the SLA deadline of a non-terminal alert."""
        pass

    @abstractmethod
    async def write_priority_ranks(
        self,
        organization_id: str,
        ranks: Dict[str, int],
        ranked_statuses: Collection[AlertStatus],
    ) -> int:
        """Persist a full ranking for an organization, all-or-nothing.

        Alerts of the organization absent from ranks get their rank cleared.
        Ranked alerts that left ranked_statuses since the ranking was computed
        are cleared as well, and the remaining ranks are compacted to 1..N.

        Returns:
            Number of alerts that received a rank
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check storage health."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close storage connection."""
        pass


class ObservationSource(ABC):
    """Read-only access to observations, adherence and metric definitions."""

    @abstractmethod
    async def get_observations(
        self, patient_id: str, metric_id: str, since: datetime, limit: int
    ) -> List[Observation]:
        """Observations recorded at or after since, oldest first."""
        pass

    @abstractmethod
    async def get_adherence(
        self, patient_id: str, since: datetime
    ) -> List[MedicationAdherence]:
        """Adherence records taken at or after since, oldest first."""
        pass

    @abstractmethod
    async def get_metric_definition(self, metric_id: str) -> Optional[MetricDefinition]:
        """Metric definition by id."""
        pass
