"""
Data models for RTM-Triage.

This module defines the alert record the engine owns and the read-only
records (observations, adherence, metric definitions) consumed from
collaborating services.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """Rule severity assigned by the external rule engine."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    """Alert lifecycle status."""
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    SNOOZED = "SNOOZED"
    SUPPRESSED = "SUPPRESSED"


TERMINAL_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.SUPPRESSED})
SLA_TRACKED_STATUSES = frozenset(
    {AlertStatus.PENDING, AlertStatus.CLAIMED, AlertStatus.ACKNOWLEDGED}
)


class WorseningDirection(str, Enum):
    """Direction in which a metric's values indicate deterioration."""
    UP = "up"
    DOWN = "down"
    AWAY = "away"  # away from the middle of the normal range


class InterventionType(str, Enum):
    """Clinical intervention documented at resolution."""
    PHONE_CALL = "PHONE_CALL"
    VIDEO_CALL = "VIDEO_CALL"
    IN_PERSON_VISIT = "IN_PERSON_VISIT"
    SECURE_MESSAGE = "SECURE_MESSAGE"
    MEDICATION_ADJUSTMENT = "MEDICATION_ADJUSTMENT"
    REFERRAL = "REFERRAL"
    PATIENT_EDUCATION = "PATIENT_EDUCATION"
    CARE_COORDINATION = "CARE_COORDINATION"
    MEDICATION_RECONCILIATION = "MEDICATION_RECONCILIATION"
    NO_PATIENT_CONTACT = "NO_PATIENT_CONTACT"


class PatientOutcome(str, Enum):
    """Patient outcome documented at resolution."""
    IMPROVED = "IMPROVED"
    STABLE = "STABLE"
    DECLINED = "DECLINED"
    NO_CHANGE = "NO_CHANGE"
    PATIENT_UNREACHABLE = "PATIENT_UNREACHABLE"


class Observation(BaseModel):
    """A single recorded measurement for a patient metric."""
    patient_id: str = Field(..., description="Patient identifier")
    metric_id: str = Field(..., description="Metric definition identifier")
    value: float = Field(..., description="Numeric observation value")
    recorded_at: datetime = Field(..., description="Time the value was recorded")
    context: Optional[str] = Field(None, description="Context tag (e.g. clinic, home)")


class MedicationAdherence(BaseModel):
    """Per-dose adherence record."""
    patient_medication_id: str = Field(..., description="Patient medication identifier")
    taken_at: datetime = Field(..., description="Time the dose was documented")
    adherence_score: float = Field(..., ge=0.0, le=1.0, description="Adherence score (0-1)")


class MetricDefinition(BaseModel):
    """Normal range and trend semantics of a monitored metric."""
    metric_id: str
    name: Optional[str] = None
    normal_min: Optional[float] = None
    normal_max: Optional[float] = None
    worsening_direction: WorseningDirection = WorseningDirection.AWAY
    trend_scale: Optional[float] = Field(
        None, gt=0, description="Velocity points per unit/day of slope"
    )

    @property
    def has_normal_range(self) -> bool:
        return self.normal_min is not None and self.normal_max is not None


class Alert(BaseModel):
    """A triggered clinical alert awaiting staff review."""
    alert_id: str = Field(..., description="Unique alert identifier")
    organization_id: str = Field(..., description="Owning organization")
    patient_id: str = Field(..., description="Patient the alert concerns")
    rule_id: str = Field(..., description="Originating alert rule")
    metric_id: Optional[str] = Field(None, description="Metric that triggered the alert")
    severity: Severity = Field(..., description="Rule severity")
    status: AlertStatus = Field(default=AlertStatus.PENDING)

    # Derived triage fields
    risk_score: float = Field(default=0.0, ge=0.0, le=10.0)
    risk_components: Dict[str, Any] = Field(default_factory=dict)
    priority_rank: Optional[int] = Field(None, ge=1)
    triggered_at: datetime = Field(default_factory=utcnow)
    sla_breach_time: Optional[datetime] = None

    # Ownership and lifecycle
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    time_spent_minutes: Optional[int] = None
    intervention_type: Optional[InterventionType] = None
    patient_outcome: Optional[PatientOutcome] = None
    snoozed_by: Optional[str] = None
    snoozed_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    suppressed_by: Optional[str] = None
    suppressed_at: Optional[datetime] = None
    suppression_reason: Optional[str] = None
    is_escalated: bool = False
    escalated_at: Optional[datetime] = None

    # Payload
    message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None


class AlertCreate(BaseModel):
    """Alert submission from the external rule engine."""
    alert_id: Optional[str] = None
    organization_id: str
    patient_id: str
    rule_id: str
    metric_id: Optional[str] = None
    severity: Severity
    triggered_at: Optional[datetime] = None
    message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        """Accept lower-case severities from rule payloads."""
        if isinstance(v, str):
            return v.upper()
        return v


class RiskScoreResult(BaseModel):
    """Composite risk score and its components."""
    risk_score: float = Field(..., ge=0.0, le=10.0)
    components: Dict[str, float] = Field(default_factory=dict)
    missing_signals: List[str] = Field(default_factory=list)

    @property
    def data_complete(self) -> bool:
        return not self.missing_signals


class SkippedAlert(BaseModel):
    """An alert left untouched by a batch operation, with the reason."""
    alert_id: str
    reason: str
    detail: str = ""


class BulkAcknowledgeResult(BaseModel):
    """Outcome of a bulk acknowledgement."""
    succeeded: List[str] = Field(default_factory=list)
    skipped: List[SkippedAlert] = Field(default_factory=list)


class MaintenanceReport(BaseModel):
    """Counts produced by one maintenance sweep."""
    reactivated_snoozes: int = 0
    released_claims: int = 0
    escalated: int = 0
    reranked_organizations: List[str] = Field(default_factory=list)
