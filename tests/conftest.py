"""
Pytest configuration and fixtures for RTM-Triage tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from rtm_triage.audit.logger import AuditLogger
from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.core.models import (
    Alert,
    AlertStatus,
    MedicationAdherence,
    MetricDefinition,
    Observation,
    Severity,
)
from rtm_triage.storage.memory import InMemoryAlertStore, InMemoryObservationSource

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

SYSTOLIC_BP = MetricDefinition(
    metric_id="systolic_bp",
    name="Systolic blood pressure",
    normal_min=90,
    normal_max=140,
    worsening_direction="up",
)


class FakeClock:
    """Settable clock for deterministic time-dependent tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_data():
    """Configuration used by most tests; the background scheduler is off."""
    return {
        "logging": {"level": "WARNING", "format": "console"},
        "scheduler": {"enabled": False},
    }


@pytest.fixture
def config_manager(config_data):
    """Create a test configuration manager."""
    return ConfigManager(config_data=config_data)


@pytest.fixture
def audit_logger():
    """Create a mock audit logger."""
    return Mock(spec=AuditLogger)


@pytest.fixture
def alert_store():
    return InMemoryAlertStore()


@pytest.fixture
def observation_source():
    source = InMemoryObservationSource()
    source.add_metric(SYSTOLIC_BP)
    return source


@pytest.fixture
def systolic_bp():
    return SYSTOLIC_BP


@pytest.fixture
def make_alert(now):
    """Factory for alerts with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> Alert:
        counter["n"] += 1
        data = {
            "alert_id": f"alert-{counter['n']:03d}",
            "organization_id": "org-1",
            "patient_id": "patient-1",
            "rule_id": "rule-bp-high",
            "metric_id": "systolic_bp",
            "severity": Severity.HIGH,
            "status": AlertStatus.PENDING,
            "risk_score": 5.0,
            "triggered_at": now - timedelta(minutes=10),
            "sla_breach_time": now + timedelta(minutes=110),
        }
        data.update(overrides)
        return Alert(**data)

    return _make


def bp_series(values, start, patient_id="patient-1", step=timedelta(days=1)):
    """Daily systolic readings starting at start."""
    return [
        Observation(
            patient_id=patient_id,
            metric_id="systolic_bp",
            value=value,
            recorded_at=start + i * step,
        )
        for i, value in enumerate(values)
    ]


def adherence_series(scores, start, step=timedelta(hours=12)):
    return [
        MedicationAdherence(
            patient_medication_id="pm-1",
            taken_at=start + i * step,
            adherence_score=score,
        )
        for i, score in enumerate(scores)
    ]


@pytest.fixture
def rising_bp(now):
    """Scenario of a worsening hypertensive patient: 160 to 180 over five days."""
    return bp_series([160, 165, 170, 175, 180], now - timedelta(days=5))


@pytest.fixture
def improving_bp(now):
    return bp_series([150, 145, 143, 141, 142], now - timedelta(days=5))


@pytest.fixture
def poor_adherence(now):
    """Mean adherence of 0.35."""
    return adherence_series([0.2, 0.5, 0.35, 0.35], now - timedelta(days=3))


@pytest.fixture
def good_adherence(now):
    """Mean adherence of 0.95."""
    return adherence_series([1.0, 0.9, 0.95, 0.95], now - timedelta(days=3))


@pytest.fixture
def make_bp_series():
    return bp_series


@pytest.fixture
def make_adherence():
    return adherence_series
