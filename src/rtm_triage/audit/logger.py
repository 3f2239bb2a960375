"""
Audit logger for RTM-Triage.

This module provides structured audit logging for every alert lifecycle
transition, ranking recompute and SLA change, ensuring traceability of
clinical triage actions.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from rtm_triage.core.config.manager import ConfigManager, LoggingConfig
from rtm_triage.core.models import Alert, utcnow


class AuditLogger:
    """Handles audit logging for all triage operations."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config = config_manager
        self.logger = structlog.get_logger("rtm_triage.audit")
        self._setup_logging()

    def _setup_logging(self):
        """Setup structured logging."""
        if self.config is not None:
            logging_config = self.config.get_logging_config()
        else:
            logging_config = LoggingConfig()

        renderer = (
            structlog.processors.JSONRenderer()
            if logging_config.format == "json"
            else structlog.dev.ConsoleRenderer()
        )

        # Configure structlog
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                renderer,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )
        logging.getLogger("rtm_triage.audit").setLevel(logging_config.level.upper())

    def log_alert_registered(self, alert: Alert) -> None:
        """Log alert registration with its derived triage fields."""
        self.logger.info(
            "alert_registered",
            alert_id=alert.alert_id,
            organization_id=alert.organization_id,
            patient_id=alert.patient_id,
            rule_id=alert.rule_id,
            severity=alert.severity.value,
            risk_score=alert.risk_score,
            triggered_at=alert.triggered_at.isoformat(),
            sla_breach_time=alert.sla_breach_time.isoformat() if alert.sla_breach_time else None,
        )

    def log_transition(
        self,
        action: str,
        alert: Alert,
        old_status: str,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a lifecycle transition."""
        self.logger.info(
            "alert_transition",
            action=action,
            alert_id=alert.alert_id,
            organization_id=alert.organization_id,
            patient_id=alert.patient_id,
            old_status=old_status,
            new_status=alert.status.value,
            actor_id=actor_id,
            severity=alert.severity.value,
            metadata=metadata or {},
            timestamp=utcnow().isoformat(),
        )

    def log_conflict(
        self, action: str, alert_id: str, actor_id: Optional[str], error: Exception
    ) -> None:
        """Log a rejected action (lost claim, invalid or terminal transition)."""
        self.logger.warning(
            "alert_action_rejected",
            action=action,
            alert_id=alert_id,
            actor_id=actor_id,
            error=str(error),
            error_type=type(error).__name__,
            timestamp=utcnow().isoformat(),
        )

    def log_risk_rescored(self, alert: Alert, old_score: float) -> None:
        """Log risk score recomputation."""
        self.logger.info(
            "alert_rescored",
            alert_id=alert.alert_id,
            organization_id=alert.organization_id,
            old_risk_score=old_score,
            new_risk_score=alert.risk_score,
            components=alert.risk_components,
        )

    def log_ranks_recalculated(
        self, organization_id: str, ranked_count: int, duration_seconds: float
    ) -> None:
        """Log a completed priority rank recompute."""
        self.logger.info(
            "priority_ranks_recalculated",
            organization_id=organization_id,
            ranked_count=ranked_count,
            duration_seconds=duration_seconds,
            timestamp=utcnow().isoformat(),
        )

    def log_sla_recalculated(
        self,
        alert: Alert,
        old_breach_time: Optional[datetime],
        reason: str,
        actor_id: Optional[str],
    ) -> None:
        """Log an explicit SLA deadline recalculation."""
        self.logger.warning(
            "sla_recalculated",
            alert_id=alert.alert_id,
            organization_id=alert.organization_id,
            severity=alert.severity.value,
            old_sla_breach_time=old_breach_time.isoformat() if old_breach_time else None,
            new_sla_breach_time=alert.sla_breach_time.isoformat() if alert.sla_breach_time else None,
            reason=reason,
            actor_id=actor_id,
            timestamp=utcnow().isoformat(),
        )

    def log_sla_escalation(self, alert: Alert, minutes_since_breach: int) -> None:
        """Log an SLA breach escalation."""
        self.logger.warning(
            "sla_escalated",
            alert_id=alert.alert_id,
            organization_id=alert.organization_id,
            severity=alert.severity.value,
            status=alert.status.value,
            claimed_by=alert.claimed_by,
            minutes_since_breach=minutes_since_breach,
            timestamp=utcnow().isoformat(),
        )
