"""
Alert lifecycle state machine.

    PENDING --claim--> CLAIMED --acknowledge--> ACKNOWLEDGED --resolve--> RESOLVED
    PENDING --suppress--> SUPPRESSED
    PENDING/CLAIMED --snooze--> SNOOZED --(expiry)--> PENDING
    CLAIMED --unclaim--> PENDING

Every transition is a conditional write on the status (and claimant) the
alert was read with. When the write loses a race the alert is reloaded and
the caller gets the error that matches its current state.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional

from rtm_triage.audit.logger import AuditLogger
from rtm_triage.core.config.manager import LifecycleConfig
from rtm_triage.core.exceptions import (
    AlertNotFoundError,
    AlertTerminalError,
    ClaimConflictError,
    ConflictError,
    InvalidTransitionError,
    StorageError,
    ValidationError,
)
from rtm_triage.core.models import (
    Alert,
    AlertStatus,
    BulkAcknowledgeResult,
    InterventionType,
    PatientOutcome,
    SkippedAlert,
    utcnow,
)
from rtm_triage.storage.base import AlertStore


class AlertLifecycleManager:
    """Validates and applies clinician actions on alerts."""

    def __init__(
        self,
        store: AlertStore,
        config: Optional[LifecycleConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or LifecycleConfig()
        self.audit_logger = audit_logger
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    # Helpers

    async def _load(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def _reject(self, action: str, alert_id: str, actor_id: Optional[str], error: Exception):
        if self.audit_logger:
            self.audit_logger.log_conflict(action, alert_id, actor_id, error)
        raise error

    def _check_state(
        self,
        action: str,
        alert: Alert,
        allowed: Collection[AlertStatus],
        actor_id: Optional[str] = None,
    ) -> None:
        if alert.is_terminal:
            self._reject(
                action, alert.alert_id, actor_id,
                AlertTerminalError(alert.alert_id, action, alert.status.value),
            )
        if alert.status not in allowed:
            self._reject(
                action, alert.alert_id, actor_id,
                InvalidTransitionError(alert.alert_id, action, alert.status.value),
            )

    def _check_owner(self, action: str, alert: Alert, actor_id: Optional[str]) -> None:
        if (
            self.config.enforce_claim_ownership
            and actor_id
            and alert.claimed_by
            and alert.claimed_by != actor_id
        ):
            self._reject(
                action, alert.alert_id, actor_id,
                ClaimConflictError(alert.alert_id, alert.claimed_by),
            )

    async def _raise_for_state(
        self, action: str, alert_id: str, actor_id: Optional[str]
    ) -> None:
        """Raise the error matching the alert's state after a lost conditional write."""
        current = await self.store.get_alert(alert_id)
        if current is None:
            error: Exception = AlertNotFoundError(alert_id)
        elif current.is_terminal:
            error = AlertTerminalError(alert_id, action, current.status.value)
        elif current.claimed_by and current.claimed_by != actor_id:
            error = ClaimConflictError(alert_id, current.claimed_by)
        else:
            error = InvalidTransitionError(alert_id, action, current.status.value)
        self._reject(action, alert_id, actor_id, error)

    async def _apply(
        self,
        action: str,
        alert: Alert,
        changes: Dict[str, Any],
        actor_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """Write changes iff the alert still has the status and claimant it was read with."""
        updated = await self.store.transition_alert(
            alert.alert_id,
            {alert.status},
            changes,
            expected_claimed_by=alert.claimed_by,
            expect_unclaimed=alert.claimed_by is None,
        )
        if updated is None:
            await self._raise_for_state(action, alert.alert_id, actor_id)
        if self.audit_logger:
            self.audit_logger.log_transition(
                action, updated, alert.status.value, actor_id, metadata
            )
        self.logger.info(
            f"Alert {alert.alert_id} {action}: {alert.status.value} -> {updated.status.value}"
        )
        return updated

    # Clinician actions

    async def claim(self, alert_id: str, clinician_id: str) -> Alert:
        """Take exclusive ownership of an unclaimed alert.

        Exactly one of any number of concurrent claims succeeds; the others
        get ClaimConflictError naming the winner.
        """
        if not clinician_id:
            raise ValidationError("clinician_id is required to claim an alert")

        updated = await self.store.claim_alert(alert_id, clinician_id, self.clock())
        if updated is None:
            current = await self._load(alert_id)
            if current.claimed_by is not None and not current.is_terminal:
                self._reject(
                    "claim", alert_id, clinician_id,
                    ClaimConflictError(alert_id, current.claimed_by),
                )
            self._check_state("claim", current, (), clinician_id)

        old_status = (
            AlertStatus.PENDING.value
            if updated.status == AlertStatus.CLAIMED
            else updated.status.value
        )
        if self.audit_logger:
            self.audit_logger.log_transition("claim", updated, old_status, clinician_id)
        self.logger.info(f"Alert {alert_id} claimed by {clinician_id}")
        return updated

    async def unclaim(self, alert_id: str, clinician_id: str) -> Alert:
        """Release a claim; only the claimant may do so."""
        alert = await self._load(alert_id)
        self._check_state(
            "unclaim", alert, (AlertStatus.CLAIMED, AlertStatus.ACKNOWLEDGED), clinician_id
        )
        if alert.claimed_by is None:
            self._reject(
                "unclaim", alert_id, clinician_id,
                InvalidTransitionError(alert_id, "unclaim", alert.status.value),
            )
        if alert.claimed_by != clinician_id:
            self._reject(
                "unclaim", alert_id, clinician_id,
                ClaimConflictError(alert_id, alert.claimed_by),
            )

        changes: Dict[str, Any] = {"claimed_by": None, "claimed_at": None}
        if alert.status == AlertStatus.CLAIMED:
            changes["status"] = AlertStatus.PENDING
        return await self._apply("unclaim", alert, changes, clinician_id)

    async def acknowledge(self, alert_id: str, clinician_id: Optional[str] = None) -> Alert:
        """Acknowledge a claimed alert.

        A PENDING alert may be acknowledged directly only when
        allow_unclaimed_acknowledge is set.
        """
        alert = await self._load(alert_id)
        allowed = [AlertStatus.CLAIMED]
        if self.config.allow_unclaimed_acknowledge:
            allowed.append(AlertStatus.PENDING)
        self._check_state("acknowledge", alert, allowed, clinician_id)
        self._check_owner("acknowledge", alert, clinician_id)

        changes = {
            "status": AlertStatus.ACKNOWLEDGED,
            "acknowledged_by": clinician_id or alert.claimed_by,
            "acknowledged_at": self.clock(),
        }
        return await self._apply("acknowledge", alert, changes, clinician_id)

    def _validate_resolution(
        self,
        notes: Optional[str],
        time_spent_minutes: Any,
        resolved_by: Optional[str],
        intervention_type: Any,
        patient_outcome: Any,
    ) -> Dict[str, Any]:
        notes = (notes or "").strip()
        if len(notes) < self.config.min_resolution_notes_length:
            raise ValidationError(
                f"Resolution notes must be at least "
                f"{self.config.min_resolution_notes_length} characters"
            )
        if (
            isinstance(time_spent_minutes, bool)
            or not isinstance(time_spent_minutes, int)
            or time_spent_minutes < max(1, self.config.min_time_spent_minutes)
        ):
            raise ValidationError("time_spent_minutes must be a positive whole number")
        if not resolved_by:
            raise ValidationError("resolved_by is required to resolve an alert")

        try:
            intervention = InterventionType(intervention_type) if intervention_type else None
        except ValueError:
            raise ValidationError(f"Invalid intervention type: {intervention_type}")
        try:
            outcome = PatientOutcome(patient_outcome) if patient_outcome else None
        except ValueError:
            raise ValidationError(f"Invalid patient outcome: {patient_outcome}")

        return {
            "resolution_notes": notes,
            "time_spent_minutes": time_spent_minutes,
            "intervention_type": intervention,
            "patient_outcome": outcome,
        }

    async def resolve(
        self,
        alert_id: str,
        notes: str,
        time_spent_minutes: int,
        resolved_by: str,
        intervention_type: Optional[str] = None,
        patient_outcome: Optional[str] = None,
    ) -> Alert:
        """Resolve an acknowledged alert. Resolution is terminal.

        Raises:
            ValidationError: Notes too short, time spent not positive or an
                unknown intervention type / outcome
            AlertTerminalError: The alert is already resolved or suppressed
            InvalidTransitionError: The alert has not been acknowledged
            ClaimConflictError: The alert is claimed by another clinician
        """
        changes = self._validate_resolution(
            notes, time_spent_minutes, resolved_by, intervention_type, patient_outcome
        )
        alert = await self._load(alert_id)
        allowed = [AlertStatus.ACKNOWLEDGED]
        if self.config.allow_resolve_from_claimed:
            allowed.append(AlertStatus.CLAIMED)
        self._check_state("resolve", alert, allowed, resolved_by)
        self._check_owner("resolve", alert, resolved_by)

        changes.update(
            {
                "status": AlertStatus.RESOLVED,
                "resolved_by": resolved_by,
                "resolved_at": self.clock(),
                "priority_rank": None,
            }
        )
        metadata = {
            "time_spent_minutes": time_spent_minutes,
            "intervention_type": changes["intervention_type"].value
            if changes["intervention_type"] else None,
            "patient_outcome": changes["patient_outcome"].value
            if changes["patient_outcome"] else None,
        }
        return await self._apply("resolve", alert, changes, resolved_by, metadata)

    async def bulk_acknowledge(
        self, alert_ids: Iterable[str], clinician_id: Optional[str] = None
    ) -> BulkAcknowledgeResult:
        """Acknowledge each eligible alert, reporting the rest individually."""
        result = BulkAcknowledgeResult()
        seen = set()
        for alert_id in alert_ids:
            if alert_id in seen:
                continue
            seen.add(alert_id)
            try:
                await self.acknowledge(alert_id, clinician_id)
                result.succeeded.append(alert_id)
            except AlertNotFoundError as e:
                result.skipped.append(SkippedAlert(alert_id=alert_id, reason="not_found", detail=str(e)))
            except ConflictError as e:
                result.skipped.append(SkippedAlert(alert_id=alert_id, reason=e.code, detail=str(e)))
            except StorageError as e:
                self.logger.error(f"Bulk acknowledge failed for {alert_id}: {e}")
                result.skipped.append(SkippedAlert(alert_id=alert_id, reason="storage_error", detail=str(e)))
        return result

    async def snooze(
        self,
        alert_id: str,
        snoozed_by: str,
        until: Optional[datetime] = None,
    ) -> Alert:
        """Hide an alert from the queue until a given time; the claim is released."""
        if not snoozed_by:
            raise ValidationError("snoozed_by is required to snooze an alert")
        now = self.clock()
        until = until or now + timedelta(minutes=self.config.default_snooze_minutes)
        if until.tzinfo is None:
            raise ValidationError("Snooze end time must be timezone-aware")
        if until <= now:
            raise ValidationError("Snooze end time must be in the future")
        if until > now + timedelta(minutes=self.config.max_snooze_minutes):
            raise ValidationError(
                f"Snooze cannot exceed {self.config.max_snooze_minutes} minutes"
            )

        alert = await self._load(alert_id)
        self._check_state(
            "snooze", alert, (AlertStatus.PENDING, AlertStatus.CLAIMED), snoozed_by
        )
        self._check_owner("snooze", alert, snoozed_by)

        changes = {
            "status": AlertStatus.SNOOZED,
            "snoozed_by": snoozed_by,
            "snoozed_at": now,
            "snoozed_until": until,
            "claimed_by": None,
            "claimed_at": None,
        }
        return await self._apply(
            "snooze", alert, changes, snoozed_by, {"snoozed_until": until.isoformat()}
        )

    async def suppress(self, alert_id: str, reason: str, suppressed_by: str) -> Alert:
        """Dismiss a pending alert without clinical action. Suppression is terminal."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A suppression reason is required")
        if not suppressed_by:
            raise ValidationError("suppressed_by is required to suppress an alert")

        alert = await self._load(alert_id)
        self._check_state("suppress", alert, (AlertStatus.PENDING,), suppressed_by)

        changes = {
            "status": AlertStatus.SUPPRESSED,
            "suppressed_by": suppressed_by,
            "suppressed_at": self.clock(),
            "suppression_reason": reason,
            "priority_rank": None,
        }
        return await self._apply("suppress", alert, changes, suppressed_by, {"reason": reason})

    # Scheduled sweeps

    async def reactivate_expired_snoozes(self, now: Optional[datetime] = None) -> List[Alert]:
        """Return snoozed alerts whose snooze has ended to PENDING."""
        now = now or self.clock()
        snoozed = await self.store.list_alerts(statuses={AlertStatus.SNOOZED})
        reactivated = []
        for alert in snoozed:
            if alert.snoozed_until is None or alert.snoozed_until > now:
                continue
            updated = await self.store.transition_alert(
                alert.alert_id,
                {AlertStatus.SNOOZED},
                {"status": AlertStatus.PENDING, "snoozed_until": None},
            )
            if updated is None:
                continue
            if self.audit_logger:
                self.audit_logger.log_transition(
                    "reactivate", updated, AlertStatus.SNOOZED.value, None,
                    {"snoozed_until": alert.snoozed_until.isoformat()},
                )
            reactivated.append(updated)
        if reactivated:
            self.logger.info(f"Reactivated {len(reactivated)} snoozed alerts")
        return reactivated

    async def release_stale_claims(self, now: Optional[datetime] = None) -> List[Alert]:
        """Return CLAIMED alerts held longer than the claim timeout to PENDING."""
        now = now or self.clock()
        cutoff = now - timedelta(minutes=self.config.claim_timeout_minutes)
        claimed = await self.store.list_alerts(statuses={AlertStatus.CLAIMED})
        released = []
        for alert in claimed:
            if alert.claimed_at is None or alert.claimed_at > cutoff:
                continue
            updated = await self.store.transition_alert(
                alert.alert_id,
                {AlertStatus.CLAIMED},
                {"status": AlertStatus.PENDING, "claimed_by": None, "claimed_at": None},
                expected_claimed_by=alert.claimed_by,
            )
            if updated is None:
                continue
            if self.audit_logger:
                self.audit_logger.log_transition(
                    "release_stale_claim", updated, AlertStatus.CLAIMED.value, None,
                    {
                        "previous_claimant": alert.claimed_by,
                        "claimed_at": alert.claimed_at.isoformat(),
                    },
                )
            released.append(updated)
        if released:
            self.logger.info(f"Released {len(released)} stale claims")
        return released
