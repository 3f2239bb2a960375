"""
Unit tests for AlertLifecycleManager.

Tests cover:
- Atomic claim under concurrency
- Acknowledge and resolve policies
- Terminal-state rejection
- Bulk acknowledgement reporting
- Snooze, suppress, unclaim and the scheduled sweeps
"""

import asyncio
from datetime import timedelta

import pytest

from rtm_triage.core.config.manager import LifecycleConfig
from rtm_triage.core.exceptions import (
    AlertNotFoundError,
    AlertTerminalError,
    ClaimConflictError,
    InvalidTransitionError,
    ValidationError,
)
from rtm_triage.core.models import AlertStatus, InterventionType
from rtm_triage.triage.lifecycle import AlertLifecycleManager

NOTES = "Called patient, adjusted medication timing."


@pytest.fixture
def lifecycle(alert_store, audit_logger, clock):
    return AlertLifecycleManager(alert_store, LifecycleConfig(), audit_logger, clock)


@pytest.fixture
def seed(alert_store, make_alert):
    async def _seed(**overrides):
        return await alert_store.create_alert(make_alert(**overrides))
    return _seed


class TestClaim:

    @pytest.mark.asyncio
    async def test_claim_pending_alert(self, lifecycle, seed, now, audit_logger):
        alert = await seed()

        claimed = await lifecycle.claim(alert.alert_id, "dr-a")

        assert claimed.status == AlertStatus.CLAIMED
        assert claimed.claimed_by == "dr-a"
        assert claimed.claimed_at == now
        audit_logger.log_transition.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, lifecycle, seed, alert_store):
        alert = await seed()
        clinicians = [f"dr-{i}" for i in range(5)]

        results = await asyncio.gather(
            *(lifecycle.claim(alert.alert_id, c) for c in clinicians),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, ClaimConflictError)]
        assert len(winners) == 1
        assert len(losers) == 4
        stored = await alert_store.get_alert(alert.alert_id)
        assert stored.claimed_by == winners[0].claimed_by
        assert all(e.claimed_by == stored.claimed_by for e in losers)

    @pytest.mark.asyncio
    async def test_claim_conflict_names_current_owner(self, lifecycle, seed, audit_logger):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        with pytest.raises(ClaimConflictError) as exc_info:
            await lifecycle.claim(alert.alert_id, "dr-b")

        assert exc_info.value.claimed_by == "dr-a"
        assert exc_info.value.code == "claim_conflict"
        audit_logger.log_conflict.assert_called_once()

    @pytest.mark.asyncio
    async def test_claim_unclaimed_acknowledged_keeps_status(self, lifecycle, seed):
        alert = await seed(status=AlertStatus.ACKNOWLEDGED)

        claimed = await lifecycle.claim(alert.alert_id, "dr-a")

        assert claimed.status == AlertStatus.ACKNOWLEDGED
        assert claimed.claimed_by == "dr-a"

    @pytest.mark.asyncio
    async def test_claim_resolved_alert_is_terminal_error(self, lifecycle, seed):
        alert = await seed(status=AlertStatus.RESOLVED, claimed_by="dr-a")

        with pytest.raises(AlertTerminalError):
            await lifecycle.claim(alert.alert_id, "dr-b")

    @pytest.mark.asyncio
    async def test_claim_snoozed_alert_is_invalid(self, lifecycle, seed):
        alert = await seed(status=AlertStatus.SNOOZED)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await lifecycle.claim(alert.alert_id, "dr-a")

        assert not isinstance(exc_info.value, AlertTerminalError)

    @pytest.mark.asyncio
    async def test_claim_missing_alert(self, lifecycle):
        with pytest.raises(AlertNotFoundError):
            await lifecycle.claim("nope", "dr-a")

    @pytest.mark.asyncio
    async def test_claim_requires_clinician(self, lifecycle, seed):
        alert = await seed()
        with pytest.raises(ValidationError):
            await lifecycle.claim(alert.alert_id, "")


class TestUnclaim:

    @pytest.mark.asyncio
    async def test_claimant_can_release(self, lifecycle, seed):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        released = await lifecycle.unclaim(alert.alert_id, "dr-a")

        assert released.status == AlertStatus.PENDING
        assert released.claimed_by is None
        assert released.claimed_at is None

    @pytest.mark.asyncio
    async def test_other_clinician_cannot_release(self, lifecycle, seed):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        with pytest.raises(ClaimConflictError):
            await lifecycle.unclaim(alert.alert_id, "dr-b")

    @pytest.mark.asyncio
    async def test_unclaim_pending_is_invalid(self, lifecycle, seed):
        alert = await seed()
        with pytest.raises(InvalidTransitionError):
            await lifecycle.unclaim(alert.alert_id, "dr-a")


class TestAcknowledge:

    @pytest.mark.asyncio
    async def test_acknowledge_claimed(self, lifecycle, seed, now):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        acked = await lifecycle.acknowledge(alert.alert_id, "dr-a")

        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.acknowledged_by == "dr-a"
        assert acked.acknowledged_at == now
        assert acked.claimed_by == "dr-a"

    @pytest.mark.asyncio
    async def test_acknowledge_without_clinician_uses_claimant(self, lifecycle, seed):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        acked = await lifecycle.acknowledge(alert.alert_id)

        assert acked.acknowledged_by == "dr-a"

    @pytest.mark.asyncio
    async def test_acknowledge_pending_rejected_by_default(self, lifecycle, seed):
        alert = await seed()

        with pytest.raises(InvalidTransitionError) as exc_info:
            await lifecycle.acknowledge(alert.alert_id, "dr-a")

        assert exc_info.value.current_status == "PENDING"

    @pytest.mark.asyncio
    async def test_acknowledge_pending_when_policy_allows(self, alert_store, seed, clock):
        lifecycle = AlertLifecycleManager(
            alert_store, LifecycleConfig(allow_unclaimed_acknowledge=True), clock=clock
        )
        alert = await seed()

        acked = await lifecycle.acknowledge(alert.alert_id, "dr-a")

        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert acked.claimed_by is None

    @pytest.mark.asyncio
    async def test_acknowledge_someone_elses_claim(self, lifecycle, seed):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        with pytest.raises(ClaimConflictError):
            await lifecycle.acknowledge(alert.alert_id, "dr-b")


class TestResolve:

    async def _acknowledged(self, lifecycle, seed):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")
        await lifecycle.acknowledge(alert.alert_id, "dr-a")
        return alert

    @pytest.mark.asyncio
    async def test_resolve_acknowledged(self, lifecycle, seed, now):
        alert = await self._acknowledged(lifecycle, seed)

        resolved = await lifecycle.resolve(
            alert.alert_id, f"  {NOTES}  ", 15, "dr-a",
            intervention_type="PHONE_CALL", patient_outcome="STABLE",
        )

        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolution_notes == NOTES
        assert resolved.time_spent_minutes == 15
        assert resolved.resolved_by == "dr-a"
        assert resolved.resolved_at == now
        assert resolved.intervention_type == InterventionType.PHONE_CALL
        assert resolved.priority_rank is None

    @pytest.mark.asyncio
    async def test_double_resolve_is_rejected(self, lifecycle, seed):
        alert = await self._acknowledged(lifecycle, seed)
        await lifecycle.resolve(alert.alert_id, NOTES, 5, "dr-a")

        with pytest.raises(AlertTerminalError) as exc_info:
            await lifecycle.resolve(alert.alert_id, NOTES, 5, "dr-a")

        assert exc_info.value.code == "alert_terminal"

    @pytest.mark.parametrize("notes", ["", "   ", "too short"])
    @pytest.mark.asyncio
    async def test_resolution_notes_required(self, lifecycle, seed, notes):
        alert = await self._acknowledged(lifecycle, seed)
        with pytest.raises(ValidationError):
            await lifecycle.resolve(alert.alert_id, notes, 5, "dr-a")

    @pytest.mark.parametrize("minutes", [0, -3, 2.5, True])
    @pytest.mark.asyncio
    async def test_time_spent_must_be_positive(self, lifecycle, seed, minutes):
        alert = await self._acknowledged(lifecycle, seed)
        with pytest.raises(ValidationError):
            await lifecycle.resolve(alert.alert_id, NOTES, minutes, "dr-a")

    @pytest.mark.asyncio
    async def test_unknown_intervention_type(self, lifecycle, seed):
        alert = await self._acknowledged(lifecycle, seed)
        with pytest.raises(ValidationError):
            await lifecycle.resolve(alert.alert_id, NOTES, 5, "dr-a", intervention_type="TELEPATHY")

    @pytest.mark.asyncio
    async def test_resolve_claimed_requires_policy(self, alert_store, lifecycle, seed, clock):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        with pytest.raises(InvalidTransitionError):
            await lifecycle.resolve(alert.alert_id, NOTES, 5, "dr-a")

        permissive = AlertLifecycleManager(
            alert_store, LifecycleConfig(allow_resolve_from_claimed=True), clock=clock
        )
        resolved = await permissive.resolve(alert.alert_id, NOTES, 5, "dr-a")
        assert resolved.status == AlertStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_claim_landing_before_resolve_write_wins(
        self, lifecycle, seed, alert_store, now, monkeypatch
    ):
        alert = await seed(status=AlertStatus.ACKNOWLEDGED)
        read_alert = alert_store.get_alert

        async def read_then_claim(alert_id):
            # Another clinician claims right after resolve reads the unclaimed alert
            current = await read_alert(alert_id)
            await alert_store.claim_alert(alert_id, "dr-x", now)
            return current

        monkeypatch.setattr(alert_store, "get_alert", read_then_claim)

        with pytest.raises(ClaimConflictError) as exc_info:
            await lifecycle.resolve(alert.alert_id, NOTES, 5, "dr-y")

        assert exc_info.value.claimed_by == "dr-x"
        stored = await read_alert(alert.alert_id)
        assert stored.status == AlertStatus.ACKNOWLEDGED
        assert stored.resolved_by is None


class TestBulkAcknowledge:

    @pytest.mark.asyncio
    async def test_partial_batch(self, lifecycle, seed):
        a1 = await seed()
        await lifecycle.claim(a1.alert_id, "dr-a")
        a2 = await seed(status=AlertStatus.RESOLVED)

        result = await lifecycle.bulk_acknowledge([a1.alert_id, a2.alert_id])

        assert result.succeeded == [a1.alert_id]
        assert len(result.skipped) == 1
        assert result.skipped[0].alert_id == a2.alert_id
        assert result.skipped[0].reason == "alert_terminal"

    @pytest.mark.asyncio
    async def test_reports_each_failure_reason(self, lifecycle, seed):
        pending = await seed()
        claimed = await seed()
        await lifecycle.claim(claimed.alert_id, "dr-b")

        result = await lifecycle.bulk_acknowledge(
            [pending.alert_id, "missing", claimed.alert_id, pending.alert_id], "dr-a"
        )

        reasons = {s.alert_id: s.reason for s in result.skipped}
        assert result.succeeded == []
        assert reasons == {
            pending.alert_id: "invalid_transition",
            "missing": "not_found",
            claimed.alert_id: "claim_conflict",
        }


class TestSnoozeAndSuppress:

    @pytest.mark.asyncio
    async def test_snooze_releases_claim(self, lifecycle, seed, now):
        alert = await seed()
        await lifecycle.claim(alert.alert_id, "dr-a")

        snoozed = await lifecycle.snooze(alert.alert_id, "dr-a", now + timedelta(hours=2))

        assert snoozed.status == AlertStatus.SNOOZED
        assert snoozed.snoozed_until == now + timedelta(hours=2)
        assert snoozed.claimed_by is None

    @pytest.mark.asyncio
    async def test_snooze_default_duration(self, lifecycle, seed, now):
        alert = await seed()
        snoozed = await lifecycle.snooze(alert.alert_id, "dr-a")
        assert snoozed.snoozed_until == now + timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_snooze_must_end_in_future(self, lifecycle, seed, now):
        alert = await seed()
        with pytest.raises(ValidationError):
            await lifecycle.snooze(alert.alert_id, "dr-a", now - timedelta(minutes=1))
        with pytest.raises(ValidationError):
            await lifecycle.snooze(alert.alert_id, "dr-a", now + timedelta(days=30))

    @pytest.mark.asyncio
    async def test_suppress_pending(self, lifecycle, seed):
        alert = await seed()

        suppressed = await lifecycle.suppress(alert.alert_id, "Duplicate reading", "dr-a")

        assert suppressed.status == AlertStatus.SUPPRESSED
        assert suppressed.suppression_reason == "Duplicate reading"
        with pytest.raises(AlertTerminalError):
            await lifecycle.claim(alert.alert_id, "dr-a")

    @pytest.mark.asyncio
    async def test_suppress_requires_reason(self, lifecycle, seed):
        alert = await seed()
        with pytest.raises(ValidationError):
            await lifecycle.suppress(alert.alert_id, " ", "dr-a")


class TestSweeps:

    @pytest.mark.asyncio
    async def test_reactivate_expired_snoozes(self, lifecycle, seed, now):
        expired = await seed(status=AlertStatus.SNOOZED, snoozed_until=now - timedelta(minutes=1))
        active = await seed(status=AlertStatus.SNOOZED, snoozed_until=now + timedelta(minutes=1))

        reactivated = await lifecycle.reactivate_expired_snoozes(now)

        assert [a.alert_id for a in reactivated] == [expired.alert_id]
        assert reactivated[0].status == AlertStatus.PENDING
        assert reactivated[0].snoozed_until is None
        assert (await lifecycle.store.get_alert(active.alert_id)).status == AlertStatus.SNOOZED

    @pytest.mark.asyncio
    async def test_release_stale_claims(self, lifecycle, seed, now):
        stale = await seed(
            status=AlertStatus.CLAIMED, claimed_by="dr-a", claimed_at=now - timedelta(minutes=61)
        )
        fresh = await seed(
            status=AlertStatus.CLAIMED, claimed_by="dr-b", claimed_at=now - timedelta(minutes=5)
        )

        released = await lifecycle.release_stale_claims(now)

        assert [a.alert_id for a in released] == [stale.alert_id]
        assert released[0].status == AlertStatus.PENDING
        assert released[0].claimed_by is None
        assert (await lifecycle.store.get_alert(fresh.alert_id)).claimed_by == "dr-b"
