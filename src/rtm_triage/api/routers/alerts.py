"""Alert registration and lifecycle endpoints."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends

from rtm_triage.api.dependencies import get_engine
from rtm_triage.api.errors import to_http_exception
from rtm_triage.api.models.alerts import (
    AcknowledgeRequest,
    BulkAcknowledgeRequest,
    ClaimRequest,
    RecalculateSLARequest,
    ResolveRequest,
    SnoozeRequest,
    SuppressRequest,
)
from rtm_triage.core.engine import TriageEngine
from rtm_triage.core.exceptions import TriageError
from rtm_triage.core.models import Alert, AlertCreate, BulkAcknowledgeResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post("", response_model=Alert, status_code=201)
async def register_alert(
    payload: AlertCreate,
    engine: TriageEngine = Depends(get_engine),
):
    """Register a triggered alert: score it, fix its SLA deadline and rank it."""
    try:
        return await engine.register_alert(payload)
    except TriageError as e:
        logger.error(f"Alert registration failed: {e}")
        raise to_http_exception(e)


@router.post("/bulk-acknowledge", response_model=BulkAcknowledgeResult)
async def bulk_acknowledge(
    request: BulkAcknowledgeRequest,
    engine: TriageEngine = Depends(get_engine),
):
    """Acknowledge several alerts; ineligible ids are reported, not fatal."""
    try:
        return await engine.bulk_acknowledge(request.alert_ids, request.clinician_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.get("/{alert_id}", response_model=Alert)
async def get_alert(
    alert_id: str,
    engine: TriageEngine = Depends(get_engine),
):
    try:
        return await engine.get_alert(alert_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/claim", response_model=Alert)
async def claim_alert(
    alert_id: str,
    request: ClaimRequest,
    engine: TriageEngine = Depends(get_engine),
):
    """Claim an alert. 409 with code claim_conflict when someone else holds it."""
    try:
        return await engine.claim(alert_id, request.clinician_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/unclaim", response_model=Alert)
async def unclaim_alert(
    alert_id: str,
    request: ClaimRequest,
    engine: TriageEngine = Depends(get_engine),
):
    try:
        return await engine.unclaim(alert_id, request.clinician_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/acknowledge", response_model=Alert)
async def acknowledge_alert(
    alert_id: str,
    request: AcknowledgeRequest = AcknowledgeRequest(),
    engine: TriageEngine = Depends(get_engine),
):
    try:
        return await engine.acknowledge(alert_id, request.clinician_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/resolve", response_model=Alert)
async def resolve_alert(
    alert_id: str,
    request: ResolveRequest,
    engine: TriageEngine = Depends(get_engine),
):
    """Resolve an acknowledged alert with clinical documentation."""
    try:
        return await engine.resolve(
            alert_id,
            notes=request.notes,
            time_spent_minutes=request.time_spent_minutes,
            resolved_by=request.resolved_by,
            intervention_type=request.intervention_type,
            patient_outcome=request.patient_outcome,
        )
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/snooze", response_model=Alert)
async def snooze_alert(
    alert_id: str,
    request: SnoozeRequest,
    engine: TriageEngine = Depends(get_engine),
):
    try:
        until = request.until
        if until is None and request.minutes is not None:
            until = engine.clock() + timedelta(minutes=request.minutes)
        return await engine.snooze(alert_id, request.snoozed_by, until)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/suppress", response_model=Alert)
async def suppress_alert(
    alert_id: str,
    request: SuppressRequest,
    engine: TriageEngine = Depends(get_engine),
):
    try:
        return await engine.suppress(alert_id, request.reason, request.suppressed_by)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/rescore", response_model=Alert)
async def rescore_alert(
    alert_id: str,
    engine: TriageEngine = Depends(get_engine),
):
    """Recompute the risk score from current signals; the SLA deadline is kept."""
    try:
        return await engine.rescore_alert(alert_id)
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{alert_id}/recalculate-sla", response_model=Alert)
async def recalculate_sla(
    alert_id: str,
    request: RecalculateSLARequest,
    engine: TriageEngine = Depends(get_engine),
):
    """Explicitly recompute the SLA deadline. The change is audited."""
    try:
        return await engine.recalculate_sla(alert_id, request.reason, request.actor_id)
    except TriageError as e:
        raise to_http_exception(e)
