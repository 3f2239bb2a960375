"""Triage queue and priority ranking endpoints."""

import logging
from typing import List, Optional

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Query

from rtm_triage.api.dependencies import get_engine
from rtm_triage.api.errors import to_http_exception
from rtm_triage.api.models.triage import RankResponse
from rtm_triage.core.engine import TriageEngine
from rtm_triage.core.exceptions import TriageError
from rtm_triage.core.models import AlertStatus, Severity
from rtm_triage.triage.queue import QueueFilters, TriageQueuePage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/triage", tags=["triage"])


@router.get("/{organization_id}/queue", response_model=TriageQueuePage)
async def get_triage_queue(
    organization_id: str,
    status: Optional[List[AlertStatus]] = Query(None),
    severity: Optional[List[Severity]] = Query(None),
    min_risk: Optional[float] = None,
    max_risk: Optional[float] = None,
    claimed_by: Optional[str] = None,
    sla_status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "priority_rank",
    engine: TriageEngine = Depends(get_engine),
):
    """Get one page of an organization's triage queue with summary counts."""
    try:
        filters = QueueFilters(
            statuses=status,
            severities=severity,
            min_risk=min_risk,
            max_risk=max_risk,
            claimed_by=claimed_by,
            sla_status=sla_status,
        )
    except pydantic.ValidationError as e:
        raise HTTPException(
            status_code=400, detail={"code": "validation_error", "message": str(e)}
        )

    try:
        return await engine.get_triage_queue(
            organization_id, filters, page=page, limit=limit, sort_by=sort_by
        )
    except TriageError as e:
        raise to_http_exception(e)


@router.post("/{organization_id}/recalculate-ranks", response_model=RankResponse)
async def recalculate_ranks(
    organization_id: str,
    engine: TriageEngine = Depends(get_engine),
):
    """Recompute the organization's priority ranks now."""
    try:
        count = await engine.recalculate_priority_ranks(organization_id)
        return RankResponse(organization_id=organization_id, ranked_count=count)
    except TriageError as e:
        logger.error(f"Rank recalculation failed for {organization_id}: {e}")
        raise to_http_exception(e)
