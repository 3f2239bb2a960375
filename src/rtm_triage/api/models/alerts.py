"""Alert action request models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ClaimRequest(BaseModel):
    """Request model for claiming or releasing an alert."""
    clinician_id: str = Field(..., min_length=1)


class AcknowledgeRequest(BaseModel):
    clinician_id: Optional[str] = None


class ResolveRequest(BaseModel):
    """Request model for resolving an alert."""
    notes: str
    time_spent_minutes: int
    resolved_by: str = Field(..., min_length=1)
    intervention_type: Optional[str] = None
    patient_outcome: Optional[str] = None


class SnoozeRequest(BaseModel):
    """Snooze until a time, or for a number of minutes (default from config)."""
    snoozed_by: str = Field(..., min_length=1)
    until: Optional[datetime] = None
    minutes: Optional[int] = Field(None, gt=0)


class SuppressRequest(BaseModel):
    reason: str
    suppressed_by: str = Field(..., min_length=1)


class RecalculateSLARequest(BaseModel):
    reason: str
    actor_id: Optional[str] = None


class BulkAcknowledgeRequest(BaseModel):
    alert_ids: List[str] = Field(..., min_length=1)
    clinician_id: Optional[str] = None
