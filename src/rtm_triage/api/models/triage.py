"""Triage queue and ranking response models."""

from typing import Dict, Optional

from pydantic import BaseModel


class RankResponse(BaseModel):
    organization_id: str
    ranked_count: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    components: Dict[str, Optional[bool]]
