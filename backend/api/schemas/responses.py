"""
Response schemas for the API.

Processing results, rollout status and monitor aggregates are returned as
the pipeline's own models; the schemas here cover the administrative
acknowledgements around them.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from transcript_agents.models import Recommendation, RolloutMetrics, UnitMetrics


class PhaseCreatedResponse(BaseModel):
    """Response after registering a phase."""
    phase_id: str


class StandardRolloutResponse(BaseModel):
    """Response after registering the standard phases."""
    phase_ids: list[str]
    count: int


class OverrideResponse(BaseModel):
    """Current operator override of the rollout decision."""
    override: Optional[bool] = Field(None, description="True forces new, False forces legacy, None follows rollout")


class EvaluationResponse(BaseModel):
    """Result of an on-demand monitoring tick."""
    active_phase_id: Optional[str] = None
    rolled_back: bool = False
    metrics: Optional[RolloutMetrics] = None
    evaluated_at: datetime = Field(default_factory=datetime.now)


class UnitMetricsListResponse(BaseModel):
    units: list[UnitMetrics]
    count: int


class RecommendationsResponse(BaseModel):
    recommendations: list[Recommendation]
    count: int


class FlushResponse(BaseModel):
    rows_written: int
