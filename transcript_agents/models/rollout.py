"""Rollout and production routing models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import ProcessingMethod, RolloutStatus
from .execution import ExtractionResult


class RolloutCriteria(BaseModel):
    """Who is eligible for the new pipeline in a phase."""

    organization_allowlist: list[str] = Field(default_factory=list)
    organization_denylist: list[str] = Field(default_factory=list)
    user_allowlist: list[str] = Field(default_factory=list)
    user_denylist: list[str] = Field(default_factory=list)
    min_call_volume: Optional[int] = Field(None, description="Minimum calls per month")
    regions: list[str] = Field(default_factory=list)


class RolloutFeatureSet(BaseModel):
    """Pipeline features switched on for callers in a phase."""

    enabled_units: list[str] = Field(default_factory=list, description="Empty means all units")
    disabled_units: list[str] = Field(default_factory=list)
    comparison_mode: bool = False
    fallback_enabled: bool = True


class RolloutTargets(BaseModel):
    """Metrics a phase is expected to hold."""

    min_success_rate: float = Field(..., ge=0.0, le=1.0)
    max_latency_ms: float = Field(..., gt=0)
    max_error_rate: float = Field(..., ge=0.0, le=1.0)


class RolloutPhase(BaseModel):
    """A stage of the staged rollout."""

    id: str
    name: str
    percentage: float = Field(..., ge=0, le=100)
    criteria: RolloutCriteria = Field(default_factory=RolloutCriteria)
    features: RolloutFeatureSet = Field(default_factory=RolloutFeatureSet)
    targets: RolloutTargets
    status: RolloutStatus = RolloutStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    rollback_reason: Optional[str] = None


class RolloutMetrics(BaseModel):
    """Live metrics of a phase over a trailing window."""

    phase_id: str
    success_rate: float = 0.0
    error_rate: float = 0.0
    average_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    calls_processed: int = 0
    organization_count: int = 0
    window_seconds: float = 3600.0
    computed_at: datetime = Field(default_factory=datetime.now)


class RoutingDecision(BaseModel):
    use_new_pipeline: bool
    reason: str
    phase_id: Optional[str] = None
    comparison_mode: bool = False
    fallback_enabled: bool = True
    disabled_units: list[str] = Field(default_factory=list)
    enabled_units: list[str] = Field(default_factory=list)


class CallOutcome(BaseModel):
    """One processed call, as seen by the rollout controller."""

    phase_id: str
    call_id: str
    organization_id: str
    success: bool
    latency_ms: float
    pipeline_error: bool = Field(
        default=False, description="New pipeline failed, regardless of fallback outcome"
    )
    timestamp: datetime = Field(default_factory=datetime.now)


class RolloutEvent(BaseModel):
    """Audit entry for rollout state changes."""

    event: str
    phase_id: Optional[str] = None
    reason: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class RolloutStatusReport(BaseModel):
    active_phase: Optional[RolloutPhase] = None
    phases: list[RolloutPhase] = Field(default_factory=list)
    metrics: Optional[RolloutMetrics] = None
    new_pipeline_enabled: bool = False
    percentage: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


# =============================================================================
# Production processing
# =============================================================================

class LegacyExtraction(BaseModel):
    """Flat single-pass extraction shape."""

    call_type: Optional[str] = None
    summary: Optional[str] = None
    loads: list[dict[str, Any]] = Field(default_factory=list)
    agreed_rate: Optional[float] = None
    carrier_name: Optional[str] = None
    shipper_name: Optional[str] = None
    action_items: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    tokens_used: int = 0


class ComparisonReport(BaseModel):
    """Field-level agreement between the new and legacy extractions."""

    agreement_percentage: float
    matched_fields: list[str] = Field(default_factory=list)
    differences: list[dict[str, Any]] = Field(default_factory=list)
    recommendation: str = Field(..., description="use_new or needs_review")


class ProcessingOptions(BaseModel):
    """Caller-supplied options for one processing request."""

    utterances: Optional[list[dict[str, Any]]] = None
    user_id: Optional[str] = None
    region: Optional[str] = None
    call_volume: Optional[int] = None
    call_type: Optional[str] = None
    call_date: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    customer_name: Optional[str] = None
    timezone: Optional[str] = None


class ProcessingResult(BaseModel):
    """What the production entry point returns for every call."""

    call_id: str
    success: bool
    method: ProcessingMethod
    new_output: Optional[ExtractionResult] = None
    legacy_output: Optional[LegacyExtraction] = None
    comparison: Optional[ComparisonReport] = None
    execution_time_ms: float = 0.0
    resource_cost: int = 0
    errors: list[str] = Field(default_factory=list)
    rollout_phase_id: Optional[str] = None
    routing_reason: str = ""
    fallback_used: bool = False
