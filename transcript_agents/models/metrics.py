"""Performance monitoring models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .enums import HealthStatus, RecommendationCategory, Severity


class ExecutionRecord(BaseModel):
    """A single unit (or whole pipeline) execution fed to the monitor."""

    unit_name: str
    latency_ms: float = Field(..., ge=0)
    resource_cost: int = Field(default=0, ge=0, description="Tokens consumed")
    success: bool
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    cache_hits: int = 0
    cache_misses: int = 0
    retries: int = 0
    timestamp: datetime = Field(default_factory=datetime.now)


class UnitMetrics(BaseModel):
    """Aggregates over one unit's window of records."""

    unit_name: str
    total_executions: int = 0
    average_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    average_confidence: Optional[float] = None
    total_resource_cost: int = 0
    average_resource_cost: float = 0.0
    cache_hit_rate: Optional[float] = None
    cost_estimate: float = 0.0
    last_execution: Optional[datetime] = None


class SystemMetrics(BaseModel):
    """Aggregates over every unit the monitor has seen."""

    total_executions: int = 0
    total_errors: int = 0
    error_rate: float = 0.0
    average_response_time_ms: float = 0.0
    throughput_per_minute: float = 0.0
    active_units: int = 0
    in_flight: int = 0
    total_resource_cost: int = 0
    cost_estimate: float = 0.0
    health: HealthStatus = HealthStatus.HEALTHY


class HealthReport(BaseModel):
    status: HealthStatus
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.now)


class Recommendation(BaseModel):
    """A remediation suggestion derived from the metrics."""

    unit_name: Optional[str] = Field(None, description="None for system-wide findings")
    category: RecommendationCategory
    severity: Severity
    priority: int = Field(..., description="Lower sorts first")
    message: str
    metric_value: Optional[float] = None
    threshold: Optional[float] = None
