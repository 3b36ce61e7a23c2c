"""Models describing a single pipeline run."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import ErrorCode, UnitStatus
from .outputs import ClassificationOutput, UnitOutput


class UnitConfig(BaseModel):
    """Execution policy of a unit. Phases may override fields per run."""

    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Wall-clock budget per attempt; the orchestrator default when unset"
    )
    critical: bool = Field(default=False, description="Failure aborts the whole run")
    parallel: bool = Field(default=False, description="Safe to run alongside its phase siblings")
    retry_on_failure: bool = Field(default=False, description="Retry once on a recoverable error")
    optional: bool = Field(default=False, description="Run even when dependencies are missing")

    def merged(self, overrides: Optional[dict[str, Any]] = None) -> "UnitConfig":
        if not overrides:
            return self
        return self.model_copy(update=overrides)


class UnitError(BaseModel):
    """Classified unit failure."""

    code: ErrorCode
    message: str
    recoverable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Terminal (or running) state of one unit within a run."""

    unit_name: str
    status: UnitStatus
    output: Optional[UnitOutput] = None
    error: Optional[UnitError] = None
    execution_time_ms: float = 0.0
    resource_cost: int = Field(default=0, description="Tokens consumed across attempts")
    warnings: list[str] = Field(default_factory=list)
    attempts: int = 0
    cached: bool = Field(default=False, description="Output served from the result cache")


class ExecutionLogEntry(BaseModel):
    """One entry per attempted unit; retries update the same entry."""

    unit_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: UnitStatus = UnitStatus.RUNNING
    attempts: int = 1
    error: Optional[UnitError] = None


class Utterance(BaseModel):
    """A speaker-tagged segment of the transcript."""

    speaker: str
    text: str
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None


class CallMetadata(BaseModel):
    """Call-level metadata supplied by the caller."""

    call_id: str
    organization_id: str
    user_id: Optional[str] = None
    call_type: Optional[str] = Field(None, description="inbound or outbound, if known")
    call_date: datetime = Field(default_factory=datetime.now)
    duration_seconds: Optional[float] = None
    customer_name: Optional[str] = None
    timezone: Optional[str] = None


class ContextSnapshot(BaseModel):
    """Serializable copy of the mutable part of an execution context."""

    call_id: str
    unit_results: dict[str, ExecutionResult] = Field(default_factory=dict)
    shared_state: dict[str, Any] = Field(default_factory=dict)
    execution_log: list[ExecutionLogEntry] = Field(default_factory=list)
    resource_cost: int = 0
    created_at: datetime = Field(default_factory=datetime.now)


class ExecutionSummary(BaseModel):
    """Counts and totals over a context's results."""

    total_units: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    running: int = 0
    total_time_ms: float = 0.0
    resource_cost: int = 0


class ExtractionResult(BaseModel):
    """Consolidated result of one orchestrated run."""

    call_id: str
    success: bool
    aborted: bool = False
    abort_reason: Optional[str] = None
    classification: Optional[ClassificationOutput] = None
    outputs: dict[str, UnitOutput] = Field(default_factory=dict)
    execution_time_ms: float = 0.0
    resource_cost: int = 0
    agents_executed: list[str] = Field(default_factory=list)
    agents_failed: list[str] = Field(default_factory=list)
    agents_skipped: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    requires_human_review: bool = False
    execution_log: list[ExecutionLogEntry] = Field(default_factory=list)
    plan: list[str] = Field(default_factory=list, description="Names of the executed phases")

    @property
    def overall_confidence(self) -> float:
        """Mean confidence over the outputs of completed units."""
        values = [
            self.outputs[name].confidence.value
            for name in self.agents_executed
            if name in self.outputs
        ]
        if not values:
            return 0.0
        return round(sum(values) / len(values), 4)
