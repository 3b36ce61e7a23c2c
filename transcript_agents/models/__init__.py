"""Pydantic data models for the pipeline."""

from .enums import (
    CallType,
    CircuitState,
    ConfidenceLevel,
    ErrorCode,
    HealthStatus,
    IssueSeverity,
    NegotiationStatus,
    ProcessingMethod,
    RecommendationCategory,
    RolloutStatus,
    Severity,
    SpeakerRole,
    UnitStatus,
)
from .outputs import (
    Accessorial,
    AccessorialCalculation,
    AccessorialCharge,
    AccessorialImpact,
    AccessorialOutput,
    AccessorialTerms,
    AccessorialWarning,
    ActionItem,
    ActionItemsOutput,
    BaseOutput,
    CarrierOutput,
    ClassificationOutput,
    Condition,
    ConditionalAgreementOutput,
    ConfidenceScore,
    GenericOutput,
    Load,
    LoadOutput,
    MarketComparison,
    NegotiationOutput,
    ReferenceNumber,
    ReferenceOutput,
    ShipperOutput,
    Speaker,
    SpeakerOutput,
    SummaryOutput,
    TemporalOutput,
    TemporalReference,
    UnitOutput,
    ValidationIssue,
    ValidationOutput,
)
from .execution import (
    CallMetadata,
    ContextSnapshot,
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionSummary,
    ExtractionResult,
    UnitConfig,
    UnitError,
    Utterance,
)
from .metrics import ExecutionRecord, HealthReport, Recommendation, SystemMetrics, UnitMetrics
from .rollout import (
    CallOutcome,
    ComparisonReport,
    LegacyExtraction,
    ProcessingOptions,
    ProcessingResult,
    RolloutCriteria,
    RolloutEvent,
    RolloutFeatureSet,
    RolloutMetrics,
    RolloutPhase,
    RolloutStatusReport,
    RolloutTargets,
    RoutingDecision,
)
