"""Enumeration types for the pipeline models."""

from enum import Enum


class CallType(str, Enum):
    """Primary category of a brokerage call."""

    NEW_BOOKING = "new_booking"
    CARRIER_QUOTE = "carrier_quote"
    CHECK_CALL = "check_call"
    RENEGOTIATION = "renegotiation"
    CALLBACK_ACCEPTANCE = "callback_acceptance"
    WRONG_NUMBER = "wrong_number"
    VOICEMAIL = "voicemail"
    UNKNOWN = "unknown"


class UnitStatus(str, Enum):
    """Lifecycle status of a single unit within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorCode(str, Enum):
    """Classified unit failure codes."""

    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    API_ERROR = "API_ERROR"
    TRANSIENT = "TRANSIENT"
    INVALID_OUTPUT = "INVALID_OUTPUT"
    CANCELLED = "CANCELLED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    UNKNOWN = "UNKNOWN"


class ConfidenceLevel(str, Enum):
    """Bucketed confidence."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SpeakerRole(str, Enum):
    """Role of a participant on a brokerage call."""

    BROKER = "broker"
    CARRIER = "carrier"
    SHIPPER = "shipper"
    DISPATCHER = "dispatcher"
    DRIVER = "driver"
    UNKNOWN = "unknown"


class NegotiationStatus(str, Enum):
    """Outcome of a rate negotiation."""

    AGREED = "agreed"
    PENDING = "pending"
    REJECTED = "rejected"
    NO_NEGOTIATION = "no_negotiation"


class IssueSeverity(str, Enum):
    """Severity of a validation finding."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthStatus(str, Enum):
    """Health classification of the pipeline."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class RecommendationCategory(str, Enum):
    """Area a performance recommendation targets."""

    PERFORMANCE = "performance"
    COST = "cost"
    RELIABILITY = "reliability"
    ACCURACY = "accuracy"


class Severity(str, Enum):
    """Urgency of a recommendation."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RolloutStatus(str, Enum):
    """Lifecycle status of a rollout phase."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class ProcessingMethod(str, Enum):
    """Which pipeline produced a processing result."""

    NEW = "new"
    LEGACY = "legacy"
    COMPARISON = "comparison"


class CircuitState(str, Enum):
    """Circuit breaker state of a unit."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
