"""API schemas package."""

from .requests import CreatePhaseRequest, ProcessCallRequest, RollbackRequest
from .responses import (
    EvaluationResponse,
    FlushResponse,
    OverrideResponse,
    PhaseCreatedResponse,
    RecommendationsResponse,
    StandardRolloutResponse,
    UnitMetricsListResponse,
)

__all__ = [
    # Requests
    "CreatePhaseRequest",
    "ProcessCallRequest",
    "RollbackRequest",
    # Responses
    "EvaluationResponse",
    "FlushResponse",
    "OverrideResponse",
    "PhaseCreatedResponse",
    "RecommendationsResponse",
    "StandardRolloutResponse",
    "UnitMetricsListResponse",
]
