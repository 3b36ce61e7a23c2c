"""
Request schemas for the API.

These define the expected input structure for API endpoints.
Using Pydantic v2 for validation and serialization.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from transcript_agents.models import ProcessingOptions, RolloutCriteria, RolloutFeatureSet, RolloutTargets, Utterance


class ProcessCallRequest(BaseModel):
    """Request to process one call transcript."""
    transcript: str = Field(..., min_length=1, description="Full transcript text")
    organization_id: str = Field(..., min_length=1, description="Organization the call belongs to")
    utterances: list[Utterance] = Field(default_factory=list, description="Speaker-tagged segments, if available")
    user_id: Optional[str] = None
    region: Optional[str] = None
    call_volume: Optional[int] = Field(None, ge=0, description="Organization's monthly call volume")
    call_type: Optional[str] = None
    call_date: Optional[datetime] = None
    duration_seconds: Optional[float] = Field(None, ge=0)
    customer_name: Optional[str] = None
    timezone: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "transcript": "Broker: Thanks for calling...\nCarrier: I'm calling about the Dallas load...",
                    "organization_id": "acme-logistics",
                }
            ]
        }
    }

    def to_options(self) -> ProcessingOptions:
        return ProcessingOptions(
            utterances=[u.model_dump() for u in self.utterances],
            user_id=self.user_id,
            region=self.region,
            call_volume=self.call_volume,
            call_type=self.call_type,
            call_date=self.call_date,
            duration_seconds=self.duration_seconds,
            customer_name=self.customer_name,
            timezone=self.timezone,
        )


class CreatePhaseRequest(BaseModel):
    """Request to register a rollout phase."""
    name: str = Field(..., min_length=1)
    percentage: float = Field(..., ge=0, le=100)
    targets: RolloutTargets
    criteria: RolloutCriteria = Field(default_factory=RolloutCriteria)
    features: RolloutFeatureSet = Field(default_factory=RolloutFeatureSet)


class RollbackRequest(BaseModel):
    """Request to roll back a rollout phase."""
    reason: str = Field(..., min_length=1, description="Why the phase is being rolled back")
