"""Unit output models.

Every unit produces exactly one of the shapes below. The shapes form a
tagged union on ``kind`` so the orchestrator can store, snapshot and
restore outputs without knowing what is inside them.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .enums import CallType, ConfidenceLevel, IssueSeverity, NegotiationStatus, SpeakerRole


class ConfidenceScore(BaseModel):
    """Confidence attached to every unit output."""

    value: float = Field(..., ge=0.0, le=1.0, description="Confidence between 0 and 1")
    level: ConfidenceLevel = Field(..., description="Bucketed confidence")
    factors: list[str] = Field(default_factory=list, description="What drove the score")

    @classmethod
    def from_value(cls, value: float, factors: Optional[list[str]] = None) -> "ConfidenceScore":
        value = min(max(value, 0.0), 1.0)
        if value >= 0.8:
            level = ConfidenceLevel.HIGH
        elif value >= 0.5:
            level = ConfidenceLevel.MEDIUM
        else:
            level = ConfidenceLevel.LOW
        return cls(value=round(value, 4), level=level, factors=factors or [])


class BaseOutput(BaseModel):
    """Fields shared by every unit output."""

    confidence: ConfidenceScore
    processing_notes: list[str] = Field(default_factory=list)
    tokens_used: int = Field(default=0, ge=0)


# =============================================================================
# Foundation
# =============================================================================

class ClassificationOutput(BaseOutput):
    """Primary call category and supporting signals."""

    kind: Literal["classification"] = "classification"
    primary_type: CallType = Field(..., description="Primary category of the call")
    sub_types: list[CallType] = Field(default_factory=list)
    indicators: list[str] = Field(default_factory=list, description="Phrases that drove the decision")
    multi_load_call: bool = False
    continuation_call: bool = False

    @field_validator("primary_type", mode="before")
    @classmethod
    def _coerce_primary_type(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in {t.value for t in CallType}:
            return CallType.UNKNOWN
        return value

    @field_validator("sub_types", mode="before")
    @classmethod
    def _drop_unknown_sub_types(cls, value: Any) -> Any:
        if isinstance(value, list):
            known = {t.value for t in CallType}
            return [v for v in value if not isinstance(v, str) or v in known]
        return value


class Speaker(BaseModel):
    """A participant identified on the call."""

    label: str = Field(..., description="Speaker label as it appears in the utterances")
    role: SpeakerRole = SpeakerRole.UNKNOWN
    name: Optional[str] = None
    company: Optional[str] = None


class SpeakerOutput(BaseOutput):
    kind: Literal["speakers"] = "speakers"
    speakers: list[Speaker] = Field(default_factory=list)

    def role_of(self, label: str) -> SpeakerRole:
        for speaker in self.speakers:
            if speaker.label == label:
                return speaker.role
        return SpeakerRole.UNKNOWN


class TemporalReference(BaseModel):
    """A time expression and its resolved value."""

    text: str = Field(..., description="Expression as spoken, e.g. 'tomorrow morning'")
    purpose: str = Field(default="other", description="pickup, delivery, callback or other")
    resolved: Optional[datetime] = None


class TemporalOutput(BaseOutput):
    kind: Literal["temporal"] = "temporal"
    timezone: Optional[str] = None
    references: list[TemporalReference] = Field(default_factory=list)


class ReferenceNumber(BaseModel):
    kind: str = Field(..., description="load, po, bol, pro or mc")
    value: str


class ReferenceOutput(BaseOutput):
    kind: Literal["reference"] = "reference"
    references: list[ReferenceNumber] = Field(default_factory=list)
    previous_call_referenced: bool = False


# =============================================================================
# Category specific
# =============================================================================

class Load(BaseModel):
    """A single load discussed on the call."""

    load_id: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    pickup_date: Optional[str] = None
    delivery_date: Optional[str] = None
    equipment_type: Optional[str] = None
    weight_lbs: Optional[float] = None
    commodity: Optional[str] = None
    status: Optional[str] = None


class LoadOutput(BaseOutput):
    kind: Literal["loads"] = "loads"
    loads: list[Load] = Field(default_factory=list)


class CarrierOutput(BaseOutput):
    kind: Literal["carrier"] = "carrier"
    carrier_name: Optional[str] = None
    mc_number: Optional[str] = None
    dot_number: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    equipment: list[str] = Field(default_factory=list)


class ShipperOutput(BaseOutput):
    kind: Literal["shipper"] = "shipper"
    shipper_name: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    requirements: list[str] = Field(default_factory=list)


class NegotiationOutput(BaseOutput):
    kind: Literal["negotiation"] = "negotiation"
    status: NegotiationStatus = NegotiationStatus.NO_NEGOTIATION
    initial_offer: Optional[float] = None
    counter_offers: list[float] = Field(default_factory=list)
    agreed_rate: Optional[float] = None
    rate_type: str = Field(default="flat", description="flat or per_mile")
    currency: str = "USD"


class Condition(BaseModel):
    description: str
    satisfied: Optional[bool] = None


class Accessorial(BaseModel):
    type: str = Field(..., description="detention, lumper, tonu, layover, ...")
    amount: Optional[float] = None


class ConditionalAgreementOutput(BaseOutput):
    kind: Literal["conditions"] = "conditions"
    conditions: list[Condition] = Field(default_factory=list)
    accessorials: list[Accessorial] = Field(default_factory=list)


class AccessorialCalculation(BaseModel):
    method: str = Field(default="flat", description="flat, hourly, per_mile, percentage or per_unit")
    rate: Optional[float] = None
    unit: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class AccessorialTerms(BaseModel):
    free_time: Optional[float] = None
    free_time_unit: str = "hours"
    trigger: Optional[str] = None
    start_time: Optional[str] = None


class AccessorialCharge(BaseModel):
    """One accessorial with how it is calculated, billed and applied."""

    id: str
    type: str = Field(default="other", description="detention, lumper, tonu, layover, stop_charge, ...")
    amount: Optional[float] = None
    currency: str = "USD"
    calculation: AccessorialCalculation = Field(default_factory=AccessorialCalculation)
    terms: AccessorialTerms = Field(default_factory=AccessorialTerms)
    paid_by: Optional[str] = Field(default="broker", description="broker, carrier, shipper, receiver or reimbursable")
    reimbursable: bool = False
    requires_receipt: bool = False
    status: Optional[str] = Field(default="additional", description="included, additional, negotiable, waived or disputed")
    locations: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    raw_text: str = ""


class AccessorialImpact(BaseModel):
    estimated_charges: Optional[float] = None
    worst_case: Optional[float] = None
    best_case: Optional[float] = None
    included_in_rate: list[str] = Field(default_factory=list)
    additional: list[str] = Field(default_factory=list)


class MarketComparison(BaseModel):
    """Per-type verdicts: below_market, market_rate or above_market."""

    detention: Optional[str] = None
    lumper: Optional[str] = None
    tonu: Optional[str] = None
    overall: str = Field(default="standard", description="carrier_favorable, standard or broker_favorable")


class AccessorialWarning(BaseModel):
    type: str = Field(..., description="missing_terms, unusual_charge, high_rate, unclear_terms or conflict")
    accessorial_type: str
    description: str
    severity: str = "minor"


class AccessorialOutput(BaseOutput):
    kind: Literal["accessorials"] = "accessorials"
    accessorials: list[AccessorialCharge] = Field(default_factory=list)
    total_impact: AccessorialImpact = Field(default_factory=AccessorialImpact)
    market_comparison: Optional[MarketComparison] = None
    special_provisions: list[str] = Field(default_factory=list)
    warnings: list[AccessorialWarning] = Field(default_factory=list)


class ActionItem(BaseModel):
    description: str
    owner: Optional[str] = None
    due: Optional[str] = None


class ActionItemsOutput(BaseOutput):
    kind: Literal["action_items"] = "action_items"
    items: list[ActionItem] = Field(default_factory=list)


# =============================================================================
# Finalization
# =============================================================================

class ValidationIssue(BaseModel):
    severity: IssueSeverity = IssueSeverity.WARNING
    unit: Optional[str] = None
    message: str


class ValidationOutput(BaseOutput):
    kind: Literal["validation"] = "validation"
    is_valid: bool = True
    requires_review: bool = False
    issues: list[ValidationIssue] = Field(default_factory=list)


class SummaryOutput(BaseOutput):
    kind: Literal["summary"] = "summary"
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class GenericOutput(BaseOutput):
    """Opaque payload for units outside the known catalogue."""

    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


UnitOutput = Annotated[
    Union[
        ClassificationOutput,
        SpeakerOutput,
        TemporalOutput,
        ReferenceOutput,
        LoadOutput,
        CarrierOutput,
        ShipperOutput,
        NegotiationOutput,
        ConditionalAgreementOutput,
        AccessorialOutput,
        ActionItemsOutput,
        ValidationOutput,
        SummaryOutput,
        GenericOutput,
    ],
    Field(discriminator="kind"),
]
