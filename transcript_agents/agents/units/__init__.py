"""Default unit catalogue."""

from typing import Optional

from transcript_agents.agents.base import BaseUnit
from transcript_agents.llm import GenerationService

from .accessorials import AccessorialParserUnit
from .action_items import ActionItemsUnit
from .classification import ClassificationUnit
from .finalization import SummaryUnit, ValidationUnit
from .foundation import SpeakerIdentificationUnit, TemporalResolutionUnit
from .loads import LoadExtractionUnit
from .negotiation import ConditionalAgreementUnit, RateNegotiationUnit
from .parties import CarrierInformationUnit, ShipperInformationUnit
from .references import ReferenceResolutionUnit

DEFAULT_UNIT_TYPES: tuple[type[BaseUnit], ...] = (
    ClassificationUnit,
    SpeakerIdentificationUnit,
    TemporalResolutionUnit,
    ReferenceResolutionUnit,
    LoadExtractionUnit,
    CarrierInformationUnit,
    ShipperInformationUnit,
    RateNegotiationUnit,
    ConditionalAgreementUnit,
    AccessorialParserUnit,
    ActionItemsUnit,
    ValidationUnit,
    SummaryUnit,
)


def create_default_units(generation: Optional[GenerationService], model: Optional[str] = None) -> list[BaseUnit]:
    """Instantiate the full catalogue against one generation service."""
    return [unit_type(generation=generation, model=model) for unit_type in DEFAULT_UNIT_TYPES]


__all__ = [
    "AccessorialParserUnit",
    "ActionItemsUnit",
    "CarrierInformationUnit",
    "ClassificationUnit",
    "ConditionalAgreementUnit",
    "DEFAULT_UNIT_TYPES",
    "LoadExtractionUnit",
    "RateNegotiationUnit",
    "ReferenceResolutionUnit",
    "ShipperInformationUnit",
    "SpeakerIdentificationUnit",
    "SummaryUnit",
    "TemporalResolutionUnit",
    "ValidationUnit",
    "create_default_units",
]
