"""Single-pass legacy extractor and the mapping into its flat shape."""

from typing import Any, Optional

import structlog

from transcript_agents.config.prompts import LEGACY_SYSTEM_PROMPT, TRANSCRIPT_USER_PROMPT
from transcript_agents.llm import GenerationService
from transcript_agents.models import (
    ActionItemsOutput,
    CallMetadata,
    CarrierOutput,
    ExtractionResult,
    LegacyExtraction,
    LoadOutput,
    NegotiationOutput,
    ShipperOutput,
    SummaryOutput,
)

logger = structlog.get_logger(__name__)


class LegacyExtractor:
    """Extracts everything with one generation call.

    This is the path callers outside the rollout get, and the fallback
    when the multi-unit pipeline fails.
    """

    def __init__(self, generation: GenerationService, model: Optional[str] = None):
        self.generation = generation
        self.model = model

    async def extract(self, transcript: str, metadata: CallMetadata) -> LegacyExtraction:
        user_prompt = TRANSCRIPT_USER_PROMPT.format(
            call_date=metadata.call_date.isoformat(),
            timezone=metadata.timezone or "unknown",
            transcript=transcript,
            extra="",
        )
        result = await self.generation.generate(
            system_prompt=LEGACY_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            temperature=0.3,
            model=self.model,
        )
        data: dict[str, Any] = {k: v for k, v in result.data.items() if v is not None}
        data["tokens_used"] = result.total_tokens
        extraction = LegacyExtraction.model_validate(data)
        logger.info("legacy_extraction_complete", call_id=metadata.call_id, tokens=result.total_tokens)
        return extraction


def to_legacy_format(result: ExtractionResult) -> LegacyExtraction:
    """Flatten a multi-unit result into the legacy shape for side-by-side use."""
    outputs = result.outputs
    loads = outputs.get("load_extraction")
    negotiation = outputs.get("rate_negotiation")
    carrier = outputs.get("carrier_information")
    shipper = outputs.get("shipper_information")
    summary = outputs.get("summary")
    actions = outputs.get("action_items")

    return LegacyExtraction(
        call_type=result.classification.primary_type.value if result.classification else None,
        summary=summary.summary if isinstance(summary, SummaryOutput) else None,
        loads=[load.model_dump(exclude_none=True) for load in loads.loads] if isinstance(loads, LoadOutput) else [],
        agreed_rate=negotiation.agreed_rate if isinstance(negotiation, NegotiationOutput) else None,
        carrier_name=carrier.carrier_name if isinstance(carrier, CarrierOutput) else None,
        shipper_name=shipper.shipper_name if isinstance(shipper, ShipperOutput) else None,
        action_items=[i.description for i in actions.items] if isinstance(actions, ActionItemsOutput) else [],
        confidence=result.overall_confidence,
        tokens_used=result.resource_cost,
    )
