"""Call classification - always the first unit of a run."""

import structlog

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import CLASSIFICATION_SYSTEM_PROMPT
from transcript_agents.models import CallType, ClassificationOutput, ConfidenceScore, UnitConfig

logger = structlog.get_logger(__name__)

# Phrases that usually accompany each category
CATEGORY_KEYWORDS: dict[CallType, list[str]] = {
    CallType.NEW_BOOKING: ["need a truck", "have a load", "tender", "book a load", "ship"],
    CallType.CARRIER_QUOTE: ["posted", "load board", "still available", "what's it paying", "my truck"],
    CallType.CHECK_CALL: ["eta", "where are you", "status", "delivered", "on schedule", "checking in"],
    CallType.RENEGOTIATION: ["raise the rate", "more money", "detention", "rate change", "renegotiate"],
    CallType.CALLBACK_ACCEPTANCE: ["calling back", "we'll take it", "accept", "still good"],
    CallType.WRONG_NUMBER: ["wrong number", "no one by that name", "you have the wrong"],
    CallType.VOICEMAIL: ["leave a message", "voicemail", "after the tone", "not available"],
}


class ClassificationUnit(BaseUnit):
    """Decides the call category that drives the execution plan."""

    name = "classification"
    description = "Classifies the call into a primary brokerage category"
    output_type = ClassificationOutput
    system_prompt = CLASSIFICATION_SYSTEM_PROMPT
    temperature = 0.1
    default_config = UnitConfig(timeout_seconds=15, critical=True, retry_on_failure=True)

    def should_execute(self, context: ExecutionContext) -> bool:
        return bool(context.transcript.strip() or context.utterances)

    async def execute(self, context: ExecutionContext) -> ClassificationOutput:
        result = await self.generate(context)
        output = self.parse_output(result)

        text = self.utterance_text(context) or context.transcript
        matched = self.find_keywords(text, CATEGORY_KEYWORDS.get(output.primary_type, []))
        output.confidence = self.calculate_confidence({
            "model_confidence": output.confidence.value,
            "keyword_agreement": 1.0 if matched else 0.5,
        })
        if matched:
            output.indicators = list(dict.fromkeys(output.indicators + matched))

        logger.debug(
            "call_classified",
            call_id=context.call_id,
            primary_type=output.primary_type.value,
            confidence=output.confidence.value,
        )
        return output

    def get_default_output(self) -> ClassificationOutput:
        return ClassificationOutput(
            primary_type=CallType.CHECK_CALL,
            confidence=ConfidenceScore.from_value(0.3, ["default output"]),
            processing_notes=["classification failed; defaulted to check_call"],
        )
