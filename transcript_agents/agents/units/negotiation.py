"""Rate negotiation and the conditions attached to an agreement."""

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import CONDITIONS_SYSTEM_PROMPT, NEGOTIATION_SYSTEM_PROMPT
from transcript_agents.models import (
    ConditionalAgreementOutput,
    NegotiationOutput,
    NegotiationStatus,
    UnitConfig,
)


class RateNegotiationUnit(BaseUnit):
    """Traces offers and counter-offers to the agreed rate."""

    name = "rate_negotiation"
    description = "Extracts offers, counter-offers and the agreed rate"
    dependencies = ("speaker_identification",)
    output_type = NegotiationOutput
    system_prompt = NEGOTIATION_SYSTEM_PROMPT
    temperature = 0.1
    default_config = UnitConfig(timeout_seconds=20, retry_on_failure=True)

    async def execute(self, context: ExecutionContext) -> NegotiationOutput:
        output = self.parse_output(await self.generate(context))

        if output.status == NegotiationStatus.AGREED and output.agreed_rate is None:
            # An agreement without a number is not usable downstream
            output.status = NegotiationStatus.PENDING
            output.processing_notes.append("agreement stated without a rate; marked pending")
        if output.agreed_rate is not None and output.status == NegotiationStatus.NO_NEGOTIATION:
            output.status = NegotiationStatus.AGREED
        return output


class ConditionalAgreementUnit(BaseUnit):
    name = "conditional_agreement"
    description = "Extracts conditions and accessorial charges attached to the rate"
    dependencies = ("rate_negotiation",)
    output_type = ConditionalAgreementOutput
    system_prompt = CONDITIONS_SYSTEM_PROMPT

    def should_execute(self, context: ExecutionContext) -> bool:
        negotiation = context.negotiation
        return negotiation is not None and negotiation.status != NegotiationStatus.NO_NEGOTIATION

    async def execute(self, context: ExecutionContext) -> ConditionalAgreementOutput:
        negotiation = context.negotiation
        extra = ""
        if negotiation is not None and negotiation.agreed_rate is not None:
            extra = f"Agreed rate: {negotiation.agreed_rate} {negotiation.currency} ({negotiation.rate_type})"
        return self.parse_output(await self.generate(context, extra=extra))
