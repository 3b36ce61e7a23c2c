"""Carrier and shipper identification."""

import re

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import CARRIER_SYSTEM_PROMPT, SHIPPER_SYSTEM_PROMPT
from transcript_agents.models import CarrierOutput, ShipperOutput, SpeakerRole

MC_NUMBER = re.compile(r"\bMC\s*(?:number|#)?\s*(\d{5,8})", re.IGNORECASE)
DOT_NUMBER = re.compile(r"\bDOT\s*(?:number|#)?\s*(\d{5,8})", re.IGNORECASE)


def _speaker_hint(context: ExecutionContext, role: SpeakerRole) -> str:
    speakers = context.speakers
    if speakers is None:
        return ""
    labels = [s.label for s in speakers.speakers if s.role == role]
    if not labels:
        return ""
    return f"The {role.value} speaks as: {', '.join(labels)}"


class CarrierInformationUnit(BaseUnit):
    name = "carrier_information"
    description = "Extracts carrier identity, authority numbers and equipment"
    dependencies = ("speaker_identification",)
    output_type = CarrierOutput
    system_prompt = CARRIER_SYSTEM_PROMPT

    async def execute(self, context: ExecutionContext) -> CarrierOutput:
        result = await self.generate(context, extra=_speaker_hint(context, SpeakerRole.CARRIER))
        output = self.parse_output(result)

        text = self.utterance_text(context) or context.transcript
        if output.mc_number is None and (match := MC_NUMBER.search(text)):
            output.mc_number = match.group(1)
            output.processing_notes.append("mc number taken from transcript pattern")
        if output.dot_number is None and (match := DOT_NUMBER.search(text)):
            output.dot_number = match.group(1)
        return output


class ShipperInformationUnit(BaseUnit):
    name = "shipper_information"
    description = "Extracts shipper identity and freight requirements"
    dependencies = ("speaker_identification",)
    output_type = ShipperOutput
    system_prompt = SHIPPER_SYSTEM_PROMPT

    async def execute(self, context: ExecutionContext) -> ShipperOutput:
        result = await self.generate(context, extra=_speaker_hint(context, SpeakerRole.SHIPPER))
        return self.parse_output(result)
