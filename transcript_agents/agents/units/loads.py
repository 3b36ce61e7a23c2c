"""Load extraction."""

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import LOAD_SYSTEM_PROMPT
from transcript_agents.models import LoadOutput, UnitConfig


class LoadExtractionUnit(BaseUnit):
    """Extracts lanes, dates, equipment and weight for each load."""

    name = "load_extraction"
    description = "Extracts load details"
    dependencies = ("speaker_identification", "temporal_resolution")
    output_type = LoadOutput
    system_prompt = LOAD_SYSTEM_PROMPT
    default_config = UnitConfig(timeout_seconds=30, retry_on_failure=True)

    async def execute(self, context: ExecutionContext) -> LoadOutput:
        hints = []
        classification = context.classification
        if classification is not None and classification.multi_load_call:
            hints.append("More than one load is discussed; list each separately.")
        temporal = context.temporal
        if temporal is not None and temporal.references:
            resolved = [f"{r.text} = {r.resolved.isoformat()}" for r in temporal.references if r.resolved]
            if resolved:
                hints.append("Resolved times: " + "; ".join(resolved))
        references = context.get_shared("load_references") or []
        if references:
            hints.append("Load numbers mentioned: " + ", ".join(references))

        output = self.parse_output(await self.generate(context, extra="\n".join(hints)))
        if classification is not None and classification.multi_load_call and len(output.loads) < 2:
            output.processing_notes.append("multi-load call but fewer than two loads extracted")
        return output
