"""Foundation units that run in parallel right after classification."""

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import SPEAKER_SYSTEM_PROMPT, TEMPORAL_SYSTEM_PROMPT
from transcript_agents.models import Speaker, SpeakerOutput, TemporalOutput, UnitConfig


class SpeakerIdentificationUnit(BaseUnit):
    """Assigns a brokerage role to every speaker label."""

    name = "speaker_identification"
    description = "Identifies speakers and their roles"
    dependencies = ("classification",)
    output_type = SpeakerOutput
    system_prompt = SPEAKER_SYSTEM_PROMPT
    default_config = UnitConfig(timeout_seconds=10, parallel=True, retry_on_failure=True)
    cacheable = False

    async def execute(self, context: ExecutionContext) -> SpeakerOutput:
        output = self.parse_output(await self.generate(context))

        # Every label in the utterances must be represented
        known = {s.label for s in output.speakers}
        missing = [label for label in self.utterances_by_speaker(context) if label not in known]
        if missing:
            output.speakers.extend(Speaker(label=label) for label in missing)
            output.processing_notes.append(f"roles not identified for: {', '.join(missing)}")

        context.set_shared("speaker_roles", {s.label: s.role.value for s in output.speakers})
        return output


class TemporalResolutionUnit(BaseUnit):
    """Resolves relative dates and times against the call date."""

    name = "temporal_resolution"
    description = "Resolves pickup, delivery and callback times"
    dependencies = ("classification",)
    output_type = TemporalOutput
    system_prompt = TEMPORAL_SYSTEM_PROMPT
    default_config = UnitConfig(timeout_seconds=10, parallel=True)

    async def execute(self, context: ExecutionContext) -> TemporalOutput:
        output = self.parse_output(await self.generate(context))
        output.timezone = output.timezone or context.metadata.timezone
        return output
