"""Reference resolution - ties a call to loads discussed earlier."""

import re

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import REFERENCE_SYSTEM_PROMPT
from transcript_agents.models import ReferenceNumber, ReferenceOutput

REFERENCE_PATTERNS = {
    "load": re.compile(r"\bload\s*(?:number|#|no\.?)?\s*(\d{4,})", re.IGNORECASE),
    "po": re.compile(r"\bP\.?O\.?\s*(?:number|#)?\s*(\w*\d\w*)", re.IGNORECASE),
    "mc": re.compile(r"\bMC\s*(?:number|#)?\s*(\d{5,8})", re.IGNORECASE),
}


class ReferenceResolutionUnit(BaseUnit):
    name = "reference_resolution"
    description = "Extracts load, PO and MC numbers and earlier-call references"
    dependencies = ("classification",)
    output_type = ReferenceOutput
    system_prompt = REFERENCE_SYSTEM_PROMPT
    cacheable = False

    async def execute(self, context: ExecutionContext) -> ReferenceOutput:
        output = self.parse_output(await self.generate(context))

        # Numbers read out verbatim are caught by pattern even when the model misses them
        seen = {(r.kind, r.value) for r in output.references}
        text = self.utterance_text(context) or context.transcript
        for kind, pattern in REFERENCE_PATTERNS.items():
            for match in pattern.finditer(text):
                if (kind, match.group(1)) not in seen:
                    seen.add((kind, match.group(1)))
                    output.references.append(ReferenceNumber(kind=kind, value=match.group(1)))

        context.set_shared("load_references", [r.value for r in output.references if r.kind == "load"])
        return output
