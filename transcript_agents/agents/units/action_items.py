"""Follow-up action extraction."""

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import ACTION_ITEMS_SYSTEM_PROMPT
from transcript_agents.models import ActionItemsOutput


class ActionItemsUnit(BaseUnit):
    name = "action_items"
    description = "Extracts follow-up commitments"
    dependencies = ("classification",)
    output_type = ActionItemsOutput
    system_prompt = ACTION_ITEMS_SYSTEM_PROMPT

    async def execute(self, context: ExecutionContext) -> ActionItemsOutput:
        output = self.parse_output(await self.generate(context))
        # Owners come back as speaker labels; translate when roles are known
        roles = context.get_shared("speaker_roles") or {}
        for item in output.items:
            if item.owner in roles and roles[item.owner] != "unknown":
                item.owner = roles[item.owner]
        return output
