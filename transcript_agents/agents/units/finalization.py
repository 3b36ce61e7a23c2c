"""Finalization units: cross-checks and the human-readable summary."""

import json
from datetime import datetime
from typing import Optional

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import SUMMARY_SYSTEM_PROMPT
from transcript_agents.models import (
    CallType,
    IssueSeverity,
    NegotiationStatus,
    SummaryOutput,
    UnitConfig,
    UnitStatus,
    ValidationIssue,
    ValidationOutput,
)

MAX_PLAUSIBLE_RATE = 50000.0
LOW_CONFIDENCE = 0.5


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class ValidationUnit(BaseUnit):
    """Deterministic consistency checks over everything extracted so far.

    Makes no generation call.
    """

    name = "validation"
    description = "Cross-checks extracted facts for consistency"
    dependencies = ("classification",)
    output_type = ValidationOutput
    default_config = UnitConfig(timeout_seconds=5)
    cacheable = False

    async def execute(self, context: ExecutionContext) -> ValidationOutput:
        issues: list[ValidationIssue] = []

        for name, result in context.unit_results.items():
            if name == self.name:
                continue
            if result.status == UnitStatus.FAILED:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING, unit=name, message=f"{name} failed; default output used",
                ))
            elif result.status == UnitStatus.COMPLETED and result.output is not None:
                if result.output.confidence.value < LOW_CONFIDENCE:
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.INFO, unit=name,
                        message=f"{name} confidence {result.output.confidence.value:.2f}",
                    ))

        negotiation = context.negotiation
        if negotiation is not None and negotiation.agreed_rate is not None:
            rate = negotiation.agreed_rate
            if rate <= 0 or rate > MAX_PLAUSIBLE_RATE:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.CRITICAL, unit="rate_negotiation",
                    message=f"agreed rate {rate} outside plausible range",
                ))
            offers = [o for o in [negotiation.initial_offer, *negotiation.counter_offers] if o is not None]
            if offers and not (min(offers) <= rate <= max(offers)):
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING, unit="rate_negotiation",
                    message=f"agreed rate {rate} is outside the offers made ({min(offers)}-{max(offers)})",
                ))

        loads = context.loads
        for index, load in enumerate(loads.loads if loads is not None else []):
            pickup, delivery = _parse_date(load.pickup_date), _parse_date(load.delivery_date)
            if pickup and delivery and delivery < pickup:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.CRITICAL, unit="load_extraction",
                    message=f"load {load.load_id or index + 1} delivers before pickup",
                ))

        accessorials = context.accessorials
        for warning in accessorials.warnings if accessorials is not None else []:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO, unit="accessorial_parser", message=warning.description,
            ))

        classification = context.classification
        if classification is not None:
            category = classification.primary_type
            if category == CallType.NEW_BOOKING and (loads is None or not loads.loads):
                issues.append(ValidationIssue(
                    severity=IssueSeverity.CRITICAL, unit="load_extraction", message="new booking without a load",
                ))
            if category == CallType.RENEGOTIATION and (negotiation is None or negotiation.status == NegotiationStatus.NO_NEGOTIATION):
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING, unit="rate_negotiation",
                    message="renegotiation call without a negotiation",
                ))

        criticals = sum(1 for i in issues if i.severity == IssueSeverity.CRITICAL)
        warnings = sum(1 for i in issues if i.severity == IssueSeverity.WARNING)
        consistency = max(0.2, 1.0 - 0.25 * criticals - 0.1 * warnings)

        return ValidationOutput(
            is_valid=criticals == 0,
            requires_review=criticals > 0,
            issues=issues,
            confidence=self.calculate_confidence({"consistency": consistency}),
        )


class SummaryUnit(BaseUnit):
    name = "summary"
    description = "Summarizes the call from the extracted facts"
    dependencies = ("classification",)
    output_type = SummaryOutput
    system_prompt = SUMMARY_SYSTEM_PROMPT
    temperature = 0.4

    async def execute(self, context: ExecutionContext) -> SummaryOutput:
        facts = {
            "call_type": context.classification.primary_type.value if context.classification else None,
            "loads": [load.model_dump(exclude_none=True) for load in context.loads.loads] if context.loads else [],
            "agreed_rate": context.negotiation.agreed_rate if context.negotiation else None,
            "accessorials": [
                {"type": a.type, "amount": a.amount, "status": a.status} for a in context.accessorials.accessorials
            ] if context.accessorials else [],
            "carrier": context.carrier.carrier_name if context.carrier else None,
            "shipper": context.shipper.shipper_name if context.shipper else None,
            "action_items": [i.description for i in context.action_items.items] if context.action_items else [],
            "validation_issues": [i.message for i in context.validation.issues] if context.validation else [],
        }
        extra = "EXTRACTED FACTS:\n" + json.dumps(facts, indent=2, default=str)
        return self.parse_output(await self.generate(context, extra=extra))
