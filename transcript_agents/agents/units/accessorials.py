"""Accessorial parsing - detention, lumper, TONU and other charges beyond the base rate.

The model extracts the charges. Market comparison, warnings and the total
impact are computed here from the parsed charges and industry standard
rates.
"""

from typing import Any, Optional

from transcript_agents.agents.base import BaseUnit
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import ACCESSORIAL_SYSTEM_PROMPT
from transcript_agents.models import (
    AccessorialCalculation,
    AccessorialCharge,
    AccessorialImpact,
    AccessorialOutput,
    AccessorialTerms,
    AccessorialWarning,
    CallType,
    ConfidenceScore,
    MarketComparison,
    UnitConfig,
)

RELEVANT_CALL_TYPES = {CallType.CARRIER_QUOTE, CallType.NEW_BOOKING, CallType.RENEGOTIATION}

INDUSTRY_STANDARDS = {
    "detention": {"hourly": 75.0, "free_hours": 2.0},
    "lumper": {"typical": 150.0, "max": 500.0},
    "tonu": {"same_day": 250.0, "next_day": 150.0},
    "stop_charge": {"additional": 100.0},
    "layover": {"daily": 350.0},
    "fuel_surcharge": {"percentage": 25.0},
}

# Market bands: (below_market under, above_market over)
DETENTION_MARKET_BAND = (60.0, 90.0)
TONU_MARKET_BAND = (200.0, 350.0)
HIGH_DETENTION_RATE = 100.0
HIGH_TONU_AMOUNT = 400.0
# Share of an additional charge expected to actually be billed
TRIGGER_PROBABILITY = 0.3


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _band(value: float, band: tuple[float, float]) -> str:
    low, high = band
    if value < low:
        return "below_market"
    if value > high:
        return "above_market"
    return "market_rate"


def parse_charges(raw: Any) -> list[AccessorialCharge]:
    """Build charges from model output, tolerating missing or malformed fields."""
    if not isinstance(raw, list):
        return []

    charges = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        calculation = item.get("calculation") if isinstance(item.get("calculation"), dict) else {}
        terms = item.get("terms") if isinstance(item.get("terms"), dict) else {}
        confidence = _number(item.get("confidence"))
        locations = item.get("locations")
        charges.append(AccessorialCharge(
            id=str(item.get("id") or f"acc_{index + 1}"),
            type=str(item.get("type") or "other").lower(),
            amount=_number(item.get("amount")),
            currency=str(item.get("currency") or "USD"),
            calculation=AccessorialCalculation(
                method=str(calculation.get("method") or "flat"),
                rate=_number(calculation.get("rate")),
                unit=calculation.get("unit"),
                minimum=_number(calculation.get("minimum")),
                maximum=_number(calculation.get("maximum")),
            ),
            terms=AccessorialTerms(
                free_time=_number(terms.get("free_time")),
                free_time_unit=str(terms.get("free_time_unit") or "hours"),
                trigger=terms.get("trigger"),
                start_time=terms.get("start_time"),
            ),
            paid_by=item.get("paid_by") or "broker",
            reimbursable=bool(item.get("reimbursable", False)),
            requires_receipt=bool(item.get("requires_receipt", False)),
            status=item.get("status") or "additional",
            locations=[str(loc) for loc in locations] if isinstance(locations, list) else [],
            confidence=min(max(confidence, 0.0), 1.0) if confidence is not None else 0.5,
            raw_text=str(item.get("raw_text") or ""),
        ))
    return charges


def compare_to_market(charges: list[AccessorialCharge]) -> MarketComparison:
    comparison = MarketComparison()

    detention = next((c for c in charges if c.type == "detention"), None)
    if detention is not None and detention.calculation.rate:
        comparison.detention = _band(detention.calculation.rate, DETENTION_MARKET_BAND)

    tonu = next((c for c in charges if c.type == "tonu"), None)
    if tonu is not None and tonu.amount:
        comparison.tonu = _band(tonu.amount, TONU_MARKET_BAND)

    verdicts = [v for v in (comparison.detention, comparison.lumper, comparison.tonu) if v is not None]
    favorable = verdicts.count("below_market")
    unfavorable = verdicts.count("above_market")
    if favorable > unfavorable:
        comparison.overall = "carrier_favorable"
    elif unfavorable > favorable:
        comparison.overall = "broker_favorable"
    return comparison


def find_warnings(charges: list[AccessorialCharge]) -> list[AccessorialWarning]:
    warnings = []

    detention = next((c for c in charges if c.type == "detention"), None)
    if detention is not None and not detention.terms.free_time:
        warnings.append(AccessorialWarning(
            type="missing_terms",
            accessorial_type="detention",
            description="Free time not specified for detention",
            severity="important",
        ))

    for charge in charges:
        if charge.type == "detention" and (charge.calculation.rate or 0) > HIGH_DETENTION_RATE:
            warnings.append(AccessorialWarning(
                type="high_rate",
                accessorial_type="detention",
                description=f"Detention rate of ${charge.calculation.rate:g}/hour is above market",
                severity="important",
            ))
        if charge.type == "tonu" and (charge.amount or 0) > HIGH_TONU_AMOUNT:
            warnings.append(AccessorialWarning(
                type="high_rate",
                accessorial_type="tonu",
                description=f"TONU charge of ${charge.amount:g} is above market",
                severity="important",
            ))
    return warnings


def total_impact(charges: list[AccessorialCharge]) -> AccessorialImpact:
    """Expected, worst and best case exposure from additional charges."""
    estimated = 0.0
    worst_case = 0.0
    for charge in charges:
        if charge.status == "additional" and charge.amount:
            estimated += charge.amount * TRIGGER_PROBABILITY
            worst_case += charge.amount

    return AccessorialImpact(
        estimated_charges=round(estimated, 2),
        worst_case=worst_case,
        best_case=0.0,
        included_in_rate=[c.type for c in charges if c.status == "included"],
        additional=[c.type for c in charges if c.status == "additional"],
    )


def terms_completeness(charges: list[AccessorialCharge]) -> float:
    """Share of the essential terms present, averaged over charges."""
    if not charges:
        return 1.0

    scores = []
    for charge in charges:
        if charge.type == "detention":
            checks = [charge.terms.free_time is not None, charge.calculation.rate is not None]
        else:
            checks = [charge.amount is not None or charge.calculation.rate is not None]
        checks += [bool(charge.paid_by), bool(charge.status)]
        scores.append(sum(checks) / len(checks))
    return sum(scores) / len(scores)


class AccessorialParserUnit(BaseUnit):
    """Detailed extraction of accessorial charges and their terms."""

    name = "accessorial_parser"
    description = "Extracts accessorial charges and compares them with market rates"
    dependencies = ("classification", "rate_negotiation")
    output_type = AccessorialOutput
    system_prompt = ACCESSORIAL_SYSTEM_PROMPT
    temperature = 0.2
    default_config = UnitConfig(timeout_seconds=12, retry_on_failure=True)

    def should_execute(self, context: ExecutionContext) -> bool:
        classification = context.classification
        return classification is not None and classification.primary_type in RELEVANT_CALL_TYPES

    async def execute(self, context: ExecutionContext) -> AccessorialOutput:
        negotiation = context.negotiation
        if negotiation is not None and negotiation.agreed_rate is not None:
            base_rate = f"Base rate identified: {negotiation.agreed_rate:g} {negotiation.currency} ({negotiation.rate_type})"
        else:
            base_rate = "No base rate identified"
        detention = INDUSTRY_STANDARDS["detention"]
        extra = "\n".join([
            base_rate,
            f"Industry standard detention: ${detention['hourly']:g}/hour after {detention['free_hours']:g} hours",
            f"Industry standard TONU: ${INDUSTRY_STANDARDS['tonu']['same_day']:g} same day",
            f"Industry standard stop charge: ${INDUSTRY_STANDARDS['stop_charge']['additional']:g}/stop",
        ])

        result = await self.generate(context, extra=extra)
        data = self.clean_extracted_data(dict(result.data))

        charges = parse_charges(data.get("accessorials"))
        market = compare_to_market(charges)
        has_verdict = any(v is not None for v in (market.detention, market.lumper, market.tonu))
        provisions = data.get("special_provisions")

        detection = sum(c.confidence for c in charges) / len(charges) if charges else 0.5
        confidence = self.calculate_confidence({
            "accessorial_detection": detection,
            "terms_completeness": terms_completeness(charges),
            "market_analysis": 0.8 if has_verdict else 0.5,
        })

        return AccessorialOutput(
            confidence=confidence,
            accessorials=charges,
            total_impact=total_impact(charges),
            market_comparison=market if has_verdict else None,
            special_provisions=[
                str(p.get("description", "")) if isinstance(p, dict) else str(p)
                for p in (provisions if isinstance(provisions, list) else [])
            ],
            warnings=find_warnings(charges),
            tokens_used=result.total_tokens,
        )

    def get_default_output(self) -> AccessorialOutput:
        return AccessorialOutput(
            confidence=ConfidenceScore.from_value(0.3, ["no accessorials detected or unit not applicable"]),
            processing_notes=[f"{self.name} failed; default output used"],
        )
