"""Execution plan builder.

The plan is assembled per run from the classification result: a parallel
foundation phase, one category-specific phase, and a sequential
finalization phase. Phase membership may tighten a unit's policy (for
example making load extraction critical for new bookings) through
per-run config overrides.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from transcript_agents.models import CallType, ClassificationOutput

logger = structlog.get_logger(__name__)


@dataclass
class UnitSpec:
    """A unit scheduled in a phase, with per-run config overrides."""

    name: str
    overrides: dict[str, Any] = field(default_factory=dict)


@dataclass
class Phase:
    name: str
    parallel: bool
    units: list[UnitSpec] = field(default_factory=list)

    @property
    def unit_names(self) -> list[str]:
        return [spec.name for spec in self.units]


@dataclass
class ExecutionPlan:
    """Ordered phases for one run."""

    category: CallType
    phases: list[Phase] = field(default_factory=list)
    short_circuited: bool = False
    removed_units: list[str] = field(default_factory=list)

    @property
    def unit_names(self) -> list[str]:
        return [name for phase in self.phases for name in phase.unit_names]

    @property
    def phase_names(self) -> list[str]:
        return [phase.name for phase in self.phases]


def _spec(name: str, **overrides: Any) -> UnitSpec:
    return UnitSpec(name=name, overrides=overrides)


FOUNDATION_UNITS = ("speaker_identification", "temporal_resolution")
FINALIZATION_UNITS = ("validation", "summary")
GENERIC_PHASE = "generic_extraction"

CATEGORY_PHASES: dict[CallType, tuple[str, list[UnitSpec]]] = {
    CallType.CARRIER_QUOTE: ("carrier_quote_extraction", [
        _spec("carrier_information"),
        _spec("load_extraction", optional=True),
        _spec("rate_negotiation"),
        _spec("conditional_agreement"),
        _spec("accessorial_parser", optional=True),
        _spec("action_items"),
    ]),
    CallType.NEW_BOOKING: ("new_booking_extraction", [
        _spec("shipper_information"),
        _spec("load_extraction", critical=True),
        _spec("action_items"),
    ]),
    CallType.CHECK_CALL: ("check_call_extraction", [
        _spec("reference_resolution", optional=True),
        _spec("load_extraction", optional=True),
        _spec("action_items"),
    ]),
    CallType.RENEGOTIATION: ("renegotiation_extraction", [
        _spec("reference_resolution", critical=True),
        _spec("rate_negotiation", critical=True),
        _spec("conditional_agreement"),
        _spec("accessorial_parser", optional=True),
    ]),
    CallType.CALLBACK_ACCEPTANCE: ("callback_acceptance_extraction", [
        _spec("reference_resolution"),
        _spec("carrier_information"),
        _spec("rate_negotiation"),
    ]),
    CallType.VOICEMAIL: ("voicemail_extraction", [
        _spec("action_items"),
    ]),
}

GENERIC_UNITS = [
    _spec("load_extraction", optional=True),
    _spec("action_items"),
]


def build_execution_plan(
    classification: ClassificationOutput,
    disabled_units: Iterable[str] = (),
    enabled_units: Iterable[str] = (),
    short_circuit_categories: Iterable[str] = (CallType.WRONG_NUMBER.value,),
) -> ExecutionPlan:
    """Build the phased schedule for a classified call.

    Args:
        classification: Output of the classification unit.
        disabled_units: Units to drop from every phase.
        enabled_units: When non-empty, only these units are kept.
        short_circuit_categories: Categories that end the run after
            classification.

    Returns:
        ExecutionPlan. Short-circuited plans have no phases.
    """
    category = classification.primary_type
    if category.value in set(short_circuit_categories):
        logger.info("plan_short_circuited", category=category.value)
        return ExecutionPlan(category=category, short_circuited=True)

    phase_name, category_units = CATEGORY_PHASES.get(category, (GENERIC_PHASE, GENERIC_UNITS))
    candidates = [
        Phase(name="foundation", parallel=True, units=[_spec(n) for n in FOUNDATION_UNITS]),
        Phase(name=phase_name, parallel=False, units=[UnitSpec(s.name, dict(s.overrides)) for s in category_units]),
        Phase(name="finalization", parallel=False, units=[_spec(n) for n in FINALIZATION_UNITS]),
    ]

    disabled = set(disabled_units)
    enabled = set(enabled_units)
    removed: list[str] = []
    phases: list[Phase] = []
    for phase in candidates:
        kept = []
        for spec in phase.units:
            if spec.name in disabled or (enabled and spec.name not in enabled):
                removed.append(spec.name)
                continue
            kept.append(spec)
        if kept:
            phases.append(Phase(name=phase.name, parallel=phase.parallel, units=kept))

    if removed:
        logger.info("plan_units_removed", category=category.value, units=removed)

    plan = ExecutionPlan(category=category, phases=phases, removed_units=removed)
    logger.debug("plan_built", category=category.value, phases=plan.phase_names, units=plan.unit_names)
    return plan
