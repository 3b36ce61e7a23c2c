"""Shared state for one extraction run.

One ExecutionContext is created per call. The orchestrator records every
unit's start and terminal result here, and units read earlier outputs and
shared values from it. Nothing in this module raises for a missing unit or
key; lookups return None (or the supplied default).
"""

import copy
import time
from datetime import datetime
from typing import Any, Optional, TypeVar

import structlog

from transcript_agents.models import (
    AccessorialOutput,
    ActionItemsOutput,
    BaseOutput,
    CallMetadata,
    CarrierOutput,
    ClassificationOutput,
    ContextSnapshot,
    ExecutionLogEntry,
    ExecutionResult,
    ExecutionSummary,
    IssueSeverity,
    LoadOutput,
    NegotiationOutput,
    NegotiationStatus,
    ReferenceOutput,
    ShipperOutput,
    SpeakerOutput,
    SummaryOutput,
    TemporalOutput,
    UnitStatus,
    Utterance,
    ValidationOutput,
)

logger = structlog.get_logger(__name__)

OutputT = TypeVar("OutputT", bound=BaseOutput)

# Review thresholds
LOW_CLASSIFICATION_CONFIDENCE = 0.5
LOW_AGREED_RATE_CONFIDENCE = 0.6


class ExecutionContext:
    """Inputs and accumulated results of a single run."""

    def __init__(
        self,
        transcript: str,
        metadata: CallMetadata,
        utterances: Optional[list[Utterance]] = None,
    ):
        self.transcript = transcript
        self.metadata = metadata
        self.utterances: list[Utterance] = list(utterances or [])

        self.unit_results: dict[str, ExecutionResult] = {}
        self.shared_state: dict[str, Any] = {}
        self.execution_log: list[ExecutionLogEntry] = []
        self.warnings: list[str] = []
        self.resource_cost = 0
        self._tokens_charged: dict[str, int] = {}

        self._started = time.monotonic()

    @property
    def call_id(self) -> str:
        return self.metadata.call_id

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    # =========================================================================
    # Recording
    # =========================================================================

    def _log_entry(self, unit_name: str) -> Optional[ExecutionLogEntry]:
        for entry in self.execution_log:
            if entry.unit_name == unit_name:
                return entry
        return None

    def record_start(self, unit_name: str) -> ExecutionLogEntry:
        """Mark a unit as running. A retry reuses the existing log entry."""
        entry = self._log_entry(unit_name)
        if entry is None:
            entry = ExecutionLogEntry(unit_name=unit_name, start_time=datetime.now())
            self.execution_log.append(entry)
        else:
            entry.attempts += 1
            entry.status = UnitStatus.RUNNING
            entry.end_time = None
            entry.error = None
        return entry

    def record_result(self, unit_name: str, result: ExecutionResult) -> None:
        """Store a unit's terminal result and close its log entry.

        Units that were never started (skipped) get a zero-length entry so
        that every recorded result has exactly one log entry.
        """
        now = datetime.now()
        previous = self.unit_results.pop(unit_name, None)
        if previous is not None:
            self.resource_cost -= previous.resource_cost
        # Re-inserting keeps dict order equal to completion order
        self.unit_results[unit_name] = result
        self.resource_cost += result.resource_cost

        entry = self._log_entry(unit_name)
        if entry is None:
            entry = ExecutionLogEntry(
                unit_name=unit_name,
                start_time=now,
                attempts=result.attempts,
            )
            self.execution_log.append(entry)
        entry.end_time = now
        entry.status = result.status
        entry.error = result.error

    def charge_tokens(self, unit_name: str, tokens: int) -> None:
        """Count tokens a unit spent on a generation call, including failed attempts."""
        self._tokens_charged[unit_name] = self._tokens_charged.get(unit_name, 0) + tokens

    def tokens_charged(self, unit_name: str) -> int:
        return self._tokens_charged.get(unit_name, 0)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_execution_result(self, unit_name: str) -> Optional[ExecutionResult]:
        return self.unit_results.get(unit_name)

    def get_result(self, unit_name: str, expected_type: Optional[type[OutputT]] = None) -> Optional[OutputT]:
        """Output of a unit, including the default output of a failed unit."""
        result = self.unit_results.get(unit_name)
        if result is None or result.output is None:
            return None
        if expected_type is not None and not isinstance(result.output, expected_type):
            return None
        return result.output

    def has_completed(self, unit_name: str) -> bool:
        result = self.unit_results.get(unit_name)
        return result is not None and result.status == UnitStatus.COMPLETED

    def units_by_status(self, status: UnitStatus) -> list[str]:
        if status == UnitStatus.RUNNING:
            return [e.unit_name for e in self.execution_log if e.status == UnitStatus.RUNNING]
        return [name for name, result in self.unit_results.items() if result.status == status]

    def get_shared(self, key: str, default: Any = None) -> Any:
        return self.shared_state.get(key, default)

    def set_shared(self, key: str, value: Any) -> None:
        self.shared_state[key] = value

    # Typed accessors for the well-known units

    @property
    def classification(self) -> Optional[ClassificationOutput]:
        return self.get_result("classification", ClassificationOutput)

    @property
    def speakers(self) -> Optional[SpeakerOutput]:
        return self.get_result("speaker_identification", SpeakerOutput)

    @property
    def temporal(self) -> Optional[TemporalOutput]:
        return self.get_result("temporal_resolution", TemporalOutput)

    @property
    def references(self) -> Optional[ReferenceOutput]:
        return self.get_result("reference_resolution", ReferenceOutput)

    @property
    def loads(self) -> Optional[LoadOutput]:
        return self.get_result("load_extraction", LoadOutput)

    @property
    def carrier(self) -> Optional[CarrierOutput]:
        return self.get_result("carrier_information", CarrierOutput)

    @property
    def shipper(self) -> Optional[ShipperOutput]:
        return self.get_result("shipper_information", ShipperOutput)

    @property
    def negotiation(self) -> Optional[NegotiationOutput]:
        return self.get_result("rate_negotiation", NegotiationOutput)

    @property
    def accessorials(self) -> Optional[AccessorialOutput]:
        return self.get_result("accessorial_parser", AccessorialOutput)

    @property
    def action_items(self) -> Optional[ActionItemsOutput]:
        return self.get_result("action_items", ActionItemsOutput)

    @property
    def validation(self) -> Optional[ValidationOutput]:
        return self.get_result("validation", ValidationOutput)

    @property
    def summary(self) -> Optional[SummaryOutput]:
        return self.get_result("summary", SummaryOutput)

    # =========================================================================
    # Derived views
    # =========================================================================

    def summarize(self) -> ExecutionSummary:
        statuses = [r.status for r in self.unit_results.values()]
        return ExecutionSummary(
            total_units=len(self.unit_results),
            completed=statuses.count(UnitStatus.COMPLETED),
            failed=statuses.count(UnitStatus.FAILED),
            skipped=statuses.count(UnitStatus.SKIPPED),
            running=len(self.units_by_status(UnitStatus.RUNNING)),
            total_time_ms=round(self.elapsed_ms, 2),
            resource_cost=self.resource_cost,
        )

    def all_warnings(self) -> list[str]:
        """Run-level warnings followed by per-unit warnings, without duplicates."""
        seen: list[str] = []
        for warning in self.warnings:
            if warning not in seen:
                seen.append(warning)
        for result in self.unit_results.values():
            for warning in result.warnings:
                if warning not in seen:
                    seen.append(warning)
        return seen

    def requires_human_review(self) -> bool:
        validation = self.validation
        if validation is not None:
            if validation.requires_review:
                return True
            if any(issue.severity == IssueSeverity.CRITICAL for issue in validation.issues):
                return True

        classification = self.classification
        if classification is not None and classification.confidence.value < LOW_CLASSIFICATION_CONFIDENCE:
            return True

        negotiation = self.negotiation
        if (
            negotiation is not None
            and negotiation.status == NegotiationStatus.AGREED
            and negotiation.confidence.value < LOW_AGREED_RATE_CONFIDENCE
        ):
            return True

        for unit_name in ("classification", "validation"):
            result = self.unit_results.get(unit_name)
            if result is not None and result.status == UnitStatus.FAILED:
                return True

        return False

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> ContextSnapshot:
        """Copy of the mutable state. Shared values must be JSON-serializable."""
        return ContextSnapshot(
            call_id=self.call_id,
            unit_results={k: v.model_copy(deep=True) for k, v in self.unit_results.items()},
            shared_state=copy.deepcopy(self.shared_state),
            execution_log=[e.model_copy(deep=True) for e in self.execution_log],
            resource_cost=self.resource_cost,
        )

    def restore(self, snapshot: ContextSnapshot) -> None:
        """Replace the mutable state with a snapshot. The run clock is not restored."""
        self.unit_results = {k: v.model_copy(deep=True) for k, v in snapshot.unit_results.items()}
        self.shared_state = copy.deepcopy(snapshot.shared_state)
        self.execution_log = [e.model_copy(deep=True) for e in snapshot.execution_log]
        self.resource_cost = snapshot.resource_cost
        logger.debug("context_restored", call_id=self.call_id, units=len(self.unit_results))

    def to_debug_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "organization_id": self.metadata.organization_id,
            "transcript_length": len(self.transcript),
            "utterances": len(self.utterances),
            "summary": self.summarize().model_dump(),
            "results": {
                name: {
                    "status": result.status.value,
                    "kind": result.output.kind if result.output is not None else None,
                    "confidence": result.output.confidence.value if result.output is not None else None,
                    "error": result.error.message if result.error else None,
                    "execution_time_ms": result.execution_time_ms,
                    "attempts": result.attempts,
                }
                for name, result in self.unit_results.items()
            },
            "shared_state_keys": sorted(self.shared_state),
            "warnings": self.all_warnings(),
        }
