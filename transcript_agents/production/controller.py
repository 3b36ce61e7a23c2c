"""Production controller - the pipeline entry point used in production.

For each call it asks the rollout controller (or an operator override)
which pipeline to use, runs it, falls back to the legacy extractor when the
new pipeline fails and the phase allows it, and feeds the outcome back into
the rollout controller and the performance monitor.

``process_call`` never raises. Every failure ends up in
``ProcessingResult.errors``.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from transcript_agents.agents import Orchestrator
from transcript_agents.config import Settings, get_settings
from transcript_agents.models import (
    CallMetadata,
    CallOutcome,
    ExecutionRecord,
    ExtractionResult,
    HealthStatus,
    LegacyExtraction,
    ProcessingMethod,
    ProcessingOptions,
    ProcessingResult,
    RoutingDecision,
    Utterance,
)
from transcript_agents.monitoring import PerformanceMonitor
from transcript_agents.production.comparison import compare_extractions
from transcript_agents.production.legacy import LegacyExtractor, to_legacy_format
from transcript_agents.production.rollout import GradualRolloutController

logger = structlog.get_logger(__name__)

PIPELINE_RECORD = "pipeline"


class ProductionController:
    """Routes calls between the new pipeline and the legacy extractor."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        rollout: GradualRolloutController,
        monitor: PerformanceMonitor,
        legacy: LegacyExtractor,
        settings: Optional[Settings] = None,
        store: Any = None,
    ):
        self.orchestrator = orchestrator
        self.rollout = rollout
        self.monitor = monitor
        self.legacy = legacy
        self.settings = settings or get_settings()
        self.store = store
        self._override: Optional[bool] = self.settings.production_force_multi_agent

    # =========================================================================
    # Operator overrides
    # =========================================================================

    @property
    def override(self) -> Optional[bool]:
        return self._override

    def force_enable(self) -> None:
        self._override = True
        logger.warning("new_pipeline_force_enabled")

    def force_disable(self) -> None:
        self._override = False
        logger.warning("new_pipeline_force_disabled")

    def clear_override(self) -> None:
        self._override = None
        logger.info("pipeline_override_cleared")

    def get_configuration(self) -> dict[str, Any]:
        phase = self.rollout.active_phase
        return {
            "override": self._override,
            "new_pipeline_enabled": self.rollout.enabled,
            "percentage": self.rollout.percentage,
            "active_phase_id": phase.id if phase else None,
            "active_phase_name": phase.name if phase else None,
            "default_fallback_enabled": self.settings.production_fallback_enabled,
            "registered_units": self.orchestrator.registered_units(),
        }

    def health_check(self) -> dict[str, Any]:
        report = self.monitor.health_check()
        recovery = self.orchestrator.recovery.health_check()
        status = report.status
        if status == HealthStatus.HEALTHY and recovery.issues:
            status = HealthStatus.DEGRADED
        cache = self.orchestrator.cache
        return {
            "status": status.value,
            "issues": report.issues + recovery.issues,
            "circuit_breakers": {
                name: breaker["state"]
                for name, breaker in self.orchestrator.recovery.get_statistics()["circuit_breakers"].items()
            },
            "cache_hit_rate": cache.hit_rate if cache is not None else None,
            "rollout_enabled": self.rollout.enabled,
            "override": self._override,
            "registered_units": len(self.orchestrator.registered_units()),
        }

    # =========================================================================
    # Entry point
    # =========================================================================

    async def process_call(
        self,
        call_id: str,
        transcript: str,
        organization_id: str,
        options: Optional[ProcessingOptions] = None,
    ) -> ProcessingResult:
        """Process one call transcript end to end."""
        options = options or ProcessingOptions()
        started = time.monotonic()
        errors: list[str] = []

        metadata = CallMetadata(
            call_id=call_id,
            organization_id=organization_id,
            user_id=options.user_id,
            call_type=options.call_type,
            call_date=options.call_date or datetime.now(),
            duration_seconds=options.duration_seconds,
            customer_name=options.customer_name,
            timezone=options.timezone,
        )
        try:
            utterances = [Utterance.model_validate(u) for u in options.utterances or []]
        except ValidationError as e:
            errors.append(f"Invalid utterances ignored: {e.error_count()} errors")
            utterances = []

        decision = self._route(organization_id, options)
        logger.info(
            "call_routed",
            call_id=call_id,
            organization_id=organization_id,
            use_new_pipeline=decision.use_new_pipeline,
            comparison_mode=decision.comparison_mode,
            reason=decision.reason,
        )

        if decision.use_new_pipeline and decision.comparison_mode:
            result = await self._run_comparison(transcript, metadata, utterances, decision)
        elif decision.use_new_pipeline:
            result = await self._run_new(transcript, metadata, utterances, decision)
        else:
            result = await self._run_legacy(transcript, metadata)

        result.errors = errors + result.errors
        result.execution_time_ms = round((time.monotonic() - started) * 1000, 2)
        result.rollout_phase_id = decision.phase_id
        result.routing_reason = decision.reason

        if decision.use_new_pipeline:
            self._record_new_pipeline(result, metadata, decision)
        await self._persist(result)

        logger.info(
            "call_processed",
            call_id=call_id,
            method=result.method.value,
            success=result.success,
            fallback_used=result.fallback_used,
            duration_ms=result.execution_time_ms,
            errors=len(result.errors),
        )
        return result

    def _route(self, organization_id: str, options: ProcessingOptions) -> RoutingDecision:
        if self._override is True:
            return RoutingDecision(
                use_new_pipeline=True,
                reason="forced_enable",
                fallback_enabled=self.settings.production_fallback_enabled,
            )
        if self._override is False:
            return RoutingDecision(use_new_pipeline=False, reason="forced_disable")
        return self.rollout.route(
            organization_id,
            user_id=options.user_id,
            region=options.region,
            call_volume=options.call_volume,
        )

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def _try_new(
        self,
        transcript: str,
        metadata: CallMetadata,
        utterances: list[Utterance],
        decision: RoutingDecision,
    ) -> tuple[Optional[ExtractionResult], Optional[str]]:
        try:
            result = await self.orchestrator.extract(
                transcript,
                metadata,
                utterances=utterances,
                disabled_units=decision.disabled_units,
                enabled_units=decision.enabled_units,
            )
        except Exception as e:
            logger.exception("new_pipeline_error", call_id=metadata.call_id)
            return None, f"New pipeline error: {e}"
        if result.aborted:
            return result, f"New pipeline aborted: {result.abort_reason}"
        return result, None

    async def _try_legacy(
        self, transcript: str, metadata: CallMetadata
    ) -> tuple[Optional[LegacyExtraction], Optional[str]]:
        try:
            return await self.legacy.extract(transcript, metadata), None
        except Exception as e:
            logger.exception("legacy_pipeline_error", call_id=metadata.call_id)
            return None, f"Legacy pipeline error: {e}"

    async def _run_new(
        self,
        transcript: str,
        metadata: CallMetadata,
        utterances: list[Utterance],
        decision: RoutingDecision,
    ) -> ProcessingResult:
        new_result, new_error = await self._try_new(transcript, metadata, utterances, decision)
        if new_error is None:
            return ProcessingResult(
                call_id=metadata.call_id,
                success=True,
                method=ProcessingMethod.NEW,
                new_output=new_result,
                resource_cost=new_result.resource_cost,
            )

        if not decision.fallback_enabled:
            return ProcessingResult(
                call_id=metadata.call_id,
                success=False,
                method=ProcessingMethod.NEW,
                new_output=new_result,
                resource_cost=new_result.resource_cost if new_result else 0,
                errors=[new_error],
            )

        logger.warning("falling_back_to_legacy", call_id=metadata.call_id, reason=new_error)
        legacy_output, legacy_error = await self._try_legacy(transcript, metadata)
        return ProcessingResult(
            call_id=metadata.call_id,
            success=legacy_output is not None,
            method=ProcessingMethod.LEGACY,
            new_output=new_result,
            legacy_output=legacy_output,
            resource_cost=(new_result.resource_cost if new_result else 0)
            + (legacy_output.tokens_used if legacy_output else 0),
            errors=[e for e in (new_error, legacy_error) if e],
            fallback_used=True,
        )

    async def _run_legacy(self, transcript: str, metadata: CallMetadata) -> ProcessingResult:
        legacy_output, legacy_error = await self._try_legacy(transcript, metadata)
        return ProcessingResult(
            call_id=metadata.call_id,
            success=legacy_output is not None,
            method=ProcessingMethod.LEGACY,
            legacy_output=legacy_output,
            resource_cost=legacy_output.tokens_used if legacy_output else 0,
            errors=[legacy_error] if legacy_error else [],
        )

    async def _run_comparison(
        self,
        transcript: str,
        metadata: CallMetadata,
        utterances: list[Utterance],
        decision: RoutingDecision,
    ) -> ProcessingResult:
        """Run both pipelines side by side and report their agreement."""
        (new_result, new_error), (legacy_output, legacy_error) = await asyncio.gather(
            self._try_new(transcript, metadata, utterances, decision),
            self._try_legacy(transcript, metadata),
        )

        comparison = None
        if new_error is None and legacy_output is not None:
            comparison = compare_extractions(
                to_legacy_format(new_result),
                legacy_output,
                agreement_threshold=self.settings.production_comparison_agreement_threshold,
            )
            logger.info(
                "comparison_complete",
                call_id=metadata.call_id,
                agreement=comparison.agreement_percentage,
                recommendation=comparison.recommendation,
            )
            if self.store is not None:
                try:
                    await self.store.append_comparison({
                        "call_id": metadata.call_id,
                        "organization_id": metadata.organization_id,
                        "timestamp": datetime.now().isoformat(),
                        **comparison.model_dump(mode="json"),
                    })
                except OSError as e:
                    logger.warning("comparison_not_persisted", call_id=metadata.call_id, error=str(e))

        return ProcessingResult(
            call_id=metadata.call_id,
            success=new_error is None or legacy_output is not None,
            method=ProcessingMethod.COMPARISON,
            new_output=new_result,
            legacy_output=legacy_output,
            comparison=comparison,
            resource_cost=(new_result.resource_cost if new_result else 0)
            + (legacy_output.tokens_used if legacy_output else 0),
            errors=[e for e in (new_error, legacy_error) if e],
            fallback_used=new_error is not None and legacy_output is not None,
        )

    # =========================================================================
    # Feedback
    # =========================================================================

    def _record_new_pipeline(
        self, result: ProcessingResult, metadata: CallMetadata, decision: RoutingDecision
    ) -> None:
        new_output = result.new_output
        pipeline_ok = new_output is not None and new_output.success

        self.monitor.record(ExecutionRecord(
            unit_name=PIPELINE_RECORD,
            latency_ms=new_output.execution_time_ms if new_output else result.execution_time_ms,
            resource_cost=new_output.resource_cost if new_output else 0,
            success=pipeline_ok,
            confidence=new_output.overall_confidence if pipeline_ok else None,
        ))

        if decision.phase_id is not None:
            self.rollout.record_outcome(CallOutcome(
                phase_id=decision.phase_id,
                call_id=metadata.call_id,
                organization_id=metadata.organization_id,
                success=result.success,
                latency_ms=result.execution_time_ms,
                pipeline_error=not pipeline_ok,
            ))

    async def _persist(self, result: ProcessingResult) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_call_result(result.call_id, result.model_dump(mode="json"))
        except OSError as e:
            logger.warning("call_result_not_persisted", call_id=result.call_id, error=str(e))
