"""Orchestrator - classifies a call, plans the run and executes the units.

Flow:
1. Classification runs first, alone.
2. The plan builder turns the category into phases.
3. Phases run strictly in order. Parallel phases start every member at
   once and wait for all of them to settle; sequential phases run members
   one at a time so later units see earlier outputs.

Unit failures are absorbed here: a non-critical unit that fails ends up
with its default output and a warning, a critical one aborts the run. The
returned ExtractionResult always describes what happened; the only
exception that leaves ``execute_unit`` is CriticalUnitFailure.

Each unit runs behind a circuit breaker (see ``recovery``). Completed
outputs of cacheable units are kept in a result cache keyed by everything
the unit could read, so an identical call is answered without the model.
"""

import asyncio
import time
from typing import Any, Iterable, Optional

import structlog

from transcript_agents.agents.base import BaseUnit, InvalidOutputError
from transcript_agents.agents.cache import ResultCache
from transcript_agents.agents.context import ExecutionContext
from transcript_agents.agents.plan import ExecutionPlan, Phase, build_execution_plan
from transcript_agents.agents.recovery import ErrorRecovery
from transcript_agents.config import Settings, get_settings
from transcript_agents.models import (
    BaseOutput,
    CallMetadata,
    ErrorCode,
    ExecutionRecord,
    ExecutionResult,
    ExtractionResult,
    UnitError,
    UnitStatus,
    Utterance,
)

logger = structlog.get_logger(__name__)

CLASSIFICATION_UNIT = "classification"


class CriticalUnitFailure(Exception):
    """A critical unit failed after exhausting its retries."""

    def __init__(self, unit_name: str, error: UnitError):
        self.unit_name = unit_name
        self.error = error
        super().__init__(f"Critical unit {unit_name} failed: {error.code.value}: {error.message}")


class DependencyGraphError(Exception):
    """Registered units reference unknown units or form a cycle."""

    pass


class Orchestrator:
    """Registry of units plus the plan executor."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        monitor: Any = None,
        store: Any = None,
        recovery: Optional[ErrorRecovery] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.settings = settings or get_settings()
        self.monitor = monitor
        self.store = store
        self.recovery = recovery or ErrorRecovery(self.settings)
        if cache is None and self.settings.cache_enabled:
            cache = ResultCache(self.settings.cache_ttl_seconds, self.settings.cache_max_entries)
        self.cache = cache
        self._units: dict[str, BaseUnit] = {}

    # =========================================================================
    # Registry
    # =========================================================================

    def register(self, unit: BaseUnit) -> None:
        if unit.name in self._units:
            logger.warning("unit_replaced", unit=unit.name)
        self._units[unit.name] = unit
        logger.debug("unit_registered", unit=unit.name, dependencies=list(unit.dependencies))

    def unregister(self, name: str) -> None:
        self._units.pop(name, None)

    def clear(self) -> None:
        self._units.clear()

    def registered_units(self) -> list[str]:
        return list(self._units)

    def get_unit(self, name: str) -> Optional[BaseUnit]:
        return self._units.get(name)

    def critical_units(self) -> list[str]:
        return [name for name, unit in self._units.items() if unit.config.critical]

    def validate_graph(self) -> None:
        """Check the registered dependency graph once, before serving traffic.

        Raises:
            DependencyGraphError: On an unknown dependency or a cycle.
        """
        for name, unit in self._units.items():
            unknown = [d for d in unit.dependencies if d not in self._units]
            if unknown:
                raise DependencyGraphError(f"Unit {name} depends on unregistered units: {unknown}")

        visiting: set[str] = set()
        done: set[str] = set()

        def visit(name: str, path: list[str]) -> None:
            if name in done:
                return
            if name in visiting:
                cycle = path[path.index(name):] + [name]
                raise DependencyGraphError(f"Dependency cycle: {' -> '.join(cycle)}")
            visiting.add(name)
            for dependency in self._units[name].dependencies:
                visit(dependency, path + [name])
            visiting.discard(name)
            done.add(name)

        for name in self._units:
            visit(name, [])
        logger.debug("dependency_graph_valid", units=len(self._units))

    # =========================================================================
    # Entry points
    # =========================================================================

    async def extract(
        self,
        transcript: str,
        metadata: CallMetadata,
        utterances: Optional[list[Utterance]] = None,
        disabled_units: Iterable[str] = (),
        enabled_units: Iterable[str] = (),
    ) -> ExtractionResult:
        """Run the full pipeline for one call."""
        context = ExecutionContext(transcript=transcript, metadata=metadata, utterances=utterances)
        return await self.run(context, disabled_units=disabled_units, enabled_units=enabled_units)

    async def run(
        self,
        context: ExecutionContext,
        disabled_units: Iterable[str] = (),
        enabled_units: Iterable[str] = (),
    ) -> ExtractionResult:
        """Run the pipeline against an existing context."""
        logger.info(
            "extraction_start",
            call_id=context.call_id,
            organization_id=context.metadata.organization_id,
            transcript_length=len(context.transcript),
        )

        plan: Optional[ExecutionPlan] = None
        try:
            await self.execute_unit(CLASSIFICATION_UNIT, context)
            classification = context.classification
            if classification is None:
                raise CriticalUnitFailure(
                    CLASSIFICATION_UNIT,
                    UnitError(code=ErrorCode.UNKNOWN, message="Classification produced no output"),
                )

            plan = build_execution_plan(
                classification,
                disabled_units=disabled_units,
                enabled_units=enabled_units,
                short_circuit_categories=self.settings.orchestrator_short_circuit_categories,
            )
            context.set_shared("category", plan.category.value)
            if not plan.short_circuited:
                await self.execute_plan(plan, context)

        except CriticalUnitFailure as e:
            result = self._build_result(context, plan, aborted=True, abort_reason=str(e))
            logger.error(
                "extraction_aborted",
                call_id=context.call_id,
                unit=e.unit_name,
                error_code=e.error.code.value,
                error=e.error.message,
            )
            return result

        result = self._build_result(context, plan)
        logger.info(
            "extraction_complete",
            call_id=context.call_id,
            category=plan.category.value,
            duration_ms=round(result.execution_time_ms, 2),
            executed=len(result.agents_executed),
            failed=len(result.agents_failed),
            skipped=len(result.agents_skipped),
            tokens=result.resource_cost,
        )
        return result

    async def execute_plan(self, plan: ExecutionPlan, context: ExecutionContext) -> None:
        """Execute phases in order.

        Raises:
            CriticalUnitFailure: If a critical unit fails.
        """
        for phase in plan.phases:
            started = time.monotonic()
            logger.info("phase_start", call_id=context.call_id, phase=phase.name, units=phase.unit_names)

            if phase.parallel:
                await self._run_parallel(phase, context)
            else:
                for spec in phase.units:
                    await self.execute_unit(spec.name, context, spec.overrides)

            logger.info(
                "phase_complete",
                call_id=context.call_id,
                phase=phase.name,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )

    async def _run_parallel(self, phase: Phase, context: ExecutionContext) -> None:
        """Run every unit of a phase concurrently.

        Non-critical failures never affect siblings. On a critical failure
        the still-running siblings are cancelled; each records itself as
        failed before the failure is re-raised. An unexpected exception
        cancels and awaits the siblings before it propagates.
        """
        pending = {
            asyncio.create_task(
                self.execute_unit(spec.name, context, spec.overrides),
                name=f"{context.call_id}:{spec.name}",
            )
            for spec in phase.units
        }
        failure: Optional[BaseException] = None

        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if task.cancelled():
                    continue
                error = task.exception()
                if error is None:
                    continue
                if failure is None or (
                    not isinstance(error, CriticalUnitFailure) and isinstance(failure, CriticalUnitFailure)
                ):
                    failure = error

            if failure is not None and pending:
                logger.warning(
                    "phase_cancelling_siblings",
                    call_id=context.call_id,
                    phase=phase.name,
                    failed_unit=failure.unit_name if isinstance(failure, CriticalUnitFailure) else None,
                    error=str(failure),
                    cancelled=len(pending),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                pending = set()

        if failure is not None:
            # Tasks cancelled before their first step never recorded anything
            for spec in phase.units:
                unit = self._units.get(spec.name)
                if unit is not None and context.get_execution_result(spec.name) is None:
                    self._record(context, self._cancelled_result(unit, attempts=0, started=time.monotonic()))
            raise failure

    # =========================================================================
    # Single unit
    # =========================================================================

    async def execute_unit(
        self,
        name: str,
        context: ExecutionContext,
        overrides: Optional[dict[str, Any]] = None,
    ) -> ExecutionResult:
        """Run one unit under its policy and record the terminal result.

        Raises:
            CriticalUnitFailure: If the unit is critical and fails.
        """
        unit = self._units.get(name)
        if unit is None:
            logger.warning("unit_not_registered", call_id=context.call_id, unit=name)
            return await self._skip(context, name, f"{name} skipped: unit not registered")

        config = unit.config.merged(overrides)
        timeout = config.timeout_seconds or self.settings.orchestrator_default_timeout_seconds

        missing = [d for d in unit.dependencies if not context.has_completed(d)]
        if missing:
            if not config.optional:
                return await self._skip(context, name, f"{name} skipped: dependencies not completed: {missing}")
            context.add_warning(f"{name} ran with partial context: missing {missing}")

        try:
            runnable = unit.should_execute(context)
        except Exception as e:
            error = unit.classify_error(e)
            return await self._fail(context, unit, config.critical, error, attempts=0, started=time.monotonic())
        if not runnable:
            return await self._skip(context, name, f"{name} skipped: precondition not met")

        if not self.recovery.allow(name):
            error = UnitError(code=ErrorCode.CIRCUIT_OPEN, message=f"{name} circuit breaker is open", recoverable=False)
            logger.warning("unit_circuit_open", call_id=context.call_id, unit=name)
            return await self._fail(context, unit, config.critical, error, attempts=0, started=time.monotonic())

        cache_key = None
        if self.cache is not None and unit.cacheable:
            cache_key = self.cache.make_key(name, context)
            cached = self.cache.get(cache_key)
            if cached is not None:
                return await self._complete(context, unit, cached, attempts=0, started=time.monotonic(), cache_hit=True)

        max_attempts = 1 + (self.settings.orchestrator_max_retries if config.retry_on_failure else 0)
        started = time.monotonic()
        charged = context.tokens_charged(name)
        attempt = 0
        while True:
            attempt += 1
            context.record_start(name)
            try:
                output = await asyncio.wait_for(unit.execute(context), timeout=timeout)
                if not unit.validate_output(output):
                    raise InvalidOutputError(f"Unit {name} returned invalid output")
            except asyncio.CancelledError:
                self._record(context, self._cancelled_result(unit, attempts=attempt, started=started))
                logger.warning("unit_cancelled", call_id=context.call_id, unit=name)
                raise
            except Exception as e:
                error = unit.classify_error(e)
                if error.code == ErrorCode.TIMEOUT:
                    error.message = f"{name} timed out after {timeout}s"
                logger.warning(
                    "unit_attempt_failed",
                    call_id=context.call_id,
                    unit=name,
                    attempt=attempt,
                    error_code=error.code.value,
                    recoverable=error.recoverable,
                    error=error.message,
                )
                if error.recoverable and attempt < max_attempts:
                    logger.info("unit_retrying", call_id=context.call_id, unit=name, attempt=attempt + 1)
                    continue
                return await self._fail(
                    context,
                    unit,
                    config.critical,
                    error,
                    attempts=attempt,
                    started=started,
                    resource_cost=context.tokens_charged(name) - charged,
                    cache_hit=False if cache_key is not None else None,
                )

            if cache_key is not None:
                self.cache.put(cache_key, output)
            # Units that never call the model report their own usage
            spent = context.tokens_charged(name) - charged
            return await self._complete(
                context,
                unit,
                output,
                attempts=attempt,
                started=started,
                resource_cost=spent or output.tokens_used,
                cache_hit=False if cache_key is not None else None,
            )

    async def _complete(
        self,
        context: ExecutionContext,
        unit: BaseUnit,
        output: BaseOutput,
        attempts: int,
        started: float,
        resource_cost: int = 0,
        cache_hit: Optional[bool] = None,
    ) -> ExecutionResult:
        result = ExecutionResult(
            unit_name=unit.name,
            status=UnitStatus.COMPLETED,
            output=output,
            execution_time_ms=_elapsed_ms(started),
            resource_cost=resource_cost,
            attempts=attempts,
            cached=bool(cache_hit),
        )
        self.recovery.record_success(unit.name, output)
        self._record(context, result, cache_hit=cache_hit)
        await self._persist(context, result)
        logger.info(
            "unit_completed",
            call_id=context.call_id,
            unit=unit.name,
            duration_ms=round(result.execution_time_ms, 2),
            attempts=attempts,
            cached=result.cached,
            confidence=output.confidence.value,
        )
        return result

    async def _skip(self, context: ExecutionContext, name: str, reason: str) -> ExecutionResult:
        result = ExecutionResult(unit_name=name, status=UnitStatus.SKIPPED, warnings=[reason])
        context.record_result(name, result)
        context.add_warning(reason)
        logger.info("unit_skipped", call_id=context.call_id, unit=name, reason=reason)
        await self._persist(context, result)
        return result

    async def _fail(
        self,
        context: ExecutionContext,
        unit: BaseUnit,
        critical: bool,
        error: UnitError,
        attempts: int,
        started: float,
        resource_cost: int = 0,
        cache_hit: Optional[bool] = None,
    ) -> ExecutionResult:
        warning = f"{unit.name} failed ({error.code.value}): {error.message}"
        if error.code != ErrorCode.CIRCUIT_OPEN:
            self.recovery.record_failure(unit.name, error)

        output = self.recovery.fallback_output(unit.name)
        warnings = [warning]
        if output is not None:
            warnings.append(f"{unit.name} used its last successful output")
        else:
            output = unit.get_default_output()

        result = ExecutionResult(
            unit_name=unit.name,
            status=UnitStatus.FAILED,
            output=output,
            error=error,
            execution_time_ms=_elapsed_ms(started),
            resource_cost=resource_cost,
            warnings=warnings,
            attempts=attempts,
        )
        self._record(context, result, cache_hit=cache_hit)
        await self._persist(context, result)

        if critical:
            raise CriticalUnitFailure(unit.name, error)

        context.add_warning(warning)
        logger.warning("unit_failed_default_used", call_id=context.call_id, unit=unit.name, error_code=error.code.value)
        return result

    @staticmethod
    def _cancelled_result(unit: BaseUnit, attempts: int, started: float) -> ExecutionResult:
        return ExecutionResult(
            unit_name=unit.name,
            status=UnitStatus.FAILED,
            output=unit.get_default_output(),
            error=UnitError(code=ErrorCode.CANCELLED, message=f"{unit.name} cancelled", recoverable=False),
            execution_time_ms=_elapsed_ms(started),
            warnings=[f"{unit.name} cancelled"],
            attempts=attempts,
        )

    def _record(self, context: ExecutionContext, result: ExecutionResult, cache_hit: Optional[bool] = None) -> None:
        context.record_result(result.unit_name, result)
        if self.monitor is None:
            return
        completed = result.status == UnitStatus.COMPLETED
        self.monitor.record(ExecutionRecord(
            unit_name=result.unit_name,
            latency_ms=result.execution_time_ms,
            resource_cost=result.resource_cost,
            success=completed,
            confidence=result.output.confidence.value if completed and result.output is not None else None,
            cache_hits=1 if cache_hit else 0,
            cache_misses=1 if cache_hit is False else 0,
            retries=max(result.attempts - 1, 0),
        ))

    async def _persist(self, context: ExecutionContext, result: ExecutionResult) -> None:
        if self.store is None:
            return
        record = {
            "call_id": context.call_id,
            "organization_id": context.metadata.organization_id,
            **result.model_dump(mode="json"),
        }
        try:
            await self.store.append_execution_record(record)
        except OSError as e:
            logger.warning("execution_record_not_persisted", call_id=context.call_id, unit=result.unit_name, error=str(e))

    def _build_result(
        self,
        context: ExecutionContext,
        plan: Optional[ExecutionPlan],
        aborted: bool = False,
        abort_reason: Optional[str] = None,
    ) -> ExtractionResult:
        outputs = {
            name: result.output
            for name, result in context.unit_results.items()
            if result.output is not None
        }
        return ExtractionResult(
            call_id=context.call_id,
            success=not aborted,
            aborted=aborted,
            abort_reason=abort_reason,
            classification=context.classification,
            outputs=outputs,
            execution_time_ms=context.elapsed_ms,
            resource_cost=context.resource_cost,
            agents_executed=context.units_by_status(UnitStatus.COMPLETED),
            agents_failed=context.units_by_status(UnitStatus.FAILED),
            agents_skipped=context.units_by_status(UnitStatus.SKIPPED),
            warnings=context.all_warnings(),
            requires_human_review=aborted or context.requires_human_review(),
            execution_log=[entry.model_copy() for entry in context.execution_log],
            plan=plan.phase_names if plan is not None else [],
        )


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
