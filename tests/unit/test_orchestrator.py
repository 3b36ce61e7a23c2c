"""Unit tests for the orchestrator."""

import asyncio
from datetime import datetime, timedelta

import pytest

from transcript_agents.agents import CriticalUnitFailure, DependencyGraphError, ExecutionContext, Orchestrator
from transcript_agents.agents.cache import ResultCache
from transcript_agents.agents.plan import ExecutionPlan, Phase, UnitSpec
from transcript_agents.agents.recovery import ErrorRecovery
from transcript_agents.agents.units import SpeakerIdentificationUnit
from transcript_agents.config import prompts
from transcript_agents.llm import GenerationError, ResponseParseError
from transcript_agents.models import (
    CallType,
    CircuitState,
    ClassificationOutput,
    ConfidenceScore,
    ErrorCode,
    ExecutionResult,
    UnitConfig,
    UnitStatus,
)
from transcript_agents.monitoring import PerformanceMonitor
from transcript_agents.storage import InMemoryStore


def _classification(call_type: CallType) -> ClassificationOutput:
    return ClassificationOutput(primary_type=call_type, confidence=ConfidenceScore.from_value(0.9))


@pytest.fixture
def orchestrator(settings) -> Orchestrator:
    return Orchestrator(settings, monitor=PerformanceMonitor(settings), store=InMemoryStore())


class TestExecuteUnit:
    """Tests for running a single unit under its policy."""

    def test_success(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a"))

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.status == UnitStatus.COMPLETED
        assert result.attempts == 1
        assert result.resource_cost == 7
        assert context.has_completed("a")
        assert context.execution_log[0].status == UnitStatus.COMPLETED

    def test_recoverable_error_is_retried(self, orchestrator, context, make_unit):
        unit = make_unit("a", config=UnitConfig(retry_on_failure=True), errors=(ResponseParseError("bad json"),))
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.status == UnitStatus.COMPLETED
        assert result.attempts == 2
        assert unit.calls == 2
        assert context.execution_log[0].attempts == 2

    def test_no_retry_without_policy(self, orchestrator, context, make_unit):
        unit = make_unit("a", errors=(ResponseParseError("bad json"),))
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.status == UnitStatus.FAILED
        assert result.error.code == ErrorCode.PARSE_ERROR
        assert unit.calls == 1

    def test_non_recoverable_error_not_retried(self, orchestrator, context, make_unit):
        unit = make_unit("a", config=UnitConfig(retry_on_failure=True), errors=(GenerationError("model missing"),))
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.status == UnitStatus.FAILED
        assert result.error.code == ErrorCode.API_ERROR
        assert unit.calls == 1

    def test_retries_are_bounded(self, orchestrator, context, make_unit):
        errors = (ResponseParseError("1"), ResponseParseError("2"), ResponseParseError("3"))
        unit = make_unit("a", config=UnitConfig(retry_on_failure=True), errors=errors)
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.status == UnitStatus.FAILED
        assert unit.calls == 2
        assert result.attempts == 2

    def test_failure_uses_default_output_and_warns(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", errors=(RuntimeError("boom"),)))

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.output is not None
        assert result.output.confidence.value == 0.0
        assert result.error.code == ErrorCode.UNKNOWN
        assert any("a failed" in w for w in context.all_warnings())

    def test_timeout(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("slow", delay=1.0, config=UnitConfig(timeout_seconds=0.05)))

        result = asyncio.run(orchestrator.execute_unit("slow", context))

        assert result.status == UnitStatus.FAILED
        assert result.error.code == ErrorCode.TIMEOUT
        assert "timed out" in result.error.message

    def test_critical_failure_raises(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", config=UnitConfig(critical=True), errors=(RuntimeError("boom"),)))

        with pytest.raises(CriticalUnitFailure) as exc_info:
            asyncio.run(orchestrator.execute_unit("a", context))

        assert exc_info.value.unit_name == "a"
        assert context.get_execution_result("a").status == UnitStatus.FAILED

    def test_phase_override_makes_unit_critical(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", errors=(RuntimeError("boom"),)))

        with pytest.raises(CriticalUnitFailure):
            asyncio.run(orchestrator.execute_unit("a", context, {"critical": True}))

    def test_invalid_output_is_recorded(self, orchestrator, context, make_unit):
        unit = make_unit("a")
        unit.validate_output = lambda output: False
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("a", context))

        assert result.error.code == ErrorCode.INVALID_OUTPUT

    def test_missing_dependency_skips(self, orchestrator, context, make_unit):
        unit = make_unit("b", dependencies=("a",))
        orchestrator.register(unit)

        result = asyncio.run(orchestrator.execute_unit("b", context))

        assert result.status == UnitStatus.SKIPPED
        assert unit.calls == 0

    def test_optional_unit_runs_with_partial_context(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("b", dependencies=("a",), config=UnitConfig(optional=True)))

        result = asyncio.run(orchestrator.execute_unit("b", context))

        assert result.status == UnitStatus.COMPLETED
        assert any("partial context" in w for w in context.all_warnings())

    def test_precondition_false_skips(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", runnable=False))
        result = asyncio.run(orchestrator.execute_unit("a", context))
        assert result.status == UnitStatus.SKIPPED

    def test_unregistered_unit_skips(self, orchestrator, context):
        result = asyncio.run(orchestrator.execute_unit("ghost", context))
        assert result.status == UnitStatus.SKIPPED
        assert "not registered" in result.warnings[0]

    def test_records_reach_monitor_and_store(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a"))
        asyncio.run(orchestrator.execute_unit("a", context))

        metrics = orchestrator.monitor.get_unit_metrics("a")
        assert metrics.total_executions == 1
        assert metrics.success_rate == 1.0
        assert orchestrator.store.execution_records[0]["unit_name"] == "a"
        assert orchestrator.store.execution_records[0]["call_id"] == "call-001"

    def test_default_timeout_from_settings(self, settings, context, make_unit):
        orchestrator = Orchestrator(settings.model_copy(update={"orchestrator_default_timeout_seconds": 0.05}))
        orchestrator.register(make_unit("slow", delay=1.0))

        result = asyncio.run(orchestrator.execute_unit("slow", context))

        assert result.error.code == ErrorCode.TIMEOUT
        assert result.error.message == "slow timed out after 0.05s"

    def test_tokens_counted_across_attempts(self, orchestrator, context, make_stub):
        context.record_result("classification", ExecutionResult(
            unit_name="classification", status=UnitStatus.COMPLETED, output=_classification(CallType.CARRIER_QUOTE),
        ))
        answers = [
            {"speakers": "nobody", "confidence": 0.5},
            {"speakers": [{"label": "Broker", "role": "broker"}, {"label": "Carrier", "role": "carrier"}]},
        ]
        stub = make_stub({prompts.SPEAKER_SYSTEM_PROMPT: lambda: answers.pop(0)})
        orchestrator.register(SpeakerIdentificationUnit(generation=stub))

        result = asyncio.run(orchestrator.execute_unit("speaker_identification", context))

        assert result.status == UnitStatus.COMPLETED
        assert result.attempts == 2
        assert result.resource_cost == 30

    def test_failed_unit_reports_tokens_spent(self, orchestrator, context, make_stub):
        context.record_result("classification", ExecutionResult(
            unit_name="classification", status=UnitStatus.COMPLETED, output=_classification(CallType.CARRIER_QUOTE),
        ))
        stub = make_stub({prompts.SPEAKER_SYSTEM_PROMPT: {"speakers": "nobody", "confidence": 0.5}})
        orchestrator.register(SpeakerIdentificationUnit(generation=stub))

        result = asyncio.run(orchestrator.execute_unit("speaker_identification", context))

        assert result.status == UnitStatus.FAILED
        assert result.error.code == ErrorCode.PARSE_ERROR
        assert result.resource_cost == 30
        assert orchestrator.monitor.get_unit_metrics("speaker_identification").total_resource_cost == 30


class TestParallelPhase:
    """Tests for phases whose units run concurrently."""

    def _plan(self, *names: str) -> ExecutionPlan:
        return ExecutionPlan(
            category=CallType.CHECK_CALL,
            phases=[Phase(name="foundation", parallel=True, units=[UnitSpec(n) for n in names])],
        )

    def test_units_run_concurrently(self, orchestrator, context, make_unit):
        events: list[str] = []
        orchestrator.register(make_unit("a", delay=0.05, events=events))
        orchestrator.register(make_unit("b", delay=0.05, events=events))

        asyncio.run(orchestrator.execute_plan(self._plan("a", "b"), context))

        assert sorted(events[:2]) == ["start:a", "start:b"]
        assert context.has_completed("a") and context.has_completed("b")

    def test_non_critical_failure_leaves_siblings_alone(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", errors=(RuntimeError("boom"),)))
        orchestrator.register(make_unit("b", delay=0.05))

        asyncio.run(orchestrator.execute_plan(self._plan("a", "b"), context))

        assert context.get_execution_result("a").status == UnitStatus.FAILED
        assert context.has_completed("b")

    def test_critical_failure_cancels_siblings(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("a", config=UnitConfig(critical=True), errors=(RuntimeError("boom"),)))
        slow = make_unit("b", delay=5.0)
        orchestrator.register(slow)

        with pytest.raises(CriticalUnitFailure):
            asyncio.run(orchestrator.execute_plan(self._plan("a", "b"), context))

        cancelled = context.get_execution_result("b")
        assert slow.cancelled
        assert cancelled.status == UnitStatus.FAILED
        assert cancelled.error.code == ErrorCode.CANCELLED
        assert cancelled.output is not None

    def test_unexpected_error_cancels_siblings_first(self, settings, context, make_unit):
        class BrokenStore(InMemoryStore):
            async def append_execution_record(self, record):
                if record["unit_name"] == "a":
                    raise RuntimeError("store corrupted")
                await super().append_execution_record(record)

        orchestrator = Orchestrator(settings, store=BrokenStore())
        orchestrator.register(make_unit("a"))
        slow = make_unit("b", delay=5.0)
        orchestrator.register(slow)

        async def scenario():
            with pytest.raises(RuntimeError, match="store corrupted"):
                await orchestrator.execute_plan(self._plan("a", "b"), context)
            # Inspected inside the loop, before shutdown could cancel anything
            return context.get_execution_result("b")

        cancelled = asyncio.run(scenario())

        assert slow.cancelled
        assert cancelled.status == UnitStatus.FAILED
        assert cancelled.error.code == ErrorCode.CANCELLED


class TestRun:
    """Tests for the full classify, plan and execute flow."""

    def test_short_circuit_after_classification(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("classification", output=_classification(CallType.WRONG_NUMBER)))
        orchestrator.register(make_unit("speaker_identification"))

        result = asyncio.run(orchestrator.run(context))

        assert result.success
        assert result.plan == []
        assert result.agents_executed == ["classification"]
        assert context.get_shared("category") == "wrong_number"

    def test_unregistered_plan_units_are_skipped(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("classification", output=_classification(CallType.VOICEMAIL)))
        orchestrator.register(make_unit("action_items", dependencies=("classification",)))

        result = asyncio.run(orchestrator.run(context))

        assert result.success
        assert result.plan == ["foundation", "voicemail_extraction", "finalization"]
        assert "action_items" in result.agents_executed
        assert set(result.agents_skipped) == {"speaker_identification", "temporal_resolution", "validation", "summary"}

    def test_disabled_units_never_run(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("classification", output=_classification(CallType.VOICEMAIL)))
        action_items = make_unit("action_items")
        orchestrator.register(action_items)

        result = asyncio.run(orchestrator.run(context, disabled_units=["action_items"]))

        assert action_items.calls == 0
        assert "action_items" not in result.outputs

    def test_non_critical_failure_after_retry_keeps_run_successful(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("classification", output=_classification(CallType.VOICEMAIL)))
        action_items = make_unit(
            "action_items",
            dependencies=("classification",),
            config=UnitConfig(retry_on_failure=True),
            errors=(ResponseParseError("bad json"), ResponseParseError("bad json again")),
        )
        orchestrator.register(action_items)

        result = asyncio.run(orchestrator.run(context))

        assert result.success
        assert not result.aborted
        assert result.agents_failed == ["action_items"]
        assert action_items.calls == 2
        assert context.get_execution_result("action_items").attempts == 2
        assert result.outputs["action_items"].confidence.value == 0.0
        assert any("action_items failed (PARSE_ERROR)" in w for w in result.warnings)

    def test_critical_classification_failure_aborts(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit(
            "classification",
            config=UnitConfig(critical=True),
            errors=(GenerationError("model offline"),),
        ))

        result = asyncio.run(orchestrator.run(context))

        assert not result.success
        assert result.aborted
        assert "classification" in result.abort_reason
        assert result.requires_human_review
        assert result.agents_failed == ["classification"]

    def test_critical_phase_unit_aborts(self, orchestrator, context, make_unit):
        orchestrator.register(make_unit("classification", output=_classification(CallType.NEW_BOOKING)))
        orchestrator.register(make_unit("load_extraction", errors=(RuntimeError("boom"),)))
        summary = make_unit("summary")
        orchestrator.register(summary)

        result = asyncio.run(orchestrator.run(context))

        assert result.aborted
        assert summary.calls == 0


class TestCircuitBreaker:
    """Tests for per-unit circuit breakers inside execute_unit."""

    @pytest.fixture
    def guarded(self, settings) -> Orchestrator:
        recovery_settings = settings.model_copy(update={"recovery_failure_threshold": 2})
        return Orchestrator(settings, monitor=PerformanceMonitor(settings), recovery=ErrorRecovery(recovery_settings))

    def test_open_circuit_stops_calls(self, guarded, context, make_unit):
        unit = make_unit("a", errors=(RuntimeError("boom"), RuntimeError("boom")))
        guarded.register(unit)

        async def scenario():
            for _ in range(3):
                await guarded.execute_unit("a", context)

        asyncio.run(scenario())

        result = context.get_execution_result("a")
        assert unit.calls == 2
        assert result.status == UnitStatus.FAILED
        assert result.error.code == ErrorCode.CIRCUIT_OPEN
        assert result.attempts == 0
        assert guarded.recovery.breaker("a").state == CircuitState.OPEN

    def test_open_critical_unit_aborts(self, guarded, context, make_unit):
        guarded.register(make_unit("a", config=UnitConfig(critical=True)))
        breaker = guarded.recovery.breaker("a")
        breaker.state = CircuitState.OPEN
        breaker.next_retry = datetime.now() + timedelta(minutes=1)

        with pytest.raises(CriticalUnitFailure) as exc_info:
            asyncio.run(guarded.execute_unit("a", context))

        assert exc_info.value.error.code == ErrorCode.CIRCUIT_OPEN

    def test_half_open_lets_calls_through(self, guarded, context, make_unit):
        unit = make_unit("a")
        guarded.register(unit)
        breaker = guarded.recovery.breaker("a")
        breaker.state = CircuitState.OPEN
        breaker.next_retry = datetime.now() - timedelta(seconds=1)

        result = asyncio.run(guarded.execute_unit("a", context))

        assert result.status == UnitStatus.COMPLETED
        assert unit.calls == 1
        assert guarded.recovery.breaker("a").state == CircuitState.HALF_OPEN

    def test_last_good_output_used_when_enabled(self, settings, context, make_unit):
        recovery = ErrorRecovery(settings.model_copy(update={"recovery_cached_fallback": True}))
        orchestrator = Orchestrator(settings, recovery=recovery)
        unit = make_unit("a")
        orchestrator.register(unit)

        async def scenario():
            await orchestrator.execute_unit("a", context)
            unit.errors.append(RuntimeError("boom"))
            return await orchestrator.execute_unit("a", context)

        result = asyncio.run(scenario())

        assert result.status == UnitStatus.FAILED
        assert result.output.data == {"unit": "a"}
        assert result.output.confidence.value == 0.9
        assert "a used its last successful output" in result.warnings

    def test_default_output_without_fallback(self, orchestrator, context, make_unit):
        unit = make_unit("a")
        orchestrator.register(unit)

        async def scenario():
            await orchestrator.execute_unit("a", context)
            unit.errors.append(RuntimeError("boom"))
            return await orchestrator.execute_unit("a", context)

        result = asyncio.run(scenario())

        assert result.output.confidence.value == 0.0


class TestResultCache:
    """Tests for serving completed outputs from the result cache."""

    @pytest.fixture
    def cached(self, settings) -> Orchestrator:
        return Orchestrator(settings, monitor=PerformanceMonitor(settings), cache=ResultCache())

    def _context(self, transcript, call_metadata, sample_utterances):
        return ExecutionContext(transcript, call_metadata, utterances=sample_utterances)

    def test_identical_input_is_served_from_cache(
        self, cached, make_unit, sample_transcript_text, call_metadata, sample_utterances
    ):
        unit = make_unit("a")
        cached.register(unit)

        async def scenario():
            first = await cached.execute_unit("a", self._context(sample_transcript_text, call_metadata, sample_utterances))
            second = await cached.execute_unit("a", self._context(sample_transcript_text, call_metadata, sample_utterances))
            return first, second

        first, second = asyncio.run(scenario())

        assert unit.calls == 1
        assert not first.cached
        assert second.cached
        assert second.status == UnitStatus.COMPLETED
        assert second.resource_cost == 0
        assert second.output == first.output
        assert cached.monitor.get_unit_metrics("a").cache_hit_rate == 0.5

    def test_different_transcript_misses(self, cached, make_unit, call_metadata, sample_utterances):
        unit = make_unit("a")
        cached.register(unit)

        async def scenario():
            await cached.execute_unit("a", self._context("Broker: hello", call_metadata, []))
            await cached.execute_unit("a", self._context("Broker: goodbye", call_metadata, []))

        asyncio.run(scenario())

        assert unit.calls == 2
        assert cached.cache.misses == 2

    def test_failures_are_not_cached(self, cached, make_unit, sample_transcript_text, call_metadata, sample_utterances):
        unit = make_unit("a", errors=(RuntimeError("boom"),))
        cached.register(unit)

        async def scenario():
            await cached.execute_unit("a", self._context(sample_transcript_text, call_metadata, sample_utterances))
            return await cached.execute_unit("a", self._context(sample_transcript_text, call_metadata, sample_utterances))

        result = asyncio.run(scenario())

        assert unit.calls == 2
        assert result.status == UnitStatus.COMPLETED
        assert not result.cached

    def test_uncacheable_units_always_run(
        self, cached, make_unit, sample_transcript_text, call_metadata, sample_utterances
    ):
        unit = make_unit("a")
        unit.cacheable = False
        cached.register(unit)

        async def scenario():
            for _ in range(2):
                await cached.execute_unit("a", self._context(sample_transcript_text, call_metadata, sample_utterances))

        asyncio.run(scenario())

        assert unit.calls == 2
        assert cached.monitor.get_unit_metrics("a").cache_hit_rate is None

    def test_disabled_by_settings(self, settings):
        assert Orchestrator(settings).cache is None
        assert Orchestrator(settings.model_copy(update={"cache_enabled": True})).cache is not None


class TestGraphValidation:
    """Tests for dependency graph validation."""

    def test_unknown_dependency(self, orchestrator, make_unit):
        orchestrator.register(make_unit("b", dependencies=("a",)))
        with pytest.raises(DependencyGraphError, match="unregistered"):
            orchestrator.validate_graph()

    def test_cycle(self, orchestrator, make_unit):
        orchestrator.register(make_unit("a", dependencies=("b",)))
        orchestrator.register(make_unit("b", dependencies=("a",)))
        with pytest.raises(DependencyGraphError, match="cycle"):
            orchestrator.validate_graph()

    def test_valid_graph(self, orchestrator, make_unit):
        orchestrator.register(make_unit("a"))
        orchestrator.register(make_unit("b", dependencies=("a",)))
        orchestrator.validate_graph()
        assert orchestrator.registered_units() == ["a", "b"]

    def test_registry_operations(self, orchestrator, make_unit):
        orchestrator.register(make_unit("a", config=UnitConfig(critical=True)))
        orchestrator.register(make_unit("b"))
        assert orchestrator.critical_units() == ["a"]
        orchestrator.unregister("a")
        assert orchestrator.get_unit("a") is None
        orchestrator.clear()
        assert orchestrator.registered_units() == []
