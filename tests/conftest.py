"""Pytest configuration and fixtures."""

import asyncio
import copy
from typing import Any, Callable, Optional, Union

import pytest

from transcript_agents.agents import BaseUnit, ExecutionContext
from transcript_agents.config import Settings
from transcript_agents.config import prompts
from transcript_agents.llm import GenerationResult
from transcript_agents.models import (
    BaseOutput,
    CallMetadata,
    ConfidenceScore,
    GenericOutput,
    UnitConfig,
    Utterance,
)

SAMPLE_LINES = [
    ("Broker", "Thanks for calling Redline Logistics, this is Dana."),
    ("Carrier", "Hi, this is Mike with Swift Lane Trucking, MC 123456. I saw your load posted on the "
                "load board, Dallas to Atlanta, load number 48213."),
    ("Broker", "Yes, it's still available. Picks up tomorrow morning, 42,000 pounds, dry van. "
               "I can offer $2,000."),
    ("Carrier", "I'd need $2,400 for that lane."),
    ("Broker", "Best I can do is $2,200."),
    ("Carrier", "Alright, we'll take it at $2,200 if the load is ready by 8am."),
    ("Broker", "Sounds good, I'll send the rate confirmation over."),
]

# Canned model answers for a carrier quote call, keyed by system prompt
CARRIER_QUOTE_RESPONSES: dict[str, dict[str, Any]] = {
    prompts.CLASSIFICATION_SYSTEM_PROMPT: {
        "primary_type": "carrier_quote",
        "indicators": ["posted on the load board"],
        "confidence": 0.9,
    },
    prompts.SPEAKER_SYSTEM_PROMPT: {
        "speakers": [
            {"label": "Broker", "role": "broker", "name": "Dana", "company": "Redline Logistics"},
            {"label": "Carrier", "role": "carrier", "name": "Mike", "company": "Swift Lane Trucking"},
        ],
        "confidence": 0.85,
    },
    prompts.TEMPORAL_SYSTEM_PROMPT: {
        "references": [{"text": "tomorrow morning", "purpose": "pickup", "resolved": "2026-03-11T08:00:00"}],
        "confidence": 0.8,
    },
    prompts.REFERENCE_SYSTEM_PROMPT: {
        "references": [{"kind": "load", "value": "48213"}],
        "previous_call_referenced": False,
        "confidence": 0.8,
    },
    prompts.LOAD_SYSTEM_PROMPT: {
        "loads": [{
            "load_id": "48213",
            "origin": "Dallas, TX",
            "destination": "Atlanta, GA",
            "pickup_date": "2026-03-11",
            "delivery_date": "2026-03-13",
            "equipment_type": "dry van",
            "weight_lbs": 42000,
        }],
        "confidence": 0.85,
    },
    prompts.CARRIER_SYSTEM_PROMPT: {
        "carrier_name": "Swift Lane Trucking",
        "mc_number": "123456",
        "contact_name": "Mike",
        "equipment": ["dry van"],
        "confidence": 0.9,
    },
    prompts.SHIPPER_SYSTEM_PROMPT: {"shipper_name": None, "confidence": 0.5},
    prompts.NEGOTIATION_SYSTEM_PROMPT: {
        "status": "agreed",
        "initial_offer": 2000,
        "counter_offers": [2400, 2200],
        "agreed_rate": 2200,
        "rate_type": "flat",
        "confidence": 0.9,
    },
    prompts.CONDITIONS_SYSTEM_PROMPT: {
        "conditions": [{"description": "load ready by 8am"}],
        "accessorials": [],
        "confidence": 0.8,
    },
    prompts.ACCESSORIAL_SYSTEM_PROMPT: {"accessorials": [], "special_provisions": [], "confidence": 0.7},
    prompts.ACTION_ITEMS_SYSTEM_PROMPT: {
        "items": [{"description": "Send the rate confirmation", "owner": "Broker"}],
        "confidence": 0.85,
    },
    prompts.SUMMARY_SYSTEM_PROMPT: {
        "summary": "Swift Lane Trucking booked load 48213 Dallas to Atlanta at $2,200.",
        "key_points": ["Agreed at $2,200", "Pickup tomorrow morning"],
        "next_steps": ["Send rate confirmation"],
        "confidence": 0.85,
    },
    prompts.LEGACY_SYSTEM_PROMPT: {
        "call_type": "carrier_quote",
        "summary": "Carrier booked Dallas to Atlanta.",
        "loads": [{"origin": "Dallas, TX", "destination": "Atlanta, GA"}],
        "agreed_rate": 2200,
        "carrier_name": "Swift Lane Trucking",
        "action_items": ["Send the rate confirmation"],
        "confidence": 0.8,
    },
}

Response = Union[dict[str, Any], BaseException, Callable[[], dict[str, Any]]]


class StubGenerationService:
    """Generation service answering from a table keyed by system prompt.

    A value may be a payload dict, an exception instance to raise, or a
    callable returning a payload.
    """

    PROMPT_TOKENS = 10
    COMPLETION_TOKENS = 5

    def __init__(self, responses: Optional[dict[str, Response]] = None):
        self.responses: dict[str, Response] = dict(CARRIER_QUOTE_RESPONSES)
        self.responses.update(responses or {})
        self.calls: list[str] = []

    async def generate(self, system_prompt, user_prompt, temperature=None, model=None) -> GenerationResult:
        self.calls.append(system_prompt)
        response = self.responses.get(system_prompt)
        if response is None:
            raise KeyError("no canned response for prompt")
        if isinstance(response, BaseException):
            raise response
        data = response() if callable(response) else copy.deepcopy(response)
        return GenerationResult(
            data=data,
            model=model or "stub",
            prompt_tokens=self.PROMPT_TOKENS,
            completion_tokens=self.COMPLETION_TOKENS,
        )


class FakeUnit(BaseUnit):
    """Configurable unit for orchestrator tests.

    ``errors`` are raised one per attempt, in order, before the unit
    finally returns its output.
    """

    name = "fake"

    def __init__(
        self,
        name: str,
        dependencies: tuple[str, ...] = (),
        config: Optional[UnitConfig] = None,
        delay: float = 0.0,
        errors: tuple[BaseException, ...] = (),
        output: Optional[BaseOutput] = None,
        runnable: bool = True,
        events: Optional[list[str]] = None,
    ):
        self.name = name
        self.dependencies = tuple(dependencies)
        if output is not None:
            self.output_type = type(output)
        super().__init__(config=config or UnitConfig())
        self.delay = delay
        self.errors = list(errors)
        self.output = output
        self.runnable = runnable
        self.events = events if events is not None else []
        self.calls = 0
        self.cancelled = False

    def should_execute(self, context: ExecutionContext) -> bool:
        return self.runnable

    async def execute(self, context: ExecutionContext) -> BaseOutput:
        self.calls += 1
        self.events.append(f"start:{self.name}")
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.events.append(f"end:{self.name}")
        if self.errors:
            raise self.errors.pop(0)
        if self.output is not None:
            return self.output.model_copy(deep=True)
        return GenericOutput(
            confidence=ConfidenceScore.from_value(0.9),
            data={"unit": self.name},
            tokens_used=7,
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment.

    The rollout monitor never ticks during a test and result caching is off
    unless a test turns it on.
    """
    return Settings(
        _env_file=None,
        storage_data_dir=str(tmp_path / "data"),
        rollout_monitor_interval_seconds=3600,
        rollout_min_samples=10,
        cache_enabled=False,
    )


@pytest.fixture
def sample_utterances() -> list[Utterance]:
    return [Utterance(speaker=speaker, text=text) for speaker, text in SAMPLE_LINES]


@pytest.fixture
def sample_transcript_text() -> str:
    """Sample carrier quote call transcript."""
    return "\n".join(f"{speaker}: {text}" for speaker, text in SAMPLE_LINES)


@pytest.fixture
def call_metadata() -> CallMetadata:
    return CallMetadata(call_id="call-001", organization_id="acme-logistics", timezone="America/Chicago")


@pytest.fixture
def context(sample_transcript_text, sample_utterances, call_metadata) -> ExecutionContext:
    return ExecutionContext(sample_transcript_text, call_metadata, utterances=sample_utterances)


@pytest.fixture
def stub_generation() -> StubGenerationService:
    return StubGenerationService()


@pytest.fixture
def make_stub() -> type[StubGenerationService]:
    return StubGenerationService


@pytest.fixture
def make_unit() -> type[FakeUnit]:
    return FakeUnit
