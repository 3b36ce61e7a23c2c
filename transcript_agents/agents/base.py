"""Contract every extraction unit implements.

A unit reads the execution context, usually makes one generation call, and
returns one typed output. Units never record their own results; the
orchestrator owns timeouts, retries, validation and fallback to the default
output.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from transcript_agents.agents.context import ExecutionContext
from transcript_agents.config.prompts import TRANSCRIPT_USER_PROMPT
from transcript_agents.llm import GenerationError, GenerationResult, GenerationService, ResponseParseError
from transcript_agents.models import BaseOutput, ConfidenceScore, ErrorCode, GenericOutput, UnitConfig, UnitError

logger = structlog.get_logger(__name__)

TRANSIENT_PATTERNS = re.compile(
    r"\b(429|502|503|504)\b|rate limit|temporarily unavailable|connection (reset|refused|aborted)|network",
    re.IGNORECASE,
)

_EMPTY_VALUES = {"", "null", "none", "n/a", "na"}


class UnitExecutionError(Exception):
    """Error raised by or on behalf of a unit."""

    pass


class InvalidOutputError(UnitExecutionError):
    """A unit returned output that failed its own validation."""

    pass


class BaseUnit(ABC):
    """Base class for extraction units.

    Subclasses set ``name``, ``output_type`` and usually ``system_prompt``
    and ``dependencies``, and implement ``execute``.
    """

    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    dependencies: tuple[str, ...] = ()
    output_type: type[BaseOutput] = GenericOutput
    system_prompt: str = ""
    default_config: UnitConfig = UnitConfig()
    temperature: float = 0.3
    # Units that publish shared state during execute must run every time
    cacheable: bool = True

    def __init__(
        self,
        generation: Optional[GenerationService] = None,
        config: Optional[UnitConfig] = None,
        model: Optional[str] = None,
    ):
        if not self.name:
            raise ValueError(f"{type(self).__name__} must define a name")
        self.generation = generation
        self.config = config or self.default_config.model_copy()
        self.model = model

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"

    # =========================================================================
    # Contract
    # =========================================================================

    def should_execute(self, context: ExecutionContext) -> bool:
        """Precondition check. False skips the unit without an error."""
        return True

    @abstractmethod
    async def execute(self, context: ExecutionContext) -> BaseOutput:
        """Produce this unit's output from the context."""

    def validate_output(self, output: Any) -> bool:
        return isinstance(output, self.output_type) and getattr(output, "confidence", None) is not None

    def get_default_output(self) -> BaseOutput:
        """Schema-valid output used when the unit fails."""
        return self.output_type(
            confidence=ConfidenceScore.from_value(0.0, ["default output"]),
            processing_notes=[f"{self.name} failed; default output used"],
        )

    def classify_error(self, error: BaseException) -> UnitError:
        """Map an exception to an error code and recoverability."""
        message = str(error) or type(error).__name__
        details = {"type": type(error).__name__}

        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return UnitError(code=ErrorCode.TIMEOUT, message=message, recoverable=True, details=details)
        if isinstance(error, InvalidOutputError):
            return UnitError(code=ErrorCode.INVALID_OUTPUT, message=message, recoverable=True, details=details)
        if isinstance(error, (ResponseParseError, json.JSONDecodeError, ValidationError)):
            return UnitError(code=ErrorCode.PARSE_ERROR, message=message, recoverable=True, details=details)
        if TRANSIENT_PATTERNS.search(message):
            return UnitError(code=ErrorCode.TRANSIENT, message=message, recoverable=True, details=details)
        if isinstance(error, GenerationError):
            return UnitError(code=ErrorCode.API_ERROR, message=message, recoverable=False, details=details)
        return UnitError(code=ErrorCode.UNKNOWN, message=message, recoverable=False, details=details)

    # =========================================================================
    # Helpers for subclasses
    # =========================================================================

    async def generate(self, context: ExecutionContext, extra: str = "") -> GenerationResult:
        """Call the generation service with this unit's system prompt."""
        if self.generation is None:
            raise UnitExecutionError(f"Unit {self.name} has no generation service")

        user_prompt = TRANSCRIPT_USER_PROMPT.format(
            call_date=context.metadata.call_date.isoformat(),
            timezone=context.metadata.timezone or "unknown",
            transcript=self.utterance_text(context) or context.transcript,
            extra=extra,
        )
        result = await self.generation.generate(
            system_prompt=self.system_prompt,
            user_prompt=user_prompt,
            temperature=self.temperature,
            model=self.model,
        )
        context.charge_tokens(self.name, result.total_tokens)
        return result

    def parse_output(self, result: GenerationResult, factors: Optional[list[str]] = None) -> BaseOutput:
        """Build this unit's output model from a generation payload."""
        data = {k: v for k, v in self.clean_extracted_data(dict(result.data)).items() if v is not None}
        data.pop("kind", None)
        raw_confidence = data.pop("confidence", None)
        try:
            value = float(raw_confidence) if raw_confidence is not None else 0.5
        except (TypeError, ValueError):
            value = 0.5
        data["confidence"] = ConfidenceScore.from_value(value, factors or ["model reported"])
        data["tokens_used"] = result.total_tokens
        return self.output_type.model_validate(data)

    @staticmethod
    def calculate_confidence(factors: dict[str, float]) -> ConfidenceScore:
        """Average named factor scores into a confidence."""
        if not factors:
            return ConfidenceScore.from_value(0.0)
        value = sum(factors.values()) / len(factors)
        return ConfidenceScore.from_value(value, sorted(factors))

    @staticmethod
    def utterance_text(context: ExecutionContext) -> str:
        return "\n".join(f"{u.speaker}: {u.text}" for u in context.utterances)

    @staticmethod
    def utterances_by_speaker(context: ExecutionContext) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for utterance in context.utterances:
            grouped.setdefault(utterance.speaker, []).append(utterance.text)
        return grouped

    @staticmethod
    def find_keywords(text: str, keywords: list[str]) -> list[str]:
        lowered = text.lower()
        return [k for k in keywords if k.lower() in lowered]

    @classmethod
    def clean_extracted_data(cls, data: Any) -> Any:
        """Turn placeholder strings like "N/A" into None, recursively."""
        if isinstance(data, dict):
            return {k: cls.clean_extracted_data(v) for k, v in data.items()}
        if isinstance(data, list):
            cleaned = (cls.clean_extracted_data(v) for v in data)
            return [v for v in cleaned if v is not None]
        if isinstance(data, str) and data.strip().lower() in _EMPTY_VALUES:
            return None
        return data
