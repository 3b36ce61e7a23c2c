"""LangChain generation service used by every extraction unit.

Units never talk to a model directly. They call ``GenerationService.generate``
with a system prompt and a user prompt and receive parsed JSON plus token
counts. ``OllamaGenerationService`` is the production implementation; tests
inject their own.
"""

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

import structlog
import tiktoken
from langchain_core.output_parsers import JsonOutputParser, StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from transcript_agents.llm.client import LLMSettings, create_json_llm_client, get_llm_settings

logger = structlog.get_logger(__name__)


class GenerationError(Exception):
    """Error talking to the generation backend."""

    pass


class ResponseParseError(GenerationError):
    """The backend answered but no JSON object could be recovered."""

    pass


@dataclass
class GenerationResult:
    """Parsed generation response with usage metadata."""

    data: dict[str, Any]
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    raw: str = field(default="", repr=False)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class GenerationService(Protocol):
    """Anything that can turn a prompt pair into a JSON object."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        ...


@lru_cache
def _get_encoding(name: str) -> tiktoken.Encoding:
    try:
        return tiktoken.get_encoding(name)
    except ValueError:
        logger.warning("tiktoken_encoding_fallback", requested=name)
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Count tokens the way the cost estimates expect."""
    if not text:
        return 0
    return len(_get_encoding(encoding_name).encode(text))


# =============================================================================
# JSON recovery
# =============================================================================

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def _first_balanced_object(text: str) -> str | None:
    """Return the first brace-balanced object in ``text``, ignoring braces in strings."""
    depth = 0
    start = None
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth:
            depth -= 1
            if depth == 0 and start is not None:
                return text[start:i + 1]
    return None


def _loads_lenient(text: str) -> dict | None:
    text = text.strip("\ufeff\u200b\u200c\u200d \n\t")
    # Trailing commas are the most common model mistake
    text = _TRAILING_COMMA.sub(r"\1", text)
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_json_response(response: str) -> dict:
    """Recover a JSON object from a model completion.

    Handles code fences, reasoning preambles before the object, trailing
    commas and text after the closing brace.

    Raises:
        ResponseParseError: If no object can be recovered.
    """
    if not response or not response.strip():
        raise ResponseParseError("Empty response from model")

    text = response.strip()
    candidates = []

    block = _CODE_BLOCK.search(text)
    if block and block.group(1).lstrip().startswith("{"):
        candidates.append(block.group(1))
    candidates.append(text)
    balanced = _first_balanced_object(text)
    if balanced:
        candidates.append(balanced)

    for candidate in candidates:
        parsed = _loads_lenient(candidate)
        if parsed is not None:
            return parsed

    logger.error("json_parse_error", response_preview=text[:300])
    raise ResponseParseError(f"Failed to parse model JSON response. Response preview: {text[:150]}")


# =============================================================================
# Ollama implementation
# =============================================================================

class OllamaGenerationService:
    """Generation service backed by a local Ollama model through LangChain."""

    def __init__(self, settings: LLMSettings | None = None):
        self.settings = settings or get_llm_settings()
        # Prompts arrive as template variables so literal braces in them survive
        self._prompt = ChatPromptTemplate.from_messages([
            ("system", "{system_prompt}"),
            ("human", "{user_prompt}"),
        ])
        self._json_parser = JsonOutputParser()

    # Only transport failures are retried; cancellation and parse errors propagate
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(GenerationError) & retry_if_not_exception_type(ResponseParseError),
        reraise=True,
    )
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        model_name = model or self.settings.model_name
        llm = create_json_llm_client(self.settings, model=model_name, temperature=temperature)
        chain = self._prompt | llm | StrOutputParser()

        logger.debug("generation_request", model=model_name, prompt_length=len(user_prompt))
        try:
            response = await chain.ainvoke({"system_prompt": system_prompt, "user_prompt": user_prompt})
        except (ConnectionError, OSError) as e:
            raise GenerationError(f"API error from {model_name}: {e}") from e

        if not response or not response.strip():
            raise GenerationError(f"Model {model_name} returned an empty response")

        try:
            data = self._json_parser.parse(response)
            if not isinstance(data, dict):
                raise ValueError("top-level JSON is not an object")
        except Exception as e:
            logger.debug("json_parser_failed", error=str(e))
            data = parse_json_response(response)

        encoding = self.settings.token_encoding
        result = GenerationResult(
            data=data,
            model=model_name,
            prompt_tokens=count_tokens(system_prompt, encoding) + count_tokens(user_prompt, encoding),
            completion_tokens=count_tokens(response, encoding),
            raw=response,
        )
        logger.debug("generation_complete", model=model_name, tokens=result.total_tokens)
        return result
