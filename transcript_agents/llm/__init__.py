"""Generation service boundary."""

from .chains import (
    GenerationError,
    GenerationResult,
    GenerationService,
    OllamaGenerationService,
    ResponseParseError,
    count_tokens,
    parse_json_response,
)
from .client import LLMSettings, create_json_llm_client, get_llm_settings

__all__ = [
    "GenerationError",
    "GenerationResult",
    "GenerationService",
    "LLMSettings",
    "OllamaGenerationService",
    "ResponseParseError",
    "count_tokens",
    "create_json_llm_client",
    "get_llm_settings",
    "parse_json_response",
]
