"""Ollama LLM client configuration."""

from functools import lru_cache

from langchain_ollama import OllamaLLM
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """LLM configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "gpt-oss:20b"
    temperature: float = 0.3
    request_timeout: int = 60
    num_ctx: int = 8192
    num_predict: int = 2048  # Max tokens to generate
    token_encoding: str = "cl100k_base"


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


def create_json_llm_client(
    settings: LLMSettings | None = None,
    model: str | None = None,
    temperature: float | None = None,
) -> OllamaLLM:
    """Create LLM client used for JSON extraction prompts.

    JSON is pulled out of the raw completion in chains.py rather than via
    ``format="json"``, which some local models ignore or truncate.

    Args:
        settings: Optional custom settings.
        model: Model override for this client.
        temperature: Temperature override for this client.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_llm_settings()

    return OllamaLLM(
        model=model or settings.model_name,
        base_url=settings.ollama_base_url,
        temperature=settings.temperature if temperature is None else temperature,
        timeout=settings.request_timeout,
        num_ctx=settings.num_ctx,
        num_predict=settings.num_predict,
        streaming=False,
    )
