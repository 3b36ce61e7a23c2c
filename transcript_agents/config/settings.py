"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Orchestrator
    orchestrator_max_retries: int = 1
    orchestrator_default_timeout_seconds: float = 30.0
    orchestrator_short_circuit_categories: list[str] = ["wrong_number"]

    # Performance Monitor
    monitor_max_records_per_unit: int = 1000
    monitor_cost_per_token: float = 0.00002
    monitor_latency_warning_ms: float = 5000.0
    monitor_latency_critical_ms: float = 10000.0
    monitor_tokens_warning: int = 1000
    monitor_tokens_critical: int = 5000
    monitor_error_rate_warning: float = 0.10
    monitor_error_rate_critical: float = 0.25
    monitor_min_success_rate: float = 0.80
    monitor_min_confidence: float = 0.60
    monitor_min_cache_hit_rate: float = 0.30

    # Result cache
    cache_enabled: bool = True
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 1000

    # Error recovery
    recovery_failure_threshold: int = 5
    recovery_reset_seconds: float = 60.0
    recovery_half_open_successes: int = 3
    recovery_cached_fallback: bool = False
    recovery_error_history: int = 100
    recovery_error_burst: int = 10

    # Gradual Rollout
    rollout_monitor_interval_seconds: float = 60.0
    rollout_metrics_window_seconds: float = 3600.0
    rollout_critical_error_rate: float = 0.10
    rollout_critical_success_rate: float = 0.80
    rollout_min_samples: int = 10
    rollout_expand_success_rate: float = 0.95
    rollout_expand_error_rate: float = 0.02
    rollout_investigate_error_rate: float = 0.05
    rollout_max_outcomes: int = 10000

    # Production Controller
    production_fallback_enabled: bool = True
    production_comparison_agreement_threshold: float = 70.0
    production_force_multi_agent: bool | None = None

    # Storage
    storage_data_dir: str = "data"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
