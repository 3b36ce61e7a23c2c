"""Per-unit circuit breakers and last-good fallback outputs.

A unit whose breaker is open is not run at all; the orchestrator records it
as failed with CIRCUIT_OPEN. After the reset interval the breaker lets
calls through again (half open) and closes once enough of them succeed. A
single failure while half open reopens it.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from transcript_agents.config import Settings, get_settings
from transcript_agents.models import BaseOutput, CircuitState, HealthReport, HealthStatus, UnitError

logger = structlog.get_logger(__name__)


@dataclass
class CircuitBreaker:
    unit_name: str
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    success_count: int = 0
    last_failure: Optional[datetime] = None
    next_retry: Optional[datetime] = None


@dataclass
class ErrorEvent:
    unit_name: str
    code: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


class ErrorRecovery:
    """Tracks failures per unit and decides whether a unit may run."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._history: dict[str, deque[ErrorEvent]] = {}
        self._last_good: dict[str, BaseOutput] = {}

    def breaker(self, unit_name: str) -> CircuitBreaker:
        """Current breaker for a unit, moving an expired open breaker to half open."""
        breaker = self._breakers.setdefault(unit_name, CircuitBreaker(unit_name=unit_name))
        if (
            breaker.state == CircuitState.OPEN
            and breaker.next_retry is not None
            and datetime.now() >= breaker.next_retry
        ):
            breaker.state = CircuitState.HALF_OPEN
            breaker.success_count = 0
            logger.info("circuit_half_open", unit=unit_name)
        return breaker

    def allow(self, unit_name: str) -> bool:
        return self.breaker(unit_name).state != CircuitState.OPEN

    def record_success(self, unit_name: str, output: Optional[BaseOutput] = None) -> None:
        breaker = self.breaker(unit_name)
        if breaker.state == CircuitState.HALF_OPEN:
            breaker.success_count += 1
            if breaker.success_count >= self.settings.recovery_half_open_successes:
                breaker.state = CircuitState.CLOSED
                breaker.failures = 0
                logger.info("circuit_closed", unit=unit_name)
        elif breaker.state == CircuitState.CLOSED:
            breaker.failures = max(0, breaker.failures - 1)

        if output is not None:
            self._last_good[unit_name] = output.model_copy(deep=True)

    def record_failure(self, unit_name: str, error: UnitError) -> None:
        breaker = self.breaker(unit_name)
        breaker.failures += 1

        history = self._history.setdefault(unit_name, deque(maxlen=self.settings.recovery_error_history))
        history.append(ErrorEvent(unit_name=unit_name, code=error.code.value, message=error.message))

        if breaker.state == CircuitState.HALF_OPEN or breaker.failures >= self.settings.recovery_failure_threshold:
            now = datetime.now()
            breaker.state = CircuitState.OPEN
            breaker.last_failure = now
            breaker.next_retry = now + timedelta(seconds=self.settings.recovery_reset_seconds)
            logger.warning(
                "circuit_opened",
                unit=unit_name,
                failures=breaker.failures,
                next_retry=breaker.next_retry.isoformat(),
            )

    def fallback_output(self, unit_name: str) -> Optional[BaseOutput]:
        """Last successful output of a unit, when cached fallback is enabled."""
        if not self.settings.recovery_cached_fallback:
            return None
        output = self._last_good.get(unit_name)
        return output.model_copy(deep=True) if output is not None else None

    def error_count(self, unit_name: str, within: timedelta) -> int:
        cutoff = datetime.now() - within
        return sum(1 for event in self._history.get(unit_name, ()) if event.timestamp >= cutoff)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "circuit_breakers": {
                name: {
                    "state": self.breaker(name).state.value,
                    "failures": breaker.failures,
                    "last_failure": breaker.last_failure.isoformat() if breaker.last_failure else None,
                    "next_retry": breaker.next_retry.isoformat() if breaker.next_retry else None,
                }
                for name, breaker in list(self._breakers.items())
            },
            "error_counts": {
                name: {
                    "total": len(history),
                    "last_24h": self.error_count(name, timedelta(hours=24)),
                    "last_hour": self.error_count(name, timedelta(hours=1)),
                }
                for name, history in self._history.items()
            },
        }

    def health_check(self) -> HealthReport:
        issues = []
        for name in list(self._breakers):
            if self.breaker(name).state == CircuitState.OPEN:
                issues.append(f"circuit breaker open for {name}")
        for name in self._history:
            count = self.error_count(name, timedelta(hours=1))
            if count > self.settings.recovery_error_burst:
                issues.append(f"{name}: {count} errors in the last hour")
        return HealthReport(status=HealthStatus.DEGRADED if issues else HealthStatus.HEALTHY, issues=issues)

    def reset(self, unit_name: Optional[str] = None) -> None:
        if unit_name is None:
            self._breakers.clear()
            self._history.clear()
            self._last_good.clear()
            return
        self._breakers.pop(unit_name, None)
        self._history.pop(unit_name, None)
        self._last_good.pop(unit_name, None)
