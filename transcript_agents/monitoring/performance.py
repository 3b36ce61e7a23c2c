"""Performance monitor - process-wide sink for execution records.

Keeps a bounded window of records per unit and derives everything else on
demand: latency percentiles, success and error rates, confidence, cache hit
rate and cost. Health and recommendations are computed from those
aggregates against configurable thresholds; nothing derived is stored.

Writes to a unit's window are serialized by a lock per unit. Reads copy the
window under the same lock and aggregate outside it.
"""

import math
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from transcript_agents.config import Settings, get_settings
from transcript_agents.models import (
    ExecutionRecord,
    HealthReport,
    HealthStatus,
    Recommendation,
    RecommendationCategory,
    Severity,
    SystemMetrics,
    UnitMetrics,
)

logger = structlog.get_logger(__name__)

_HEALTH_ORDER = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.CRITICAL]


def percentile(values: list[float], p: float) -> float:
    """Value at index ceil(n * p) - 1 of the sorted values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(max(math.ceil(len(ordered) * p) - 1, 0), len(ordered) - 1)
    return ordered[index]


def _worst(*statuses: HealthStatus) -> HealthStatus:
    return max(statuses, key=_HEALTH_ORDER.index)


class PerformanceMonitor:
    """Rolling per-unit metrics, health and recommendations."""

    def __init__(self, settings: Optional[Settings] = None, store: Any = None):
        self.settings = settings or get_settings()
        self.store = store
        self._windows: dict[str, deque[ExecutionRecord]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._in_flight: dict[tuple[str, str], float] = {}
        self._started_at = datetime.now()

    def _window(self, unit_name: str) -> tuple[deque[ExecutionRecord], threading.Lock]:
        with self._registry_lock:
            if unit_name not in self._windows:
                self._windows[unit_name] = deque(maxlen=self.settings.monitor_max_records_per_unit)
                self._locks[unit_name] = threading.Lock()
            return self._windows[unit_name], self._locks[unit_name]

    def _copy(self, unit_name: str) -> list[ExecutionRecord]:
        with self._registry_lock:
            window = self._windows.get(unit_name)
            lock = self._locks.get(unit_name)
        if window is None or lock is None:
            return []
        with lock:
            return list(window)

    # =========================================================================
    # Ingestion
    # =========================================================================

    def record(self, record: ExecutionRecord) -> None:
        window, lock = self._window(record.unit_name)
        with lock:
            # deque(maxlen) evicts the oldest record
            window.append(record)

    def start_tracking(self, unit_name: str, execution_id: str) -> None:
        with self._registry_lock:
            self._in_flight[(unit_name, execution_id)] = time.monotonic()

    def end_tracking(
        self,
        unit_name: str,
        execution_id: str,
        success: bool,
        confidence: Optional[float] = None,
        resource_cost: int = 0,
        cache_hits: int = 0,
        cache_misses: int = 0,
    ) -> Optional[ExecutionRecord]:
        """Close a tracked execution and record it. Unknown ids are ignored."""
        with self._registry_lock:
            started = self._in_flight.pop((unit_name, execution_id), None)
        if started is None:
            logger.warning("tracking_not_found", unit=unit_name, execution_id=execution_id)
            return None

        record = ExecutionRecord(
            unit_name=unit_name,
            latency_ms=(time.monotonic() - started) * 1000,
            resource_cost=resource_cost,
            success=success,
            confidence=confidence,
            cache_hits=cache_hits,
            cache_misses=cache_misses,
        )
        self.record(record)
        return record

    # =========================================================================
    # Aggregates
    # =========================================================================

    def unit_names(self) -> list[str]:
        with self._registry_lock:
            return sorted(self._windows)

    def get_unit_metrics(self, unit_name: str, window_seconds: Optional[float] = None) -> Optional[UnitMetrics]:
        """Aggregates for one unit, optionally limited to a trailing window.

        Returns None for a unit the monitor has never seen.
        """
        if unit_name not in self.unit_names():
            return None
        records = self._copy(unit_name)
        if window_seconds is not None:
            cutoff = datetime.now() - timedelta(seconds=window_seconds)
            records = [r for r in records if r.timestamp >= cutoff]
        return self._aggregate(unit_name, records)

    def _aggregate(self, unit_name: str, records: list[ExecutionRecord]) -> UnitMetrics:
        if not records:
            return UnitMetrics(unit_name=unit_name)

        total = len(records)
        latencies = [r.latency_ms for r in records]
        successes = sum(1 for r in records if r.success)
        confidences = [r.confidence for r in records if r.confidence is not None]
        hits = sum(r.cache_hits for r in records)
        lookups = hits + sum(r.cache_misses for r in records)
        tokens = sum(r.resource_cost for r in records)

        return UnitMetrics(
            unit_name=unit_name,
            total_executions=total,
            average_latency_ms=round(sum(latencies) / total, 2),
            p95_latency_ms=percentile(latencies, 0.95),
            p99_latency_ms=percentile(latencies, 0.99),
            success_rate=round(successes / total, 4),
            error_rate=round((total - successes) / total, 4),
            average_confidence=round(sum(confidences) / len(confidences), 4) if confidences else None,
            total_resource_cost=tokens,
            average_resource_cost=round(tokens / total, 2),
            cache_hit_rate=round(hits / lookups, 4) if lookups else None,
            cost_estimate=round(tokens * self.settings.monitor_cost_per_token, 6),
            last_execution=max(r.timestamp for r in records),
        )

    def get_system_metrics(self) -> SystemMetrics:
        records = [r for name in self.unit_names() for r in self._copy(name)]
        with self._registry_lock:
            in_flight = len(self._in_flight)

        if not records:
            return SystemMetrics(active_units=len(self.unit_names()), in_flight=in_flight)

        total = len(records)
        errors = sum(1 for r in records if not r.success)
        average_latency = sum(r.latency_ms for r in records) / total
        minute_ago = datetime.now() - timedelta(minutes=1)
        tokens = sum(r.resource_cost for r in records)

        return SystemMetrics(
            total_executions=total,
            total_errors=errors,
            error_rate=round(errors / total, 4),
            average_response_time_ms=round(average_latency, 2),
            throughput_per_minute=float(sum(1 for r in records if r.timestamp >= minute_ago)),
            active_units=len(self.unit_names()),
            in_flight=in_flight,
            total_resource_cost=tokens,
            cost_estimate=round(tokens * self.settings.monitor_cost_per_token, 6),
            health=self._classify(errors / total, average_latency),
        )

    def _classify(self, error_rate: float, average_latency_ms: float) -> HealthStatus:
        s = self.settings
        if error_rate > s.monitor_error_rate_critical:
            by_errors = HealthStatus.CRITICAL
        elif error_rate > s.monitor_error_rate_warning:
            by_errors = HealthStatus.DEGRADED
        else:
            by_errors = HealthStatus.HEALTHY

        if average_latency_ms > s.monitor_latency_critical_ms:
            by_latency = HealthStatus.CRITICAL
        elif average_latency_ms > s.monitor_latency_warning_ms:
            by_latency = HealthStatus.DEGRADED
        else:
            by_latency = HealthStatus.HEALTHY

        return _worst(by_errors, by_latency)

    def health_check(self) -> HealthReport:
        system = self.get_system_metrics()
        issues = []
        s = self.settings
        if system.error_rate > s.monitor_error_rate_warning:
            issues.append(f"system error rate {system.error_rate:.1%}")
        if system.average_response_time_ms > s.monitor_latency_warning_ms:
            issues.append(f"average response time {system.average_response_time_ms:.0f}ms")

        for name in self.unit_names():
            metrics = self.get_unit_metrics(name)
            if metrics is None or not metrics.total_executions:
                continue
            if metrics.error_rate > s.monitor_error_rate_critical:
                issues.append(f"{name} error rate {metrics.error_rate:.1%}")
            if metrics.p95_latency_ms > s.monitor_latency_critical_ms:
                issues.append(f"{name} p95 latency {metrics.p95_latency_ms:.0f}ms")
            if metrics.average_resource_cost > s.monitor_tokens_warning:
                issues.append(f"{name} averages {metrics.average_resource_cost:.0f} tokens per execution")

        return HealthReport(status=system.health, issues=issues)

    def get_recommendations(self) -> list[Recommendation]:
        """Rule-based suggestions, system-wide first, then by firing order."""
        s = self.settings
        recommendations: list[Recommendation] = []

        system = self.get_system_metrics()
        if system.total_executions and system.error_rate > s.monitor_error_rate_warning:
            recommendations.append(Recommendation(
                category=RecommendationCategory.RELIABILITY,
                severity=Severity.CRITICAL,
                priority=0,
                message="System error rate is high; review failing units and upstream availability",
                metric_value=system.error_rate,
                threshold=s.monitor_error_rate_warning,
            ))
        if system.total_executions and system.average_response_time_ms > s.monitor_latency_warning_ms:
            recommendations.append(Recommendation(
                category=RecommendationCategory.PERFORMANCE,
                severity=Severity.HIGH,
                priority=0,
                message="System response time is high; consider running more units in parallel",
                metric_value=system.average_response_time_ms,
                threshold=s.monitor_latency_warning_ms,
            ))

        priority = 1
        for name in self.unit_names():
            m = self.get_unit_metrics(name)
            if m is None or not m.total_executions:
                continue

            if m.p95_latency_ms > s.monitor_latency_critical_ms:
                recommendations.append(Recommendation(
                    unit_name=name, category=RecommendationCategory.PERFORMANCE, severity=Severity.CRITICAL,
                    priority=priority, metric_value=m.p95_latency_ms, threshold=s.monitor_latency_critical_ms,
                    message=f"{name}: p95 latency is critical; shorten the prompt or reduce the unit's scope",
                ))
                priority += 1
            if m.average_resource_cost > s.monitor_tokens_critical:
                recommendations.append(Recommendation(
                    unit_name=name, category=RecommendationCategory.COST, severity=Severity.HIGH,
                    priority=priority, metric_value=m.average_resource_cost, threshold=s.monitor_tokens_critical,
                    message=f"{name}: token usage is high; trim the transcript context sent to the model",
                ))
                priority += 1
            if m.success_rate < s.monitor_min_success_rate:
                recommendations.append(Recommendation(
                    unit_name=name, category=RecommendationCategory.RELIABILITY, severity=Severity.HIGH,
                    priority=priority, metric_value=m.success_rate, threshold=s.monitor_min_success_rate,
                    message=f"{name}: success rate is low; review retries and error handling",
                ))
                priority += 1
            if m.average_confidence is not None and m.average_confidence < s.monitor_min_confidence:
                recommendations.append(Recommendation(
                    unit_name=name, category=RecommendationCategory.ACCURACY, severity=Severity.MEDIUM,
                    priority=priority, metric_value=m.average_confidence, threshold=s.monitor_min_confidence,
                    message=f"{name}: confidence is low; refine the prompt or add examples",
                ))
                priority += 1
            if (
                m.cache_hit_rate is not None
                and m.cache_hit_rate < s.monitor_min_cache_hit_rate
                and m.total_executions > 10
            ):
                recommendations.append(Recommendation(
                    unit_name=name, category=RecommendationCategory.PERFORMANCE, severity=Severity.LOW,
                    priority=priority, metric_value=m.cache_hit_rate, threshold=s.monitor_min_cache_hit_rate,
                    message=f"{name}: cache hit rate is low; review cache keys",
                ))
                priority += 1

        return sorted(recommendations, key=lambda r: r.priority)

    # =========================================================================
    # Export and lifecycle
    # =========================================================================

    def export(self) -> dict[str, Any]:
        return {
            "exported_at": datetime.now().isoformat(),
            "monitoring_since": self._started_at.isoformat(),
            "system": self.get_system_metrics().model_dump(mode="json"),
            "units": {
                name: metrics.model_dump(mode="json")
                for name in self.unit_names()
                if (metrics := self.get_unit_metrics(name)) is not None
            },
            "health": self.health_check().model_dump(mode="json"),
            "recommendations": [r.model_dump(mode="json") for r in self.get_recommendations()],
        }

    async def flush(self) -> int:
        """Append one aggregate row per unit to the store. Returns rows written."""
        if self.store is None:
            return 0
        flushed_at = datetime.now().isoformat()
        rows = []
        for name in self.unit_names():
            metrics = self.get_unit_metrics(name)
            if metrics is not None and metrics.total_executions:
                rows.append({"flushed_at": flushed_at, **metrics.model_dump(mode="json")})
        await self.store.append_metrics(rows)
        logger.info("metrics_flushed", rows=len(rows))
        return len(rows)

    def reset(self) -> None:
        with self._registry_lock:
            self._windows.clear()
            self._locks.clear()
            self._in_flight.clear()
            self._started_at = datetime.now()
        logger.info("monitor_reset")
