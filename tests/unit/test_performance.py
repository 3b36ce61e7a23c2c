"""Unit tests for the performance monitor."""

import asyncio
from datetime import datetime, timedelta

import pytest

from transcript_agents.config import Settings
from transcript_agents.models import ExecutionRecord, HealthStatus, RecommendationCategory, Severity
from transcript_agents.monitoring import PerformanceMonitor, percentile
from transcript_agents.storage import InMemoryStore


def _record(unit: str, latency: float = 100.0, success: bool = True, **kwargs) -> ExecutionRecord:
    return ExecutionRecord(unit_name=unit, latency_ms=latency, success=success, **kwargs)


@pytest.fixture
def monitor(settings) -> PerformanceMonitor:
    return PerformanceMonitor(settings, store=InMemoryStore())


class TestPercentile:
    """Tests for the percentile helper."""

    def test_empty(self):
        assert percentile([], 0.95) == 0.0

    def test_nearest_rank(self):
        values = [float(v) for v in range(1, 101)]
        assert percentile(values, 0.95) == 95.0
        assert percentile(values, 0.99) == 99.0
        assert percentile(values, 0.5) == 50.0

    def test_small_sample(self):
        assert percentile([300.0, 100.0, 200.0], 0.95) == 300.0
        assert percentile([5.0], 0.01) == 5.0


class TestUnitMetrics:
    """Tests for per-unit aggregates."""

    def test_unknown_unit(self, monitor):
        assert monitor.get_unit_metrics("nope") is None

    def test_aggregates(self, monitor):
        monitor.record(_record("load_extraction", 100, confidence=0.8, resource_cost=500, cache_hits=1))
        monitor.record(_record("load_extraction", 300, success=False, resource_cost=300, cache_misses=3))

        metrics = monitor.get_unit_metrics("load_extraction")

        assert metrics.total_executions == 2
        assert metrics.average_latency_ms == 200.0
        assert metrics.success_rate == 0.5
        assert metrics.error_rate == 0.5
        assert metrics.average_confidence == 0.8
        assert metrics.total_resource_cost == 800
        assert metrics.average_resource_cost == 400.0
        assert metrics.cache_hit_rate == 0.25
        assert metrics.cost_estimate == pytest.approx(800 * 0.00002)

    def test_window_is_bounded(self):
        monitor = PerformanceMonitor(Settings(_env_file=None, monitor_max_records_per_unit=3))
        for latency in (1, 2, 3, 4, 5):
            monitor.record(_record("a", latency))

        metrics = monitor.get_unit_metrics("a")
        assert metrics.total_executions == 3
        assert metrics.average_latency_ms == 4.0

    def test_time_window(self, monitor):
        monitor.record(_record("a", 1000, timestamp=datetime.now() - timedelta(hours=2)))
        monitor.record(_record("a", 100))

        assert monitor.get_unit_metrics("a").total_executions == 2
        recent = monitor.get_unit_metrics("a", window_seconds=60)
        assert recent.total_executions == 1
        assert recent.average_latency_ms == 100.0

    def test_tracking(self, monitor):
        monitor.start_tracking("summary", "exec-1")
        assert monitor.get_system_metrics().in_flight == 1

        record = monitor.end_tracking("summary", "exec-1", success=True, confidence=0.9, resource_cost=40)

        assert record is not None
        assert record.latency_ms >= 0
        assert monitor.get_unit_metrics("summary").total_resource_cost == 40
        assert monitor.get_system_metrics().in_flight == 0

    def test_end_unknown_tracking_is_ignored(self, monitor):
        assert monitor.end_tracking("summary", "never-started", success=True) is None
        assert monitor.get_unit_metrics("summary") is None


class TestHealth:
    """Tests for system health classification."""

    def test_empty_monitor_is_healthy(self, monitor):
        system = monitor.get_system_metrics()
        assert system.total_executions == 0
        assert system.health == HealthStatus.HEALTHY

    def test_degraded_by_error_rate(self, monitor):
        for i in range(10):
            monitor.record(_record("a", success=i >= 2))
        assert monitor.get_system_metrics().health == HealthStatus.DEGRADED

    def test_critical_by_error_rate(self, monitor):
        for i in range(10):
            monitor.record(_record("a", success=i >= 5))
        report = monitor.health_check()
        assert report.status == HealthStatus.CRITICAL
        assert any("a error rate" in issue for issue in report.issues)

    def test_worst_of_errors_and_latency(self, monitor):
        for _ in range(10):
            monitor.record(_record("a", latency=12000))
        system = monitor.get_system_metrics()
        assert system.error_rate == 0.0
        assert system.health == HealthStatus.CRITICAL

    def test_degraded_by_latency(self, monitor):
        monitor.record(_record("a", latency=6000))
        assert monitor.get_system_metrics().health == HealthStatus.DEGRADED

    def test_token_usage_reported(self, monitor):
        monitor.record(_record("summary", resource_cost=800))
        assert monitor.health_check().issues == []

        monitor.record(_record("summary", resource_cost=1600))
        report = monitor.health_check()
        assert report.issues == ["summary averages 1200 tokens per execution"]
        assert report.status == HealthStatus.HEALTHY


class TestRecommendations:
    """Tests for rule-based recommendations."""

    def test_healthy_units_have_none(self, monitor):
        monitor.record(_record("a", confidence=0.9))
        assert monitor.get_recommendations() == []

    def test_system_rules_come_first(self, monitor):
        for _ in range(5):
            monitor.record(_record("slow_unit", latency=15000, success=False))

        recommendations = monitor.get_recommendations()
        priorities = [r.priority for r in recommendations]

        assert priorities == sorted(priorities)
        assert recommendations[0].priority == 0
        assert recommendations[0].unit_name is None
        unit_level = [r for r in recommendations if r.unit_name == "slow_unit"]
        assert [r.category for r in unit_level] == [
            RecommendationCategory.PERFORMANCE,
            RecommendationCategory.RELIABILITY,
        ]
        assert unit_level[0].severity == Severity.CRITICAL
        assert [r.priority for r in unit_level] == [1, 2]

    def test_low_confidence_and_cost(self, monitor):
        monitor.record(_record("summary", confidence=0.4, resource_cost=6000))
        categories = {r.category for r in monitor.get_recommendations()}
        assert RecommendationCategory.ACCURACY in categories
        assert RecommendationCategory.COST in categories

    def test_cache_rule_needs_enough_samples(self, monitor):
        for _ in range(5):
            monitor.record(_record("a", confidence=0.9, cache_misses=1))
        assert monitor.get_recommendations() == []
        for _ in range(6):
            monitor.record(_record("a", confidence=0.9, cache_misses=1))
        assert [r.severity for r in monitor.get_recommendations()] == [Severity.LOW]


class TestExportAndFlush:
    """Tests for export, flush and reset."""

    def test_export(self, monitor):
        monitor.record(_record("a"))
        exported = monitor.export()
        assert set(exported) >= {"system", "units", "health", "recommendations"}
        assert exported["units"]["a"]["total_executions"] == 1

    def test_flush_appends_rows(self, monitor):
        monitor.record(_record("a"))
        monitor.record(_record("b"))

        written = asyncio.run(monitor.flush())

        assert written == 2
        assert {row["unit_name"] for row in monitor.store.metrics} == {"a", "b"}

    def test_flush_without_store(self, settings):
        assert asyncio.run(PerformanceMonitor(settings).flush()) == 0

    def test_reset(self, monitor):
        monitor.record(_record("a"))
        monitor.reset()
        assert monitor.unit_names() == []
