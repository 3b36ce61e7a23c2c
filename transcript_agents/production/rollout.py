"""Gradual rollout controller.

Decides per call whether the new pipeline serves the caller, and watches
the live metrics of the active phase. A phase that breaches the critical
error-rate or success-rate threshold is rolled back automatically, which
disables the new pipeline for everyone until an operator activates a
phase again.

Routing is deterministic per organization: a stable hash of the
organization id maps it into a 1-100 band that is compared with the phase
percentage, so an organization never flips between pipelines within a
phase.
"""

import asyncio
import contextlib
import hashlib
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from transcript_agents.config import Settings, get_settings
from transcript_agents.models import (
    CallOutcome,
    RolloutCriteria,
    RolloutEvent,
    RolloutFeatureSet,
    RolloutMetrics,
    RolloutPhase,
    RolloutStatus,
    RolloutStatusReport,
    RolloutTargets,
    RoutingDecision,
)
from transcript_agents.monitoring import percentile

logger = structlog.get_logger(__name__)


class RolloutError(Exception):
    """Invalid rollout operation, such as an unknown phase id."""

    pass


def hash_percentile(organization_id: str) -> int:
    """Stable 1-100 bucket for an organization, identical across processes."""
    digest = hashlib.sha256(organization_id.encode("utf-8")).hexdigest()
    return int(digest, 16) % 100 + 1


STANDARD_PHASES: list[dict[str, Any]] = [
    {
        "name": "Alpha Testing",
        "percentage": 1,
        "criteria": RolloutCriteria(organization_allowlist=["internal-testing"]),
        "features": RolloutFeatureSet(comparison_mode=True, fallback_enabled=True),
        "targets": RolloutTargets(min_success_rate=0.90, max_latency_ms=10000, max_error_rate=0.10),
    },
    {
        "name": "Beta Testing",
        "percentage": 5,
        "features": RolloutFeatureSet(comparison_mode=True, fallback_enabled=True),
        "targets": RolloutTargets(min_success_rate=0.93, max_latency_ms=8000, max_error_rate=0.07),
    },
    {
        "name": "Limited Release",
        "percentage": 20,
        "features": RolloutFeatureSet(comparison_mode=False, fallback_enabled=True),
        "targets": RolloutTargets(min_success_rate=0.95, max_latency_ms=7000, max_error_rate=0.05),
    },
    {
        "name": "General Availability",
        "percentage": 100,
        "features": RolloutFeatureSet(comparison_mode=False, fallback_enabled=False),
        "targets": RolloutTargets(min_success_rate=0.97, max_latency_ms=5000, max_error_rate=0.03),
    },
]


class GradualRolloutController:
    """Phase registry, per-call routing and the rollback monitor."""

    def __init__(self, settings: Optional[Settings] = None, store: Any = None):
        self.settings = settings or get_settings()
        self.store = store
        self.phases: dict[str, RolloutPhase] = {}
        self.audit_log: list[RolloutEvent] = []
        self._active_id: Optional[str] = None
        self._enabled = False
        self._outcomes: deque[CallOutcome] = deque(maxlen=self.settings.rollout_max_outcomes)
        # Activation, rollback and the monitoring tick never interleave
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def active_phase(self) -> Optional[RolloutPhase]:
        return self.phases.get(self._active_id) if self._active_id else None

    @property
    def enabled(self) -> bool:
        return self._enabled and self.active_phase is not None

    @property
    def percentage(self) -> float:
        phase = self.active_phase
        return phase.percentage if self.enabled and phase is not None else 0.0

    def get_phase(self, phase_id: str) -> RolloutPhase:
        phase = self.phases.get(phase_id)
        if phase is None:
            raise RolloutError(f"Unknown rollout phase: {phase_id}")
        return phase

    # =========================================================================
    # Phase lifecycle
    # =========================================================================

    async def create_phase(
        self,
        name: str,
        percentage: float,
        targets: RolloutTargets,
        criteria: Optional[RolloutCriteria] = None,
        features: Optional[RolloutFeatureSet] = None,
    ) -> str:
        phase = RolloutPhase(
            id=f"phase_{uuid.uuid4().hex[:12]}",
            name=name,
            percentage=percentage,
            targets=targets,
            criteria=criteria or RolloutCriteria(),
            features=features or RolloutFeatureSet(),
        )
        self.phases[phase.id] = phase
        await self._save(phase)
        await self._audit("phase_created", phase.id, details={"name": name, "percentage": percentage})
        logger.info("phase_created", phase_id=phase.id, name=name, percentage=percentage)
        return phase.id

    async def create_standard_rollout(self) -> list[str]:
        """Register the four standard phases in order. None is activated."""
        ids = []
        for definition in STANDARD_PHASES:
            ids.append(await self.create_phase(
                name=definition["name"],
                percentage=definition["percentage"],
                targets=definition["targets"].model_copy(),
                criteria=definition.get("criteria", RolloutCriteria()).model_copy(deep=True),
                features=definition["features"].model_copy(deep=True),
            ))
        return ids

    async def activate_phase(self, phase_id: str) -> RolloutPhase:
        """Activate a phase, completing whichever phase was active before."""
        async with self._lock:
            phase = self.get_phase(phase_id)
            now = datetime.now()

            previous = self.active_phase
            if previous is not None and previous.id != phase.id:
                previous.status = RolloutStatus.COMPLETED
                previous.completed_at = now
                await self._save(previous)
                await self._audit("phase_completed", previous.id)
                logger.info("phase_completed", phase_id=previous.id, name=previous.name)

            phase.status = RolloutStatus.ACTIVE
            phase.activated_at = now
            self._active_id = phase.id
            self._enabled = True
            await self._save(phase)
            await self._audit("phase_activated", phase.id, details={"percentage": phase.percentage})
            logger.info("phase_activated", phase_id=phase.id, name=phase.name, percentage=phase.percentage)
            return phase

    async def rollback_phase(self, phase_id: str, reason: str) -> RolloutPhase:
        async with self._lock:
            phase = self.get_phase(phase_id)
            await self._rollback(phase, reason)
            return phase

    async def _rollback(self, phase: RolloutPhase, reason: str, metrics: Optional[RolloutMetrics] = None) -> None:
        phase.status = RolloutStatus.ROLLED_BACK
        phase.rolled_back_at = datetime.now()
        phase.rollback_reason = reason
        if self._active_id == phase.id:
            self._active_id = None
            self._enabled = False
        await self._save(phase)
        await self._audit(
            "phase_rolled_back",
            phase.id,
            reason=reason,
            details={"metrics": metrics.model_dump(mode="json")} if metrics else {},
        )
        logger.error("phase_rolled_back", phase_id=phase.id, name=phase.name, reason=reason)

    # =========================================================================
    # Routing
    # =========================================================================

    def route(
        self,
        organization_id: str,
        user_id: Optional[str] = None,
        region: Optional[str] = None,
        call_volume: Optional[int] = None,
    ) -> RoutingDecision:
        """Decide which pipeline serves this caller."""
        phase = self.active_phase
        if phase is None or not self._enabled:
            return RoutingDecision(use_new_pipeline=False, reason="no_active_phase")

        def decide(use_new: bool, reason: str) -> RoutingDecision:
            return RoutingDecision(
                use_new_pipeline=use_new,
                reason=reason,
                phase_id=phase.id,
                comparison_mode=phase.features.comparison_mode,
                fallback_enabled=phase.features.fallback_enabled,
                disabled_units=list(phase.features.disabled_units),
                enabled_units=list(phase.features.enabled_units),
            )

        criteria = phase.criteria
        if organization_id in criteria.organization_denylist or (user_id and user_id in criteria.user_denylist):
            return decide(False, "denylisted")
        if organization_id in criteria.organization_allowlist or (user_id and user_id in criteria.user_allowlist):
            return decide(True, "allowlisted")
        if criteria.regions and region is not None and region not in criteria.regions:
            return decide(False, "region_excluded")
        if criteria.min_call_volume is not None and call_volume is not None and call_volume < criteria.min_call_volume:
            return decide(False, "below_min_call_volume")

        bucket = hash_percentile(organization_id)
        return decide(bucket <= phase.percentage, f"percentile_{bucket}")

    # =========================================================================
    # Metrics and monitoring
    # =========================================================================

    def record_outcome(self, outcome: CallOutcome) -> None:
        """Record a call served by the new pipeline.

        ``success`` is whether the caller got a usable result (fallback
        included); ``pipeline_error`` is whether the new pipeline itself
        failed.
        """
        self._outcomes.append(outcome)

    def compute_phase_metrics(self, phase_id: str, window_seconds: Optional[float] = None) -> RolloutMetrics:
        window = window_seconds or self.settings.rollout_metrics_window_seconds
        cutoff = datetime.now() - timedelta(seconds=window)
        outcomes = [o for o in list(self._outcomes) if o.phase_id == phase_id and o.timestamp >= cutoff]
        if not outcomes:
            return RolloutMetrics(phase_id=phase_id, window_seconds=window)

        total = len(outcomes)
        latencies = [o.latency_ms for o in outcomes]
        return RolloutMetrics(
            phase_id=phase_id,
            success_rate=round(sum(1 for o in outcomes if o.success) / total, 4),
            error_rate=round(sum(1 for o in outcomes if o.pipeline_error) / total, 4),
            average_latency_ms=round(sum(latencies) / total, 2),
            p95_latency_ms=percentile(latencies, 0.95),
            p99_latency_ms=percentile(latencies, 0.99),
            calls_processed=total,
            organization_count=len({o.organization_id for o in outcomes}),
            window_seconds=window,
        )

    async def evaluate_active_phase(self) -> Optional[RolloutMetrics]:
        """One monitoring tick: compare live metrics to targets, roll back on critical breach."""
        async with self._lock:
            phase = self.active_phase
            if phase is None:
                return None

            metrics = self.compute_phase_metrics(phase.id)
            if not metrics.calls_processed:
                return metrics

            targets = phase.targets
            missed = {}
            if metrics.success_rate < targets.min_success_rate:
                missed["success_rate"] = metrics.success_rate
            if metrics.error_rate > targets.max_error_rate:
                missed["error_rate"] = metrics.error_rate
            if metrics.p95_latency_ms > targets.max_latency_ms:
                missed["p95_latency_ms"] = metrics.p95_latency_ms
            if missed:
                logger.warning("phase_targets_missed", phase_id=phase.id, name=phase.name, **missed)

            s = self.settings
            if metrics.calls_processed >= s.rollout_min_samples:
                reason = None
                if metrics.error_rate > s.rollout_critical_error_rate:
                    reason = f"error rate {metrics.error_rate:.1%} above {s.rollout_critical_error_rate:.0%}"
                elif metrics.success_rate < s.rollout_critical_success_rate:
                    reason = f"success rate {metrics.success_rate:.1%} below {s.rollout_critical_success_rate:.0%}"
                if reason:
                    await self._rollback(phase, f"automatic rollback: {reason}", metrics)

            return metrics

    async def _monitor_loop(self) -> None:
        interval = self.settings.rollout_monitor_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evaluate_active_phase()
            except Exception:
                # The loop outlives a bad tick; the next one retries
                logger.exception("rollout_monitor_tick_failed")

    def start(self) -> None:
        """Start the periodic monitor on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._monitor_loop(), name="rollout-monitor")
        logger.info("rollout_monitor_started", interval_seconds=self.settings.rollout_monitor_interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("rollout_monitor_stopped")

    # =========================================================================
    # Status and persistence
    # =========================================================================

    def get_status(self) -> RolloutStatusReport:
        phase = self.active_phase
        metrics = self.compute_phase_metrics(phase.id) if phase is not None else None
        s = self.settings

        recommendations = []
        if metrics is not None and metrics.calls_processed >= s.rollout_min_samples:
            if metrics.success_rate > s.rollout_expand_success_rate and metrics.error_rate < s.rollout_expand_error_rate:
                recommendations.append("Metrics are healthy; consider expanding to the next phase")
            if metrics.error_rate > s.rollout_investigate_error_rate:
                recommendations.append(
                    f"Error rate above {s.rollout_investigate_error_rate:.0%}; investigate before expanding"
                )
        if phase is None and any(p.status == RolloutStatus.ROLLED_BACK for p in self.phases.values()):
            recommendations.append("New pipeline disabled after a rollback; activate a phase to resume")

        return RolloutStatusReport(
            active_phase=phase,
            phases=sorted(self.phases.values(), key=lambda p: p.created_at),
            metrics=metrics,
            new_pipeline_enabled=self.enabled,
            percentage=self.percentage,
            recommendations=recommendations,
        )

    async def load_from_store(self) -> int:
        """Restore phases (and the active one) from the store. Returns phases loaded."""
        if self.store is None:
            return 0
        for data in await self.store.load_rollout_phases():
            phase = RolloutPhase.model_validate(data)
            self.phases[phase.id] = phase
            if phase.status == RolloutStatus.ACTIVE:
                self._active_id = phase.id
                self._enabled = True
        logger.info("rollout_state_loaded", phases=len(self.phases), active_phase=self._active_id)
        return len(self.phases)

    async def _save(self, phase: RolloutPhase) -> None:
        # In-memory state stays authoritative when the store cannot be written
        if self.store is None:
            return
        try:
            await self.store.save_rollout_phase(phase.model_dump(mode="json"))
        except OSError as e:
            logger.warning("rollout_phase_not_persisted", phase_id=phase.id, status=phase.status.value, error=str(e))

    async def _audit(
        self,
        event: str,
        phase_id: Optional[str],
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        entry = RolloutEvent(event=event, phase_id=phase_id, reason=reason, details=details or {})
        self.audit_log.append(entry)
        if self.store is None:
            return
        try:
            await self.store.append_rollout_event(entry.model_dump(mode="json"))
        except OSError as e:
            logger.warning("rollout_event_not_persisted", rollout_event=event, phase_id=phase_id, error=str(e))
