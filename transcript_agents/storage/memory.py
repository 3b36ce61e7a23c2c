"""In-process store for tests and single-process deployments."""

import copy
from typing import Any, Optional


class InMemoryStore:
    def __init__(self):
        self.execution_records: list[dict[str, Any]] = []
        self.metrics: list[dict[str, Any]] = []
        self.rollout_events: list[dict[str, Any]] = []
        self.comparisons: list[dict[str, Any]] = []
        self.rollout_phases: dict[str, dict[str, Any]] = {}
        self.call_results: dict[str, dict[str, Any]] = {}

    async def append_execution_record(self, record: dict[str, Any]) -> None:
        self.execution_records.append(copy.deepcopy(record))

    async def append_metrics(self, rows: list[dict[str, Any]]) -> None:
        self.metrics.extend(copy.deepcopy(rows))

    async def append_rollout_event(self, event: dict[str, Any]) -> None:
        self.rollout_events.append(copy.deepcopy(event))

    async def append_comparison(self, record: dict[str, Any]) -> None:
        self.comparisons.append(copy.deepcopy(record))

    async def save_rollout_phase(self, phase: dict[str, Any]) -> None:
        self.rollout_phases[phase["id"]] = copy.deepcopy(phase)

    async def load_rollout_phases(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(p) for p in self.rollout_phases.values()]

    async def load_active_phase(self) -> Optional[dict[str, Any]]:
        for phase in self.rollout_phases.values():
            if phase.get("status") == "active":
                return copy.deepcopy(phase)
        return None

    async def save_call_result(self, call_id: str, result: dict[str, Any]) -> None:
        self.call_results[call_id] = copy.deepcopy(result)

    async def load_call_result(self, call_id: str) -> Optional[dict[str, Any]]:
        result = self.call_results.get(call_id)
        return copy.deepcopy(result) if result is not None else None
