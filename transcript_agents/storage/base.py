"""Persistence boundary for execution records, rollout state and results."""

from typing import Any, Optional, Protocol


class PipelineStore(Protocol):
    """Append-mostly store used by the orchestrator, monitor and controllers.

    Records are plain JSON-compatible dicts. Rollout phases are keyed by id
    and the last write wins.
    """

    async def append_execution_record(self, record: dict[str, Any]) -> None: ...

    async def append_metrics(self, rows: list[dict[str, Any]]) -> None: ...

    async def append_rollout_event(self, event: dict[str, Any]) -> None: ...

    async def append_comparison(self, record: dict[str, Any]) -> None: ...

    async def save_rollout_phase(self, phase: dict[str, Any]) -> None: ...

    async def load_rollout_phases(self) -> list[dict[str, Any]]: ...

    async def load_active_phase(self) -> Optional[dict[str, Any]]: ...

    async def save_call_result(self, call_id: str, result: dict[str, Any]) -> None: ...

    async def load_call_result(self, call_id: str) -> Optional[dict[str, Any]]: ...
