"""
JSON-on-disk store.

Layout under the data directory:
- execution_records.jsonl, metrics.jsonl, rollout_events.jsonl,
  comparisons.jsonl: one JSON object per line, append only
- rollout_phases.json: phases keyed by id
- calls/{call_id}.json: processing result per call

File operations are async-friendly using aiofiles. No database required.
"""

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

EXECUTION_RECORDS = "execution_records.jsonl"
METRICS = "metrics.jsonl"
ROLLOUT_EVENTS = "rollout_events.jsonl"
COMPARISONS = "comparisons.jsonl"
ROLLOUT_PHASES = "rollout_phases.json"
CALLS_DIR = "calls"

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStore:
    """PipelineStore backed by JSON files in one directory."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self._phases_lock = asyncio.Lock()

    def _path(self, name: str) -> Path:
        return self.data_dir / name

    def _call_path(self, call_id: str) -> Path:
        return self.data_dir / CALLS_DIR / f"{_SAFE_ID.sub('_', call_id)}.json"

    async def _append_lines(self, name: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        await aiofiles.os.makedirs(self.data_dir, exist_ok=True)
        payload = "".join(json.dumps(row, default=str) + "\n" for row in rows)
        async with aiofiles.open(self._path(name), "a", encoding="utf-8") as f:
            await f.write(payload)

    async def _read_json(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        return json.loads(content) if content.strip() else None

    async def _write_json(self, path: Path, data: Any) -> None:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, default=str))

    async def read_lines(self, name: str) -> list[dict[str, Any]]:
        """Read back an append-only file, skipping a torn last line."""
        path = self._path(name)
        if not path.exists():
            return []
        rows = []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return rows

    # =========================================================================
    # Append-only records
    # =========================================================================

    async def append_execution_record(self, record: dict[str, Any]) -> None:
        await self._append_lines(EXECUTION_RECORDS, [record])

    async def append_metrics(self, rows: list[dict[str, Any]]) -> None:
        await self._append_lines(METRICS, rows)

    async def append_rollout_event(self, event: dict[str, Any]) -> None:
        await self._append_lines(ROLLOUT_EVENTS, [event])

    async def append_comparison(self, record: dict[str, Any]) -> None:
        await self._append_lines(COMPARISONS, [record])

    # =========================================================================
    # Rollout phases
    # =========================================================================

    async def save_rollout_phase(self, phase: dict[str, Any]) -> None:
        async with self._phases_lock:
            phases = await self._read_json(self._path(ROLLOUT_PHASES)) or {}
            phases[phase["id"]] = phase
            await self._write_json(self._path(ROLLOUT_PHASES), phases)

    async def load_rollout_phases(self) -> list[dict[str, Any]]:
        phases = await self._read_json(self._path(ROLLOUT_PHASES)) or {}
        return list(phases.values())

    async def load_active_phase(self) -> Optional[dict[str, Any]]:
        for phase in await self.load_rollout_phases():
            if phase.get("status") == "active":
                return phase
        return None

    # =========================================================================
    # Call results
    # =========================================================================

    async def save_call_result(self, call_id: str, result: dict[str, Any]) -> None:
        await self._write_json(self._call_path(call_id), result)

    async def load_call_result(self, call_id: str) -> Optional[dict[str, Any]]:
        return await self._read_json(self._call_path(call_id))
