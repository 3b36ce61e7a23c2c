"""Unit tests for the pipeline stores."""

import asyncio

import pytest

from transcript_agents.storage import InMemoryStore, JsonFileStore
from transcript_agents.storage.json_store import EXECUTION_RECORDS, METRICS


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore()
    return JsonFileStore(tmp_path / "data")


class TestPipelineStore:
    """Behaviour shared by every store."""

    def test_rollout_phases_last_write_wins(self, store):
        async def scenario():
            await store.save_rollout_phase({"id": "p1", "name": "Alpha", "status": "pending"})
            await store.save_rollout_phase({"id": "p2", "name": "Beta", "status": "pending"})
            await store.save_rollout_phase({"id": "p1", "name": "Alpha", "status": "active"})
            return await store.load_rollout_phases(), await store.load_active_phase()

        phases, active = asyncio.run(scenario())
        assert {p["id"]: p["status"] for p in phases} == {"p1": "active", "p2": "pending"}
        assert active["id"] == "p1"

    def test_no_active_phase(self, store):
        assert asyncio.run(store.load_active_phase()) is None
        assert asyncio.run(store.load_rollout_phases()) == []

    def test_call_results(self, store):
        async def scenario():
            await store.save_call_result("call/1", {"call_id": "call/1", "success": True})
            return await store.load_call_result("call/1"), await store.load_call_result("missing")

        found, missing = asyncio.run(scenario())
        assert found == {"call_id": "call/1", "success": True}
        assert missing is None


class TestJsonFileStore:
    """Tests specific to the on-disk store."""

    def test_append_and_read_lines(self, tmp_path):
        store = JsonFileStore(tmp_path)

        async def scenario():
            await store.append_execution_record({"unit_name": "a"})
            await store.append_execution_record({"unit_name": "b"})
            await store.append_metrics([{"unit_name": "a"}, {"unit_name": "b"}])
            await store.append_metrics([])
            return await store.read_lines(EXECUTION_RECORDS), await store.read_lines(METRICS)

        records, metrics = asyncio.run(scenario())
        assert [r["unit_name"] for r in records] == ["a", "b"]
        assert len(metrics) == 2

    def test_torn_line_is_skipped(self, tmp_path):
        store = JsonFileStore(tmp_path)
        (tmp_path / EXECUTION_RECORDS).write_text('{"unit_name": "a"}\n{"unit_na', encoding="utf-8")

        assert asyncio.run(store.read_lines(EXECUTION_RECORDS)) == [{"unit_name": "a"}]

    def test_missing_file(self, tmp_path):
        assert asyncio.run(JsonFileStore(tmp_path / "nothing").read_lines(METRICS)) == []

    def test_call_id_is_sanitized(self, tmp_path):
        store = JsonFileStore(tmp_path)
        asyncio.run(store.save_call_result("../../etc/passwd", {"ok": True}))
        written = list((tmp_path / "calls").iterdir())
        assert len(written) == 1
        assert written[0].parent == tmp_path / "calls"


class TestInMemoryStore:
    """Tests specific to the in-memory store."""

    def test_copies_on_write(self):
        store = InMemoryStore()
        record = {"unit_name": "a", "warnings": []}
        asyncio.run(store.append_execution_record(record))
        record["warnings"].append("later")
        assert store.execution_records[0]["warnings"] == []
