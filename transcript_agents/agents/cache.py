"""Result cache keyed by unit and the inputs the unit sees."""

import hashlib
import json
import time
from collections import OrderedDict
from typing import Optional

import structlog

from transcript_agents.agents.context import ExecutionContext
from transcript_agents.models import BaseOutput

logger = structlog.get_logger(__name__)


class ResultCache:
    """In-process TTL cache of completed unit outputs.

    The key covers the transcript, the utterances, the call date and
    timezone, every earlier result in the run and the shared state, so a
    cached output is only reused for identical input. The oldest entry is
    evicted when the cache is full.
    """

    def __init__(self, ttl_seconds: float = 300.0, max_entries: int = 1000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, BaseOutput]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def make_key(unit_name: str, context: ExecutionContext) -> str:
        upstream = {
            name: {
                "status": result.status.value,
                "output": result.output.model_dump(mode="json", exclude={"tokens_used"}) if result.output else None,
            }
            for name, result in context.unit_results.items()
            if name != unit_name
        }
        payload = {
            "transcript": context.transcript,
            "utterances": [u.model_dump(mode="json") for u in context.utterances],
            "call_date": context.metadata.call_date.date().isoformat(),
            "timezone": context.metadata.timezone,
            "upstream": upstream,
            "shared": context.shared_state,
        }
        digest = hashlib.md5(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()
        return f"{unit_name}:{digest}"

    def get(self, key: str) -> Optional[BaseOutput]:
        entry = self._entries.get(key)
        if entry is not None and time.monotonic() - entry[0] > self.ttl_seconds:
            del self._entries[key]
            entry = None
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry[1].model_copy(deep=True)

    def put(self, key: str, output: BaseOutput) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)
        self._entries[key] = (time.monotonic(), output.model_copy(deep=True))

    def clear(self) -> None:
        self._entries.clear()

    @property
    def hit_rate(self) -> Optional[float]:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else None
