"""Persistence for execution records, rollout state and call results."""

from .base import PipelineStore
from .json_store import JsonFileStore
from .memory import InMemoryStore

__all__ = ["InMemoryStore", "JsonFileStore", "PipelineStore"]
