"""Wiring of the pipeline services for the CLI and the API."""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from transcript_agents.agents import Orchestrator
from transcript_agents.agents.units import create_default_units
from transcript_agents.config import Settings, get_settings
from transcript_agents.llm import GenerationService, OllamaGenerationService
from transcript_agents.monitoring import PerformanceMonitor
from transcript_agents.production.controller import ProductionController
from transcript_agents.production.legacy import LegacyExtractor
from transcript_agents.production.rollout import GradualRolloutController
from transcript_agents.storage import JsonFileStore

logger = structlog.get_logger(__name__)


@dataclass
class PipelineServices:
    settings: Settings
    store: Any
    monitor: PerformanceMonitor
    orchestrator: Orchestrator
    rollout: GradualRolloutController
    controller: ProductionController


def build_services(
    settings: Optional[Settings] = None,
    generation: Optional[GenerationService] = None,
    store: Any = None,
) -> PipelineServices:
    """Build every service with the default unit catalogue registered.

    Args:
        settings: Application settings. Uses cached settings if not provided.
        generation: Generation service. Uses Ollama if not provided.
        store: Persistence. Uses a JSON store under ``storage_data_dir`` if not provided.

    Raises:
        DependencyGraphError: If the registered units do not form a valid graph.
    """
    settings = settings or get_settings()
    generation = generation or OllamaGenerationService()
    store = store if store is not None else JsonFileStore(settings.storage_data_dir)

    monitor = PerformanceMonitor(settings, store=store)
    orchestrator = Orchestrator(settings, monitor=monitor, store=store)
    for unit in create_default_units(generation):
        orchestrator.register(unit)
    orchestrator.validate_graph()

    rollout = GradualRolloutController(settings, store=store)
    controller = ProductionController(
        orchestrator,
        rollout,
        monitor,
        LegacyExtractor(generation),
        settings=settings,
        store=store,
    )
    logger.info("services_built", units=orchestrator.registered_units())
    return PipelineServices(
        settings=settings,
        store=store,
        monitor=monitor,
        orchestrator=orchestrator,
        rollout=rollout,
        controller=controller,
    )
