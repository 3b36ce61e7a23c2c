"""Production routing: legacy extractor, gradual rollout and the entry point."""

from .comparison import compare_extractions
from .controller import ProductionController
from .legacy import LegacyExtractor, to_legacy_format
from .rollout import GradualRolloutController, RolloutError, hash_percentile
from .services import PipelineServices, build_services

__all__ = [
    "GradualRolloutController",
    "LegacyExtractor",
    "ProductionController",
    "PipelineServices",
    "RolloutError",
    "build_services",
    "compare_extractions",
    "hash_percentile",
    "to_legacy_format",
]
