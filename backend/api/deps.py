"""
FastAPI dependencies for the pipeline services.
"""

from fastapi import Request

from transcript_agents.monitoring import PerformanceMonitor
from transcript_agents.production import GradualRolloutController, PipelineServices, ProductionController


def get_services(request: Request) -> PipelineServices:
    return request.app.state.services


def get_controller(request: Request) -> ProductionController:
    return get_services(request).controller


def get_rollout(request: Request) -> GradualRolloutController:
    return get_services(request).rollout


def get_monitor(request: Request) -> PerformanceMonitor:
    return get_services(request).monitor
