"""Extraction units and the orchestrator that runs them."""

from .base import BaseUnit, InvalidOutputError, UnitExecutionError
from .context import ExecutionContext
from .orchestrator import CriticalUnitFailure, DependencyGraphError, Orchestrator
from .plan import ExecutionPlan, Phase, UnitSpec, build_execution_plan

__all__ = [
    "BaseUnit",
    "CriticalUnitFailure",
    "DependencyGraphError",
    "ExecutionContext",
    "ExecutionPlan",
    "InvalidOutputError",
    "Orchestrator",
    "Phase",
    "UnitExecutionError",
    "UnitSpec",
    "build_execution_plan",
]
