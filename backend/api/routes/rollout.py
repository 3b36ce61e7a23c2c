"""
Rollout Route

Administrative surface for the gradual rollout: phases, status, on-demand
evaluation and operator overrides.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from backend.api.deps import get_controller, get_rollout
from backend.api.schemas import (
    CreatePhaseRequest,
    EvaluationResponse,
    OverrideResponse,
    PhaseCreatedResponse,
    RollbackRequest,
    StandardRolloutResponse,
)
from transcript_agents.models import RolloutPhase, RolloutStatus, RolloutStatusReport
from transcript_agents.production import GradualRolloutController, ProductionController, RolloutError

router = APIRouter()


@router.post("/rollout/phases", response_model=PhaseCreatedResponse, status_code=201)
async def create_phase(
    request: CreatePhaseRequest,
    rollout: GradualRolloutController = Depends(get_rollout),
) -> PhaseCreatedResponse:
    """Register a rollout phase. It stays pending until activated."""
    phase_id = await rollout.create_phase(
        name=request.name,
        percentage=request.percentage,
        targets=request.targets,
        criteria=request.criteria,
        features=request.features,
    )
    return PhaseCreatedResponse(phase_id=phase_id)


@router.post("/rollout/standard", response_model=StandardRolloutResponse, status_code=201)
async def create_standard_rollout(
    rollout: GradualRolloutController = Depends(get_rollout),
) -> StandardRolloutResponse:
    """Register the Alpha, Beta, Limited Release and General Availability phases."""
    ids = await rollout.create_standard_rollout()
    return StandardRolloutResponse(phase_ids=ids, count=len(ids))


@router.post("/rollout/phases/{phase_id}/activate", response_model=RolloutPhase)
async def activate_phase(
    phase_id: str,
    rollout: GradualRolloutController = Depends(get_rollout),
) -> RolloutPhase:
    """Activate a phase. The previously active phase is completed."""
    try:
        return await rollout.activate_phase(phase_id)
    except RolloutError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/rollout/phases/{phase_id}/rollback", response_model=RolloutPhase)
async def rollback_phase(
    phase_id: str,
    request: RollbackRequest,
    rollout: GradualRolloutController = Depends(get_rollout),
) -> RolloutPhase:
    """Roll back a phase and disable the new pipeline."""
    try:
        return await rollout.rollback_phase(phase_id, request.reason)
    except RolloutError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/rollout/status", response_model=RolloutStatusReport)
async def get_rollout_status(
    rollout: GradualRolloutController = Depends(get_rollout),
) -> RolloutStatusReport:
    """Current phase, live metrics and recommendations."""
    return rollout.get_status()


@router.post("/rollout/evaluate", response_model=EvaluationResponse)
async def evaluate_rollout(
    rollout: GradualRolloutController = Depends(get_rollout),
) -> EvaluationResponse:
    """Run one monitoring tick now instead of waiting for the interval."""
    phase = rollout.active_phase
    metrics = await rollout.evaluate_active_phase()
    return EvaluationResponse(
        active_phase_id=phase.id if phase else None,
        rolled_back=phase is not None and phase.status == RolloutStatus.ROLLED_BACK,
        metrics=metrics,
    )


@router.get("/rollout/configuration")
async def get_configuration(
    controller: ProductionController = Depends(get_controller),
) -> dict[str, Any]:
    return controller.get_configuration()


@router.post("/rollout/override/enable", response_model=OverrideResponse)
async def force_enable(controller: ProductionController = Depends(get_controller)) -> OverrideResponse:
    """Send every call to the new pipeline regardless of rollout percentage."""
    controller.force_enable()
    return OverrideResponse(override=controller.override)


@router.post("/rollout/override/disable", response_model=OverrideResponse)
async def force_disable(controller: ProductionController = Depends(get_controller)) -> OverrideResponse:
    """Send every call to the legacy extractor."""
    controller.force_disable()
    return OverrideResponse(override=controller.override)


@router.delete("/rollout/override", response_model=OverrideResponse)
async def clear_override(controller: ProductionController = Depends(get_controller)) -> OverrideResponse:
    controller.clear_override()
    return OverrideResponse(override=controller.override)
