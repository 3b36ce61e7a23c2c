"""
Calls Route

Runs a call through the production controller and serves stored results.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from backend.api.deps import get_controller
from backend.api.schemas import ProcessCallRequest
from transcript_agents.models import ProcessingResult
from transcript_agents.production import ProductionController

router = APIRouter()


@router.post("/calls/{call_id}/process", response_model=ProcessingResult)
async def process_call(
    call_id: str,
    request: ProcessCallRequest,
    controller: ProductionController = Depends(get_controller),
) -> ProcessingResult:
    """
    Process a call transcript.

    The rollout decides whether the multi-unit pipeline or the legacy
    extractor serves the call. Failures are reported in the result's
    ``errors`` rather than as HTTP errors.
    """
    return await controller.process_call(
        call_id,
        request.transcript,
        request.organization_id,
        request.to_options(),
    )


@router.get("/calls/{call_id}")
async def get_call_result(
    call_id: str,
    controller: ProductionController = Depends(get_controller),
) -> dict[str, Any]:
    """Get the stored processing result of a call."""
    if controller.store is None:
        raise HTTPException(status_code=404, detail="No result store configured")
    result = await controller.store.load_call_result(call_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Call not found: {call_id}")
    return result
