"""
Monitoring Route

Read-only views over the performance monitor, plus export and flush.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.api.deps import get_monitor
from backend.api.schemas import FlushResponse, RecommendationsResponse, UnitMetricsListResponse
from transcript_agents.models import HealthReport, SystemMetrics, UnitMetrics
from transcript_agents.monitoring import PerformanceMonitor

router = APIRouter()


@router.get("/monitoring/system", response_model=SystemMetrics)
async def get_system_metrics(monitor: PerformanceMonitor = Depends(get_monitor)) -> SystemMetrics:
    return monitor.get_system_metrics()


@router.get("/monitoring/units", response_model=UnitMetricsListResponse)
async def list_unit_metrics(monitor: PerformanceMonitor = Depends(get_monitor)) -> UnitMetricsListResponse:
    units = [m for name in monitor.unit_names() if (m := monitor.get_unit_metrics(name)) is not None]
    return UnitMetricsListResponse(units=units, count=len(units))


@router.get("/monitoring/units/{unit_name}", response_model=UnitMetrics)
async def get_unit_metrics(
    unit_name: str,
    window_seconds: float | None = Query(None, gt=0, description="Limit to a trailing window"),
    monitor: PerformanceMonitor = Depends(get_monitor),
) -> UnitMetrics:
    metrics = monitor.get_unit_metrics(unit_name, window_seconds=window_seconds)
    if metrics is None:
        raise HTTPException(status_code=404, detail=f"No metrics for unit: {unit_name}")
    return metrics


@router.get("/monitoring/health", response_model=HealthReport)
async def get_health(monitor: PerformanceMonitor = Depends(get_monitor)) -> HealthReport:
    return monitor.health_check()


@router.get("/monitoring/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(monitor: PerformanceMonitor = Depends(get_monitor)) -> RecommendationsResponse:
    recommendations = monitor.get_recommendations()
    return RecommendationsResponse(recommendations=recommendations, count=len(recommendations))


@router.get("/monitoring/export")
async def export_metrics(monitor: PerformanceMonitor = Depends(get_monitor)) -> dict[str, Any]:
    return monitor.export()


@router.post("/monitoring/flush", response_model=FlushResponse)
async def flush_metrics(monitor: PerformanceMonitor = Depends(get_monitor)) -> FlushResponse:
    """Append current aggregates to the store."""
    return FlushResponse(rows_written=await monitor.flush())
