"""
FastAPI Backend for the Call Transcript Extraction Pipeline

Endpoints:
- Processing a call through the production controller
- Rollout administration: register, activate and roll back phases,
  operator overrides, status
- Performance monitor aggregates, health, recommendations and export

Services are built once in the lifespan and kept on ``app.state``. The
rollout monitor runs as a background task for the lifetime of the app.
"""

# Load .env BEFORE any application imports that read os.environ
from dotenv import load_dotenv
load_dotenv()

import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.api.routes import calls, monitoring, rollout
from transcript_agents import __version__
from transcript_agents.config import get_settings
from transcript_agents.config.logging import configure_logging
from transcript_agents.production import PipelineServices, build_services

logger = structlog.get_logger(__name__)


def create_app(services: Optional[PipelineServices] = None) -> FastAPI:
    """Create the API app. Tests pass prebuilt services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build services, restore rollout state and start the monitor."""
        if services is None:
            settings = get_settings()
            configure_logging(settings.log_level, json=settings.log_json)
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        pipeline = app.state.services
        await pipeline.rollout.load_from_store()
        pipeline.rollout.start()
        logger.info("api_started", version=__version__)

        yield

        await pipeline.rollout.stop()
        await pipeline.monitor.flush()
        logger.info("api_stopped")

    app = FastAPI(
        title="Call Transcript Extraction API",
        description="Multi-unit extraction of freight brokerage call transcripts with gradual rollout",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # API routes - mounted under /api prefix
    # =========================================================================

    app.include_router(calls.router, prefix="/api", tags=["Calls"])
    app.include_router(rollout.router, prefix="/api", tags=["Rollout"])
    app.include_router(monitoring.router, prefix="/api", tags=["Monitoring"])

    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint, backed by the performance monitor."""
        return {"version": __version__, **request.app.state.services.controller.health_check()}

    return app


app = create_app()


# =============================================================================
# Run with: python -m backend.main
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8100))
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
