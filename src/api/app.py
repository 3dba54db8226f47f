"""
FastAPI application for the claim-intake pipeline.

Provides:
- Job ingestion, status and cancellation endpoints
- Review queue and reviewer decision endpoints
- Committed claim lookup with geometry history
- Health check and status endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..intake.errors import InvalidTransition, JobNotFound, MalformedInput
from ..intake.pipeline import IntakePipeline, create_pipeline
from ..intake.schema import Job, ReviewDecision
from ..utils.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class IngestRequest(BaseModel):
    """Upstream extraction payload submission."""
    job_id: Optional[str] = Field(None, description="Caller-chosen job id; generated if omitted")
    payload: Dict[str, Any] = Field(description="Extraction payload with per-field confidence")


def get_pipeline(request: Request) -> IntakePipeline:
    return request.app.state.pipeline


def create_app(pipeline: Optional[IntakePipeline] = None, run_workers: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        pipeline: Pipeline to serve; built from settings at startup if omitted
        run_workers: Start a background worker pool for the lifetime of the app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting claim-intake server...")
        app.state.pipeline = pipeline or create_pipeline(settings)
        pool = None
        if run_workers:
            pool = app.state.pipeline.worker_pool(settings.workers_per_stage, settings.poll_interval)
            pool.start()
        yield
        logger.info("Shutting down claim-intake server...")
        if pool is not None:
            pool.stop()

    app = FastAPI(
        title="FRA Claim Intake",
        description="Staged intake pipeline for forest-rights claim documents",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(JobNotFound)
    async def job_not_found(request: Request, exc: JobNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransition)
    async def invalid_transition(request: Request, exc: InvalidTransition):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(MalformedInput)
    async def malformed_input(request: Request, exc: MalformedInput):
        return JSONResponse(status_code=422, content={"detail": exc.describe()})

    # =========================================================================
    # Health Check Endpoints
    # =========================================================================

    @app.get("/")
    async def root():
        """Root endpoint - basic health check."""
        return {"service": "FRA Claim Intake", "status": "running"}

    @app.get("/health")
    def health_check(pipeline: IntakePipeline = Depends(get_pipeline)):
        """Detailed health check endpoint."""
        return {
            "status": "healthy",
            **pipeline.stats(),
            "config": {
                "commit_confidence": pipeline.config.commit_confidence,
                "max_stage_attempts": pipeline.config.max_stage_attempts,
                "review_sla_hours": pipeline.config.review_sla_hours,
            },
        }

    # =========================================================================
    # Job Endpoints
    # =========================================================================

    @app.post("/jobs", status_code=201, response_model=Job)
    def ingest_job(body: IngestRequest, pipeline: IntakePipeline = Depends(get_pipeline)):
        """Queue an extraction payload for processing."""
        return pipeline.ingest(body.payload, job_id=body.job_id)

    @app.get("/jobs/{job_id}", response_model=Job)
    def get_job(job_id: str, pipeline: IntakePipeline = Depends(get_pipeline)):
        return pipeline.get_job(job_id)

    @app.post("/jobs/{job_id}/cancel", response_model=Job)
    def cancel_job(job_id: str, pipeline: IntakePipeline = Depends(get_pipeline)):
        """Request cancellation; leased jobs are failed by their worker."""
        return pipeline.cancel(job_id)

    # =========================================================================
    # Review Endpoints
    # =========================================================================

    @app.get("/review/queue")
    def review_queue(limit: int = 50, pipeline: IntakePipeline = Depends(get_pipeline)):
        """Pending jobs, most urgent first."""
        jobs = pipeline.review_queue(limit)
        return {
            "count": len(jobs),
            "jobs": [
                {
                    "job_id": job.job_id,
                    "confidence": job.confidence,
                    "max_severity": job.max_severity.value if job.max_severity else None,
                    "duplicate_probability": job.duplicate_probability,
                    "review_entered_at": job.review_entered_at,
                    "issues": job.issues,
                    "flags": job.flags,
                }
                for job in jobs
            ],
        }

    @app.post("/review/{job_id}/decision", response_model=Job)
    def submit_decision(job_id: str, decision: ReviewDecision, pipeline: IntakePipeline = Depends(get_pipeline)):
        """Apply a reviewer's approve / reject / request_info decision."""
        return pipeline.submit_review(job_id, decision)

    @app.post("/review/sla-check")
    def sla_check(pipeline: IntakePipeline = Depends(get_pipeline)):
        """Report pending jobs past the review SLA (once per review cycle)."""
        breaches = pipeline.check_review_sla()
        return {
            "breaches": [
                {"job_id": b.job_id, "waited_hours": round(b.waited_hours, 2)}
                for b in breaches
            ],
        }

    # =========================================================================
    # Claim Endpoints
    # =========================================================================

    @app.get("/claims/{claim_id}")
    def get_claim(claim_id: str, pipeline: IntakePipeline = Depends(get_pipeline)):
        claim = pipeline.claims.get(claim_id)
        if claim is None:
            return JSONResponse(status_code=404, content={"detail": f"claim {claim_id} not found"})
        return {
            "claim": claim.model_dump(mode="json"),
            "versions": [
                {
                    "version": v.version,
                    "area_ha": v.area_ha,
                    "recorded_at": v.recorded_at,
                    "note": v.note,
                }
                for v in pipeline.claims.history(claim_id)
            ],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
