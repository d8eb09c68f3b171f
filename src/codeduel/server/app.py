# Copyright (c) Syntropy Systems
"""FastAPI application for the codeduel server."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

import codeduel
from codeduel.config import CodeduelConfig, load_config
from codeduel.controller import JobController, build_controller
from codeduel.errors import StructuralValidationError
from codeduel.models.api import (
    AttemptHistoryResponse,
    CompeteRequest,
    ErrorResponse,
    HealthResponse,
    JobCancelResponse,
    JobCreateResponse,
    JobListResponse,
    JobResponse,
)
from codeduel.models.job import JobConfig
from codeduel.progress import ChannelSink, ProgressEvent, format_sse

logger = logging.getLogger(__name__)


def get_controller(request: Request) -> JobController:
    """Get the controller attached to the app."""
    return request.app.state.controller


def get_config(request: Request) -> CodeduelConfig:
    """Get the configuration attached to the app."""
    return request.app.state.config


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifecycle manager for the FastAPI app."""
    yield
    controller: JobController = app.state.controller
    await controller.shutdown()


def create_app(
    controller: Optional[JobController] = None,
    config: Optional[CodeduelConfig] = None,
    codeduel_dir: Optional[Path] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        controller: Job controller to serve (built from config when omitted)
        config: Server configuration (loaded from .codeduel when omitted)
        codeduel_dir: Project directory holding challenges and results

    Returns:
        Configured FastAPI application
    """
    if config is None:
        config = load_config(codeduel_dir)
    if controller is None:
        controller = build_controller(config, codeduel_dir)

    app = FastAPI(
        title="codeduel server",
        description="Head-to-head coding competitions between language models",
        version=codeduel.__version__,
        lifespan=lifespan,
        responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
    )
    app.state.controller = controller
    app.state.config = config

    def _job_config(request: CompeteRequest, config: CodeduelConfig) -> JobConfig:
        try:
            return request.to_config(config.default_models, config.default_max_attempts)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    # --- Competition Endpoints ---

    @app.post(
        "/api/v1/compete",
        response_model=JobCreateResponse,
        responses={200: {"content": {"text/event-stream": {}}}},
    )
    async def compete(
        request: CompeteRequest,
        controller: JobController = Depends(get_controller),
        config: CodeduelConfig = Depends(get_config),
    ) -> Union[StreamingResponse, JobCreateResponse]:
        """Start a competition.

        Streams progress as Server-Sent Events unless ``stream`` is false, in
        which case the job id is returned for polling.
        """
        job_config = _job_config(request, config)
        sink = ChannelSink() if request.stream else None
        try:
            job = controller.submit(job_config, sink)
        except StructuralValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        if sink is None:
            return JobCreateResponse(
                job_id=job.id,
                status=job.status,
                message=f"Job {job.id} {job.status}",
            )

        async def event_stream() -> AsyncIterator[str]:
            yield format_sse(
                ProgressEvent(
                    type="progress",
                    data={"job_id": job.id, "status": job.status, "message": "Job accepted"},
                )
            )
            async for event in sink.events():
                yield format_sse(event)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Job-Id": job.id},
        )

    # --- Job Endpoints ---

    @app.get("/api/v1/jobs", response_model=JobListResponse)
    async def list_jobs(controller: JobController = Depends(get_controller)) -> JobListResponse:
        """List retained jobs, newest first."""
        return JobListResponse(jobs=[JobResponse.from_job(job) for job in controller.list_jobs()])

    @app.get("/api/v1/jobs/{job_id}", response_model=JobResponse)
    def get_job(job_id: str, controller: JobController = Depends(get_controller)) -> JobResponse:
        """Get job status, progress and results."""
        job = controller.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return JobResponse.from_job(job)

    @app.get("/api/v1/jobs/{job_id}/attempts", response_model=AttemptHistoryResponse)
    def get_attempts(
        job_id: str,
        controller: JobController = Depends(get_controller),
    ) -> AttemptHistoryResponse:
        """Get every recorded attempt of a job submitted with ``debug``."""
        job = controller.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        if not job.config.debug:
            raise HTTPException(
                status_code=400,
                detail="Debug mode was not enabled for this job",
            )
        return AttemptHistoryResponse(
            job_id=job.id,
            attempts={model: list(records) for model, records in job.attempt_history.items()},
        )

    @app.post("/api/v1/jobs/{job_id}/cancel", response_model=JobCancelResponse)
    async def cancel_job(
        job_id: str,
        controller: JobController = Depends(get_controller),
    ) -> JobCancelResponse:
        """Cancel a queued or running job."""
        job = controller.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        if job.is_terminal:
            return JobCancelResponse(
                job_id=job_id,
                cancelled=False,
                status=job.status,
                message=f"Job {job_id} is already {job.status}",
            )

        previous = job.status
        cancelled = controller.cancel_job(job_id)
        message = (
            f"Job {job_id} cancelled"
            if previous == "queued"
            else f"Cancellation requested for job {job_id}"
        )
        return JobCancelResponse(
            job_id=job_id,
            cancelled=cancelled,
            status=job.status,
            message=message,
        )

    # --- Health Check ---

    @app.get("/health", response_model=HealthResponse)
    def health_check(controller: JobController = Depends(get_controller)) -> HealthResponse:
        """Health check endpoint."""
        stats = controller.stats()
        return HealthResponse(
            status="healthy",
            version=codeduel.__version__,
            running=stats["running"],
            queued=stats["queued"],
            total=stats["total"],
        )

    return app
