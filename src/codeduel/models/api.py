# Copyright (c) Syntropy Systems
"""Pydantic models for codeduel API requests and responses."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from typing_extensions import Self

from .base import CodeduelBaseModel
from .job import AttemptRecord, Job, JobConfig, JobProgress, JobStatus, ModelResult


class CompeteRequest(CodeduelBaseModel):
    """Request to start a competition.

    ``models`` and ``max_attempts`` fall back to the server defaults.
    """

    challenge: str
    models: Optional[list[str]] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)
    refinement: bool = False
    debug: bool = False
    stream: bool = True

    def to_config(self, default_models: list[str], default_max_attempts: int) -> JobConfig:
        return JobConfig(
            challenge=self.challenge,
            models=self.models or list(default_models),
            max_attempts=self.max_attempts or default_max_attempts,
            refinement=self.refinement,
            debug=self.debug,
        )


class JobCreateResponse(CodeduelBaseModel):
    """Response from creating a job."""

    job_id: str
    status: JobStatus
    message: str


class JobResponse(CodeduelBaseModel):
    """Job information response."""

    id: str
    status: JobStatus
    config: JobConfig
    progress: JobProgress
    results: list[ModelResult] = Field(default_factory=list)
    winner: Optional[str] = None
    refinement_results: Optional[list[ModelResult]] = None
    refinement_winner: Optional[str] = None
    error: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> Self:
        return cls(
            id=job.id,
            status=job.status,
            config=job.config,
            progress=job.progress.model_copy(deep=True),
            results=list(job.results),
            winner=job.winner,
            refinement_results=(
                list(job.refinement_results) if job.refinement_results is not None else None
            ),
            refinement_winner=job.refinement_winner,
            error=job.error,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed", "cancelled")


class JobListResponse(CodeduelBaseModel):
    """Response containing job records."""

    jobs: list[JobResponse]


class JobCancelResponse(CodeduelBaseModel):
    """Response from cancelling a job."""

    job_id: str
    cancelled: bool
    status: JobStatus
    message: str


class AttemptHistoryResponse(CodeduelBaseModel):
    """Per-model attempt records captured for a debug job."""

    job_id: str
    attempts: dict[str, list[AttemptRecord]] = Field(default_factory=dict)


class HealthResponse(CodeduelBaseModel):
    """Health check response."""

    status: str
    version: str
    running: int = 0
    queued: int = 0
    total: int = 0


class ErrorResponse(CodeduelBaseModel):
    """Error response payload."""

    detail: str
