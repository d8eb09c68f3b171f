# Copyright (c) Syntropy Systems
"""Job, result and attempt records for competitions."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import Field, field_validator
from typing_extensions import Self, TypeAlias

from .base import CodeduelBaseModel, FrozenModel
from .metrics import Improvement, Metrics
from .testing import ParsedTestOutput, TestFailure

if TYPE_CHECKING:
    from codeduel.challenges import Challenge
    from codeduel.progress import ProgressSink

JobStatus: TypeAlias = Literal["queued", "running", "completed", "failed", "cancelled"]
Phase: TypeAlias = Literal[
    "setup",
    "generating",
    "writing",
    "testing",
    "benchmarking",
    "analyzing",
    "refinement",
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

DEFAULT_FEEDBACK_LIMIT = 500


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class JobConfig(CodeduelBaseModel):
    """What a competition runs: one challenge against an ordered list of models."""

    challenge: str
    models: list[str]
    max_attempts: int = 5
    refinement: bool = False
    debug: bool = False

    @field_validator("challenge")
    @classmethod
    def _challenge_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "challenge must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("models")
    @classmethod
    def _dedupe_models(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for model in value:
            model = model.strip()
            if model and model not in seen:
                seen.append(model)
        if not seen:
            msg = "at least one model is required"
            raise ValueError(msg)
        return seen

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, value: int) -> int:
        if value < 1:
            msg = "max_attempts must be a positive integer"
            raise ValueError(msg)
        return value


class JobProgress(CodeduelBaseModel):
    """Snapshot of where a running job is."""

    current_model: Optional[str] = None
    current_attempt: Optional[int] = None
    phase: Optional[Phase] = None
    completed_models: list[str] = Field(default_factory=list)
    message: Optional[str] = None


class ModelResult(FrozenModel):
    """Outcome of one model in one round."""

    model: str
    passed: bool
    attempts: int
    metrics: Optional[Metrics] = None
    error: Optional[str] = None
    is_refinement: bool = False
    refined_from: Optional[str] = None
    improvement: Optional[Improvement] = None


class AttemptRecord(CodeduelBaseModel):
    """Audit record of a single generate-execute-parse cycle."""

    attempt_number: int
    solution: str
    prompt: str
    feedback: Optional[str] = None
    duration_ms: float
    test_output: ParsedTestOutput


class Feedback(CodeduelBaseModel):
    """Structured failure information carried into the next attempt.

    The failure list is kept intact; it is only flattened to text by
    :meth:`render` when a prompt is built.
    """

    failures: list[TestFailure] = Field(default_factory=list)
    message: Optional[str] = None

    @classmethod
    def from_error(cls, message: str) -> Self:
        """Feedback for an attempt that raised instead of producing a test run."""
        return cls(
            failures=[TestFailure(test_name="error", error=message)],
            message=f"Error: {message}",
        )

    @classmethod
    def from_output(cls, output: ParsedTestOutput) -> Self:
        """Feedback for an attempt whose code ran but did not pass."""
        return cls(failures=list(output.failures))

    def render(self, limit: int = DEFAULT_FEEDBACK_LIMIT) -> str:
        """Flatten to prompt text, truncated to ``limit`` characters."""
        if self.message is not None:
            text = self.message
        elif self.failures:
            text = "\n".join(failure.describe() for failure in self.failures)
        else:
            text = "Tests failed"
        return text[:limit]


@dataclass
class Job:
    """A competition job owned by the controller.

    Only :class:`codeduel.controller.JobController` mutates a job; everyone
    else reads snapshots of it.
    """

    id: str
    config: JobConfig
    status: JobStatus = "queued"
    progress: JobProgress = field(default_factory=JobProgress)
    results: list[ModelResult] = field(default_factory=list)
    refinement_results: Optional[list[ModelResult]] = None
    winner: Optional[str] = None
    refinement_winner: Optional[str] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    # Monotonic clock reading when the job reached a terminal status
    finished_clock: Optional[float] = None
    cancel_requested: threading.Event = field(default_factory=threading.Event)
    sink: Optional[ProgressSink] = None
    challenge: Optional[Challenge] = None
    solutions: dict[str, str] = field(default_factory=dict)
    attempt_history: dict[str, list[AttemptRecord]] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
