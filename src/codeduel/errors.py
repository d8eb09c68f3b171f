# Copyright (c) Syntropy Systems
"""Exception types raised by codeduel."""

from __future__ import annotations

from collections.abc import Sequence


class CodeduelError(Exception):
    """Base class for codeduel errors."""


class StructuralValidationError(CodeduelError, ValueError):
    """A job or challenge is malformed and cannot be queued."""

    errors: list[str]

    def __init__(self, errors: Sequence[str], challenge: str | None = None) -> None:
        self.errors = list(errors)
        self.challenge = challenge
        prefix = f"Invalid challenge '{challenge}'" if challenge else "Invalid job"
        super().__init__(f"{prefix}: " + "; ".join(self.errors))


class GenerationError(CodeduelError):
    """A generator could not produce a solution."""


class WorkspaceError(CodeduelError):
    """A workspace could not be acquired."""


class JobCancelledError(CodeduelError):
    """Raised at a cancellation checkpoint once a job's cancel signal is set."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__("Job cancelled")
