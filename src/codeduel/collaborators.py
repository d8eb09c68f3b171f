# Copyright (c) Syntropy Systems
"""Interfaces to the services a competition depends on.

The orchestrator never talks to a model, a test runner or the filesystem
layout directly. It goes through these interfaces, and the default
command-driven implementations live in :mod:`codeduel.generator`,
:mod:`codeduel.executor` and :mod:`codeduel.workspace`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from codeduel.models.base import JSONValue
from codeduel.models.metrics import MetricsPayload

if TYPE_CHECKING:
    from codeduel.challenges import Challenge


@dataclass(frozen=True)
class ExecutionResult:
    """What a test run produced.

    ``raw_evidence`` is either a decoded JSON report, its string form, or a
    console transcript.
    """

    passed: bool
    raw_evidence: Union[str, dict[str, JSONValue], None]
    duration_ms: float


@dataclass(frozen=True)
class Measurement:
    """Performance verdict for a solution that already passed its tests."""

    passed: bool
    metrics: Optional[MetricsPayload] = None
    error: Optional[str] = None


class Workspace(ABC):
    """An isolated directory a job owns for its whole lifetime."""

    root: Path
    solution_path: Path
    test_path: Path

    @abstractmethod
    async def release(self) -> None:
        """Give the directory back. Calling it again does nothing."""


class Generator(ABC):
    """Produces solution text for a model."""

    @abstractmethod
    async def generate(
        self,
        model: str,
        challenge: Challenge,
        *,
        feedback: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> str:
        """Return solution source text. May raise."""


class Executor(ABC):
    """Runs a challenge's correctness suite against the workspace solution."""

    @abstractmethod
    async def execute(self, challenge: Challenge, workspace: Workspace) -> ExecutionResult:
        ...


class PerformanceMeter(ABC):
    """Measures a solution after it passes its correctness suite."""

    @abstractmethod
    async def measure(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        ...


class WorkspaceProvider(ABC):
    """Hands out one workspace per job."""

    @abstractmethod
    async def acquire(
        self,
        challenge: Challenge,
        job_id: str,
        *,
        keep: bool = False,
    ) -> Workspace:
        ...


@dataclass(frozen=True)
class RefinementContext:
    """Everything a refinement prompt is built from."""

    original_prompt: str
    winning_solution: str
    winner_model: str
    winner_metrics: Optional[MetricsPayload]
    is_winner: bool
    challenge_kind: str = "function"


class RefinementPromptBuilder(ABC):
    """Writes the prompt a model receives in the refinement round."""

    @abstractmethod
    def build(self, context: RefinementContext) -> str:
        ...
