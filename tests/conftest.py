# Copyright (c) Syntropy Systems
"""Pytest fixtures for codeduel tests."""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Generator as Gen
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional, Union

import pytest
from typing_extensions import override

from codeduel.attempts import AttemptReporter
from codeduel.challenges import Challenge, load_challenge
from codeduel.collaborators import (
    ExecutionResult,
    Executor,
    Generator,
    Measurement,
    PerformanceMeter,
    Workspace,
    WorkspaceProvider,
)
from codeduel.controller import JobController
from codeduel.errors import JobCancelledError
from codeduel.models.base import JSONValue
from codeduel.models.job import AttemptRecord, Phase
from codeduel.models.metrics import BenchmarkResult, FunctionMetrics

# Store original cwd at module load time
_original_cwd = Path.cwd()

PROMPT = "Write an add function.\n\nFeedback: {{feedback}}\n"


def vitest_report(
    passed: bool,
    failures: Sequence[tuple[str, str]] = (),
    total: int = 3,
) -> dict[str, JSONValue]:
    """Build a vitest JSON report with the given failing tests."""
    return {
        "success": passed,
        "numTotalTests": total,
        "numPassedTests": total - len(failures),
        "numFailedTests": len(failures),
        "testResults": [
            {
                "name": "/tmp/work/spec.test.ts",
                "status": "failed" if failures else "passed",
                "assertionResults": [
                    {"fullName": name, "title": name, "status": "failed", "failureMessages": [message]}
                    for name, message in failures
                ],
            }
        ],
    }


class FakeWorkspace(Workspace):
    """Workspace backed by a plain directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.solution_path = root / "solution.ts"
        self.test_path = root / "spec.test.ts"
        self.release_calls = 0

    @property
    def released(self) -> bool:
        return self.release_calls > 0

    @override
    async def release(self) -> None:
        self.release_calls += 1


class FakeWorkspaceProvider(WorkspaceProvider):
    """Hands out directories under ``base``; raises ``error`` when set."""

    def __init__(self, base: Path, error: Optional[Exception] = None) -> None:
        self.base = base
        self.error = error
        self.acquired: list[FakeWorkspace] = []

    @override
    async def acquire(self, challenge: Challenge, job_id: str, *, keep: bool = False) -> Workspace:
        if self.error is not None:
            raise self.error
        root = self.base / job_id
        root.mkdir(parents=True, exist_ok=True)
        workspace = FakeWorkspace(root)
        self.acquired.append(workspace)
        return workspace


@dataclass
class GenerateCall:
    model: str
    feedback: Optional[str]
    custom_prompt: Optional[str]


class ScriptedGenerator(Generator):
    """Replies from a per-model script; exceptions in the script are raised.

    Once a model's script runs out, ``default`` is returned. When ``gate`` is
    set, every call waits on it first.
    """

    def __init__(
        self,
        script: Optional[dict[str, list[Union[str, Exception]]]] = None,
        default: str = "pass:1000",
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.script = {model: list(replies) for model, replies in (script or {}).items()}
        self.default = default
        self.gate = gate
        self.calls: list[GenerateCall] = []

    @override
    async def generate(
        self,
        model: str,
        challenge: Challenge,
        *,
        feedback: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> str:
        self.calls.append(GenerateCall(model, feedback, custom_prompt))
        if self.gate is not None:
            await self.gate.wait()
        replies = self.script.get(model)
        reply = replies.pop(0) if replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply

    def calls_for(self, model: str) -> list[GenerateCall]:
        return [call for call in self.calls if call.model == model]


class SolutionExecutor(Executor):
    """Passes solutions whose text starts with ``pass``.

    Anything else fails one test with an assertion message naming the text.
    """

    def __init__(self) -> None:
        self.runs = 0

    @override
    async def execute(self, challenge: Challenge, workspace: Workspace) -> ExecutionResult:
        self.runs += 1
        solution = workspace.solution_path.read_text()
        if solution.startswith("pass"):
            return ExecutionResult(passed=True, raw_evidence=vitest_report(True), duration_ms=5)
        report = vitest_report(
            False,
            [("add > adds numbers", f"AssertionError: expected {solution} to be 3")],
        )
        return ExecutionResult(passed=False, raw_evidence=report, duration_ms=5)


class SolutionMeter(PerformanceMeter):
    """Reads ops/sec from a ``pass:<hz>`` solution."""

    def __init__(self, passed: bool = True) -> None:
        self.passed = passed
        self.measured = 0

    @override
    async def measure(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        self.measured += 1
        _, _, hz = workspace.solution_path.read_text().partition(":")
        metrics = FunctionMetrics(benchmarks=[BenchmarkResult(name="add", hz=float(hz or 0))])
        if not self.passed:
            return Measurement(passed=False, metrics=metrics, error="Too slow")
        return Measurement(passed=True, metrics=metrics)


class FlakyExecutor(SolutionExecutor):
    """Raises on its first ``failures`` runs, then behaves normally."""

    def __init__(self, failures: int = 1, error: str = "vitest crashed") -> None:
        super().__init__()
        self.failures = failures
        self.error = error

    @override
    async def execute(self, challenge: Challenge, workspace: Workspace) -> ExecutionResult:
        if self.failures > 0:
            self.failures -= 1
            self.runs += 1
            raise RuntimeError(self.error)
        return await super().execute(challenge, workspace)


class BrokenMeter(SolutionMeter):
    """Raises on its first measurement."""

    @override
    async def measure(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        if self.measured == 0:
            self.measured += 1
            raise RuntimeError("bench crashed")
        return await super().measure(challenge, workspace)


class RecordingReporter(AttemptReporter):
    """Reporter that keeps everything and can be told to cancel."""

    def __init__(self) -> None:
        self.cancelled = False
        self.phases: list[tuple[Phase, Optional[str], Optional[int]]] = []
        self.messages: list[str] = []
        self.records: list[tuple[str, AttemptRecord]] = []
        self.solutions: dict[str, str] = {}

    @override
    def checkpoint(self) -> None:
        if self.cancelled:
            raise JobCancelledError("test")

    @override
    def progress(
        self,
        phase: Phase,
        *,
        model: Optional[str] = None,
        attempt: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        self.phases.append((phase, model, attempt))
        if message:
            self.messages.append(message)

    @override
    def attempt_recorded(self, model: str, record: AttemptRecord) -> None:
        self.records.append((model, record))

    @override
    def solution_generated(self, model: str, solution: str) -> None:
        self.solutions[model] = solution


def make_controller(
    challenges_dir, base_dir, generator=None, workspaces=None, executor=None, meter=None, **kwargs
):
    """Controller wired to the fakes above and the real challenge loader."""
    return JobController(
        partial(load_challenge, challenges_dir),
        generator or ScriptedGenerator(),
        executor or SolutionExecutor(),
        meter or SolutionMeter(),
        workspaces or FakeWorkspaceProvider(base_dir / "workspaces"),
        **kwargs,
    )


def write_challenge(root: Path, prompt: str = PROMPT) -> Path:
    """Create a minimal function challenge directory."""
    root.mkdir(parents=True, exist_ok=True)
    _ = (root / "prompt.md").write_text(prompt)
    _ = (root / "spec.test.ts").write_text("import { add } from './solution'\n")
    return root


@pytest.fixture
def temp_dir() -> Gen[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def challenges_dir(temp_dir: Path) -> Path:
    """A challenges directory holding the ``add`` challenge."""
    path = temp_dir / "challenges"
    _ = write_challenge(path / "add")
    return path


@pytest.fixture
def challenge(challenges_dir: Path) -> Challenge:
    return Challenge(id="add", root=challenges_dir / "add")


@pytest.fixture
def workspace(temp_dir: Path) -> FakeWorkspace:
    root = temp_dir / "workspace"
    root.mkdir()
    return FakeWorkspace(root)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def codeduel_project(temp_dir: Path) -> Gen[Path, None, None]:
    """Create a temporary codeduel project directory."""
    codeduel_dir = temp_dir / ".codeduel"
    (codeduel_dir / "results").mkdir(parents=True)
    _ = write_challenge(codeduel_dir / "challenges" / "add")

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
