# Copyright (c) Syntropy Systems
"""Per-model attempt loop.

One attempt is generate, write, execute, parse. A model keeps attempting
until its solution passes or it runs out of attempts; each failure is fed
into the next attempt as structured feedback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, TypeVar

from codeduel.errors import JobCancelledError
from codeduel.models.job import (
    DEFAULT_FEEDBACK_LIMIT,
    AttemptRecord,
    Feedback,
    ModelResult,
    Phase,
)
from codeduel.models.testing import ParsedTestOutput, TestFailure
from codeduel.parser import parse_evidence

if TYPE_CHECKING:
    from codeduel.challenges import Challenge
    from codeduel.collaborators import (
        Executor,
        Generator,
        Measurement,
        PerformanceMeter,
        Workspace,
    )

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptReporter(ABC):
    """Where an attempt loop reports to. Implemented by the job controller."""

    @abstractmethod
    def checkpoint(self) -> None:
        """Raise :class:`JobCancelledError` if the job has been cancelled."""

    @abstractmethod
    def progress(
        self,
        phase: Phase,
        *,
        model: Optional[str] = None,
        attempt: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def attempt_recorded(self, model: str, record: AttemptRecord) -> None:
        ...

    @abstractmethod
    def solution_generated(self, model: str, solution: str) -> None:
        ...


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of a single attempt."""

    output: ParsedTestOutput
    feedback: Feedback
    solution: Optional[str] = None
    measurement: Optional[Measurement] = None
    error: Optional[str] = None

    @property
    def tests_passed(self) -> bool:
        return self.output.passed

    @property
    def passed(self) -> bool:
        """Correctness passed and, when measured, performance passed too."""
        if not self.output.passed:
            return False
        return self.measurement is None or self.measurement.passed


class AttemptLoop:
    """Runs attempts for one model at a time against a shared workspace."""

    def __init__(
        self,
        generator: Generator,
        executor: Executor,
        meter: PerformanceMeter,
        *,
        feedback_limit: int = DEFAULT_FEEDBACK_LIMIT,
        attempt_timeout: Optional[float] = None,
    ) -> None:
        self.generator = generator
        self.executor = executor
        self.meter = meter
        self.feedback_limit = feedback_limit
        self.attempt_timeout = attempt_timeout

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self.attempt_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.attempt_timeout)

    def _timeout_message(self) -> str:
        return f"attempt timed out after {self.attempt_timeout}s"

    async def run_model(
        self,
        model: str,
        challenge: Challenge,
        workspace: Workspace,
        max_attempts: int,
        reporter: AttemptReporter,
    ) -> ModelResult:
        """Attempt ``model`` until it passes or ``max_attempts`` is used up."""
        feedback: Optional[Feedback] = None

        for attempt in range(1, max_attempts + 1):
            outcome = await self.run_once(
                model,
                challenge,
                workspace,
                reporter,
                attempt_number=attempt,
                feedback=feedback,
            )
            if outcome.tests_passed:
                measurement = outcome.measurement
                return ModelResult(
                    model=model,
                    passed=outcome.passed,
                    attempts=attempt,
                    metrics=measurement.metrics if measurement else None,
                    error=None if outcome.passed or measurement is None else measurement.error,
                )
            feedback = outcome.feedback
            logger.info("%s failed attempt %d/%d", model, attempt, max_attempts)

        return ModelResult(
            model=model,
            passed=False,
            attempts=max_attempts,
            error=feedback.render(self.feedback_limit) if feedback else None,
        )

    async def run_once(
        self,
        model: str,
        challenge: Challenge,
        workspace: Workspace,
        reporter: AttemptReporter,
        *,
        attempt_number: int = 1,
        feedback: Optional[Feedback] = None,
        custom_prompt: Optional[str] = None,
        refined: bool = False,
    ) -> AttemptOutcome:
        """One generate, write, execute, parse cycle."""
        reporter.checkpoint()

        feedback_text = feedback.render(self.feedback_limit) if feedback else None
        prompt = f"Challenge: {challenge.id}"
        if custom_prompt is not None:
            prompt += "\nRefinement round"
        elif feedback_text:
            prompt += f"\nFeedback from previous attempt:\n{feedback_text}"

        reporter.progress(
            "generating",
            model=model,
            attempt=attempt_number,
            message=f"{model} is generating a solution (attempt {attempt_number})",
        )
        started = time.monotonic()
        try:
            solution = await self._bounded(
                self.generator.generate(
                    model,
                    challenge,
                    feedback=feedback_text,
                    custom_prompt=custom_prompt,
                )
            )
        except JobCancelledError:
            raise
        except asyncio.TimeoutError:
            return self._attempt_failed(
                model, reporter, attempt_number, prompt, feedback_text, started,
                self._timeout_message(),
            )
        except Exception as e:
            logger.warning("Generation failed for %s: %s", model, e)
            return self._attempt_failed(
                model, reporter, attempt_number, prompt, feedback_text, started, str(e)
            )
        generation_ms = (time.monotonic() - started) * 1000

        try:
            reporter.progress("writing", model=model, attempt=attempt_number)
            await asyncio.to_thread(
                self._write_solution, challenge, workspace, model, solution, refined
            )
            reporter.solution_generated(model, solution)

            reporter.progress(
                "testing",
                model=model,
                attempt=attempt_number,
                message=f"Testing {model}'s solution",
            )
            output = await self._execute(challenge, workspace)
        except JobCancelledError:
            raise
        except Exception as e:
            logger.warning("Test run failed for %s: %s", model, e)
            return self._attempt_failed(
                model, reporter, attempt_number, prompt, feedback_text, started,
                str(e) or type(e).__name__, solution=solution,
            )

        reporter.attempt_recorded(
            model,
            AttemptRecord(
                attempt_number=attempt_number,
                solution=solution,
                prompt=prompt,
                feedback=feedback_text,
                duration_ms=generation_ms,
                test_output=output,
            ),
        )

        if not output.passed:
            return AttemptOutcome(
                output=output,
                feedback=Feedback.from_output(output),
                solution=solution,
            )

        reporter.progress(
            "analyzing" if challenge.kind == "component" else "benchmarking",
            model=model,
            attempt=attempt_number,
            message=f"Measuring {model}'s solution",
        )
        try:
            measurement = await self.meter.measure(challenge, workspace)
        except JobCancelledError:
            raise
        except Exception as e:
            # Already recorded as a passing run; only the outcome changes
            message = str(e) or type(e).__name__
            logger.warning("Measurement failed for %s: %s", model, message)
            return AttemptOutcome(
                output=ParsedTestOutput(
                    passed=False,
                    num_failed=1,
                    failures=[TestFailure(test_name="error", error=message)],
                ),
                feedback=Feedback.from_error(message),
                solution=solution,
                error=message,
            )
        return AttemptOutcome(
            output=output,
            feedback=Feedback(),
            solution=solution,
            measurement=measurement,
        )

    async def _execute(self, challenge: Challenge, workspace: Workspace) -> ParsedTestOutput:
        try:
            execution = await self._bounded(self.executor.execute(challenge, workspace))
        except asyncio.TimeoutError:
            return ParsedTestOutput(
                passed=False,
                num_failed=1,
                failures=[TestFailure(test_name="timeout", error=self._timeout_message())],
            )
        return parse_evidence(execution.raw_evidence, execution.passed)

    def _attempt_failed(
        self,
        model: str,
        reporter: AttemptReporter,
        attempt_number: int,
        prompt: str,
        feedback_text: Optional[str],
        started: float,
        message: str,
        *,
        solution: str = "",
    ) -> AttemptOutcome:
        """Record an attempt that raised and turn the error into feedback."""
        message = message or "generation failed"
        output = ParsedTestOutput(
            passed=False,
            failures=[TestFailure(test_name="error", error=message)],
        )
        reporter.attempt_recorded(
            model,
            AttemptRecord(
                attempt_number=attempt_number,
                solution=solution,
                prompt=prompt,
                feedback=feedback_text,
                duration_ms=(time.monotonic() - started) * 1000,
                test_output=output,
            ),
        )
        return AttemptOutcome(
            output=output,
            feedback=Feedback.from_error(message),
            solution=solution or None,
            error=message,
        )

    @staticmethod
    def _write_solution(
        challenge: Challenge,
        workspace: Workspace,
        model: str,
        solution: str,
        refined: bool,
    ) -> None:
        workspace.solution_path.parent.mkdir(parents=True, exist_ok=True)
        _ = workspace.solution_path.write_text(solution)

        archive = challenge.solution_archive_path(model, refined)
        archive.parent.mkdir(parents=True, exist_ok=True)
        _ = archive.write_text(solution)
