# Copyright (c) Syntropy Systems
"""Job lifecycle and admission control.

The controller owns every job. It queues submissions in FIFO order, admits
at most ``max_concurrent_jobs`` at a time, runs each admitted job's attempt
loops and refinement round, and publishes progress to the job's sink.

All state changes happen on the event loop between awaits, so nothing here
needs a lock. Admission is driven by completions: every time a job reaches a
terminal status the controller tries to admit the next queued one.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING, Optional

from typing_extensions import override

from codeduel.attempts import AttemptLoop, AttemptReporter
from codeduel.errors import JobCancelledError
from codeduel.models.base import JSONObject
from codeduel.models.job import (
    DEFAULT_FEEDBACK_LIMIT,
    AttemptRecord,
    Job,
    JobConfig,
    JobStatus,
    ModelResult,
    Phase,
    utc_now,
)
from codeduel.progress import EventType, NullSink, ProgressSink
from codeduel.refinement import RefinementRound, pick_winner

if TYPE_CHECKING:
    from pathlib import Path

    from codeduel.challenges import Challenge
    from codeduel.collaborators import (
        Executor,
        Generator,
        PerformanceMeter,
        RefinementPromptBuilder,
        Workspace,
        WorkspaceProvider,
    )
    from codeduel.config import CodeduelConfig
    from codeduel.results import ResultsStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 2
DEFAULT_RETENTION_SECONDS = 3600
ERROR_LIMIT = 500

CANCELLED_MESSAGE = "Job cancelled"


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


class _JobReporter(AttemptReporter):
    """Routes attempt-loop callbacks back into the controller for one job."""

    def __init__(self, controller: JobController, job: Job) -> None:
        self._controller = controller
        self._job = job

    @override
    def checkpoint(self) -> None:
        if self._job.cancel_requested.is_set():
            raise JobCancelledError(self._job.id)

    @override
    def progress(
        self,
        phase: Phase,
        *,
        model: Optional[str] = None,
        attempt: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        self._controller.update_progress(
            self._job, phase, model=model, attempt=attempt, message=message
        )

    @override
    def attempt_recorded(self, model: str, record: AttemptRecord) -> None:
        self._controller.record_attempt(self._job, model, record)

    @override
    def solution_generated(self, model: str, solution: str) -> None:
        self._controller.remember_solution(self._job, model, solution)


class JobController:
    """Registry and scheduler for competition jobs.

    Construct one per application (or per test); there is no module-level
    instance.
    """

    def __init__(
        self,
        load_challenge: Callable[[str], Challenge],
        generator: Generator,
        executor: Executor,
        meter: PerformanceMeter,
        workspaces: WorkspaceProvider,
        *,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        feedback_limit: int = DEFAULT_FEEDBACK_LIMIT,
        attempt_timeout: Optional[float] = None,
        prompt_builder: Optional[RefinementPromptBuilder] = None,
        results_store: Optional[ResultsStore] = None,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = new_job_id,
    ) -> None:
        if max_concurrent_jobs < 1:
            msg = "max_concurrent_jobs must be at least 1"
            raise ValueError(msg)
        self.load_challenge = load_challenge
        self.workspaces = workspaces
        self.max_concurrent_jobs = max_concurrent_jobs
        self.retention_seconds = retention_seconds
        self.results_store = results_store
        self.attempts = AttemptLoop(
            generator,
            executor,
            meter,
            feedback_limit=feedback_limit,
            attempt_timeout=attempt_timeout,
        )
        self.refinement = RefinementRound(self.attempts, prompt_builder)
        self._clock = clock
        self._id_factory = id_factory
        self._jobs: dict[str, Job] = {}
        self._queue: deque[str] = deque()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = 0

    @classmethod
    def from_config(
        cls,
        config: CodeduelConfig,
        load_challenge: Callable[[str], Challenge],
        generator: Generator,
        executor: Executor,
        meter: PerformanceMeter,
        workspaces: WorkspaceProvider,
        **kwargs: object,
    ) -> JobController:
        return cls(
            load_challenge,
            generator,
            executor,
            meter,
            workspaces,
            max_concurrent_jobs=config.max_concurrent_jobs,
            retention_seconds=config.job_retention_seconds,
            feedback_limit=config.feedback_limit,
            attempt_timeout=config.attempt_timeout,
            **kwargs,  # type: ignore[arg-type]
        )

    # --- Queries ---

    @property
    def running_count(self) -> int:
        return self._running

    @property
    def queued_ids(self) -> list[str]:
        return list(self._queue)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        """All retained jobs, newest first."""
        self.collect_garbage()
        return list(reversed(self._jobs.values()))

    def active_jobs(self) -> list[Job]:
        return [job for job in self._jobs.values() if job.status in ("queued", "running")]

    def stats(self) -> dict[str, int]:
        return {
            "total": len(self._jobs),
            "running": self._running,
            "queued": len(self._queue),
        }

    # --- Lifecycle ---

    def create_job(self, config: JobConfig, sink: Optional[ProgressSink] = None) -> Job:
        """Validate the challenge and queue a job.

        Raises:
            StructuralValidationError: if the challenge cannot be loaded. No job
                is created in that case.
        """
        self.collect_garbage()
        challenge = self.load_challenge(config.challenge)
        job = Job(
            id=self._id_factory(),
            config=config,
            sink=sink or NullSink(),
            challenge=challenge,
        )
        self._jobs[job.id] = job
        self._queue.append(job.id)
        logger.info("Queued job %s (%s: %s)", job.id, config.challenge, ", ".join(config.models))
        return job

    def submit(self, config: JobConfig, sink: Optional[ProgressSink] = None) -> Job:
        """Create a job and admit it if a slot is free."""
        job = self.create_job(config, sink)
        self.try_admit_next()
        return job

    def try_admit_next(self) -> None:
        """Start queued jobs while there are free slots."""
        while self._running < self.max_concurrent_jobs and self._queue:
            job = self._jobs.get(self._queue.popleft())
            if job is None or job.status != "queued":
                continue
            self._running += 1
            job.status = "running"
            job.started_at = utc_now()
            logger.info("Starting job %s", job.id)
            task = asyncio.get_running_loop().create_task(self._run_job(job))
            self._tasks[job.id] = task
            task.add_done_callback(partial(self._task_done, job.id))

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued or running job.

        A queued job is cancelled on the spot and never runs. A running job
        is signalled and becomes cancelled at its next checkpoint.
        Returns False for unknown or already finished jobs.
        """
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return False

        job.cancel_requested.set()
        if job.status == "queued":
            try:
                self._queue.remove(job_id)
            except ValueError:
                logger.debug("Job %s was not in the queue", job_id)
            self._mark_terminal(job, "cancelled")
            self._emit(job, "error", {"error": CANCELLED_MESSAGE, "status": "cancelled"})
            self._close(job)
            return True

        logger.info("Cancellation requested for job %s", job_id)
        return True

    async def wait_for(self, job_id: str) -> Optional[Job]:
        """Wait for a job's run to finish and return it."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self._jobs.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every queued and running job and wait for them to unwind.

        Running jobs are interrupted at whatever they are awaiting rather than
        at their next checkpoint.
        """
        for job in list(self._jobs.values()):
            if not job.is_terminal:
                _ = self.cancel_job(job.id)
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            _ = task.cancel()
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)

    def collect_garbage(self) -> int:
        """Evict finished jobs older than the retention window."""
        now = self._clock()
        expired = [
            job.id
            for job in self._jobs.values()
            if job.is_terminal
            and job.finished_clock is not None
            and now - job.finished_clock >= self.retention_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
            _ = self._tasks.pop(job_id, None)
        if expired:
            logger.debug("Evicted %d finished jobs", len(expired))
        return len(expired)

    # --- Reporting (called from attempt loops) ---

    def update_progress(
        self,
        job: Job,
        phase: Phase,
        *,
        model: Optional[str] = None,
        attempt: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        if job.is_terminal:
            return
        progress = job.progress
        progress.phase = phase
        if model is not None:
            progress.current_model = model
        if attempt is not None:
            progress.current_attempt = attempt
        progress.message = message
        self._emit(job, "progress", progress.model_dump(mode="json"))

    def record_attempt(self, job: Job, model: str, record: AttemptRecord) -> None:
        if job.config.debug:
            job.attempt_history.setdefault(model, []).append(record)

    def remember_solution(self, job: Job, model: str, solution: str) -> None:
        job.solutions[model] = solution

    # --- Internals ---

    def _emit(self, job: Job, event_type: EventType, data: JSONObject) -> None:
        if job.sink is not None:
            job.sink.send(event_type, data)

    def _close(self, job: Job) -> None:
        if job.sink is not None:
            job.sink.close()

    def _mark_terminal(self, job: Job, status: JobStatus, error: Optional[str] = None) -> None:
        was_running = job.status == "running"
        job.status = status
        job.error = error
        job.completed_at = utc_now()
        job.finished_clock = self._clock()
        if was_running:
            self._running -= 1

    def _append_result(self, job: Job, result: ModelResult) -> None:
        job.results.append(result)
        job.progress.completed_models.append(result.model)
        self._emit(job, "result", result.model_dump(mode="json"))

    def _append_refinement_result(self, job: Job, result: ModelResult) -> None:
        if job.refinement_results is None:
            job.refinement_results = []
        job.refinement_results.append(result)
        self._emit(job, "refinement_result", result.model_dump(mode="json"))

    def terminal_payload(self, job: Job) -> JSONObject:
        return {
            "job_id": job.id,
            "status": job.status,
            "results": [r.model_dump(mode="json") for r in job.results],
            "winner": job.winner,
            "refinement_results": (
                [r.model_dump(mode="json") for r in job.refinement_results]
                if job.refinement_results is not None
                else None
            ),
            "refinement_winner": job.refinement_winner,
        }

    def _complete_job(self, job: Job) -> None:
        if job.is_terminal:
            return
        self._mark_terminal(job, "completed")
        logger.info("Job %s completed (winner: %s)", job.id, job.winner or "none")
        if self.results_store is not None:
            try:
                _ = self.results_store.record_job(job)
            except OSError:
                logger.exception("Failed to record results for job %s", job.id)
        self._emit(job, "complete", self.terminal_payload(job))
        self._close(job)
        self.try_admit_next()

    def _fail_job(self, job: Job, error: str) -> None:
        if job.is_terminal:
            return
        message = error[:ERROR_LIMIT]
        self._mark_terminal(job, "failed", message)
        self._emit(job, "error", {"error": message, "status": "failed"})
        self._close(job)
        self.try_admit_next()

    def _finish_cancelled(self, job: Job) -> None:
        if job.is_terminal:
            return
        self._mark_terminal(job, "cancelled")
        logger.info("Job %s cancelled", job.id)
        self._emit(job, "error", {"error": CANCELLED_MESSAGE, "status": "cancelled"})
        self._close(job)
        self.try_admit_next()

    def _task_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            # Cancelled before the job body got to run.
            job = self._jobs.get(job_id)
            if job is not None:
                self._finish_cancelled(job)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Job %s task crashed", job_id, exc_info=exc)

    async def _run_job(self, job: Job) -> None:
        reporter = _JobReporter(self, job)
        challenge = job.challenge
        workspace: Optional[Workspace] = None
        try:
            if challenge is None:
                msg = f"Job {job.id} has no challenge"
                raise RuntimeError(msg)
            reporter.checkpoint()
            self.update_progress(job, "setup", message="Setting up workspace")
            workspace = await self.workspaces.acquire(challenge, job.id, keep=job.config.debug)

            for model in job.config.models:
                reporter.checkpoint()
                result = await self.attempts.run_model(
                    model,
                    challenge,
                    workspace,
                    job.config.max_attempts,
                    reporter,
                )
                self._append_result(job, result)

            winner = pick_winner(job.results)
            job.winner = winner.model if winner is not None else None

            if job.config.refinement and winner is not None:
                job.refinement_results = []
                outcome = await self.refinement.run(
                    job.config.models,
                    challenge,
                    workspace,
                    job.results,
                    job.solutions,
                    reporter,
                    on_result=partial(self._append_refinement_result, job),
                )
                if outcome is not None:
                    job.refinement_winner = outcome.winner

            reporter.checkpoint()
            self._complete_job(job)
        except JobCancelledError:
            self._finish_cancelled(job)
        except asyncio.CancelledError:
            self._finish_cancelled(job)
            raise
        except Exception as e:
            logger.exception("Job %s failed", job.id)
            self._fail_job(job, str(e) or type(e).__name__)
        finally:
            if workspace is not None:
                await workspace.release()


def build_controller(
    config: CodeduelConfig,
    codeduel_dir: Optional[Path] = None,
    *,
    record_results: bool = True,
) -> JobController:
    """Wire a controller to the command-driven adapters described by ``config``."""
    from codeduel.challenges import load_challenge
    from codeduel.config import get_challenges_dir, get_results_dir, get_workspaces_dir
    from codeduel.executor import CommandExecutor, CommandMeter
    from codeduel.generator import CommandGenerator
    from codeduel.results import ResultsStore
    from codeduel.workspace import TempWorkspaceProvider

    challenges_dir = get_challenges_dir(codeduel_dir, config)
    results_store = None
    workspaces_dir = None
    if codeduel_dir is not None:
        workspaces_dir = get_workspaces_dir(codeduel_dir)
        if record_results:
            results_store = ResultsStore(get_results_dir(codeduel_dir))

    return JobController.from_config(
        config,
        partial(load_challenge, challenges_dir),
        CommandGenerator(config.generators, timeout=config.command_timeout),
        CommandExecutor(timeout=config.command_timeout),
        CommandMeter(timeout=config.command_timeout),
        TempWorkspaceProvider(workspaces_dir),
        results_store=results_store,
    )
