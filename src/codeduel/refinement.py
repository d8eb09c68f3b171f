# Copyright (c) Syntropy Systems
"""Refinement round: every model gets one shot at beating the winner."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from typing_extensions import override

from codeduel.collaborators import RefinementContext, RefinementPromptBuilder
from codeduel.models.job import ModelResult
from codeduel.models.metrics import (
    ComponentMetrics,
    FunctionMetrics,
    compute_improvement,
    primary_metric,
)

if TYPE_CHECKING:
    from codeduel.attempts import AttemptLoop, AttemptReporter
    from codeduel.challenges import Challenge
    from codeduel.collaborators import Workspace
    from codeduel.models.metrics import MetricsPayload

logger = logging.getLogger(__name__)


def rank_results(results: Sequence[ModelResult]) -> list[ModelResult]:
    """Passed results, best primary metric first.

    The sort is stable, so on an exact tie the earlier result keeps its
    place and the model declared first wins.
    """
    passed = [result for result in results if result.passed]
    return sorted(passed, key=lambda result: primary_metric(result.metrics), reverse=True)


def pick_winner(results: Sequence[ModelResult]) -> Optional[ModelResult]:
    ranked = rank_results(results)
    return ranked[0] if ranked else None


def describe_metrics(metrics: Optional[MetricsPayload]) -> str:
    if isinstance(metrics, ComponentMetrics):
        return (
            f"- FPS: {metrics.fps:.1f}\n"
            f"- Average render time: {metrics.avg_render_time:.2f}ms\n"
            f"- Bundle size: {metrics.bundle_size} bytes"
        )
    if isinstance(metrics, FunctionMetrics) and metrics.benchmarks:
        return "\n".join(
            f"- {bench.name}: {bench.hz:,.0f} ops/sec" for bench in metrics.benchmarks
        )
    return "- No performance data recorded"


class DefaultRefinementPromptBuilder(RefinementPromptBuilder):
    """Frames the round as a title defense for the winner and a challenge for the rest."""

    @override
    def build(self, context: RefinementContext) -> str:
        if context.is_winner:
            framing = (
                "Your solution won the first round. Other models have now seen it "
                "and will try to beat it. Defend your lead: make it faster without "
                "breaking any test."
            )
        else:
            framing = (
                f"The solution below, written by {context.winner_model}, won the first "
                "round. Study its approach and write a solution that beats it while "
                "still passing every test."
            )

        return (
            f"{context.original_prompt.rstrip()}\n\n"
            "## Refinement round\n\n"
            f"{framing}\n\n"
            "### Winning solution\n\n"
            f"```{'tsx' if context.challenge_kind == 'component' else 'ts'}\n"
            f"{context.winning_solution.rstrip()}\n"
            "```\n\n"
            "### Winning performance\n\n"
            f"{describe_metrics(context.winner_metrics)}\n\n"
            "Respond with the complete solution in a single code block."
        )


@dataclass
class RefinementOutcome:
    """Refinement results, in model-declaration order, and the winner they chased."""

    winner: str
    results: list[ModelResult] = field(default_factory=list)


class RefinementRound:
    """Runs a single refinement attempt for every model."""

    def __init__(
        self,
        loop: AttemptLoop,
        prompt_builder: Optional[RefinementPromptBuilder] = None,
    ) -> None:
        self.loop = loop
        self.prompt_builder = prompt_builder or DefaultRefinementPromptBuilder()

    async def run(
        self,
        models: Sequence[str],
        challenge: Challenge,
        workspace: Workspace,
        results: Sequence[ModelResult],
        solutions: Mapping[str, str],
        reporter: AttemptReporter,
        on_result: Optional[Callable[[ModelResult], None]] = None,
    ) -> Optional[RefinementOutcome]:
        """Refine against the best passed result. Returns None when nobody passed."""
        winner = pick_winner(results)
        if winner is None:
            return None

        winning_solution = solutions.get(winner.model)
        if winning_solution is None:
            archive = challenge.solution_archive_path(winner.model)
            winning_solution = await asyncio.to_thread(archive.read_text)
        original_prompt = await asyncio.to_thread(challenge.read_prompt)

        reporter.progress(
            "refinement",
            model="",
            attempt=0,
            message=(
                "Starting refinement round - all models will attempt to improve "
                f"{winner.model}'s winning solution"
            ),
        )

        outcome = RefinementOutcome(winner=winner.model)
        for model in models:
            reporter.checkpoint()
            is_winner = model == winner.model
            reporter.progress(
                "refinement",
                model=model,
                attempt=1,
                message=(
                    f"{model} (defending champion) refines their solution"
                    if is_winner
                    else f"{model} studies {winner.model}'s approach"
                ),
            )

            prompt = self.prompt_builder.build(
                RefinementContext(
                    original_prompt=original_prompt,
                    winning_solution=winning_solution,
                    winner_model=winner.model,
                    winner_metrics=winner.metrics,
                    is_winner=is_winner,
                    challenge_kind=challenge.kind,
                )
            )
            attempt = await self.loop.run_once(
                model,
                challenge,
                workspace,
                reporter,
                attempt_number=1,
                custom_prompt=prompt,
                refined=True,
            )

            if attempt.tests_passed:
                metrics = attempt.measurement.metrics if attempt.measurement else None
                improvement = (
                    compute_improvement(winner.metrics, metrics) if metrics is not None else None
                )
                result = ModelResult(
                    model=model,
                    passed=attempt.passed,
                    attempts=1,
                    metrics=metrics,
                    error=(
                        attempt.measurement.error
                        if attempt.measurement and not attempt.passed
                        else None
                    ),
                    is_refinement=True,
                    refined_from=winner.model,
                    improvement=improvement,
                )
                if improvement is not None:
                    verdict = "improved" if improvement.improved else "did not improve"
                    reporter.progress(
                        "refinement",
                        model=model,
                        attempt=1,
                        message=f"{model} {verdict}: {improvement.description}",
                    )
            else:
                result = ModelResult(
                    model=model,
                    passed=False,
                    attempts=1,
                    error=attempt.feedback.render(self.loop.feedback_limit),
                    is_refinement=True,
                    refined_from=winner.model,
                )

            outcome.results.append(result)
            if on_result is not None:
                on_result(result)

        return outcome
