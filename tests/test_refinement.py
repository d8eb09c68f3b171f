# Copyright (c) Syntropy Systems
"""Tests for ranking and the refinement round."""

import pytest

from codeduel.attempts import AttemptLoop
from codeduel.collaborators import RefinementContext, RefinementPromptBuilder
from codeduel.errors import JobCancelledError
from codeduel.models.job import ModelResult
from codeduel.models.metrics import (
    BenchmarkResult,
    ComponentMetrics,
    FunctionMetrics,
    compute_improvement,
)
from codeduel.refinement import (
    DefaultRefinementPromptBuilder,
    RefinementRound,
    pick_winner,
    rank_results,
)
from conftest import ScriptedGenerator, SolutionExecutor, SolutionMeter


def fn_metrics(hz):
    return FunctionMetrics(benchmarks=[BenchmarkResult(name="add", hz=hz)])


def passed(model, hz):
    return ModelResult(model=model, passed=True, attempts=1, metrics=fn_metrics(hz))


def failed(model):
    return ModelResult(model=model, passed=False, attempts=3, error="nope")


class RecordingPromptBuilder(RefinementPromptBuilder):
    def __init__(self):
        self.contexts = []

    def build(self, context: RefinementContext) -> str:
        self.contexts.append(context)
        return f"refine for {'winner' if context.is_winner else 'challenger'}"


class TestRanking:
    """Tests for ranking passed results."""

    def test_only_passed_results_ranked_by_metric(self):
        results = [passed("a", 100), failed("b"), passed("c", 300)]
        assert [r.model for r in rank_results(results)] == ["c", "a"]

    def test_tie_keeps_declaration_order(self):
        results = [passed("a", 100), passed("b", 100)]
        assert pick_winner(results).model == "a"

    def test_no_winner(self):
        assert pick_winner([failed("a"), failed("b")]) is None
        assert pick_winner([]) is None

    def test_missing_metrics_rank_as_zero(self):
        results = [ModelResult(model="a", passed=True, attempts=1), passed("b", 1)]
        assert pick_winner(results).model == "b"


class TestImprovement:
    def test_improved(self):
        improvement = compute_improvement(fn_metrics(1000), fn_metrics(1500))
        assert improvement.improved
        assert improvement.delta_percent == 50.0
        assert improvement.description.startswith("+50.0%")

    def test_regressed(self):
        improvement = compute_improvement(fn_metrics(1000), fn_metrics(500))
        assert not improvement.improved
        assert improvement.delta_percent == -50.0

    def test_no_change(self):
        improvement = compute_improvement(fn_metrics(10), fn_metrics(10))
        assert not improvement.improved
        assert improvement.description.startswith("no change")

    def test_component_units(self):
        improvement = compute_improvement(ComponentMetrics(fps=50), ComponentMetrics(fps=60))
        assert improvement.description.endswith("fps)")


class TestDefaultPromptBuilder:
    def context(self, is_winner):
        return RefinementContext(
            original_prompt="Write add.",
            winning_solution="export const add = (a, b) => a + b",
            winner_model="a",
            winner_metrics=fn_metrics(1234),
            is_winner=is_winner,
        )

    def test_winner_defends(self):
        prompt = DefaultRefinementPromptBuilder().build(self.context(True))
        assert prompt.startswith("Write add.")
        assert "Defend your lead" in prompt
        assert "export const add" in prompt
        assert "1,234 ops/sec" in prompt

    def test_challenger_studies_winner(self):
        prompt = DefaultRefinementPromptBuilder().build(self.context(False))
        assert "written by a" in prompt
        assert "Defend your lead" not in prompt


class TestRefinementRound:
    """Tests for the single-shot refinement pass."""

    @pytest.mark.asyncio
    async def test_every_model_refines_against_winner(self, challenge, workspace, reporter):
        generator = ScriptedGenerator({"a": ["pass:1500"], "b": ["broken"]})
        builder = RecordingPromptBuilder()
        loop = AttemptLoop(generator, SolutionExecutor(), SolutionMeter())
        seen = []

        outcome = await RefinementRound(loop, builder).run(
            ["a", "b"],
            challenge,
            workspace,
            [passed("a", 1000), failed("b")],
            {"a": "pass:1000"},
            reporter,
            on_result=seen.append,
        )

        assert outcome is not None
        assert outcome.winner == "a"
        assert [c.is_winner for c in builder.contexts] == [True, False]
        assert all(c.winning_solution == "pass:1000" for c in builder.contexts)
        assert all(c.winner_model == "a" for c in builder.contexts)
        assert [call.custom_prompt for call in generator.calls] == [
            "refine for winner",
            "refine for challenger",
        ]

        refined_a, refined_b = outcome.results
        assert seen == outcome.results
        assert refined_a.is_refinement and refined_a.refined_from == "a"
        assert refined_a.passed and refined_a.attempts == 1
        assert refined_a.improvement is not None
        assert refined_a.improvement.improved
        assert refined_a.improvement.delta_percent == 50.0
        assert not refined_b.passed
        assert refined_b.is_refinement and refined_b.refined_from == "a"
        assert refined_b.improvement is None
        assert "expected broken to be 3" in refined_b.error

    @pytest.mark.asyncio
    async def test_winner_solution_read_from_archive(self, challenge, workspace, reporter):
        archive = challenge.solution_archive_path("a")
        archive.parent.mkdir(parents=True)
        _ = archive.write_text("pass:77")
        builder = RecordingPromptBuilder()
        loop = AttemptLoop(ScriptedGenerator(), SolutionExecutor(), SolutionMeter())

        _ = await RefinementRound(loop, builder).run(
            ["a"], challenge, workspace, [passed("a", 77)], {}, reporter
        )
        assert builder.contexts[0].winning_solution == "pass:77"
        assert builder.contexts[0].original_prompt == challenge.read_prompt()

    @pytest.mark.asyncio
    async def test_skipped_when_nobody_passed(self, challenge, workspace, reporter):
        generator = ScriptedGenerator()
        loop = AttemptLoop(generator, SolutionExecutor(), SolutionMeter())
        outcome = await RefinementRound(loop).run(
            ["a", "b"], challenge, workspace, [failed("a"), failed("b")], {}, reporter
        )
        assert outcome is None
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_cancellation_between_models(self, challenge, workspace, reporter):
        class CancelAfterFirst(ScriptedGenerator):
            async def generate(self, model, challenge, *, feedback=None, custom_prompt=None):
                reporter.cancelled = True
                return await super().generate(
                    model, challenge, feedback=feedback, custom_prompt=custom_prompt
                )

        generator = CancelAfterFirst()
        loop = AttemptLoop(generator, SolutionExecutor(), SolutionMeter())
        with pytest.raises(JobCancelledError):
            _ = await RefinementRound(loop).run(
                ["a", "b"], challenge, workspace, [passed("a", 5)], {"a": "pass:5"}, reporter
            )
        assert [call.model for call in generator.calls] == ["a"]
