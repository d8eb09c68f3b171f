# Copyright (c) Syntropy Systems
"""Command-driven test execution and performance measurement."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Optional, cast

from pydantic import ValidationError
from typing_extensions import override

from codeduel.collaborators import (
    ExecutionResult,
    Executor,
    Measurement,
    PerformanceMeter,
    Workspace,
)
from codeduel.models.metrics import BenchmarkResult, ComponentMetrics, FunctionMetrics
from codeduel.runner import expand_argv, run_command

if TYPE_CHECKING:
    from codeduel.challenges import Challenge, PerformanceThresholds
    from codeduel.models.base import JSONValue

logger = logging.getLogger(__name__)

BENCH_OUTPUT_FILE = ".bench-output.json"


def _placeholders(challenge: Challenge, workspace: Workspace) -> dict[str, object]:
    bench_path = workspace.root / "spec.bench.ts"
    if not bench_path.exists():
        bench_path = challenge.bench_file
    return {
        "root": workspace.root,
        "test_path": workspace.test_path,
        "solution_path": workspace.solution_path,
        "bench_path": bench_path,
        "output_path": workspace.root / BENCH_OUTPUT_FILE,
        "challenge": challenge.id,
    }


def _decode_report(stdout: str) -> Optional[dict[str, JSONValue]]:
    text = stdout.strip()
    if not text.startswith("{"):
        return None
    try:
        data = cast("object", json.loads(text))
    except ValueError:
        return None
    if isinstance(data, dict):
        return cast("dict[str, JSONValue]", data)
    return None


class CommandExecutor(Executor):
    """Runs ``challenge.test_command`` inside the workspace.

    The JSON reporter's output is handed back decoded when stdout is a
    report; otherwise the combined console output is returned as-is.
    """

    def __init__(self, timeout: Optional[float] = 300) -> None:
        self.timeout = timeout

    @override
    async def execute(self, challenge: Challenge, workspace: Workspace) -> ExecutionResult:
        argv = expand_argv(challenge.test_command, _placeholders(challenge, workspace))
        result = await run_command(argv, cwd=workspace.root, timeout=self.timeout)

        if result.spawn_error is not None:
            return ExecutionResult(
                passed=False,
                raw_evidence=f"Failed to run tests: {result.spawn_error}",
                duration_ms=result.duration_ms,
            )
        if result.timed_out:
            return ExecutionResult(
                passed=False,
                raw_evidence=f"Test run timed out after {self.timeout}s",
                duration_ms=result.duration_ms,
            )

        report = _decode_report(result.stdout)
        if report is not None:
            return ExecutionResult(
                passed=report.get("success") is True,
                raw_evidence=report,
                duration_ms=result.duration_ms,
            )
        return ExecutionResult(
            passed=result.ok,
            raw_evidence=result.output,
            duration_ms=result.duration_ms,
        )


def parse_bench_report(data: object) -> FunctionMetrics:
    """Read vitest bench ``--outputJson`` data (``files[].groups[].benchmarks[]``)."""
    benchmarks: list[BenchmarkResult] = []
    if not isinstance(data, Mapping):
        return FunctionMetrics()
    for file in data.get("files") or []:
        if not isinstance(file, Mapping):
            continue
        for group in file.get("groups") or []:
            if not isinstance(group, Mapping):
                continue
            for bench in group.get("benchmarks") or []:
                if not isinstance(bench, Mapping):
                    continue
                try:
                    benchmarks.append(BenchmarkResult.model_validate(bench))
                except ValidationError:
                    logger.debug("Skipping malformed benchmark entry: %r", bench)
    return FunctionMetrics(benchmarks=benchmarks)


def parse_component_report(data: Mapping[str, object]) -> tuple[ComponentMetrics, Optional[int]]:
    """Read a flat render-metrics object. Returns metrics and the render count."""

    def number(*keys: str) -> float:
        for key in keys:
            value = data.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return 0.0

    render_count = data.get("renderCount", data.get("render_count"))
    metrics = ComponentMetrics(
        fps=number("fps"),
        avg_render_time=number("avgRenderTime", "avg_render_time"),
        bundle_size=int(number("bundleSize", "bundle_size")),
    )
    count = int(render_count) if isinstance(render_count, (int, float)) else None
    return metrics, count


def check_thresholds(
    metrics: ComponentMetrics,
    thresholds: Optional[PerformanceThresholds],
    render_count: Optional[int] = None,
) -> list[str]:
    """Threshold violations for a component measurement."""
    if thresholds is None:
        return []
    problems: list[str] = []
    if thresholds.min_fps is not None and metrics.fps < thresholds.min_fps:
        problems.append(f"fps {metrics.fps:.1f} below minimum {thresholds.min_fps}")
    if thresholds.max_bundle_size is not None and metrics.bundle_size > thresholds.max_bundle_size:
        problems.append(
            f"bundle size {metrics.bundle_size} exceeds {thresholds.max_bundle_size} bytes"
        )
    if (
        thresholds.max_render_count is not None
        and render_count is not None
        and render_count > thresholds.max_render_count
    ):
        problems.append(f"render count {render_count} exceeds {thresholds.max_render_count}")
    return problems


class CommandMeter(PerformanceMeter):
    """Benchmarks function solutions and render-tests component solutions."""

    def __init__(self, timeout: Optional[float] = 300) -> None:
        self.timeout = timeout

    @override
    async def measure(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        if challenge.kind == "component":
            return await self._measure_component(challenge, workspace)
        return await self._measure_function(challenge, workspace)

    async def _measure_function(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        if challenge.bench_command is None:
            return Measurement(passed=True, metrics=FunctionMetrics())

        values = _placeholders(challenge, workspace)
        output_path = workspace.root / BENCH_OUTPUT_FILE
        argv = expand_argv(challenge.bench_command, values)
        output_path.unlink(missing_ok=True)
        result = await run_command(argv, cwd=workspace.root, timeout=self.timeout)

        # Correctness already passed; a broken benchmark only loses the metric
        data: object = None
        if output_path.exists():
            try:
                data = json.loads(output_path.read_text())
            except ValueError:
                logger.warning("Unreadable benchmark output for %s", challenge.id)
        elif not result.ok:
            logger.warning("Benchmark failed for %s: %s", challenge.id, result.output[:200])
        return Measurement(passed=True, metrics=parse_bench_report(data))

    async def _measure_component(self, challenge: Challenge, workspace: Workspace) -> Measurement:
        if challenge.perf_command is None:
            logger.warning("No perf_command configured for %s", challenge.id)
            return Measurement(passed=True)

        argv = expand_argv(challenge.perf_command, _placeholders(challenge, workspace))
        result = await run_command(argv, cwd=workspace.root, timeout=self.timeout)
        report = _decode_report(result.stdout)
        if report is None:
            error = result.spawn_error or result.output[:500] or "No performance report"
            return Measurement(passed=False, error=f"Performance test failed: {error}")

        metrics, render_count = parse_component_report(report)
        problems = check_thresholds(metrics, challenge.thresholds, render_count)
        return Measurement(
            passed=not problems,
            metrics=metrics,
            error="; ".join(problems) if problems else None,
        )
