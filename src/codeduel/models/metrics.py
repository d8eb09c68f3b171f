# Copyright (c) Syntropy Systems
"""Performance metrics for passed solutions.

A challenge is either a plain function, measured with a benchmark suite, or
a rendered component, measured with frame rate and bundle size. Each kind
has its own variant, tagged by ``kind``, and every variant exposes a single
primary scalar used for ranking.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field
from typing_extensions import TypeAlias

from .base import CodeduelBaseModel, FrozenModel


class BenchmarkResult(CodeduelBaseModel):
    """One benchmark case from a benchmark run."""

    name: str = "benchmark"
    hz: float = 0.0
    mean: float | None = None
    p75: float | None = None
    p99: float | None = None


class FunctionMetrics(FrozenModel):
    """Benchmark metrics for a function challenge."""

    kind: Literal["function"] = "function"
    benchmarks: list[BenchmarkResult] = Field(default_factory=list)

    @property
    def primary(self) -> float:
        """Operations per second of the first benchmark, or 0 if none ran."""
        if not self.benchmarks:
            return 0.0
        return self.benchmarks[0].hz


class ComponentMetrics(FrozenModel):
    """Render metrics for a component challenge."""

    kind: Literal["component"] = "component"
    fps: float = 0.0
    avg_render_time: float = 0.0
    bundle_size: int = 0

    @property
    def primary(self) -> float:
        """Frames per second."""
        return self.fps


Metrics: TypeAlias = Annotated[
    Union[FunctionMetrics, ComponentMetrics],
    Field(discriminator="kind"),
]

MetricsPayload: TypeAlias = Union[FunctionMetrics, ComponentMetrics]


def primary_metric(metrics: FunctionMetrics | ComponentMetrics | None) -> float:
    """Primary ranking scalar for a metrics payload (0 when missing)."""
    if metrics is None:
        return 0.0
    return metrics.primary


def metric_unit(metrics: FunctionMetrics | ComponentMetrics | None) -> str:
    """Display unit of the primary metric."""
    if isinstance(metrics, ComponentMetrics):
        return "fps"
    return "ops/sec"


class Improvement(FrozenModel):
    """How a refined solution compares with the round's winner."""

    improved: bool
    baseline: float
    value: float
    delta_percent: float
    description: str


def compute_improvement(
    baseline: FunctionMetrics | ComponentMetrics | None,
    refined: FunctionMetrics | ComponentMetrics | None,
) -> Improvement:
    """Compare a refined metric against the winner's baseline metric."""
    base = primary_metric(baseline)
    value = primary_metric(refined)
    unit = metric_unit(refined if refined is not None else baseline)

    if base > 0:
        delta = (value - base) / base * 100
    else:
        delta = 0.0 if value == 0 else 100.0

    improved = value > base
    if improved:
        description = f"+{delta:.1f}% ({base:,.0f} -> {value:,.0f} {unit})"
    elif value == base:
        description = f"no change ({value:,.0f} {unit})"
    else:
        description = f"{delta:.1f}% ({base:,.0f} -> {value:,.0f} {unit})"

    return Improvement(
        improved=improved,
        baseline=base,
        value=value,
        delta_percent=round(delta, 2),
        description=description,
    )
