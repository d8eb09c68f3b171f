# Copyright (c) Syntropy Systems
"""Rendering helpers shared by the CLI commands."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.table import Table

from codeduel.models.job import ModelResult
from codeduel.models.metrics import metric_unit, primary_metric
from codeduel.progress import ProgressEvent

STATUS_STYLES = {
    "queued": "yellow",
    "running": "blue",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_time_ago(timestamp: Optional[str]) -> str:
    """Format an ISO timestamp as time ago."""
    if not timestamp:
        return "-"

    try:
        ts = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return "-"
    total_seconds = int((datetime.now(timezone.utc) - ts).total_seconds())

    if total_seconds < 60:
        return "just now"
    elif total_seconds < 3600:
        return f"{total_seconds // 60}m ago"
    elif total_seconds < 86400:
        return f"{total_seconds // 3600}h ago"
    else:
        return f"{total_seconds // 86400}d ago"


def format_metric(result: ModelResult) -> str:
    if result.metrics is None:
        return "-"
    return f"{primary_metric(result.metrics):,.0f} {metric_unit(result.metrics)}"


def results_table(
    results: Sequence[ModelResult],
    title: str,
    winner: Optional[str] = None,
) -> Table:
    """Build a table of per-model results."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", style="dim")
    table.add_column("Model")
    table.add_column("Result")
    table.add_column("Attempts", justify="right")
    table.add_column("Metric", justify="right")
    table.add_column("Notes")

    for rank, result in enumerate(results, start=1):
        model = f"[bold]{result.model}[/bold] *" if result.model == winner else result.model
        outcome = "[green]passed[/green]" if result.passed else "[red]failed[/red]"
        if result.improvement is not None:
            notes = result.improvement.description
        else:
            notes = (result.error or "").splitlines()[0][:60] if result.error else ""
        table.add_row(
            str(rank),
            model,
            outcome,
            str(result.attempts),
            format_metric(result),
            notes,
        )
    return table


def print_event(console: Console, event: ProgressEvent) -> None:
    """Print a one-line summary of a progress event."""
    data = event.data
    if event.type == "progress":
        model = data.get("current_model")
        attempt = data.get("current_attempt")
        phase = data.get("phase") or data.get("status")
        where = f"{model} #{attempt}" if model and attempt else (model or "")
        message = data.get("message") or ""
        console.print(f"  [dim]{phase}[/dim] {where} {message}".rstrip())
    elif event.type in ("result", "refinement_result"):
        label = "refined" if event.type == "refinement_result" else "result"
        outcome = "[green]passed[/green]" if data.get("passed") else "[red]failed[/red]"
        console.print(
            f"[bold]{label}:[/bold] {data.get('model')} {outcome} "
            f"after {data.get('attempts')} attempt(s)"
        )
    elif event.type == "error":
        console.print(f"[red]Error:[/red] {data.get('error')}")
