# Copyright (c) Syntropy Systems
"""codeduel leaderboard command."""
from __future__ import annotations

from collections import Counter

import typer
from rich.console import Console
from rich.table import Table

from codeduel.cli.display import format_time_ago, results_table
from codeduel.config import get_results_dir, require_codeduel_dir
from codeduel.results import CompetitionRecord, ResultsStore, leaderboard as rank

console = Console()


def leaderboard(
    challenge: str = typer.Argument(..., help="Challenge to show"),
    history: bool = typer.Option(
        False,
        "--history",
        help="Summarize wins across every stored competition",
    ),
) -> None:
    """Show the leaderboard for a challenge.

    Ranks the latest competition: passed first, then fewer attempts,
    then higher performance.
    """
    try:
        codeduel_dir = require_codeduel_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    store = ResultsStore(get_results_dir(codeduel_dir))
    records = store.history(challenge)
    if not records:
        console.print(f"[dim]No results for {challenge}[/dim]")
        return

    if history:
        _show_history(challenge, records)
        return

    latest = records[-1]
    console.print(
        f"[bold]{challenge}[/bold] [dim]({latest.kind}, {format_time_ago(latest.timestamp)})[/dim]"
    )
    console.print(results_table(rank(latest.results), "Leaderboard", latest.winner))
    if latest.refinement_results:
        console.print(
            results_table(
                rank(latest.refinement_results),
                "Refinement",
                latest.refinement_winner,
            )
        )


def _show_history(challenge: str, records: list[CompetitionRecord]) -> None:
    """Display per-model wins and pass counts."""
    runs: Counter[str] = Counter()
    passes: Counter[str] = Counter()
    wins: Counter[str] = Counter()
    for record in records:
        for result in record.results:
            runs[result.model] += 1
            if result.passed:
                passes[result.model] += 1
        if record.winner:
            wins[record.winner] += 1

    table = Table(
        title=f"{challenge}: {len(records)} competition(s)",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Model")
    table.add_column("Wins", justify="right")
    table.add_column("Passed", justify="right")
    table.add_column("Runs", justify="right")

    for model in sorted(runs, key=lambda m: (-wins[m], -passes[m], m)):
        table.add_row(model, str(wins[model]), str(passes[model]), str(runs[model]))

    console.print(table)
