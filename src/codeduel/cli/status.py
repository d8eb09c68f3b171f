# Copyright (c) Syntropy Systems
"""codeduel status command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from codeduel.cli.display import format_time_ago, results_table, styled_status
from codeduel.client import CodeduelClient, CodeduelClientError
from codeduel.models.api import JobResponse

console = Console()

DEFAULT_SERVER_URL = "http://127.0.0.1:8080"


def status(
    job_id: Optional[str] = typer.Argument(
        None,
        help="Job ID to show details for",
    ),
    server: str = typer.Option(
        DEFAULT_SERVER_URL,
        "--server", "-s",
        envvar="CODEDUEL_SERVER_URL",
        help="codeduel server URL",
    ),
) -> None:
    """
    Show job status on a codeduel server.

    Without arguments, lists every job the server still retains.
    With a job ID, shows progress and results for that job.
    """
    with CodeduelClient(server) as client:
        try:
            if job_id is not None:
                job = client.get_job(job_id)
                if job is None:
                    console.print(f"[red]Error:[/red] Job {job_id} not found")
                    raise typer.Exit(1)
                _show_job_details(job)
            else:
                _show_job_table(client.list_jobs())
        except CodeduelClientError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e


def _show_job_table(jobs: list[JobResponse]) -> None:
    """Display jobs in a table."""
    if not jobs:
        console.print("[dim]No jobs[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Challenge")
    table.add_column("Models")
    table.add_column("Status")
    table.add_column("Winner")
    table.add_column("Submitted")

    for job in jobs:
        table.add_row(
            job.id,
            job.config.challenge,
            ", ".join(job.config.models),
            styled_status(job.status),
            job.winner or "-",
            format_time_ago(job.created_at),
        )

    console.print(table)


def _show_job_details(job: JobResponse) -> None:
    """Display detailed job information."""
    console.print(f"\n[bold]Job {job.id}[/bold]")
    console.print(f"  [dim]challenge:[/dim] {job.config.challenge}")
    console.print(f"  [dim]models:[/dim] {', '.join(job.config.models)}")
    console.print(f"  [dim]status:[/dim] {styled_status(job.status)}")
    console.print(f"  [dim]max attempts:[/dim] {job.config.max_attempts}")
    if job.config.refinement:
        console.print("  [dim]refinement:[/dim] yes")

    console.print()
    console.print(f"  [dim]created:[/dim] {format_time_ago(job.created_at)}")
    if job.started_at:
        console.print(f"  [dim]started:[/dim] {format_time_ago(job.started_at)}")
    if job.completed_at:
        console.print(f"  [dim]finished:[/dim] {format_time_ago(job.completed_at)}")

    progress = job.progress
    if not job.is_terminal and progress.phase:
        where = progress.current_model or "-"
        if progress.current_attempt:
            where += f" attempt {progress.current_attempt}"
        console.print(f"  [dim]phase:[/dim] {progress.phase} ({where})")

    if job.error:
        console.print(f"  [dim]error:[/dim] {job.error}")

    if job.results:
        console.print()
        console.print(results_table(job.results, "Results", job.winner))
    if job.refinement_results:
        console.print(results_table(job.refinement_results, "Refinement", job.refinement_winner))
