# Copyright (c) Syntropy Systems
"""codeduel cancel command."""
from __future__ import annotations

import typer
from rich.console import Console

from codeduel.cli.status import DEFAULT_SERVER_URL
from codeduel.client import CodeduelClient, CodeduelClientError

console = Console()


def cancel(
    job_id: str = typer.Argument(..., help="Job ID to cancel"),
    server: str = typer.Option(
        DEFAULT_SERVER_URL,
        "--server", "-s",
        envvar="CODEDUEL_SERVER_URL",
        help="codeduel server URL",
    ),
) -> None:
    """Cancel a job.

    For queued jobs: marks as cancelled immediately.
    For running jobs: the job stops at its next checkpoint.
    """
    with CodeduelClient(server) as client:
        job = client.get_job(job_id)
        if job is None:
            console.print(f"[red]Error:[/red] Job {job_id} not found")
            raise typer.Exit(1)

        if job.is_terminal:
            console.print(f"[yellow]Job {job_id} is already {job.status}[/yellow]")
            return

        try:
            result = client.cancel_job(job_id)
        except CodeduelClientError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    if not result.cancelled:
        console.print(f"[yellow]{result.message}[/yellow]")
    elif result.status == "cancelled":
        console.print(f"[green]Cancelled job {job_id}[/green]")
    else:
        console.print(f"[yellow]Cancellation requested for job {job_id}[/yellow]")
        console.print("[dim]The job stops at its next checkpoint[/dim]")
