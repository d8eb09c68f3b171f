# Copyright (c) Syntropy Systems
"""codeduel compete command."""
from __future__ import annotations

import asyncio
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from typing_extensions import override

from codeduel.cli.display import print_event, results_table, styled_status
from codeduel.client import CodeduelClient, CodeduelClientError
from codeduel.config import load_config, require_codeduel_dir
from codeduel.controller import JobController, build_controller
from codeduel.errors import StructuralValidationError
from codeduel.models.job import Job, JobConfig, ModelResult
from codeduel.progress import ProgressEvent, ProgressSink

console = Console()


class ConsoleSink(ProgressSink):
    """Sink that prints each event as it is published."""

    def __init__(self, console: Console) -> None:
        self.console = console

    @override
    def _publish(self, event: ProgressEvent) -> None:
        print_event(self.console, event)


def compete(
    challenge: str = typer.Argument(..., help="Challenge to run"),
    models: Optional[list[str]] = typer.Option(
        None,
        "--model", "-m",
        help="Competing model (repeatable, defaults to the configured models)",
    ),
    max_attempts: Optional[int] = typer.Option(
        None,
        "--max-attempts", "-n",
        min=1,
        help="Attempts per model",
    ),
    refinement: bool = typer.Option(
        False,
        "--refine", "-r",
        help="Run a refinement round after the first pass",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Keep the workspace and record every attempt",
    ),
    server: Optional[str] = typer.Option(
        None,
        "--server", "-s",
        envvar="CODEDUEL_SERVER_URL",
        help="Server URL to run the competition on",
    ),
    detach: bool = typer.Option(
        False,
        "--detach", "-d",
        help="With --server, print the job id and return without waiting",
    ),
) -> None:
    """Run a competition between models on a challenge.

    Each model gets up to --max-attempts tries, with the failing tests fed
    back into its next prompt. Passing models are ranked by performance.

        codeduel compete debounce -m sonnet -m gpt4 --refine
    """
    if server:
        _compete_remote(server, challenge, models, max_attempts, refinement, debug, detach)
    else:
        _compete_local(challenge, models, max_attempts, refinement, debug)


async def _run_local(controller: JobController, job_config: JobConfig, sink: ProgressSink) -> Job:
    job = controller.submit(job_config, sink)
    finished = await controller.wait_for(job.id)
    return finished or job


def _compete_local(
    challenge: str,
    models: Optional[list[str]],
    max_attempts: Optional[int],
    refinement: bool,
    debug: bool,
) -> None:
    """Run the competition in this process."""
    try:
        codeduel_dir = require_codeduel_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    config = load_config(codeduel_dir)
    try:
        job_config = JobConfig(
            challenge=challenge,
            models=models or config.default_models,
            max_attempts=max_attempts or config.default_max_attempts,
            refinement=refinement,
            debug=debug,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    controller = build_controller(config, codeduel_dir)
    console.print(
        f"[bold]{job_config.challenge}[/bold]: {', '.join(job_config.models)} "
        f"[dim](max {job_config.max_attempts} attempts)[/dim]"
    )
    try:
        job = asyncio.run(_run_local(controller, job_config, ConsoleSink(console)))
    except StructuralValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _print_summary(job.results, job.winner, job.refinement_results, job.refinement_winner)
    if job.status != "completed":
        console.print(f"Job {job.id} {styled_status(job.status)}")
        raise typer.Exit(1)


def _compete_remote(
    server_url: str,
    challenge: str,
    models: Optional[list[str]],
    max_attempts: Optional[int],
    refinement: bool,
    debug: bool,
    detach: bool,
) -> None:
    """Run the competition on a codeduel server."""
    with CodeduelClient(server_url) as client:
        try:
            if detach:
                created = client.submit(challenge, models, max_attempts, refinement, debug)
                console.print(f"[green]Submitted job {created.job_id}[/green] ({created.status})")
                console.print(f"  [dim]status:[/dim] codeduel status {created.job_id} --server {server_url}")
                return

            job_id: Optional[str] = None
            for event in client.compete(challenge, models, max_attempts, refinement, debug):
                if job_id is None and isinstance(event.data.get("job_id"), str):
                    job_id = str(event.data["job_id"])
                print_event(console, event)
            job = client.get_job(job_id) if job_id is not None else None
        except CodeduelClientError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    if job is None:
        console.print("[red]Error:[/red] Server did not report a job")
        raise typer.Exit(1)

    _print_summary(job.results, job.winner, job.refinement_results, job.refinement_winner)
    if job.status != "completed":
        console.print(f"Job {job.id} {styled_status(job.status)}")
        raise typer.Exit(1)


def _print_summary(
    results: list[ModelResult],
    winner: Optional[str],
    refinement_results: Optional[list[ModelResult]],
    refinement_winner: Optional[str],
) -> None:
    console.print()
    if results:
        console.print(results_table(results, "Results", winner))
    if refinement_results:
        console.print(results_table(refinement_results, "Refinement", refinement_winner))
    if winner:
        console.print(f"[green]Winner:[/green] {winner}")
    elif results:
        console.print("[yellow]No model passed[/yellow]")
    if refinement_winner:
        console.print(f"[green]Refinement winner:[/green] {refinement_winner}")
