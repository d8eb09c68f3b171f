# Copyright (c) Syntropy Systems
"""CLI command for running the codeduel server."""

from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console

from codeduel.config import find_codeduel_dir, load_config

console = Console()


def server(
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    project: Optional[Path] = typer.Option(
        None,
        "--project",
        envvar="CODEDUEL_DIR",
        help="Path to the .codeduel directory (default: nearest one)",
    ),
    max_concurrent: Optional[int] = typer.Option(
        None,
        "--max-concurrent",
        min=1,
        help="Jobs allowed to run at once (overrides config)",
    ),
) -> None:
    """
    Start the codeduel server.

    Competitions are submitted over HTTP and stream their progress back as
    Server-Sent Events. Jobs beyond the concurrency limit wait in a queue.

    Examples:

        codeduel server --port 8080

        # Bind to all interfaces (for remote access)
        codeduel server --host 0.0.0.0
    """
    codeduel_dir = project or find_codeduel_dir()
    if codeduel_dir is None or not codeduel_dir.is_dir():
        console.print("[red]Error:[/red] No .codeduel directory found. Run 'codeduel init' first.")
        raise typer.Exit(1)

    config = load_config(codeduel_dir)
    if max_concurrent is not None:
        config.max_concurrent_jobs = max_concurrent

    from codeduel.server import create_app

    app = create_app(config=config, codeduel_dir=codeduel_dir)

    console.print("[bold]codeduel server[/bold]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Project: {codeduel_dir}")
    console.print(f"  Max concurrent jobs: {config.max_concurrent_jobs}")
    console.print()

    uvicorn.run(app, host=host, port=port, log_level="info")
