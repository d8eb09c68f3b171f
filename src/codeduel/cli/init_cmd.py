# Copyright (c) Syntropy Systems
"""codeduel init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from codeduel.config import DIR_NAME, CodeduelConfig

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new codeduel project.

    Creates a .codeduel directory with configuration, challenges and results.
    """
    target = path.resolve()
    codeduel_dir = target / DIR_NAME

    if codeduel_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {codeduel_dir}")
        return

    codeduel_dir.mkdir(parents=True)
    challenges_dir = codeduel_dir / "challenges"
    challenges_dir.mkdir()
    results_dir = codeduel_dir / "results"
    results_dir.mkdir()

    defaults = CodeduelConfig()
    config = {
        "max_concurrent_jobs": defaults.max_concurrent_jobs,
        "job_retention_seconds": defaults.job_retention_seconds,
        "default_models": defaults.default_models,
        "default_max_attempts": defaults.default_max_attempts,
        "feedback_limit": defaults.feedback_limit,
        "command_timeout": defaults.command_timeout,
        "generators": {model: ["your-cli", "--model", "{model}"] for model in defaults.default_models},
    }

    config_path = codeduel_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Initialized codeduel project:[/green] {codeduel_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]challenges:[/dim] {challenges_dir}")
    console.print(f"  [dim]results:[/dim] {results_dir}")
