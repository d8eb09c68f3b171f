# Copyright (c) Syntropy Systems
"""codeduel validate command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from codeduel.challenges import list_challenges, load_challenge
from codeduel.config import get_challenges_dir, load_config, require_codeduel_dir
from codeduel.errors import StructuralValidationError

console = Console()


def validate(
    challenge: Optional[str] = typer.Argument(
        None,
        help="Challenge to validate (default: all challenges)",
    ),
) -> None:
    """Check that challenges have a prompt, tests and a readable config."""
    try:
        codeduel_dir = require_codeduel_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    challenges_dir = get_challenges_dir(codeduel_dir, load_config(codeduel_dir))
    names = [challenge] if challenge else list_challenges(challenges_dir)
    if not names:
        console.print(f"[dim]No challenges in {challenges_dir}[/dim]")
        return

    failed = 0
    for name in names:
        try:
            loaded = load_challenge(challenges_dir, name)
        except StructuralValidationError as e:
            failed += 1
            console.print(f"[red]✗[/red] {name}")
            for error in e.errors:
                console.print(f"    {error}")
            continue
        console.print(f"[green]✓[/green] {loaded.display_name} [dim]({loaded.kind})[/dim]")

    if failed:
        raise typer.Exit(1)
