# Copyright (c) Syntropy Systems
"""Main CLI entry point for codeduel."""

import logging

import typer
from rich.logging import RichHandler

from codeduel.cli.cancel import cancel
from codeduel.cli.compete import compete
from codeduel.cli.init_cmd import init
from codeduel.cli.leaderboard import leaderboard
from codeduel.cli.server_cmd import server
from codeduel.cli.status import status
from codeduel.cli.validate import validate

app = typer.Typer(
    name="codeduel",
    help=(
        "Head-to-head coding competitions between language models. "
        "Generate, test, retry, refine."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
    )


# Register commands
_ = app.command()(init)
_ = app.command()(compete)
_ = app.command()(status)
_ = app.command()(cancel)
_ = app.command()(leaderboard)
_ = app.command()(validate)
_ = app.command()(server)


if __name__ == "__main__":
    app()
