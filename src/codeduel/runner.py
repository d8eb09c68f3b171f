# Copyright (c) Syntropy Systems
"""Async subprocess runner for test, benchmark and generator commands."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command."""

    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False
    spawn_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.spawn_error is None

    @property
    def output(self) -> str:
        """stdout followed by stderr."""
        return self.stdout + self.stderr


def expand_argv(argv: Sequence[str], values: Mapping[str, object]) -> list[str]:
    """Substitute ``{name}`` placeholders in each argument.

    Unknown placeholders are left untouched.
    """
    expanded: list[str] = []
    for arg in argv:
        for key, value in values.items():
            arg = arg.replace("{" + key + "}", str(value))
        expanded.append(arg)
    return expanded


async def run_command(
    argv: Sequence[str],
    cwd: Optional[Path] = None,
    *,
    stdin: Optional[str] = None,
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """Run a command to completion, killing it if it outlives ``timeout``."""
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    start = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning("Failed to spawn %s: %s", argv[0] if argv else "<empty>", e)
        return CommandResult(
            exit_code=None,
            stdout="",
            stderr="",
            duration_ms=(time.monotonic() - start) * 1000,
            spawn_error=str(e),
        )

    input_bytes = stdin.encode() if stdin is not None else None
    timed_out = False
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input_bytes),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        timed_out = True
        process.kill()
        _ = await process.wait()
        stdout, stderr = b"", b""
        logger.warning("Command timed out after %ss: %s", timeout, argv[0])

    return CommandResult(
        exit_code=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        duration_ms=(time.monotonic() - start) * 1000,
        timed_out=timed_out,
    )
