# Copyright (c) Syntropy Systems
"""Solution generation through per-model shell commands.

Each model id maps to an argv. The prompt is written to the command's stdin
and the reply is read from stdout, so any CLI that wraps a model API can be
plugged in.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Optional

from typing_extensions import override

from codeduel.collaborators import Generator
from codeduel.errors import GenerationError
from codeduel.runner import expand_argv, run_command

if TYPE_CHECKING:
    from codeduel.challenges import Challenge

logger = logging.getLogger(__name__)

_PREFERRED_BLOCK = re.compile(
    r"```(?:tsx|typescript|ts|jsx|javascript|js)?\s*\n(.*?)```",
    re.IGNORECASE | re.DOTALL,
)
_ANY_BLOCK = re.compile(r"```\w*\s*\n(.*?)```", re.DOTALL)
_CODE_START = re.compile(
    r"^(import|export|const|let|var|function|class|interface|type|async|//|/\*)"
)


def extract_code(response: str) -> str:
    """Strip prose and markdown fences from a model reply."""
    match = _PREFERRED_BLOCK.search(response)
    if match:
        code = match.group(1).strip()
        if code and not code.startswith("```"):
            return code

    match = _ANY_BLOCK.search(response)
    if match:
        code = match.group(1).strip()
        if code:
            return code

    trimmed = response.strip()
    if _CODE_START.match(trimmed):
        return trimmed

    # Prose followed by code: keep everything from the first code-looking line
    lines = trimmed.split("\n")
    for index, line in enumerate(lines):
        if _CODE_START.match(line.strip()):
            if index > 0:
                return "\n".join(lines[index:]).strip()
            break

    return trimmed


class CommandGenerator(Generator):
    """Generates solutions by running a configured command per model."""

    def __init__(
        self,
        commands: Mapping[str, Sequence[str]],
        timeout: Optional[float] = 300,
    ) -> None:
        self.commands = {model: list(argv) for model, argv in commands.items()}
        self.timeout = timeout

    @property
    def models(self) -> list[str]:
        return list(self.commands)

    @override
    async def generate(
        self,
        model: str,
        challenge: Challenge,
        *,
        feedback: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> str:
        argv = self.commands.get(model)
        if not argv:
            msg = f"Unknown model: {model}"
            raise GenerationError(msg)

        prompt = custom_prompt if custom_prompt is not None else challenge.render_prompt(feedback)
        timeout = challenge.generation_timeout or self.timeout
        result = await run_command(
            expand_argv(argv, {"model": model, "challenge": challenge.id}),
            cwd=challenge.root,
            stdin=prompt,
            timeout=timeout,
        )

        if result.spawn_error is not None:
            msg = f"Failed to start generator for {model}: {result.spawn_error}"
            raise GenerationError(msg)
        if result.timed_out:
            msg = f"Generator for {model} timed out after {timeout}s"
            raise GenerationError(msg)
        if result.exit_code != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            msg = f"Generator for {model} exited with {result.exit_code}: {detail[:300]}"
            raise GenerationError(msg)

        code = extract_code(result.stdout)
        if not code:
            msg = f"Generator for {model} returned an empty response"
            raise GenerationError(msg)
        logger.debug("Generated %d chars for %s", len(code), model)
        return code
