# Copyright (c) Syntropy Systems
"""Configuration management for codeduel."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, cast

import yaml

DIR_NAME = ".codeduel"


@dataclass
class CodeduelConfig:
    """Configuration for codeduel."""

    # Jobs allowed to run at the same time; the rest wait in FIFO order
    max_concurrent_jobs: int = 2

    # Seconds a finished job stays queryable before it is evicted
    job_retention_seconds: int = 3600

    default_models: list[str] = field(default_factory=lambda: ["sonnet", "gpt4"])
    default_max_attempts: int = 5

    # Characters of failure text carried into the next prompt
    feedback_limit: int = 500

    # Wall-clock bound on each generate/execute call (None = no bound)
    attempt_timeout: Optional[float] = None

    # Kill test, bench and generator commands after this many seconds
    command_timeout: float = 300

    # Model id -> argv that reads a prompt on stdin and writes a reply to stdout
    generators: dict[str, list[str]] = field(default_factory=dict)

    challenges_dir: Optional[Path] = None


def find_codeduel_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .codeduel directory by walking up from start_path.

    Returns None if no .codeduel directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        candidate = current / DIR_NAME
        if candidate.is_dir():
            return candidate
        current = current.parent

    # Check root
    candidate = current / DIR_NAME
    if candidate.is_dir():
        return candidate

    return None


def get_global_config_dir() -> Path:
    """Get the global codeduel config directory (~/.codeduel)."""
    return Path.home() / DIR_NAME


def _str_list(value: object) -> Optional[list[str]]:
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return cast("list[str]", value)
    return None


def load_config(codeduel_dir: Path | None = None) -> CodeduelConfig:
    """Load configuration from .codeduel/config.yaml or defaults.

    Looks for config in:
    1. Provided codeduel_dir
    2. Nearest .codeduel directory walking up
    3. ~/.codeduel/config.yaml
    4. Defaults
    """
    config = CodeduelConfig()

    config_path = None

    if codeduel_dir is not None:
        config_path = codeduel_dir / "config.yaml"
    else:
        found_dir = find_codeduel_dir()
        if found_dir is not None:
            config_path = found_dir / "config.yaml"
        else:
            global_config = get_global_config_dir() / "config.yaml"
            if global_config.exists():
                config_path = global_config

    if config_path is None or not config_path.exists():
        return config

    with config_path.open() as f:
        data = cast("dict[str, object]", yaml.safe_load(f) or {})

    max_concurrent_jobs = data.get("max_concurrent_jobs")
    if isinstance(max_concurrent_jobs, int) and max_concurrent_jobs > 0:
        config.max_concurrent_jobs = max_concurrent_jobs
    job_retention_seconds = data.get("job_retention_seconds")
    if isinstance(job_retention_seconds, (int, float)):
        config.job_retention_seconds = int(job_retention_seconds)
    default_models = _str_list(data.get("default_models"))
    if default_models:
        config.default_models = default_models
    default_max_attempts = data.get("default_max_attempts")
    if isinstance(default_max_attempts, int) and default_max_attempts > 0:
        config.default_max_attempts = default_max_attempts
    feedback_limit = data.get("feedback_limit")
    if isinstance(feedback_limit, int) and feedback_limit > 0:
        config.feedback_limit = feedback_limit
    attempt_timeout = data.get("attempt_timeout")
    if isinstance(attempt_timeout, (int, float)) and attempt_timeout > 0:
        config.attempt_timeout = float(attempt_timeout)
    command_timeout = data.get("command_timeout")
    if isinstance(command_timeout, (int, float)) and command_timeout > 0:
        config.command_timeout = float(command_timeout)

    generators = data.get("generators")
    if isinstance(generators, dict):
        for model, argv in generators.items():
            command = _str_list(argv)
            if command:
                config.generators[str(model)] = command

    challenges_dir = data.get("challenges_dir")
    if isinstance(challenges_dir, str):
        path = Path(challenges_dir).expanduser()
        if not path.is_absolute():
            path = config_path.parent.parent / path
        config.challenges_dir = path

    return config


def require_codeduel_dir() -> Path:
    """Get codeduel directory or raise an error if not found."""
    codeduel_dir = find_codeduel_dir()
    if codeduel_dir is None:
        msg = "No .codeduel directory found. Run 'codeduel init' first."
        raise RuntimeError(msg)
    return codeduel_dir


def get_challenges_dir(
    codeduel_dir: Path | None = None,
    config: CodeduelConfig | None = None,
) -> Path:
    """Get the directory challenges are resolved against."""
    if config is not None and config.challenges_dir is not None:
        return config.challenges_dir
    if codeduel_dir is None:
        codeduel_dir = require_codeduel_dir()
    return codeduel_dir / "challenges"


def get_results_dir(codeduel_dir: Path | None = None) -> Path:
    """Get the path to the results history directory."""
    if codeduel_dir is None:
        codeduel_dir = require_codeduel_dir()
    return codeduel_dir / "results"


def get_workspaces_dir(codeduel_dir: Path | None = None) -> Path:
    """Get the path to the scratch workspace directory."""
    if codeduel_dir is None:
        codeduel_dir = require_codeduel_dir()
    return codeduel_dir / "workspaces"
