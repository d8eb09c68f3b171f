# Copyright (c) Syntropy Systems
"""Challenge discovery, configuration and validation.

A challenge is a directory holding at least a ``prompt.md`` and a
``spec.test.ts`` (or ``spec.test.tsx``). An optional ``challenge.yaml``
selects the kind, performance thresholds, commands and an external
repository to test against.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, cast

import yaml
from pydantic import Field, ValidationError
from typing_extensions import TypeAlias

from codeduel.errors import StructuralValidationError
from codeduel.models.base import CodeduelBaseModel

logger = logging.getLogger(__name__)

ChallengeKind: TypeAlias = Literal["function", "component"]

CONFIG_FILE = "challenge.yaml"
PROMPT_FILE = "prompt.md"
ADHOC_DIR = ".adhoc"
EXTERNAL_REGISTRY = ".external.json"

FEEDBACK_PLACEHOLDER = "{{feedback}}"
FIRST_ATTEMPT_FEEDBACK = "None - this is your first attempt."

DEFAULT_TEST_COMMAND = ["npx", "vitest", "run", "{test_path}", "--reporter=json"]
DEFAULT_BENCH_COMMAND = [
    "npx",
    "vitest",
    "bench",
    "{bench_path}",
    "--run",
    "--outputJson={output_path}",
]


class PerformanceThresholds(CodeduelBaseModel):
    """Limits a component solution must meet to count as passed."""

    min_fps: Optional[float] = None
    max_render_count: Optional[int] = None
    max_bundle_size: Optional[int] = None
    max_memory_growth: Optional[int] = None


COMPONENT_THRESHOLDS = PerformanceThresholds(
    min_fps=55,
    max_render_count=100,
    max_bundle_size=5 * 1024,
)


class ExternalRepo(CodeduelBaseModel):
    """A repository outside the challenge directory that owns the tests."""

    path: str
    test_path: str
    solution_path: str
    copy_paths: list[str] = Field(default_factory=list)


class ChallengeConfig(CodeduelBaseModel):
    """Contents of ``challenge.yaml``."""

    kind: Optional[ChallengeKind] = None
    name: Optional[str] = None
    performance_thresholds: Optional[PerformanceThresholds] = None
    generation_timeout: Optional[float] = None
    external_repo: Optional[ExternalRepo] = None
    test_command: Optional[list[str]] = None
    bench_command: Optional[list[str]] = None
    perf_command: Optional[list[str]] = None


@dataclass
class Challenge:
    """A resolved challenge ready to run."""

    id: str
    root: Path
    kind: ChallengeKind = "function"
    name: Optional[str] = None
    thresholds: Optional[PerformanceThresholds] = None
    external_repo: Optional[ExternalRepo] = None
    test_command: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))
    bench_command: Optional[list[str]] = None
    perf_command: Optional[list[str]] = None
    generation_timeout: Optional[float] = None

    @property
    def extension(self) -> str:
        return "tsx" if self.kind == "component" else "ts"

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def prompt_path(self) -> Path:
        return self.root / PROMPT_FILE

    @property
    def solution_file(self) -> str:
        return f"solution.{self.extension}"

    @property
    def test_file(self) -> str:
        return f"spec.test.{self.extension}"

    @property
    def bench_file(self) -> Path:
        return self.root / "spec.bench.ts"

    @property
    def solutions_dir(self) -> Path:
        return self.root / "solutions"

    def read_prompt(self) -> str:
        return self.prompt_path.read_text()

    def render_prompt(self, feedback: Optional[str] = None) -> str:
        """Challenge prompt with the feedback placeholder filled in."""
        return self.read_prompt().replace(
            FEEDBACK_PLACEHOLDER,
            feedback or FIRST_ATTEMPT_FEEDBACK,
        )

    def solution_archive_path(self, model: str, refined: bool = False) -> Path:
        suffix = "-refined" if refined else ""
        return self.solutions_dir / f"{model}{suffix}.{self.extension}"


def load_external_registry(challenges_dir: Path) -> dict[str, str]:
    """Load the name -> path registry of challenges living elsewhere."""
    registry_path = challenges_dir / EXTERNAL_REGISTRY
    if not registry_path.exists():
        return {}
    try:
        data = cast("object", json.loads(registry_path.read_text()))
    except ValueError:
        logger.warning("Ignoring malformed registry %s", registry_path)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items()}


def register_external(challenges_dir: Path, name: str, path: Path) -> None:
    """Record a challenge directory that lives outside ``challenges_dir``."""
    registry = load_external_registry(challenges_dir)
    registry[name] = str(path.resolve())
    challenges_dir.mkdir(parents=True, exist_ok=True)
    (challenges_dir / EXTERNAL_REGISTRY).write_text(json.dumps(registry, indent=2))


def resolve_challenge_path(challenges_dir: Path, challenge_id: str) -> Path:
    """Find the directory for a challenge id.

    Checks the external registry, then ``.adhoc/<id>``, then ``<id>``.
    """
    registry = load_external_registry(challenges_dir)
    if challenge_id in registry:
        return Path(registry[challenge_id])
    adhoc = challenges_dir / ADHOC_DIR / challenge_id
    if adhoc.is_dir():
        return adhoc
    return challenges_dir / challenge_id


def detect_kind(root: Path) -> ChallengeKind:
    """Guess the challenge kind from its file extensions."""
    if (root / "solution.tsx").exists() or (root / "spec.test.tsx").exists():
        return "component"
    return "function"


def read_challenge_config(root: Path) -> ChallengeConfig:
    config_path = root / CONFIG_FILE
    if not config_path.exists():
        return ChallengeConfig()
    with config_path.open() as f:
        data = cast("object", yaml.safe_load(f) or {})
    if not isinstance(data, dict):
        msg = f"{CONFIG_FILE} must contain a mapping"
        raise StructuralValidationError([msg], challenge=root.name)
    try:
        return ChallengeConfig.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise StructuralValidationError(errors, challenge=root.name) from e


def validate_challenge(root: Path, config: Optional[ChallengeConfig] = None) -> list[str]:
    """Check that a challenge has everything it needs.

    Returns a list of problems; empty when the challenge is valid.
    """
    errors: list[str] = []
    if not root.is_dir():
        errors.append(f"Challenge directory not found: {root}")
        return errors

    if not (root / PROMPT_FILE).exists():
        errors.append(
            "Missing prompt.md - this file defines the challenge for AI models"
        )

    if not (root / "spec.test.ts").exists() and not (root / "spec.test.tsx").exists():
        errors.append(
            "Missing spec.test.ts or spec.test.tsx - "
            "this file contains the correctness tests"
        )

    if config is not None and config.external_repo is not None:
        ext = config.external_repo
        ext_root = external_root(root, ext)
        if not ext_root.exists():
            errors.append(f"External repo path not found: {ext.path}")
        else:
            test_path = ext_root / ext.test_path
            if not test_path.exists():
                errors.append(
                    f"External test file not found: {ext.test_path} (resolved: {test_path})"
                )

    return errors


def external_root(challenge_root: Path, ext: ExternalRepo) -> Path:
    path = Path(ext.path).expanduser()
    if not path.is_absolute():
        path = challenge_root / path
    return path.resolve()


def load_challenge(challenges_dir: Path, challenge_id: str) -> Challenge:
    """Resolve, validate and load a challenge.

    Raises:
        StructuralValidationError: if the challenge is missing or incomplete.
    """
    root = resolve_challenge_path(challenges_dir, challenge_id)
    if not root.is_dir():
        raise StructuralValidationError(
            [f"Challenge directory not found: {root}"],
            challenge=challenge_id,
        )

    config = read_challenge_config(root)
    errors = validate_challenge(root, config)
    if errors:
        raise StructuralValidationError(errors, challenge=challenge_id)

    kind = config.kind or detect_kind(root)
    thresholds = config.performance_thresholds
    if thresholds is None and kind == "component":
        thresholds = COMPONENT_THRESHOLDS

    bench_command = config.bench_command
    if bench_command is None and kind == "function" and (root / "spec.bench.ts").exists():
        bench_command = list(DEFAULT_BENCH_COMMAND)

    return Challenge(
        id=challenge_id,
        root=root,
        kind=kind,
        name=config.name,
        thresholds=thresholds,
        external_repo=config.external_repo,
        test_command=config.test_command or list(DEFAULT_TEST_COMMAND),
        bench_command=bench_command,
        perf_command=config.perf_command,
        generation_timeout=config.generation_timeout,
    )


def list_challenges(challenges_dir: Path) -> list[str]:
    """Ids of every challenge under ``challenges_dir`` plus registered externals."""
    names: set[str] = set()
    if challenges_dir.is_dir():
        for entry in challenges_dir.iterdir():
            if entry.is_dir() and not entry.name.startswith("."):
                names.add(entry.name)
        adhoc = challenges_dir / ADHOC_DIR
        if adhoc.is_dir():
            names.update(entry.name for entry in adhoc.iterdir() if entry.is_dir())
    names.update(load_external_registry(challenges_dir))
    return sorted(names)
