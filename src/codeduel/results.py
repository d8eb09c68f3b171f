# Copyright (c) Syntropy Systems
"""Competition history, kept as one JSON file per challenge."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

from pydantic import Field, TypeAdapter, ValidationError

from codeduel.models.base import CodeduelBaseModel
from codeduel.models.job import Job, JobConfig, ModelResult, utc_now
from codeduel.models.metrics import primary_metric

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class CompetitionRecord(CodeduelBaseModel):
    """One finished competition as stored in the history file."""

    challenge: str
    timestamp: str = Field(default_factory=utc_now)
    kind: str = "function"
    config: JobConfig
    results: list[ModelResult] = Field(default_factory=list)
    winner: Optional[str] = None
    refinement_results: Optional[list[ModelResult]] = None
    refinement_winner: Optional[str] = None


_HISTORY_ADAPTER = TypeAdapter(list[CompetitionRecord])


def leaderboard(results: Sequence[ModelResult]) -> list[ModelResult]:
    """Order results: passed first, then fewer attempts, then higher metric."""
    return sorted(
        results,
        key=lambda r: (not r.passed, r.attempts, -primary_metric(r.metrics)),
    )


class ResultsStore:
    """Appends finished competitions to ``<results_dir>/<challenge>.json``."""

    def __init__(self, results_dir: Path, limit: int = HISTORY_LIMIT) -> None:
        self.results_dir = results_dir
        self.limit = limit

    def path_for(self, challenge: str) -> Path:
        return self.results_dir / f"{challenge}.json"

    def history(self, challenge: str) -> list[CompetitionRecord]:
        """All stored records for a challenge, oldest first."""
        path = self.path_for(challenge)
        if not path.exists():
            return []
        try:
            return _HISTORY_ADAPTER.validate_json(path.read_bytes())
        except ValidationError:
            logger.warning("Ignoring unreadable history file %s", path)
            return []

    def latest(self, challenge: str) -> Optional[CompetitionRecord]:
        records = self.history(challenge)
        return records[-1] if records else None

    def append(self, record: CompetitionRecord) -> None:
        records = self.history(record.challenge)
        records.append(record)
        records = records[-self.limit :]
        self.results_dir.mkdir(parents=True, exist_ok=True)
        _ = self.path_for(record.challenge).write_bytes(
            _HISTORY_ADAPTER.dump_json(records, indent=2)
        )

    def record_job(self, job: Job) -> CompetitionRecord:
        """Store a completed job."""
        record = CompetitionRecord(
            challenge=job.config.challenge,
            kind=job.challenge.kind if job.challenge is not None else "function",
            config=job.config,
            results=list(job.results),
            winner=job.winner,
            refinement_results=(
                list(job.refinement_results) if job.refinement_results is not None else None
            ),
            refinement_winner=job.refinement_winner,
        )
        self.append(record)
        return record
