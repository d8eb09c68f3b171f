# Copyright (c) Syntropy Systems
"""Normalized test-run output shared by the parser and the attempt loop."""

from __future__ import annotations

from pydantic import Field

from .base import CodeduelBaseModel


class TestFailure(CodeduelBaseModel):
    """A single failing test with optional expected/received values."""

    __test__ = False

    test_name: str
    error: str
    expected: str | None = None
    received: str | None = None

    def describe(self) -> str:
        """One-line description used when flattening feedback into a prompt."""
        return f"{self.test_name}: {self.error}"


class ParsedTestOutput(CodeduelBaseModel):
    """Normalized result of one test run."""

    passed: bool
    num_tests: int = 0
    num_passed: int = 0
    num_failed: int = 0
    failures: list[TestFailure] = Field(default_factory=list)
    transcript: str | None = None
