# Copyright (c) Syntropy Systems
"""Test-result parsing.

Turns raw execution evidence into a :class:`ParsedTestOutput`. Two shapes of
evidence are understood:

- a structured vitest JSON report (``--reporter=json``), either already
  decoded or as a string
- an unstructured vitest console transcript

Every entry point here is used inside the retry feedback path, so none of
them raise. Malformed fields fall back to zero or empty values.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping, Sequence
from pathlib import PurePosixPath
from typing import Optional

from codeduel.models.testing import ParsedTestOutput, TestFailure

logger = logging.getLogger(__name__)

INVALID_INPUT_ERROR = "Invalid JSON input"
PARSE_ERROR_PREVIEW = 200
EVIDENCE_PREVIEW = 2000

_EXPECTED_KEY = re.compile(r"expected:[ \t]*(.*?)[ \t]*(?:\n|$)", re.IGNORECASE)
_RECEIVED_KEY = re.compile(r"received:[ \t]*(.*?)[ \t]*(?:\n|$)", re.IGNORECASE)

_SUMMARY = re.compile(r"Tests\s+(\d+)\s+failed\s*\|\s*(\d+)\s+passed", re.IGNORECASE)
_SUMMARY_ALL_PASSED = re.compile(r"Tests\s+(\d+)\s+passed", re.IGNORECASE)
_FAILURE_MARKER = re.compile(r"^\s*[✕×]\s+(.+?)(?:\s+\(\d+\s*ms\))?$")
_RESULT_MARKER = re.compile(r"^[✓✕×]\s+")
_SUMMARY_LINE = re.compile(r"^Tests\s+")


def invalid_input_output() -> ParsedTestOutput:
    """Sentinel output for evidence that is not a report object at all."""
    return ParsedTestOutput(
        passed=False,
        failures=[TestFailure(test_name="parse", error=INVALID_INPUT_ERROR)],
    )


def extract_expected_received(message: str) -> tuple[Optional[str], Optional[str]]:
    """Pull expected/received values out of an assertion message.

    Returns ``(expected, received)``; either may be None.
    """
    expected_match = _EXPECTED_KEY.search(message)
    received_match = _RECEIVED_KEY.search(message)
    if expected_match or received_match:
        expected = (expected_match.group(1).strip() or None) if expected_match else None
        received = (received_match.group(1).strip() or None) if received_match else None
        return expected, received

    # "expected <received> to be <expected>" / "expected <received> to equal <expected>"
    start = message.find("expected ")
    if start == -1:
        return None, None
    start += len("expected ")

    to_be = message.find(" to be ", start)
    to_equal = message.find(" to equal ", start)
    if to_be != -1 and (to_equal == -1 or to_be < to_equal):
        split, phrase = to_be, " to be "
    elif to_equal != -1:
        split, phrase = to_equal, " to equal "
    else:
        return None, None

    received = message[start:split].strip()
    end = message.find("\n", split + len(phrase))
    if end == -1:
        end = len(message)
    expected = message[split + len(phrase) : end].strip()
    if expected.endswith((".", ",")):
        expected = expected[:-1]
    return expected, received


def _failure(test_name: str, error: str) -> TestFailure:
    expected, received = extract_expected_received(error)
    return TestFailure(
        test_name=test_name,
        error=error,
        expected=expected,
        received=received,
    )


def _count(value: object) -> int:
    # bool is an int subclass but never a count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        value = int(value)
    return max(value, 0)


def _case_name(case: Mapping[str, object]) -> str:
    full_name = case.get("fullName")
    if isinstance(full_name, str):
        return full_name
    title = case.get("title")
    if isinstance(title, str):
        return title
    return "unknown"


def _case_error(case: Mapping[str, object]) -> str:
    messages = case.get("failureMessages")
    if isinstance(messages, Sequence) and not isinstance(messages, str):
        texts = [m for m in messages if isinstance(m, str)]
        if texts:
            return "\n".join(texts)
    return "Test failed"


def _suite_name(suite: Mapping[str, object]) -> str:
    name = suite.get("name")
    if isinstance(name, str):
        return PurePosixPath(name).name or name
    return "unknown"


def _as_list(value: object) -> list[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return list(value)
    return []


def _parse_report(report: Mapping[str, object]) -> ParsedTestOutput:
    failures: list[TestFailure] = []

    for suite in _as_list(report.get("testResults")):
        if not isinstance(suite, Mapping):
            continue

        # Suite-level error, e.g. the solution module failed to import
        message = suite.get("message")
        if suite.get("status") == "failed" and isinstance(message, str):
            failures.append(_failure(_suite_name(suite), message))

        for case in _as_list(suite.get("assertionResults")):
            if not isinstance(case, Mapping):
                continue
            if case.get("status") == "failed":
                failures.append(_failure(_case_name(case), _case_error(case)))

    return ParsedTestOutput(
        passed=report.get("success") is True,
        num_tests=_count(report.get("numTotalTests")),
        num_passed=_count(report.get("numPassedTests")),
        num_failed=_count(report.get("numFailedTests")),
        failures=failures,
    )


def parse_report(report: object) -> ParsedTestOutput:
    """Parse a decoded vitest JSON report.

    Anything that is not a mapping yields the invalid-input sentinel.
    """
    if not isinstance(report, Mapping):
        return invalid_input_output()
    try:
        return _parse_report(report)
    except Exception:
        logger.warning("Unreadable test report", exc_info=True)
        return invalid_input_output()


def parse_report_string(text: object) -> ParsedTestOutput:
    """Parse a vitest JSON report from its string form."""
    if not isinstance(text, str):
        return invalid_input_output()
    try:
        decoded = json.loads(text)
    except (ValueError, RecursionError):
        return ParsedTestOutput(
            passed=False,
            failures=[
                TestFailure(
                    test_name="parse",
                    error=f"Failed to parse JSON: {text[:PARSE_ERROR_PREVIEW]}",
                )
            ],
        )
    return parse_report(decoded)


def parse_transcript(text: object) -> ParsedTestOutput | None:
    """Parse a vitest console transcript.

    Returns None when the text has neither a summary line nor any failure
    marker, meaning it does not look like vitest output at all.
    """
    if not isinstance(text, str) or not text:
        return None
    try:
        return _parse_transcript(text)
    except Exception:
        logger.warning("Unreadable test transcript", exc_info=True)
        return None


def _parse_transcript(text: str) -> ParsedTestOutput | None:
    num_passed = 0
    num_failed: int | None = None

    summary = _SUMMARY.search(text)
    if summary:
        num_failed = int(summary.group(1))
        num_passed = int(summary.group(2))
    else:
        all_passed = _SUMMARY_ALL_PASSED.search(text)
        if all_passed:
            num_failed = 0
            num_passed = int(all_passed.group(1))

    failures: list[TestFailure] = []
    seen_marker = False
    current: str | None = None
    error_lines: list[str] = []

    def flush() -> None:
        if current is None:
            return
        error = "\n".join(error_lines).strip() or "Test failed"
        failures.append(_failure(current, error))

    for line in text.splitlines():
        marker = _FAILURE_MARKER.match(line)
        if marker:
            flush()
            seen_marker = True
            current = marker.group(1).strip()
            error_lines = []
            continue

        if current is None:
            continue

        stripped = line.strip()
        if _RESULT_MARKER.match(stripped) or _SUMMARY_LINE.match(stripped):
            flush()
            current = None
            error_lines = []
        elif stripped:
            error_lines.append(line)

    flush()

    if num_failed is None and not seen_marker:
        return None
    if num_failed is None:
        num_failed = len(failures)

    return ParsedTestOutput(
        passed=num_failed == 0 and not failures,
        num_tests=num_passed + num_failed,
        num_passed=num_passed,
        num_failed=num_failed,
        failures=failures,
        transcript=text,
    )


def _verdict_output(passed: bool, evidence: str) -> ParsedTestOutput:
    """Build an output from the executor's own verdict when nothing parsed."""
    if passed:
        return ParsedTestOutput(passed=True, transcript=evidence or None)
    error = evidence[:EVIDENCE_PREVIEW] if evidence else "Tests failed"
    return ParsedTestOutput(
        passed=False,
        num_failed=1,
        failures=[TestFailure(test_name="unknown", error=error)],
        transcript=evidence or None,
    )


def parse_evidence(evidence: object, passed: bool = False) -> ParsedTestOutput:
    """Parse whatever an executor returned.

    A mapping is read as a decoded report. A string is tried as a JSON report
    first and as a console transcript second. If neither fits, the
    executor's own ``passed`` verdict is used with the raw text as the error.
    """
    if isinstance(evidence, Mapping):
        return parse_report(evidence)
    if not isinstance(evidence, str):
        return _verdict_output(passed, "")

    stripped = evidence.strip()
    if stripped.startswith("{"):
        try:
            decoded = json.loads(stripped)
        except (ValueError, RecursionError):
            decoded = None
        if isinstance(decoded, Mapping):
            return parse_report(decoded)

    transcript = parse_transcript(evidence)
    if transcript is not None:
        return transcript
    return _verdict_output(passed, evidence)
