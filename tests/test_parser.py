# Copyright (c) Syntropy Systems
"""Tests for the vitest output parser."""

import json

import pytest

from codeduel.parser import (
    INVALID_INPUT_ERROR,
    extract_expected_received,
    parse_evidence,
    parse_report,
    parse_report_string,
    parse_transcript,
)
from conftest import vitest_report


class TestExtractExpectedReceived:
    """Tests for pulling expected/received values out of assertion text."""

    def test_labelled_values(self):
        message = "AssertionError: values differ\nExpected: 4\nReceived: 5\n"
        assert extract_expected_received(message) == ("4", "5")

    def test_labels_are_case_insensitive(self):
        assert extract_expected_received("expected: [1, 2]") == ("[1, 2]", None)

    def test_to_be_phrase(self):
        message = "AssertionError: expected 5 to be 4"
        assert extract_expected_received(message) == ("4", "5")

    def test_to_equal_phrase_strips_trailing_punctuation(self):
        message = "expected [ 1 ] to equal [ 2 ].\n    at spec.test.ts:4"
        assert extract_expected_received(message) == ("[ 2 ]", "[ 1 ]")

    def test_to_be_wins_when_first(self):
        message = "expected 'a' to be 'b' to equal 'c'"
        expected, received = extract_expected_received(message)
        assert received == "'a'"
        assert expected == "'b' to equal 'c'"

    def test_no_assertion_shape(self):
        assert extract_expected_received("TypeError: add is not a function") == (None, None)

    def test_expected_without_verb(self):
        assert extract_expected_received("expected something else") == (None, None)

    def test_labels_do_not_read_the_next_line(self):
        assert extract_expected_received("Expected:\nReceived: 5") == (None, "5")


class TestParseReport:
    """Tests for decoded JSON reports."""

    def test_passing_report(self):
        output = parse_report(vitest_report(True))
        assert output.passed is True
        assert output.num_tests == 3
        assert output.num_passed == 3
        assert output.num_failed == 0
        assert output.failures == []

    def test_failing_assertions(self):
        report = vitest_report(
            False,
            [
                ("add > handles negatives", "AssertionError: expected -1 to be 1"),
                ("add > handles zero", "Expected: 0\nReceived: NaN"),
            ],
        )
        output = parse_report(report)
        assert output.passed is False
        assert output.num_failed == 2
        assert [f.test_name for f in output.failures] == [
            "add > handles negatives",
            "add > handles zero",
        ]
        assert output.failures[0].expected == "1"
        assert output.failures[0].received == "-1"
        assert output.failures[1].expected == "0"
        assert output.failures[1].received == "NaN"

    def test_suite_level_error_uses_file_basename(self):
        report = {
            "success": False,
            "testResults": [
                {
                    "name": "/tmp/ws/spec.test.ts",
                    "status": "failed",
                    "message": "Cannot find module './solution'",
                    "assertionResults": [],
                }
            ],
        }
        output = parse_report(report)
        assert len(output.failures) == 1
        assert output.failures[0].test_name == "spec.test.ts"
        assert "Cannot find module" in output.failures[0].error

    def test_case_name_falls_back_to_title_then_unknown(self):
        report = {
            "success": False,
            "testResults": [
                {
                    "assertionResults": [
                        {"title": "only title", "status": "failed"},
                        {"status": "failed", "failureMessages": []},
                    ]
                }
            ],
        }
        output = parse_report(report)
        assert [f.test_name for f in output.failures] == ["only title", "unknown"]
        assert all(f.error == "Test failed" for f in output.failures)

    def test_multiple_failure_messages_are_joined(self):
        report = {
            "testResults": [
                {
                    "assertionResults": [
                        {"fullName": "x", "status": "failed", "failureMessages": ["a", "b"]}
                    ]
                }
            ]
        }
        assert parse_report(report).failures[0].error == "a\nb"

    def test_success_must_be_true(self):
        assert parse_report({"success": "yes"}).passed is False
        assert parse_report({}).passed is False

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (7, 7),
            (7.9, 7),
            (True, 0),
            ("7", 0),
            (float("nan"), 0),
            (float("inf"), 0),
            (None, 0),
            (-5, 0),
            (-2.5, 0),
        ],
    )
    def test_counts_are_sanitized(self, value, expected):
        assert parse_report({"numTotalTests": value}).num_tests == expected

    def test_malformed_entries_are_skipped(self):
        report = {
            "success": False,
            "testResults": [
                "not a suite",
                {"assertionResults": "nope"},
                {"assertionResults": [42, {"fullName": "real", "status": "failed"}]},
            ],
        }
        output = parse_report(report)
        assert [f.test_name for f in output.failures] == ["real"]

    @pytest.mark.parametrize("value", [None, 3, "text", [1, 2]])
    def test_non_mapping_is_invalid_input(self, value):
        output = parse_report(value)
        assert output.passed is False
        assert output.failures[0].test_name == "parse"
        assert output.failures[0].error == INVALID_INPUT_ERROR


class TestParseReportString:
    """Tests for JSON reports in string form."""

    def test_valid_json(self):
        output = parse_report_string(json.dumps(vitest_report(True)))
        assert output.passed is True

    def test_invalid_json_keeps_a_preview(self):
        text = "not json " * 50
        output = parse_report_string(text)
        assert output.passed is False
        assert output.failures[0].test_name == "parse"
        assert output.failures[0].error == f"Failed to parse JSON: {text[:200]}"


SUMMARY_TRANSCRIPT = """\
 RUN  v1.2.0 /tmp/ws

 ✓ add > adds positives (2 ms)
 × add > adds negatives (3 ms)
   AssertionError: expected -3 to be -1
   at spec.test.ts:9:20
 ✓ add > adds zero

 Tests  1 failed | 2 passed (3)
"""


class TestParseTranscript:
    """Tests for console transcripts."""

    def test_summary_and_failures(self):
        output = parse_transcript(SUMMARY_TRANSCRIPT)
        assert output is not None
        assert output.passed is False
        assert output.num_failed == 1
        assert output.num_passed == 2
        assert output.num_tests == 3
        assert len(output.failures) == 1
        failure = output.failures[0]
        assert failure.test_name == "add > adds negatives"
        assert "expected -3 to be -1" in failure.error
        assert "spec.test.ts:9:20" in failure.error
        assert failure.expected == "-1"
        assert failure.received == "-3"
        assert output.transcript == SUMMARY_TRANSCRIPT

    def test_all_passed_summary(self):
        output = parse_transcript(" ✓ add\n\n Tests  4 passed (4)\n")
        assert output is not None
        assert output.passed is True
        assert output.num_passed == 4
        assert output.failures == []

    def test_marker_without_error_lines(self):
        output = parse_transcript(" ✕ add > breaks\n ✓ add > works\n")
        assert output is not None
        assert output.failures[0].error == "Test failed"

    def test_multiplication_sign_inside_error_is_not_a_marker(self):
        text = (
            " ✕ multiplies (3 ms)\n"
            "   AssertionError: expected '2 × 3' to be '6'\n"
            " Tests 1 failed | 2 passed\n"
        )
        output = parse_transcript(text)
        assert output is not None
        assert [f.test_name for f in output.failures] == ["multiplies"]
        assert "2 × 3" in output.failures[0].error
        assert output.num_failed == 1

    def test_markers_without_summary_count_as_failed(self):
        output = parse_transcript(" ✕ one\n   boom\n ✕ two\n   bang\n")
        assert output is not None
        assert output.passed is False
        assert output.num_failed == 2
        assert [f.test_name for f in output.failures] == ["one", "two"]

    @pytest.mark.parametrize("text", ["", "npm ERR! missing script", None, 12])
    def test_unrecognized_text(self, text):
        assert parse_transcript(text) is None


class TestParseEvidence:
    """Tests for dispatching on executor evidence."""

    def test_mapping(self):
        assert parse_evidence(vitest_report(True)).passed is True

    def test_json_string(self):
        text = json.dumps(vitest_report(False, [("t", "boom")]))
        output = parse_evidence(text)
        assert output.failures[0].test_name == "t"

    def test_transcript_string(self):
        output = parse_evidence(SUMMARY_TRANSCRIPT)
        assert output.num_failed == 1

    def test_unparseable_text_uses_executor_verdict(self):
        output = parse_evidence("Segmentation fault", passed=False)
        assert output.passed is False
        assert output.failures[0].test_name == "unknown"
        assert output.failures[0].error == "Segmentation fault"

        assert parse_evidence("all good", passed=True).passed is True

    def test_missing_evidence(self):
        output = parse_evidence(None)
        assert output.passed is False
        assert output.failures[0].error == "Tests failed"
