# Copyright (c) Syntropy Systems
"""Tests for challenge discovery, configuration and validation."""

import pytest
import yaml

from codeduel.challenges import (
    COMPONENT_THRESHOLDS,
    DEFAULT_TEST_COMMAND,
    FIRST_ATTEMPT_FEEDBACK,
    list_challenges,
    load_challenge,
    register_external,
    resolve_challenge_path,
    validate_challenge,
)
from codeduel.errors import StructuralValidationError
from conftest import write_challenge


class TestLoadChallenge:
    """Tests for resolving and loading challenges."""

    def test_plain_function_challenge(self, challenges_dir):
        challenge = load_challenge(challenges_dir, "add")
        assert challenge.id == "add"
        assert challenge.kind == "function"
        assert challenge.display_name == "add"
        assert challenge.test_command == DEFAULT_TEST_COMMAND
        assert challenge.bench_command is None
        assert challenge.solution_file == "solution.ts"

    def test_bench_file_enables_default_bench_command(self, challenges_dir):
        _ = (challenges_dir / "add" / "spec.bench.ts").write_text("bench")
        challenge = load_challenge(challenges_dir, "add")
        assert challenge.bench_command is not None
        assert "bench" in challenge.bench_command

    def test_component_detected_from_extension(self, challenges_dir):
        root = challenges_dir / "counter"
        root.mkdir()
        _ = (root / "prompt.md").write_text("Build a counter")
        _ = (root / "spec.test.tsx").write_text("test")
        challenge = load_challenge(challenges_dir, "counter")
        assert challenge.kind == "component"
        assert challenge.extension == "tsx"
        assert challenge.thresholds == COMPONENT_THRESHOLDS

    def test_config_file(self, challenges_dir):
        config = {
            "name": "Fast Add",
            "generation_timeout": 30,
            "test_command": ["npm", "test"],
            "performance_thresholds": {"min_fps": 30},
        }
        with (challenges_dir / "add" / "challenge.yaml").open("w") as f:
            yaml.dump(config, f)
        challenge = load_challenge(challenges_dir, "add")
        assert challenge.display_name == "Fast Add"
        assert challenge.generation_timeout == 30
        assert challenge.test_command == ["npm", "test"]
        assert challenge.thresholds.min_fps == 30

    def test_missing_challenge(self, challenges_dir):
        with pytest.raises(StructuralValidationError) as exc_info:
            _ = load_challenge(challenges_dir, "nope")
        assert "Challenge directory not found" in str(exc_info.value)
        assert exc_info.value.challenge == "nope"

    def test_incomplete_challenge(self, challenges_dir):
        (challenges_dir / "empty").mkdir()
        with pytest.raises(StructuralValidationError) as exc_info:
            _ = load_challenge(challenges_dir, "empty")
        assert len(exc_info.value.errors) == 2

    def test_bad_config_file(self, challenges_dir):
        _ = (challenges_dir / "add" / "challenge.yaml").write_text("kind: spaceship\n")
        with pytest.raises(StructuralValidationError):
            _ = load_challenge(challenges_dir, "add")

    def test_non_mapping_config_file(self, challenges_dir):
        _ = (challenges_dir / "add" / "challenge.yaml").write_text("- a\n- b\n")
        with pytest.raises(StructuralValidationError) as exc_info:
            _ = load_challenge(challenges_dir, "add")
        assert "must contain a mapping" in str(exc_info.value)


class TestResolution:
    """Tests for where challenge ids point."""

    def test_adhoc_before_plain(self, challenges_dir):
        adhoc = write_challenge(challenges_dir / ".adhoc" / "add")
        assert resolve_challenge_path(challenges_dir, "add") == adhoc

    def test_external_registry_first(self, challenges_dir, temp_dir):
        elsewhere = write_challenge(temp_dir / "elsewhere")
        register_external(challenges_dir, "add", elsewhere)
        assert resolve_challenge_path(challenges_dir, "add") == elsewhere.resolve()

    def test_list_challenges(self, challenges_dir, temp_dir):
        _ = write_challenge(challenges_dir / "sort")
        _ = write_challenge(challenges_dir / ".adhoc" / "quick")
        register_external(challenges_dir, "remote", write_challenge(temp_dir / "remote"))
        assert list_challenges(challenges_dir) == ["add", "quick", "remote", "sort"]


class TestValidateChallenge:
    def test_valid(self, challenges_dir):
        assert validate_challenge(challenges_dir / "add") == []

    def test_missing_directory(self, temp_dir):
        errors = validate_challenge(temp_dir / "ghost")
        assert errors == [f"Challenge directory not found: {temp_dir / 'ghost'}"]


class TestPrompt:
    def test_feedback_placeholder(self, challenge):
        assert FIRST_ATTEMPT_FEEDBACK in challenge.render_prompt()
        rendered = challenge.render_prompt("add > works: boom")
        assert "add > works: boom" in rendered
        assert "{{feedback}}" not in rendered

    def test_archive_paths(self, challenge):
        assert challenge.solution_archive_path("gpt4") == challenge.root / "solutions" / "gpt4.ts"
        assert challenge.solution_archive_path("gpt4", refined=True).name == "gpt4-refined.ts"
