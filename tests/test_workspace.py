# Copyright (c) Syntropy Systems
"""Tests for per-job scratch workspaces."""

import pytest

from codeduel.challenges import Challenge, ExternalRepo
from codeduel.errors import WorkspaceError
from codeduel.workspace import TempWorkspaceProvider


class TestTempWorkspaceProvider:
    """Tests for building and releasing workspaces."""

    @pytest.mark.asyncio
    async def test_local_challenge_is_copied(self, challenge, temp_dir):
        (challenge.root / "node_modules" / "vitest").mkdir(parents=True)
        (challenge.root / "solutions").mkdir()
        provider = TempWorkspaceProvider(temp_dir / "ws")

        workspace = await provider.acquire(challenge, "job1")
        assert workspace.root.parent == temp_dir / "ws"
        assert workspace.root.name.startswith("add-job1-")
        assert (workspace.root / "prompt.md").exists()
        assert workspace.test_path == workspace.root / "spec.test.ts"
        assert workspace.solution_path == workspace.root / "solution.ts"
        assert not (workspace.root / "solutions").exists()
        assert (workspace.root / "node_modules").is_symlink()

        await workspace.release()
        await workspace.release()
        assert not workspace.root.exists()

    @pytest.mark.asyncio
    async def test_kept_for_debugging(self, challenge, temp_dir):
        provider = TempWorkspaceProvider(temp_dir / "ws")
        workspace = await provider.acquire(challenge, "job1", keep=True)
        await workspace.release()
        assert workspace.root.exists()

    @pytest.mark.asyncio
    async def test_jobs_get_separate_directories(self, challenge, temp_dir):
        provider = TempWorkspaceProvider(temp_dir / "ws")
        first = await provider.acquire(challenge, "job1")
        second = await provider.acquire(challenge, "job2")
        assert first.root != second.root

    @pytest.mark.asyncio
    async def test_external_repo(self, challenges_dir, temp_dir):
        repo = temp_dir / "repo"
        (repo / "src" / "__tests__" / "fixtures").mkdir(parents=True)
        _ = (repo / "src" / "__tests__" / "sort.test.ts").write_text("test")
        _ = (repo / "src" / "__tests__" / "fixtures" / "data.json").write_text("[]")
        (repo / "lib").mkdir()
        _ = (repo / "lib" / "util.ts").write_text("export {}")
        _ = (repo / "package.json").write_text("{}")
        challenge = Challenge(
            id="sort",
            root=challenges_dir / "add",
            external_repo=ExternalRepo(
                path=str(repo),
                test_path="src/__tests__/sort.test.ts",
                solution_path="src/sort.ts",
                copy_paths=["lib", "missing"],
            ),
        )

        workspace = await TempWorkspaceProvider(temp_dir / "ws").acquire(challenge, "j")
        root = workspace.root
        assert workspace.test_path == root / "src" / "__tests__" / "sort.test.ts"
        assert workspace.test_path.exists()
        assert (root / "src" / "__tests__" / "fixtures" / "data.json").exists()
        assert workspace.solution_path == root / "src" / "sort.ts"
        assert workspace.solution_path.parent.is_dir()
        assert (root / "lib" / "util.ts").exists()
        assert (root / "vitest.config.ts").exists()
        assert (root / "package.json").exists()

    @pytest.mark.asyncio
    async def test_failure_is_wrapped(self, temp_dir):
        blocker = temp_dir / "ws"
        _ = blocker.write_text("not a directory")
        challenge = Challenge(id="add", root=temp_dir / "missing")
        with pytest.raises(WorkspaceError):
            _ = await TempWorkspaceProvider(blocker).acquire(challenge, "j")
