# Copyright (c) Syntropy Systems
"""Per-job workspaces built in a scratch directory."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from typing_extensions import override

from codeduel.challenges import Challenge, external_root
from codeduel.collaborators import Workspace, WorkspaceProvider
from codeduel.errors import WorkspaceError

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset({"node_modules", ".git", "dist", "build", ".next", "solutions"})

DEFAULT_VITEST_CONFIG = """import { defineConfig } from 'vitest/config'

export default defineConfig({
  test: {
    globals: true,
    environment: 'node',
  },
})
"""


def copy_tree(src: Path, dest: Path) -> None:
    """Copy a directory, skipping dependency and build folders."""
    _ = shutil.copytree(
        src,
        dest,
        ignore=lambda _dir, names: [n for n in names if n in SKIP_DIRS],
        dirs_exist_ok=True,
    )


def find_node_modules(start: Path) -> Optional[Path]:
    """Nearest node_modules directory walking up from ``start``."""
    current = start.resolve()
    while True:
        candidate = current / "node_modules"
        if candidate.is_dir():
            return candidate
        if current == current.parent:
            return None
        current = current.parent


class TempWorkspace(Workspace):
    """A scratch directory removed on release unless kept for debugging."""

    def __init__(
        self,
        root: Path,
        solution_path: Path,
        test_path: Path,
        keep: bool = False,
    ) -> None:
        self.root = root
        self.solution_path = solution_path
        self.test_path = test_path
        self.keep = keep
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @override
    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self.keep:
            logger.info("Workspace kept for debugging: %s", self.root)
            return
        await asyncio.to_thread(shutil.rmtree, self.root, ignore_errors=True)


class TempWorkspaceProvider(WorkspaceProvider):
    """Builds each job's workspace under ``base_dir``."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base_dir = base_dir or Path(tempfile.gettempdir()) / "codeduel"

    @override
    async def acquire(
        self,
        challenge: Challenge,
        job_id: str,
        *,
        keep: bool = False,
    ) -> Workspace:
        try:
            return await asyncio.to_thread(self._build, challenge, job_id, keep)
        except OSError as e:
            msg = f"Failed to set up workspace for {challenge.id}: {e}"
            raise WorkspaceError(msg) from e

    def _build(self, challenge: Challenge, job_id: str, keep: bool) -> TempWorkspace:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix=f"{challenge.id}-{job_id}-", dir=self.base_dir))
        logger.debug("Building workspace %s", root)

        try:
            if challenge.external_repo is None:
                workspace = self._build_local(challenge, root, keep)
            else:
                workspace = self._build_external(challenge, root, keep)
        except OSError:
            shutil.rmtree(root, ignore_errors=True)
            raise
        return workspace

    def _build_local(self, challenge: Challenge, root: Path, keep: bool) -> TempWorkspace:
        copy_tree(challenge.root, root)
        _link_node_modules(find_node_modules(challenge.root), root)
        return TempWorkspace(
            root=root,
            solution_path=root / challenge.solution_file,
            test_path=root / challenge.test_file,
            keep=keep,
        )

    def _build_external(self, challenge: Challenge, root: Path, keep: bool) -> TempWorkspace:
        ext = challenge.external_repo
        assert ext is not None
        repo = external_root(challenge.root, ext)

        solution_path = root / ext.solution_path
        solution_path.parent.mkdir(parents=True, exist_ok=True)

        # Copy the whole test directory so relative fixture imports resolve
        test_path = root / ext.test_path
        source_test_dir = (repo / ext.test_path).parent
        if source_test_dir.is_dir():
            copy_tree(source_test_dir, test_path.parent)

        for copy_path in ext.copy_paths:
            source = repo / copy_path
            dest = root / copy_path
            if not source.exists():
                logger.warning("copy path not found: %s", copy_path)
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                copy_tree(source, dest)
            else:
                _ = shutil.copy2(source, dest)

        vitest_config = challenge.root / "vitest.config.ts"
        if vitest_config.exists():
            _ = shutil.copy2(vitest_config, root / "vitest.config.ts")
        else:
            _ = (root / "vitest.config.ts").write_text(DEFAULT_VITEST_CONFIG)

        node_modules = repo / "node_modules"
        _link_node_modules(node_modules if node_modules.is_dir() else None, root)

        for name in ("tsconfig.json", "package.json"):
            if (repo / name).exists():
                _ = shutil.copy2(repo / name, root / name)

        return TempWorkspace(
            root=root,
            solution_path=solution_path,
            test_path=test_path,
            keep=keep,
        )


def _link_node_modules(node_modules: Optional[Path], root: Path) -> None:
    if node_modules is None:
        return
    link = root / "node_modules"
    if not link.exists():
        link.symlink_to(node_modules, target_is_directory=True)
