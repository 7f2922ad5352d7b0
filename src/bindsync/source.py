"""Native source providers: supply the pinned source tree at an exact revision."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from bindsync.core.errors import PipelineError
from bindsync.core.models import SourceTree


class SourceProvider(ABC):
    """Base class for native source providers."""

    @abstractmethod
    def checkout(self) -> SourceTree:
        """Return the pinned, read-only source tree."""
        ...


class StaticSourceProvider(SourceProvider):
    """A tree that is already checked out at a known revision."""

    def __init__(self, path: str | Path, revision: str):
        self.path = Path(path)
        self.revision = revision

    def checkout(self) -> SourceTree:
        if not self.path.is_dir():
            raise PipelineError(f"Source directory not found: {self.path}")
        return SourceTree(path=self.path.resolve(), revision=self.revision)


class GitSourceProvider(SourceProvider):
    """Native source pinned as a git submodule of the wrapper repository.

    The revision is the commit the submodule is checked out at. With
    ``update=True`` the submodule is synced and fetched shallowly first,
    the way the CI job prepared its checkout.
    """

    def __init__(self, repo_dir: str | Path, source_path: str, update: bool = False):
        self.repo_dir = Path(repo_dir)
        self.source_path = source_path
        self.update = update

    def _git(self, *args: str, cwd: Path) -> str:
        try:
            result = subprocess.run(
                ["git", *args], cwd=str(cwd), capture_output=True, text=True,
            )
        except FileNotFoundError as e:
            raise PipelineError("git executable not found") from e
        if result.returncode != 0:
            raise PipelineError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout.strip()

    def pinned_revision(self) -> str:
        """Commit recorded by the superproject for the source path."""
        listing = self._git("ls-tree", "HEAD", "--", self.source_path, cwd=self.repo_dir)
        parts = listing.split()
        if len(parts) >= 3 and parts[1] == "commit":
            return parts[2]
        # Vendored tree instead of a submodule: use the last commit touching it.
        return self._git("log", "-1", "--format=%H", "--", self.source_path, cwd=self.repo_dir)

    def checkout(self) -> SourceTree:
        if self.update:
            self._git("submodule", "sync", "--recursive", cwd=self.repo_dir)
            self._git(
                "submodule", "update", "--init", "--force", "--recursive", "--depth=1",
                "--", self.source_path,
                cwd=self.repo_dir,
            )
        path = (self.repo_dir / self.source_path).resolve()
        if not path.is_dir():
            raise PipelineError(f"Source path not found: {path}")
        revision = self.pinned_revision()
        if not revision:
            raise PipelineError(f"Cannot resolve a revision for {self.source_path}")
        return SourceTree(path=path, revision=revision)
