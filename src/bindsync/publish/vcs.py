"""Version control capability: the shared mainline as an optimistic versioned store.

The mainline ref is only ever updated by a fast-forward push, which the
remote accepts or rejects atomically. No lock is taken; a rejected push
means another session moved the tip first.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from bindsync.config import get_settings
from bindsync.core.errors import PublishError

logger = logging.getLogger(__name__)

# Substrings git prints when the remote refuses a ref update because the tip moved.
_REJECTION_MARKERS = (
    "non-fast-forward",
    "fetch first",
    "[rejected]",
    "stale info",
    "cannot lock ref",
    "failed to update ref",
)


@dataclass
class PushResult:
    accepted: bool
    reason: str = ""


@dataclass
class RebaseResult:
    conflicts: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.conflicts


class Mainline(ABC):
    """Session-private view of the shared mainline.

    ``fetch`` records the current remote tip; ``read`` answers from that
    tip; ``commit`` creates a local commit on top of it; ``rebase`` replays
    the local commit onto the last fetched tip; ``push`` attempts the
    compare-and-swap of the remote ref.
    """

    @abstractmethod
    def fetch(self) -> str:
        """Refresh and return the remote tip commit id."""

    @abstractmethod
    def read(self, path: str) -> bytes | None:
        """Content of ``path`` at the last fetched tip, None if absent."""

    @abstractmethod
    def commit(self, path: str, content: bytes, message: str) -> str:
        """Commit ``content`` at ``path`` on top of the fetched tip."""

    @abstractmethod
    def changed_paths(self, commit_id: str) -> list[str]:
        """Paths touched by a commit."""

    @abstractmethod
    def rebase(self) -> RebaseResult:
        """Replay the local commit onto the last fetched tip."""

    @abstractmethod
    def push(self) -> PushResult:
        """Attempt to move the remote ref to the local commit."""

    @abstractmethod
    def head(self) -> str:
        """Local commit id."""

    def close(self) -> None:
        """Release whatever the session held. Called once the session ends."""


class GitMainline(Mainline):
    """Mainline backed by a private git clone driven through the git CLI."""

    def __init__(
        self,
        workdir: str | Path,
        remote: str = "origin",
        branch: str = "master",
        author_name: str = "bindsync-bot",
        author_email: str = "bindsync-bot@users.noreply.github.com",
        timeout: float = 300.0,
        remove_on_close: bool = False,
    ):
        self.workdir = Path(workdir)
        self.remove_on_close = remove_on_close
        self.remote = remote
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email
        self.timeout = timeout

    @property
    def tracking_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    def _git(self, *args: str, check: bool = True, text: bool = True) -> subprocess.CompletedProcess:
        env = {
            **os.environ,
            "GIT_AUTHOR_NAME": self.author_name,
            "GIT_AUTHOR_EMAIL": self.author_email,
            "GIT_COMMITTER_NAME": self.author_name,
            "GIT_COMMITTER_EMAIL": self.author_email,
            "GIT_TERMINAL_PROMPT": "0",
        }
        cmd = ["git", *args]
        logger.debug("%s: %s", self.workdir, " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.workdir),
                env=env,
                capture_output=True,
                text=text,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise PublishError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise PublishError(f"git {args[0]} timed out after {self.timeout}s") from e
        if check and result.returncode != 0:
            stderr = result.stderr if text else result.stderr.decode(errors="replace")
            raise PublishError(f"git {' '.join(args)} failed: {stderr.strip()}")
        return result

    def fetch(self) -> str:
        self._git(
            "fetch", "--no-tags", self.remote,
            f"+refs/heads/{self.branch}:{self.tracking_ref}",
        )
        return self._git("rev-parse", self.tracking_ref).stdout.strip()

    def read(self, path: str) -> bytes | None:
        listing = self._git("ls-tree", self.tracking_ref, "--", path).stdout.strip()
        if not listing:
            return None
        return self._git("show", f"{self.tracking_ref}:{path}", text=False).stdout

    def commit(self, path: str, content: bytes, message: str) -> str:
        # Start from the fetched tip; the session clone holds nothing else.
        self._git("checkout", "--quiet", "--detach", self.tracking_ref)
        self._git("reset", "--quiet", "--hard", self.tracking_ref)
        target = self.workdir / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        self._git("add", "--", path)
        self._git("commit", "--quiet", "--no-verify", "-m", message, "--", path)
        return self.head()

    def changed_paths(self, commit_id: str) -> list[str]:
        out = self._git("diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit_id).stdout
        return [line for line in out.splitlines() if line]

    def rebase(self) -> RebaseResult:
        result = self._git("rebase", self.tracking_ref, check=False)
        if result.returncode == 0:
            return RebaseResult()
        conflicts = self._git("diff", "--name-only", "--diff-filter=U", check=False).stdout.split()
        self._git("rebase", "--abort", check=False)
        if not conflicts:
            raise PublishError(f"git rebase failed: {(result.stderr or result.stdout).strip()}")
        return RebaseResult(conflicts=conflicts)

    def push(self) -> PushResult:
        result = self._git("push", "--porcelain", self.remote, f"HEAD:refs/heads/{self.branch}", check=False)
        if result.returncode == 0:
            return PushResult(accepted=True)
        output = f"{result.stdout}\n{result.stderr}"
        if any(marker in output for marker in _REJECTION_MARKERS):
            return PushResult(accepted=False, reason=_first_rejection_line(output))
        raise PublishError(f"git push failed: {result.stderr.strip()}")

    def head(self) -> str:
        return self._git("rev-parse", "HEAD").stdout.strip()

    def close(self) -> None:
        if not self.remove_on_close or not self.workdir.exists():
            return
        try:
            shutil.rmtree(self.workdir)
        except OSError as e:
            logger.warning("could not remove session clone %s: %s", self.workdir, e)


def _first_rejection_line(output: str) -> str:
    for line in output.splitlines():
        if any(marker in line for marker in _REJECTION_MARKERS):
            return line.strip()
    return "rejected"


def clone_mainline(
    url: str,
    dest: str | Path,
    branch: str = "master",
    remote: str = "origin",
    author_name: str = "bindsync-bot",
    author_email: str = "bindsync-bot@users.noreply.github.com",
    remove_on_close: bool = False,
) -> GitMainline:
    """Create a private clone for one session and return its mainline view."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    result = subprocess.run(
        ["git", "clone", "--quiet", "--origin", remote, "--branch", branch,
         "--single-branch", "--no-tags", "-c", "core.autocrlf=false", str(url), str(dest)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise PublishError(f"git clone {url} failed: {result.stderr.strip()}")
    return GitMainline(
        dest,
        remote=remote,
        branch=branch,
        author_name=author_name,
        author_email=author_email,
        remove_on_close=remove_on_close,
    )


def session_clones(
    url: str,
    work_root: str | Path,
    branch: str | None = None,
    remote: str | None = None,
    author_name: str | None = None,
    author_email: str | None = None,
):
    """Mainline factory giving every session its own fresh clone of ``url``.

    Each clone is deleted when its session closes the mainline.

    Unset arguments come from settings (``BINDSYNC_BRANCH``,
    ``BINDSYNC_REMOTE``, ``BINDSYNC_GIT_AUTHOR_NAME`` ...).
    """
    settings = get_settings()
    branch = branch or settings.branch
    remote = remote or settings.remote
    author_name = author_name or settings.git_author_name
    author_email = author_email or settings.git_author_email
    root = Path(work_root)

    def factory(target) -> GitMainline:
        dest = root / f"{target.key}-{uuid.uuid4().hex[:8]}"
        return clone_mainline(
            url, dest, branch=branch, remote=remote,
            author_name=author_name, author_email=author_email,
            remove_on_close=True,
        )

    return factory
