"""Synchronization & publish controller.

Per-platform state machine::

    Diffing -> Committing -> Pushing -> (Retrying)* -> Done | Failed

Diffing byte-compares the candidate with the artifact at the mainline tip
and stops as a no-op when they match. Committing touches only the
platform's artifact path. Pushing rebases onto the fetched tip and
attempts the ref update. A rejected push re-fetches, re-diffs, re-rebases
and retries until the retry budget is spent.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from bindsync.core.errors import ContentConflictError, IntegrationConflictError
from bindsync.core.logging import SyncLogger
from bindsync.core.models import (
    CandidateArtifact,
    PlatformTarget,
    PublishRecord,
    SessionState,
    content_digest,
)
from bindsync.publish.vcs import Mainline

COMMIT_MESSAGE = "Updated bindings for {platform}"


@dataclass
class PublishOutcome:
    state: SessionState
    commit_id: str | None = None
    attempts: int = 0
    no_op: bool = False
    would_publish: bool = False


def commit_message(candidate: CandidateArtifact) -> str:
    """Commit message identifying the producing platform."""
    return (
        COMMIT_MESSAGE.format(platform=candidate.platform.key)
        + f"\n\nSource-Revision: {candidate.source_revision}"
    )


class PublishController:
    """Idempotently publish one platform's verified candidate to the mainline."""

    def __init__(
        self,
        mainline: Mainline,
        retry_budget: int = 5,
        retry_backoff: float = 1.0,
        logger: SyncLogger | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        on_state: Callable[[SessionState], None] | None = None,
    ):
        if retry_budget < 1:
            raise ValueError("retry_budget must be at least 1")
        self.mainline = mainline
        self.retry_budget = retry_budget
        self.retry_backoff = retry_backoff
        self.logger = logger
        self.dry_run = dry_run
        self._sleep = sleep
        self._on_state = on_state

    def _enter(self, platform: str, state: SessionState, detail: str = "") -> None:
        if self._on_state is not None:
            self._on_state(state)
        if self.logger is not None:
            self.logger.stage(platform, state.value, detail)

    def _is_published(self, candidate: CandidateArtifact) -> bool:
        return self.mainline.read(candidate.path) == candidate.content

    def publish(self, candidate: CandidateArtifact) -> PublishOutcome:
        """Run the state machine. Raises on the Failed terminal state."""
        platform = candidate.platform.key

        self._enter(platform, SessionState.DIFFING)
        tip = self.mainline.fetch()
        if self._is_published(candidate):
            self._enter(platform, SessionState.DONE, "unchanged")
            return PublishOutcome(state=SessionState.DONE, commit_id=tip, no_op=True)
        if self.dry_run:
            self._enter(platform, SessionState.DONE, "dry run, would publish")
            return PublishOutcome(state=SessionState.DONE, would_publish=True)

        self._enter(platform, SessionState.COMMITTING)
        commit_id = self.mainline.commit(candidate.path, candidate.content, commit_message(candidate))
        touched = self.mainline.changed_paths(commit_id)
        foreign = sorted(p for p in touched if p != candidate.path)
        if foreign:
            raise ContentConflictError(
                f"Commit for {platform} touches paths outside {candidate.path}",
                paths=foreign,
            )

        attempts = 0
        while True:
            attempts += 1
            self._enter(platform, SessionState.PUSHING if attempts == 1 else SessionState.RETRYING)

            rebase = self.mainline.rebase()
            if not rebase.clean:
                raise ContentConflictError(
                    f"Rebase for {platform} conflicts on {', '.join(rebase.conflicts)}",
                    paths=rebase.conflicts,
                )

            if self.logger is not None:
                self.logger.push_attempt(platform, attempts, tip)
            push = self.mainline.push()
            if push.accepted:
                head = self.mainline.head()
                self._enter(platform, SessionState.DONE, head[:12])
                return PublishOutcome(state=SessionState.DONE, commit_id=head, attempts=attempts)

            if self.logger is not None:
                self.logger.push_rejected(platform, attempts, push.reason)
            if attempts >= self.retry_budget:
                raise IntegrationConflictError(
                    f"Push for {platform} rejected {attempts} time(s): {push.reason}",
                    attempts=attempts,
                )

            self._sleep(self.retry_backoff * attempts)
            tip = self.mainline.fetch()
            if self._is_published(candidate):
                # A concurrent run already landed the identical artifact.
                self._enter(platform, SessionState.DONE, "published concurrently")
                return PublishOutcome(
                    state=SessionState.DONE, commit_id=tip, attempts=attempts, no_op=True,
                )


def current_record(mainline: Mainline, target: PlatformTarget, path: str) -> PublishRecord:
    """The live Publish Record for a platform at the current mainline tip."""
    tip = mainline.fetch()
    content = mainline.read(path)
    digest = content_digest(content) if content is not None else None
    return PublishRecord(platform=target, path=path, commit_id=tip, digest=digest)
