"""Tests for the publish controller state machine."""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from bindsync.core.errors import ContentConflictError, IntegrationConflictError
from bindsync.core.logging import SyncLogger
from bindsync.core.models import CandidateArtifact, PlatformTarget, SessionState, content_digest
from bindsync.publish.controller import PublishController, commit_message, current_record
from tests.helpers.fakes import FakeMainline, FakeRemote

LINUX_PATH = "mini-sys/bindings/linux.rs"
MACOS_PATH = "mini-sys/bindings/macos.rs"


def _candidate(content: bytes = b"pub fn mini_init();\n", os: str = "linux", path: str = LINUX_PATH):
    return CandidateArtifact(
        platform=PlatformTarget(os),
        source_revision="b" * 40,
        path=path,
        content=content,
    )


def _controller(remote, states=None, sleeps=None, **kwargs):
    kwargs.setdefault("retry_backoff", 0.5)
    return PublishController(
        FakeMainline(remote),
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
        on_state=(states.append if states is not None else None),
        **kwargs,
    )


def _once(action):
    """before_push hook that fires a single time."""
    fired = []

    def hook(mainline):
        if not fired:
            fired.append(True)
            action()

    return hook


@pytest.fixture
def quiet_logger():
    return SyncLogger(console=Console(file=io.StringIO()))


class TestHappyPath:
    def test_publish_creates_one_commit(self, remote):
        states = []
        outcome = _controller(remote, states=states).publish(_candidate())

        assert outcome.state == SessionState.DONE
        assert outcome.attempts == 1
        assert not outcome.no_op
        assert outcome.commit_id == remote.current_tip()
        assert states == [
            SessionState.DIFFING,
            SessionState.COMMITTING,
            SessionState.PUSHING,
            SessionState.DONE,
        ]

        history = remote.history()
        assert len(history) == 1
        assert history[0].changed == [LINUX_PATH]
        assert remote.files()[LINUX_PATH] == b"pub fn mini_init();\n"
        assert remote.files()["README.md"] == b"wrapper\n"

    def test_commit_message_names_platform_and_revision(self, remote):
        _controller(remote).publish(_candidate())
        message = remote.history()[0].message
        assert message.startswith("Updated bindings for linux")
        assert f"Source-Revision: {'b' * 40}" in message
        assert message == commit_message(_candidate())


class TestIdempotence:
    def test_republish_is_a_no_op(self, remote):
        _controller(remote).publish(_candidate())
        tip = remote.current_tip()

        states = []
        outcome = _controller(remote, states=states).publish(_candidate())

        assert outcome.no_op
        assert outcome.commit_id == tip
        assert remote.current_tip() == tip
        assert len(remote.history()) == 1
        assert states == [SessionState.DIFFING, SessionState.DONE]

    def test_identical_preexisting_artifact(self):
        remote = FakeRemote({LINUX_PATH: b"pub fn mini_init();\n"})
        mainline = FakeMainline(remote)
        outcome = PublishController(mainline, sleep=lambda s: None).publish(_candidate())
        assert outcome.no_op
        assert mainline.pushes == 0
        assert remote.history() == []

    def test_changed_content_publishes(self):
        remote = FakeRemote({LINUX_PATH: b"pub fn old();\n"})
        outcome = _controller(remote).publish(_candidate())
        assert not outcome.no_op
        assert remote.files()[LINUX_PATH] == b"pub fn mini_init();\n"


class TestRetry:
    def test_rejected_push_rebases_and_retries(self, remote):
        remote.before_push = _once(lambda: remote.advance(MACOS_PATH, b"pub fn mac();\n", "Updated bindings for macos"))
        states, sleeps = [], []

        outcome = _controller(remote, states=states, sleeps=sleeps).publish(_candidate())

        assert outcome.state == SessionState.DONE
        assert outcome.attempts == 2
        assert sleeps == [0.5]
        assert SessionState.RETRYING in states

        history = remote.history()
        assert [c.changed for c in history] == [[LINUX_PATH], [MACOS_PATH]]
        files = remote.files()
        assert files[LINUX_PATH] == b"pub fn mini_init();\n"
        assert files[MACOS_PATH] == b"pub fn mac();\n"

    def test_retry_does_not_lose_concurrent_commit(self, remote):
        remote.before_push = _once(lambda: remote.advance("CHANGELOG.md", b"entry\n"))
        _controller(remote).publish(_candidate())
        assert remote.files()["CHANGELOG.md"] == b"entry\n"
        assert remote.history()[1].changed == ["CHANGELOG.md"]

    def test_budget_exhausted(self, remote):
        counter = iter(range(100))
        remote.before_push = lambda mainline: remote.advance(MACOS_PATH, f"v{next(counter)}\n".encode())
        sleeps = []

        with pytest.raises(IntegrationConflictError) as exc_info:
            _controller(remote, sleeps=sleeps, retry_budget=3).publish(_candidate())

        assert exc_info.value.attempts == 3
        assert exc_info.value.kind == "integration_conflict"
        # Backoff grows linearly; none after the final attempt.
        assert sleeps == [0.5, 1.0]
        assert LINUX_PATH not in remote.files()

    def test_concurrent_identical_publish_ends_as_no_op(self, remote):
        content = b"pub fn mini_init();\n"
        remote.before_push = _once(lambda: remote.advance(LINUX_PATH, content, "Updated bindings for linux"))

        outcome = _controller(remote).publish(_candidate(content))

        assert outcome.no_op
        assert outcome.attempts == 1
        assert len(remote.history()) == 1

    def test_logger_counts_attempts(self, remote, quiet_logger):
        remote.before_push = _once(lambda: remote.advance(MACOS_PATH, b"x\n"))
        _controller(remote, logger=quiet_logger).publish(_candidate())
        session = quiet_logger.run_log.sessions["linux"]
        assert session.push_attempts == 2
        assert session.rejections == 1
        assert session.stages[:3] == ["diffing", "committing", "pushing"]


class TestConflicts:
    def test_overlapping_edit_is_content_conflict(self, remote):
        remote.before_push = _once(lambda: remote.advance(LINUX_PATH, b"pub fn other();\n"))

        with pytest.raises(ContentConflictError) as exc_info:
            _controller(remote).publish(_candidate())

        assert exc_info.value.paths == [LINUX_PATH]
        assert remote.files()[LINUX_PATH] == b"pub fn other();\n"

    def test_commit_touching_foreign_paths(self, remote):
        controller = PublishController(
            FakeMainline(remote, extra_paths=["Cargo.lock"]),
            sleep=lambda s: None,
        )
        with pytest.raises(ContentConflictError, match="outside") as exc_info:
            controller.publish(_candidate())
        assert exc_info.value.paths == ["Cargo.lock"]
        assert remote.history() == []

    def test_conflict_is_not_retried(self, remote):
        remote.before_push = _once(lambda: remote.advance(LINUX_PATH, b"pub fn other();\n"))
        sleeps = []
        mainline = FakeMainline(remote)
        with pytest.raises(ContentConflictError):
            PublishController(mainline, retry_budget=5, sleep=sleeps.append).publish(_candidate())
        assert mainline.pushes == 1


class TestDryRun:
    def test_dry_run_stops_after_diffing(self, remote):
        mainline = FakeMainline(remote)
        outcome = PublishController(mainline, dry_run=True).publish(_candidate())
        assert outcome.state == SessionState.DONE
        assert outcome.would_publish
        assert not outcome.no_op
        assert mainline.pushes == 0
        assert remote.history() == []

    def test_dry_run_unchanged(self):
        remote = FakeRemote({LINUX_PATH: b"pub fn mini_init();\n"})
        outcome = PublishController(FakeMainline(remote), dry_run=True).publish(_candidate())
        assert outcome.no_op
        assert not outcome.would_publish


class TestCurrentRecord:
    def test_published(self, remote):
        _controller(remote).publish(_candidate())
        record = current_record(FakeMainline(remote), PlatformTarget("linux"), LINUX_PATH)
        assert record.commit_id == remote.current_tip()
        assert record.digest == content_digest(b"pub fn mini_init();\n")

    def test_not_published(self, remote):
        record = current_record(FakeMainline(remote), PlatformTarget("macos"), MACOS_PATH)
        assert record.digest is None


def test_retry_budget_must_be_positive(remote):
    with pytest.raises(ValueError):
        PublishController(FakeMainline(remote), retry_budget=0)
