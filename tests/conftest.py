"""Shared test fixtures for bindsync."""

from __future__ import annotations

import pytest

from bindsync.config import reset_settings
from bindsync.core.models import PlatformTarget, SourceTree
from bindsync.pipeline import Pipeline
from bindsync.source import StaticSourceProvider
from tests.helpers.fakes import FakeGenerator, FakeMainline, FakeRemote, FakeTestRunner


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    """Keep BINDSYNC_* from the developer's shell out of tests."""
    for var in ("BINDSYNC_STATE_DIR", "BINDSYNC_RETRY_BUDGET", "BINDSYNC_RETRY_BACKOFF",
                "BINDSYNC_MAX_WORKERS", "BINDSYNC_BRANCH", "BINDSYNC_REMOTE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("BINDSYNC_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("BINDSYNC_RETRY_BACKOFF", "0")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def source_dir(tmp_path):
    """A tiny native source tree."""
    src = tmp_path / "native"
    (src / "include").mkdir(parents=True)
    (src / "include" / "mini.h").write_text("int mini_init(void);\n")
    return src


@pytest.fixture
def source_tree(source_dir):
    return SourceTree(path=source_dir, revision="a" * 40)


@pytest.fixture
def remote():
    return FakeRemote({"README.md": b"wrapper\n"})


@pytest.fixture
def make_pipeline(tmp_path, source_dir, remote):
    """Factory for pipelines wired to in-memory capabilities."""

    def _make(
        platforms=("linux",),
        revision="a" * 40,
        generator=None,
        test_runner=None,
        **kwargs,
    ) -> Pipeline:
        kwargs.setdefault("state_dir", str(tmp_path / "state"))
        kwargs.setdefault("mainline_factory", lambda target: FakeMainline(remote))
        return Pipeline(
            "mini-sys",
            platforms=[PlatformTarget(p) for p in platforms],
            generator=generator or FakeGenerator(),
            test_runner=test_runner or FakeTestRunner(),
            artifact_path_template="mini-sys/bindings/{os}.rs",
            source_provider=StaticSourceProvider(source_dir, revision),
            root_dir=str(tmp_path),
            **kwargs,
        )

    return _make
