"""Tests for the platform matrix runner."""

from __future__ import annotations

import io
import json
import threading

import pytest
from rich.console import Console

from bindsync.core.errors import PipelineError
from bindsync.core.logging import SyncLogger
from bindsync.core.models import PlatformTarget, SessionState
from bindsync.generate.rules import PlatformRule
from bindsync.runner import run
from tests.helpers.fakes import FakeGenerator, FakeMainline, FakeTestRunner


def _run(pipeline, **kwargs):
    kwargs.setdefault("console", Console(file=io.StringIO()))
    kwargs.setdefault("sleep", lambda s: None)
    return run(pipeline, **kwargs)


class TestSinglePlatform:
    def test_first_run_publishes(self, make_pipeline, remote):
        result = _run(make_pipeline())
        assert result.succeeded
        assert result.published == 1
        outcome = result.outcome("linux")
        assert outcome.state == SessionState.DONE
        assert outcome.artifact_path == "mini-sys/bindings/linux.rs"
        assert outcome.commit_id == remote.current_tip()
        assert b"revision " + b"a" * 40 in remote.files()["mini-sys/bindings/linux.rs"]

    def test_unchanged_source_is_a_no_op(self, make_pipeline, remote):
        pipeline = make_pipeline()
        _run(pipeline)
        tip = remote.current_tip()

        result = _run(pipeline, force=True)

        assert result.succeeded
        assert result.published == 0
        assert result.unchanged == 1
        assert result.outcome("linux").no_op
        assert remote.current_tip() == tip

    def test_source_revision_change_publishes_exactly_one_commit(self, make_pipeline, remote):
        _run(make_pipeline(revision="1" * 40))
        before = len(remote.history())

        result = _run(make_pipeline(revision="2" * 40))

        assert result.published == 1
        history = remote.history()
        assert len(history) == before + 1
        assert history[0].changed == ["mini-sys/bindings/linux.rs"]
        assert b"revision " + b"2" * 40 in remote.files()["mini-sys/bindings/linux.rs"]

    def test_drifting_generator_never_publishes(self, make_pipeline, remote):
        calls = iter(range(100))
        generator = FakeGenerator(render=lambda config, tree: f"// build {next(calls)}\n".encode())
        result = _run(make_pipeline(generator=generator))
        outcome = result.outcome("linux")
        assert outcome.error_kind == "generation"
        assert "not deterministic" in outcome.message
        assert "mini-sys/bindings/linux.rs" not in remote.files()


class TestMatrix:
    def test_two_platforms_two_commits(self, make_pipeline, remote):
        result = _run(make_pipeline(platforms=("linux", "windows")))

        assert result.succeeded
        assert result.published == 2
        history = remote.history()
        assert len(history) == 2
        assert sorted(c.changed[0] for c in history) == [
            "mini-sys/bindings/linux.rs",
            "mini-sys/bindings/windows.rs",
        ]
        files = remote.files()
        assert b"_WIN32" in files["mini-sys/bindings/windows.rs"]
        assert b"__linux__" in files["mini-sys/bindings/linux.rs"]

    def test_outcomes_in_matrix_order(self, make_pipeline):
        result = _run(make_pipeline(platforms=("windows", "macos", "linux")))
        assert [o.platform.key for o in result.outcomes] == ["windows", "macos", "linux"]

    def test_verification_failure_is_isolated(self, make_pipeline, remote):
        runner = FakeTestRunner(fail_for={"windows"})
        result = _run(make_pipeline(platforms=("linux", "windows"), test_runner=runner))

        assert not result.succeeded
        linux, windows = result.outcome("linux"), result.outcome("windows")
        assert linux.state == SessionState.DONE
        assert windows.state == SessionState.FAILED
        assert windows.error_kind == "verification"
        assert windows.stage == "verifying"

        files = remote.files()
        assert "mini-sys/bindings/linux.rs" in files
        assert "mini-sys/bindings/windows.rs" not in files

    def test_generation_failure_is_isolated(self, make_pipeline, remote):
        runner = FakeTestRunner()
        generator = FakeGenerator(fail_for={"macos"})
        result = _run(make_pipeline(platforms=("linux", "macos"), generator=generator, test_runner=runner))

        macos = result.outcome("macos")
        assert macos.error_kind == "generation"
        assert macos.stage == "generating"
        assert "macos" not in runner.seen
        assert result.outcome("linux").succeeded
        assert "mini-sys/bindings/macos.rs" not in remote.files()

    def test_unexpected_exception_is_isolated(self, make_pipeline):
        def render(config, tree):
            if config.platform.os == "windows":
                raise RuntimeError("boom")
            return b"ok\n"

        result = _run(make_pipeline(platforms=("linux", "windows"), generator=FakeGenerator(render=render)))
        windows = result.outcome("windows")
        assert windows.state == SessionState.FAILED
        assert windows.error_kind == "internal"
        assert "RuntimeError" in windows.message
        assert result.outcome("linux").succeeded

    def test_config_error_fails_only_that_platform(self, make_pipeline):
        rules = [PlatformRule(match_os="linux")]
        result = _run(make_pipeline(platforms=("linux", "windows"), rules=rules))
        assert result.outcome("linux").succeeded
        assert result.outcome("windows").error_kind == "config"

    def test_sessions_run_concurrently(self, make_pipeline):
        barrier = threading.Barrier(3, timeout=5)

        def render(config, tree):
            # Deadlocks (and times out) unless all three generate at once.
            barrier.wait()
            return f"// {config.platform.key}\n".encode()

        result = _run(make_pipeline(platforms=("linux", "windows", "macos"),
                                    generator=FakeGenerator(render=render)))
        assert result.succeeded

    def test_each_session_gets_its_own_mainline(self, make_pipeline, remote):
        created = []

        def factory(target):
            mainline = FakeMainline(remote)
            created.append((target.key, mainline))
            return mainline

        _run(make_pipeline(platforms=("linux", "windows"), mainline_factory=factory))
        assert sorted(key for key, _ in created) == ["linux", "windows"]
        assert created[0][1] is not created[1][1]

    def test_mainline_closed_when_session_ends(self, make_pipeline, remote):
        created = {}

        def factory(target):
            created[target.key] = FakeMainline(remote, extra_paths=["README.md"] if target.os == "windows" else None)
            return created[target.key]

        result = _run(make_pipeline(platforms=("linux", "windows"), mainline_factory=factory))
        assert result.outcome("linux").succeeded
        assert result.outcome("windows").error_kind == "content_conflict"
        assert created["linux"].closed
        assert created["windows"].closed

    def test_contended_pushes_all_land(self, make_pipeline, remote):
        platforms = ("linux", "windows", "macos", "freebsd")
        result = _run(make_pipeline(platforms=platforms, retry_budget=10))
        assert result.succeeded
        assert result.published == 4
        assert len(remote.history()) == 4
        for os_name in platforms:
            assert f"mini-sys/bindings/{os_name}.rs" in remote.files()

    def test_retry_budget_override(self, make_pipeline, remote):
        remote.before_push = lambda mainline: remote.advance("noise.txt", b"x")
        result = _run(make_pipeline(), retry_budget=2)
        linux = result.outcome("linux")
        assert linux.error_kind == "integration_conflict"
        assert linux.attempts == 2


class TestDryRun:
    def test_nothing_pushed(self, make_pipeline, remote):
        result = _run(make_pipeline(platforms=("linux", "windows")), dry_run=True)
        assert result.succeeded
        assert remote.history() == []
        assert {o.message for o in result.outcomes} == {"would publish"}

    def test_dry_run_does_not_record_trigger(self, make_pipeline):
        pipeline = make_pipeline()
        _run(pipeline, dry_run=True)
        assert not _run(pipeline).skipped


class TestTrigger:
    def test_second_run_is_skipped(self, make_pipeline):
        pipeline = make_pipeline()
        first = _run(pipeline)
        assert not first.skipped
        assert first.trigger_reasons == ["no stored fingerprint"]

        second = _run(pipeline)
        assert second.skipped
        assert second.outcomes == []

    def test_force_overrides_skip(self, make_pipeline):
        pipeline = make_pipeline()
        _run(pipeline)
        assert not _run(pipeline, force=True).skipped

    def test_new_revision_triggers(self, make_pipeline):
        _run(make_pipeline(revision="1" * 40))
        result = _run(make_pipeline(revision="2" * 40))
        assert not result.skipped
        assert result.trigger_reasons == ["source_revision changed"]

    def test_failed_run_is_retried_next_time(self, make_pipeline):
        failing = make_pipeline(test_runner=FakeTestRunner(fail_for={"linux"}))
        _run(failing)
        assert not _run(make_pipeline()).skipped

    def test_rule_change_republishes(self, make_pipeline, remote):
        pipeline = make_pipeline(platforms=("linux", "windows"))
        _run(pipeline)

        pipeline.add_rule(PlatformRule(match_os="linux", defines={"MA_NEW": "1"}))
        result = _run(pipeline)
        assert not result.skipped
        assert result.trigger_reasons == ["config:linux changed"]
        assert result.outcome("linux").message == "published"
        assert result.outcome("windows").no_op
        assert b"MA_NEW" in remote.files()["mini-sys/bindings/linux.rs"]


class TestRunLog:
    def test_jsonl_written(self, make_pipeline, tmp_path):
        result = _run(make_pipeline(platforms=("linux", "windows")))
        logs = list((tmp_path / "state" / "logs").glob("*.jsonl"))
        assert len(logs) == 1
        events = [json.loads(line) for line in logs[0].read_text().splitlines()]
        kinds = [e["event"] for e in events]
        assert kinds[0] == "run_start"
        assert kinds[-1] == "run_finish"
        assert kinds.count("session_finish") == 2
        assert result.run_log["published"] == 2
        assert set(result.run_log["sessions"]) == {"linux", "windows"}

    def test_each_run_gets_its_own_log(self, make_pipeline, tmp_path):
        pipeline = make_pipeline()
        _run(pipeline)
        _run(pipeline, force=True)
        logs = sorted((tmp_path / "state" / "logs").glob("*.jsonl"))
        assert len(logs) == 2
        for log in logs:
            kinds = [json.loads(line)["event"] for line in log.read_text().splitlines()]
            assert kinds.count("run_start") == 1

    def test_log_closed_when_run_fails(self, make_pipeline, monkeypatch):
        closed = []
        original_close = SyncLogger.close

        def close(self):
            closed.append(self.log_path)
            original_close(self)

        def disk_full(state_dir, fingerprint):
            raise OSError("No space left on device")

        monkeypatch.setattr(SyncLogger, "close", close)
        monkeypatch.setattr("bindsync.runner.record_trigger", disk_full)
        with pytest.raises(OSError, match="No space left"):
            _run(make_pipeline())
        assert len(closed) == 1

    def test_to_dict(self, make_pipeline):
        result = _run(make_pipeline())
        d = result.to_dict()
        assert d["published"] == 1
        assert d["outcomes"][0]["platform"] == "linux"


class TestValidation:
    def test_shared_artifact_path_rejected(self, make_pipeline):
        pipeline = make_pipeline(platforms=("linux", "windows"))
        pipeline.artifact_path_template = "bindings.rs"
        with pytest.raises(PipelineError, match="share artifact path"):
            _run(pipeline)

    def test_missing_capability_rejected(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.test_runner = None
        with pytest.raises(PipelineError, match="test_runner"):
            _run(pipeline)

    def test_toolchain_variants_need_key_placeholder(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.platforms = [PlatformTarget("linux"), PlatformTarget("linux", "nightly")]
        with pytest.raises(PipelineError):
            _run(pipeline)
        pipeline.artifact_path_template = "mini-sys/bindings/{key}.rs"
        assert _run(pipeline).succeeded


class TestPlatformFilter:
    def test_only_named_platforms_run(self, make_pipeline, remote):
        generator = FakeGenerator()
        pipeline = make_pipeline(platforms=("linux", "windows", "macos"), generator=generator)
        result = _run(pipeline, platforms=["windows"])
        assert [o.platform.key for o in result.outcomes] == ["windows"]
        assert set(generator.calls) == {"windows"}
        assert "mini-sys/bindings/linux.rs" not in remote.files()
        assert len(pipeline.platforms) == 3

    def test_unknown_platform(self, make_pipeline):
        with pytest.raises(PipelineError, match="freebsd"):
            _run(make_pipeline(), platforms=["freebsd"])
