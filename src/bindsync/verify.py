"""Verification gate: run the dependent test suite against a candidate."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from bindsync.core.errors import VerificationError
from bindsync.core.models import CandidateArtifact, SourceTree

logger = logging.getLogger(__name__)

# cargo: "test foo::bar ... FAILED"; pytest: "FAILED tests/x.py::y"; ctest: "... ***Failed"
_FAILURE_PATTERNS = (
    re.compile(r"^test (\S+) \.\.\. FAILED$"),
    re.compile(r"^FAILED (\S+)"),
    re.compile(r"^\s*\d+/\d+ Test\s+#\d+: (\S+) \.+\*+Failed"),
)


@dataclass
class TestReport:
    """Outcome of one test-suite run."""

    __test__ = False  # not a pytest class

    passed: bool
    failures: list[str] = field(default_factory=list)
    output: str = ""

    @property
    def summary(self) -> str:
        if self.passed:
            return "All tests passed"
        if self.failures:
            return f"{len(self.failures)} test(s) failed"
        return "Test suite failed"


def parse_failures(output: str) -> list[str]:
    """Collect failing test names from runner output."""
    failures: list[str] = []
    for line in output.splitlines():
        for pattern in _FAILURE_PATTERNS:
            m = pattern.match(line.rstrip())
            if m and m.group(1) not in failures:
                failures.append(m.group(1))
                break
    return failures


class TestRunner(ABC):
    """Abstract test runner capability: ``run(artifact) -> pass | failures``."""

    __test__ = False

    @abstractmethod
    def run(self, artifact: CandidateArtifact, source_tree: SourceTree) -> TestReport:
        ...


class CommandTestRunner(TestRunner):
    """Run a test command with the candidate substituted into the build.

    The candidate is written to a temporary file whose path is exposed via
    the ``artifact_env`` environment variable and the ``{artifact}``
    placeholder in ``argv``. With ``install_path`` set, the candidate is
    instead copied to that path (relative to ``workdir``) for the duration
    of the run and the previous contents restored afterwards. ``workdir``
    accepts a ``{platform}`` placeholder; with ``install_path`` it must
    resolve to a directory no other platform uses.
    """

    def __init__(
        self,
        argv: list[str],
        workdir: str | Path | None = None,
        artifact_env: str = "BINDSYNC_ARTIFACT",
        install_path: str | None = None,
        timeout: float = 1800.0,
        env: dict[str, str] | None = None,
    ):
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv = list(argv)
        self.workdir = str(workdir) if workdir else None
        self.artifact_env = artifact_env
        self.install_path = install_path
        self.timeout = timeout
        self.env = dict(env or {})

    def _execute(self, cmd: list[str], cwd: Path, env: dict[str, str]) -> TestReport:
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return TestReport(passed=False, output=f"Test command not found: {cmd[0]}")
        except subprocess.TimeoutExpired:
            return TestReport(passed=False, output=f"TIMEOUT after {self.timeout}s")

        output = result.stdout + result.stderr
        failures = parse_failures(output)
        return TestReport(passed=result.returncode == 0 and not failures,
                          failures=failures, output=output)

    def run(self, artifact: CandidateArtifact, source_tree: SourceTree) -> TestReport:
        if self.workdir:
            cwd = Path(self.workdir.format(platform=artifact.platform.key))
        else:
            cwd = source_tree.path
        with tempfile.TemporaryDirectory(prefix="bindsync-verify-") as tmp:
            artifact_file = Path(tmp) / Path(artifact.path).name
            artifact_file.write_bytes(artifact.content)

            env = {**os.environ, **self.env, self.artifact_env: str(artifact_file)}
            cmd = [arg.format(artifact=str(artifact_file), platform=artifact.platform.key)
                   for arg in self.argv]
            logger.debug("running tests for %s: %s", artifact.platform.key, cmd)

            if self.install_path is None:
                return self._execute(cmd, cwd, env)

            installed = cwd / self.install_path
            previous = installed.read_bytes() if installed.exists() else None
            installed.parent.mkdir(parents=True, exist_ok=True)
            installed.write_bytes(artifact.content)
            try:
                return self._execute(cmd, cwd, env)
            finally:
                if previous is None:
                    installed.unlink(missing_ok=True)
                else:
                    installed.write_bytes(previous)


class VerificationGate:
    """Passing the gate is a precondition to publishing a candidate."""

    def __init__(self, runner: TestRunner):
        self.runner = runner

    def check(self, candidate: CandidateArtifact, source_tree: SourceTree) -> TestReport:
        """Return the passing report, or raise VerificationError."""
        report = self.runner.run(candidate, source_tree)
        if not report.passed:
            raise VerificationError(
                f"{report.summary} for {candidate.platform.key}",
                failures=report.failures,
            )
        return report
