"""Structured logging and verbosity levels for bindsync runs."""

from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any

from rich.console import Console


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    DEFAULT = 0   # Summary table only
    VERBOSE = 1   # + per-platform stage transitions
    DEBUG = 2     # + push attempts, generator/test command details


@dataclass
class SessionLog:
    """Per-platform session statistics."""

    platform: str
    stages: list[str] = field(default_factory=list)
    push_attempts: int = 0
    rejections: int = 0
    outcome: str = ""
    error_kind: str | None = None
    time_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "stages": list(self.stages),
            "push_attempts": self.push_attempts,
            "rejections": self.rejections,
            "outcome": self.outcome,
            "error_kind": self.error_kind,
            "time_seconds": self.time_seconds,
        }


@dataclass
class RunLog:
    """Structured log of a complete matrix run.

    The dict format is::

        {
            "run_id": "20260101T120000Z",
            "sessions": {
                "linux": {
                    "stages": ["generating", "verifying", "diffing", ...],
                    "push_attempts": 2,
                    "rejections": 1,
                    "outcome": "done",
                    "error_kind": None,
                    "time_seconds": 4.2,
                },
                ...
            },
            "total_time": 5.4,
            "published": 1,
            "failed": 0,
        }
    """

    run_id: str = ""
    sessions: dict[str, SessionLog] = field(default_factory=dict)
    total_time: float = 0.0
    published: int = 0
    unchanged: int = 0
    failed: int = 0

    def get_or_create_session(self, platform: str) -> SessionLog:
        """Get existing session log or create a new one."""
        if platform not in self.sessions:
            self.sessions[platform] = SessionLog(platform=platform)
        return self.sessions[platform]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "sessions": {
                name: session.to_dict() for name, session in self.sessions.items()
            },
            "total_time": self.total_time,
            "published": self.published,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def new_run_id() -> str:
    """Sortable, unique even for runs started in the same second."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"

class SyncLogger:
    """Structured logger for bindsync runs.

    Writes JSONL log files to state_dir/logs/ and optionally emits console
    output via Rich based on verbosity level. Sessions log from worker
    threads, so every write goes through a lock.
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.DEFAULT,
        state_dir: Path | None = None,
        console: Console | None = None,
    ):
        self.verbosity = verbosity
        self.state_dir = state_dir
        self.run_log = RunLog(run_id=new_run_id())
        self._console = console or Console()
        self._lock = threading.Lock()
        self._log_file = None
        self._log_path: Path | None = None
        self._session_start: dict[str, float] = {}

        if state_dir is not None:
            logs_dir = state_dir / "logs"
            logs_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = logs_dir / f"{self.run_log.run_id}.jsonl"
            self._log_file = open(self._log_path, "x")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _write_event(self, event: dict[str, Any]) -> None:
        """Write a JSON event to the JSONL log file. Caller holds the lock."""
        if self._log_file is not None:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
            self._log_file.write(json.dumps(event) + "\n")
            self._log_file.flush()

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        if self.verbosity >= min_verbosity:
            self._console.print(message)

    # -- Run lifecycle --

    def run_start(self, pipeline_name: str, platforms: list[str]) -> None:
        with self._lock:
            self._write_event({
                "event": "run_start",
                "pipeline": pipeline_name,
                "platforms": list(platforms),
            })

    def run_finish(self, total_time: float, published: int, unchanged: int, failed: int) -> None:
        with self._lock:
            self.run_log.total_time = total_time
            self.run_log.published = published
            self.run_log.unchanged = unchanged
            self.run_log.failed = failed
            self._write_event({
                "event": "run_finish",
                "total_time": round(total_time, 3),
                "published": published,
                "unchanged": unchanged,
                "failed": failed,
            })
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None

    # -- Session events --

    def session_start(self, platform: str, artifact_path: str) -> None:
        with self._lock:
            self._session_start[platform] = time.time()
            self.run_log.get_or_create_session(platform)
            self._write_event({
                "event": "session_start",
                "platform": platform,
                "artifact_path": artifact_path,
            })
        self._console_print(
            f"  [bold]{platform}[/bold]: session started ({artifact_path})",
            Verbosity.VERBOSE,
        )

    def stage(self, platform: str, stage: str, detail: str = "") -> None:
        """Log a state-machine transition for a platform."""
        with self._lock:
            self.run_log.get_or_create_session(platform).stages.append(stage)
            event = {"event": "stage", "platform": platform, "stage": stage}
            if detail:
                event["detail"] = detail
            self._write_event(event)
        suffix = f" [dim]{detail}[/dim]" if detail else ""
        self._console_print(f"    {platform} -> {stage}{suffix}", Verbosity.VERBOSE)

    def push_attempt(self, platform: str, attempt: int, tip: str) -> None:
        with self._lock:
            self.run_log.get_or_create_session(platform).push_attempts += 1
            self._write_event({
                "event": "push_attempt",
                "platform": platform,
                "attempt": attempt,
                "tip": tip,
            })
        self._console_print(
            f"      [dim]{platform}: push attempt {attempt} onto {tip[:12]}[/dim]",
            Verbosity.DEBUG,
        )

    def push_rejected(self, platform: str, attempt: int, reason: str) -> None:
        with self._lock:
            self.run_log.get_or_create_session(platform).rejections += 1
            self._write_event({
                "event": "push_rejected",
                "platform": platform,
                "attempt": attempt,
                "reason": reason,
            })
        self._console_print(
            f"      [yellow]{platform}: push rejected[/yellow] [dim]({reason})[/dim]",
            Verbosity.DEBUG,
        )

    def session_finish(
        self,
        platform: str,
        outcome: str,
        error_kind: str | None = None,
        message: str = "",
    ) -> None:
        with self._lock:
            elapsed = time.time() - self._session_start.pop(platform, time.time())
            session = self.run_log.get_or_create_session(platform)
            session.outcome = outcome
            session.error_kind = error_kind
            session.time_seconds = elapsed
            self._write_event({
                "event": "session_finish",
                "platform": platform,
                "outcome": outcome,
                "error_kind": error_kind,
                "message": message,
                "time_seconds": round(elapsed, 3),
            })
        if error_kind:
            self._console_print(
                f"  [red]x[/red] {platform}: {error_kind} ({message})",
                Verbosity.VERBOSE,
            )
        else:
            self._console_print(
                f"  [green]+[/green] {platform}: {outcome} ({elapsed:.1f}s)",
                Verbosity.VERBOSE,
            )

    def close(self) -> None:
        """Close the log file if open."""
        with self._lock:
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
