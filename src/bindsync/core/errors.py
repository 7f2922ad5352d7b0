"""bindsync error types and utilities."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str) -> None:
    """Write content to a file atomically using temp file + rename.

    Writes to a temporary file in the same directory, fsyncs it,
    then atomically replaces the target path.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        os.write(fd, content.encode())
        os.fsync(fd)
        os.close(fd)
        os.replace(tmp, str(path))
    except BaseException:
        os.close(fd)
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class BindsyncError(Exception):
    """Base exception for bindsync."""

    kind = "error"


class PipelineError(BindsyncError):
    """Error in pipeline definition."""

    kind = "pipeline"


class ConfigError(BindsyncError):
    """Error resolving a generation config or loading a rule table."""

    kind = "config"


class GenerationError(BindsyncError):
    """The binding generator rejected the config or source tree.

    Fatal to the platform session; no candidate is produced.
    """

    kind = "generation"

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class VerificationError(BindsyncError):
    """The dependent test suite failed against a candidate artifact."""

    kind = "verification"

    def __init__(self, message: str, failures: list[str] | None = None):
        super().__init__(message)
        self.failures = list(failures or [])


class IntegrationConflictError(BindsyncError):
    """Push kept losing the race for the mainline tip until the retry budget ran out."""

    kind = "integration_conflict"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ContentConflictError(BindsyncError):
    """Rebase found overlapping edits, so artifact paths are not disjoint."""

    kind = "content_conflict"

    def __init__(self, message: str, paths: list[str] | None = None):
        super().__init__(message)
        self.paths = list(paths or [])


class PublishError(BindsyncError):
    """Unexpected version control failure while publishing."""

    kind = "publish"
