"""Core data models for bindsync."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bindsync.core.fingerprint import Fingerprint, fingerprint_value, make_fingerprint

DEFAULT_TOOLCHAIN = "stable"


def content_digest(content: bytes) -> str:
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


@dataclass(frozen=True)
class PlatformTarget:
    """One OS/toolchain pair in the build matrix."""

    os: str
    toolchain: str = DEFAULT_TOOLCHAIN

    @property
    def key(self) -> str:
        if self.toolchain == DEFAULT_TOOLCHAIN:
            return self.os
        return f"{self.os}-{self.toolchain}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class SourceTree:
    """Read-only pinned checkout of the native source."""

    path: Path
    revision: str


@dataclass
class GenerationConfig:
    """Everything the binding generator needs for one platform."""

    platform: PlatformTarget
    include_paths: list[str] = field(default_factory=list)
    defines: dict[str, str | None] = field(default_factory=dict)
    allowlist: list[str] = field(default_factory=list)
    blocklist: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    extra_args: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        """Render a stable argument list (bindgen-style).

        Generator options come first, then a ``--`` separator followed by
        the clang arguments (defines sorted by name, includes in order).
        """
        args: list[str] = []
        for pattern in self.allowlist:
            args += ["--allowlist-item", pattern]
        for pattern in self.blocklist:
            args += ["--blocklist-item", pattern]
        args += list(self.flags)
        clang: list[str] = []
        for name in sorted(self.defines):
            value = self.defines[name]
            clang.append(f"-D{name}" if value is None else f"-D{name}={value}")
        clang += [f"-I{path}" for path in self.include_paths]
        clang += list(self.extra_args)
        if clang:
            args += ["--", *clang]
        return args

    def fingerprint(self) -> Fingerprint:
        return make_fingerprint(
            "bindsync:config:v1",
            {
                "platform": fingerprint_value(self.platform.key),
                "args": fingerprint_value(self.to_args()),
            },
        )

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.key,
            "include_paths": list(self.include_paths),
            "defines": dict(self.defines),
            "allowlist": list(self.allowlist),
            "blocklist": list(self.blocklist),
            "flags": list(self.flags),
            "extra_args": list(self.extra_args),
        }


@dataclass
class CandidateArtifact:
    """Generator output not yet verified or committed."""

    platform: PlatformTarget
    source_revision: str
    path: str  # repository-relative, platform-scoped
    content: bytes
    config_fingerprint: str = ""

    @property
    def digest(self) -> str:
        return content_digest(self.content)


@dataclass
class PublishRecord:
    """The artifact currently live on the mainline for one platform."""

    platform: PlatformTarget
    path: str
    commit_id: str
    digest: str | None = None  # None when nothing is published yet


class SessionState(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    VERIFYING = "verifying"
    DIFFING = "diffing"
    COMMITTING = "committing"
    PUSHING = "pushing"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SessionOutcome:
    """Result of one platform session, reported independently of siblings."""

    platform: PlatformTarget
    state: SessionState = SessionState.PENDING
    stage: str | None = None  # stage that failed, if any
    error_kind: str | None = None
    message: str = ""
    commit_id: str | None = None
    attempts: int = 0
    no_op: bool = False
    elapsed: float = 0.0
    artifact_path: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state == SessionState.DONE

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.key,
            "state": self.state.value,
            "stage": self.stage,
            "error_kind": self.error_kind,
            "message": self.message,
            "commit_id": self.commit_id,
            "attempts": self.attempts,
            "no_op": self.no_op,
            "elapsed": round(self.elapsed, 3),
            "artifact_path": self.artifact_path,
        }
