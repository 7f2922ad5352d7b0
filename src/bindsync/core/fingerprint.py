"""Semantic fingerprinting: self-describing, versioned hashes for configs and triggers."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass


@dataclass(frozen=True)
class Fingerprint:
    """A self-describing, versioned hash.

    Each fingerprint records its scheme (how it was generated) and its
    components (what went into it), so a mismatch can be explained
    component by component.
    """

    scheme: str  # e.g. "bindsync:config:v1", "bindsync:trigger:v1"
    digest: str  # SHA256 hex (full)
    components: dict[str, str]  # component_name -> component_hash

    def matches(self, other: Fingerprint | None) -> bool:
        """Match requires same scheme AND same digest."""
        if other is None:
            return False
        return self.scheme == other.scheme and self.digest == other.digest

    def explain_diff(self, other: Fingerprint | None) -> list[str]:
        """Human-readable list of reasons these fingerprints differ."""
        if other is None:
            return ["no stored fingerprint"]
        if self.scheme != other.scheme:
            return [f"scheme changed ({other.scheme} -> {self.scheme})"]
        all_keys = sorted(set(self.components) | set(other.components))
        return [f"{k} changed" for k in all_keys if self.components.get(k) != other.components.get(k)]

    def to_dict(self) -> dict:
        """Serialize to a plain dict suitable for JSON storage."""
        return {
            "scheme": self.scheme,
            "digest": self.digest,
            "components": dict(self.components),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Fingerprint | None:
        """Deserialize from a dict. Returns None if data is empty/missing."""
        if not data or "scheme" not in data:
            return None
        return cls(
            scheme=data["scheme"],
            digest=data["digest"],
            components=data.get("components", {}),
        )


def compute_digest(components: dict[str, str]) -> str:
    """Deterministic digest from sorted component hashes."""
    parts = "|".join(f"{k}={v}" for k, v in sorted(components.items()))
    return hashlib.sha256(parts.encode()).hexdigest()


def fingerprint_value(obj) -> str:
    """Deterministic SHA256 prefix for any common Python value.

    Built-in hash() is salted per process, so values are serialized to a
    canonical string form first and hashed with SHA256.
    """
    if obj is None:
        raw = ""
    elif isinstance(obj, bytes):
        return hashlib.sha256(obj).hexdigest()[:16]
    elif isinstance(obj, str):
        raw = obj
    elif isinstance(obj, dict):
        raw = json.dumps(obj, sort_keys=True, default=str)
    elif isinstance(obj, (list, tuple)):
        # Order matters for argument lists, so no sorting here.
        raw = json.dumps(list(obj), default=str)
    else:
        raw = str(obj)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def make_fingerprint(scheme: str, components: dict[str, str]) -> Fingerprint:
    """Build a fingerprint from already-hashed components."""
    return Fingerprint(
        scheme=scheme,
        digest=compute_digest(components),
        components=dict(components),
    )
