"""Change watcher: decide whether a regeneration run is needed.

A run is due when the pinned native source revision, the pipeline file,
any watched file, or the resolved generation config of any platform
changed since the last run in which no platform failed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from bindsync.core.errors import ConfigError, atomic_write
from bindsync.core.fingerprint import Fingerprint, fingerprint_value, make_fingerprint
from bindsync.core.models import SourceTree
from bindsync.generate.rules import resolve_config
from bindsync.pipeline import Pipeline

TRIGGER_FILE = "trigger.json"


@dataclass
class TriggerDecision:
    should_run: bool
    reasons: list[str] = field(default_factory=list)
    fingerprint: Fingerprint | None = None


def _file_value(path: Path) -> str:
    # Missing files hash as empty so that deleting one is a change.
    return fingerprint_value(path.read_bytes() if path.is_file() else b"")


def compute_trigger_fingerprint(pipeline: Pipeline, source_tree: SourceTree) -> Fingerprint:
    """Hash everything a regeneration depends on.

    Each platform contributes the digest of its resolved generation
    config, so a rule change defined in code (or in a file nobody listed
    in ``watch``) still triggers a run. A platform no rule matches hashes
    its error message; the session reports the ConfigError itself.
    """
    root = Path(pipeline.root_dir)
    components = {"source_revision": fingerprint_value(source_tree.revision)}
    if pipeline.source_file:
        components["pipeline"] = _file_value(Path(pipeline.source_file))
    for rel in sorted(set(pipeline.watch)):
        components[f"watch:{rel}"] = _file_value(root / rel)
    components["platforms"] = fingerprint_value(sorted(t.key for t in pipeline.platforms))
    for target in pipeline.platforms:
        try:
            digest = resolve_config(target, source_tree, pipeline.rules).fingerprint().digest
        except ConfigError as e:
            digest = f"error:{e}"
        components[f"config:{target.key}"] = fingerprint_value(digest)
    return make_fingerprint("bindsync:trigger:v2", components)


def load_trigger(state_dir: Path) -> Fingerprint | None:
    path = state_dir / TRIGGER_FILE
    if not path.exists():
        return None
    try:
        return Fingerprint.from_dict(json.loads(path.read_text()))
    except (json.JSONDecodeError, KeyError, TypeError):
        return None


def check_trigger(pipeline: Pipeline, state_dir: Path, source_tree: SourceTree) -> TriggerDecision:
    current = compute_trigger_fingerprint(pipeline, source_tree)
    stored = load_trigger(state_dir)
    if current.matches(stored):
        return TriggerDecision(should_run=False, fingerprint=current)
    return TriggerDecision(
        should_run=True,
        reasons=current.explain_diff(stored),
        fingerprint=current,
    )


def record_trigger(state_dir: Path, fingerprint: Fingerprint) -> None:
    state_dir.mkdir(parents=True, exist_ok=True)
    atomic_write(state_dir / TRIGGER_FILE, json.dumps(fingerprint.to_dict(), indent=2))
