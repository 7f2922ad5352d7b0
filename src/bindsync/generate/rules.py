"""Table-driven generation config resolution.

Platform-conditional behaviour lives in an ordered list of ``PlatformRule``
rows instead of per-platform control flow. Resolving a platform walks the
table once and folds every matching row into a ``GenerationConfig``:

- list fields (include paths, allow/block lists, flags, extra args)
  accumulate in table order, first occurrence wins on duplicates
- ``defines`` merge, later rows override earlier keys
- ``{source}`` in an include path expands to the source tree path;
  relative include paths resolve against the source tree
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from bindsync.core.errors import ConfigError
from bindsync.core.models import GenerationConfig, PlatformTarget, SourceTree

WILDCARD = "*"


@dataclass
class PlatformRule:
    """One row of the rule table."""

    match_os: str = WILDCARD
    match_toolchain: str = WILDCARD
    include_paths: list[str] = field(default_factory=list)
    defines: dict[str, str | None] = field(default_factory=dict)
    allowlist: list[str] = field(default_factory=list)
    blocklist: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    extra_args: list[str] = field(default_factory=list)

    def matches(self, target: PlatformTarget) -> bool:
        return (
            self.match_os in (WILDCARD, target.os)
            and self.match_toolchain in (WILDCARD, target.toolchain)
        )

    @property
    def is_wildcard(self) -> bool:
        return self.match_os == WILDCARD and self.match_toolchain == WILDCARD


# OS identity macros only; library-specific toggles belong in the pipeline.
DEFAULT_RULES: list[PlatformRule] = [
    PlatformRule(include_paths=["{source}"]),
    PlatformRule(match_os="linux", defines={"__linux__": "1"}),
    PlatformRule(match_os="macos", defines={"__APPLE__": "1"}),
    PlatformRule(match_os="windows", defines={"_WIN32": "1"}),
]


def _extend_unique(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


def _expand_include(path: str, source_tree: SourceTree) -> str:
    expanded = path.replace("{source}", str(source_tree.path))
    candidate = Path(expanded)
    if not candidate.is_absolute():
        candidate = source_tree.path / candidate
    return candidate.as_posix()


def resolve_config(
    target: PlatformTarget,
    source_tree: SourceTree,
    rules: list[PlatformRule] | None = None,
) -> GenerationConfig:
    """Fold every rule matching ``target`` into a GenerationConfig.

    Pure: the result depends only on the target, the source tree and the
    rule table. A target matched only by wildcard rows still resolves;
    a target matched by no row at all raises ConfigError.
    """
    rules = DEFAULT_RULES if rules is None else rules
    matched = [rule for rule in rules if rule.matches(target)]
    if not matched:
        raise ConfigError(f"No generation rule matches platform '{target.key}'")

    config = GenerationConfig(platform=target)
    for rule in matched:
        _extend_unique(
            config.include_paths,
            [_expand_include(p, source_tree) for p in rule.include_paths],
        )
        config.defines.update(rule.defines)
        _extend_unique(config.allowlist, rule.allowlist)
        _extend_unique(config.blocklist, rule.blocklist)
        _extend_unique(config.flags, rule.flags)
        config.extra_args.extend(rule.extra_args)
    return config


_RULE_FIELDS = {f.name for f in fields(PlatformRule)}
_RULE_ALIASES = {"os": "match_os", "toolchain": "match_toolchain"}


def rule_from_dict(data: dict) -> PlatformRule:
    """Build a PlatformRule from a mapping, accepting ``os``/``toolchain`` aliases."""
    if not isinstance(data, dict):
        raise ConfigError(f"Rule entries must be mappings, got {type(data).__name__}")
    normalized = {_RULE_ALIASES.get(k, k): v for k, v in data.items()}
    unknown = sorted(set(normalized) - _RULE_FIELDS)
    if unknown:
        raise ConfigError(f"Unknown rule keys: {unknown}")

    defines = normalized.get("defines") or {}
    if isinstance(defines, list):
        # ["FOO", "BAR=1"] shorthand
        parsed: dict[str, str | None] = {}
        for item in defines:
            name, sep, value = str(item).partition("=")
            parsed[name] = value if sep else None
        normalized["defines"] = parsed
    elif isinstance(defines, dict):
        normalized["defines"] = {
            str(k): (None if v is None else str(v)) for k, v in defines.items()
        }
    else:
        raise ConfigError("'defines' must be a mapping or a list")

    for key in ("include_paths", "allowlist", "blocklist", "flags", "extra_args"):
        value = normalized.get(key)
        if value is None:
            continue
        if not isinstance(value, list):
            raise ConfigError(f"'{key}' must be a list")
        normalized[key] = [str(v) for v in value]

    for key in ("match_os", "match_toolchain"):
        if key in normalized:
            normalized[key] = str(normalized[key])

    return PlatformRule(**normalized)


def load_rules(path: str | Path) -> list[PlatformRule]:
    """Load a YAML rule table.

    The file holds either a list of rule mappings or a mapping with a
    ``rules`` key::

        rules:
          - include_paths: ["{source}"]
          - os: windows
            defines: {MA_WIN32: null}
            extra_args: ["--target=x86_64-pc-windows-msvc"]
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Rule file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise ConfigError(f"{path}: expected a list of rules")
    return [rule_from_dict(entry) for entry in data]
