"""Pipeline definition: the matrix, capabilities and publish settings for a run.

Usage (``pipeline.py`` in the wrapper repository)::

    from bindsync import Pipeline, PlatformTarget
    from bindsync.generate import BindgenGenerator, load_rules
    from bindsync.publish import session_clones
    from bindsync.source import GitSourceProvider
    from bindsync.verify import CommandTestRunner

    pipeline = Pipeline(
        "miniaudio-sys",
        platforms=[PlatformTarget("linux"), PlatformTarget("windows"), PlatformTarget("macos")],
        rules=load_rules("bindgen-rules.yaml"),
        generator=BindgenGenerator(header="miniaudio.h"),
        test_runner=CommandTestRunner(["cargo", "test", "--manifest-path=miniaudio-sys/Cargo.toml"]),
        artifact_path_template="miniaudio-sys/bindings/{os}.rs",
        source_provider=GitSourceProvider(".", "miniaudio-sys/miniaudio"),
        mainline_factory=session_clones("git@github.com:org/repo.git", "/tmp/bindsync"),
        watch=[".gitmodules", "bindgen-rules.yaml", "pipeline.py"],
    )
"""

from __future__ import annotations

import importlib.util
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from bindsync.core.errors import PipelineError
from bindsync.core.models import PlatformTarget
from bindsync.generate.generator import BindingGenerator
from bindsync.generate.rules import DEFAULT_RULES, PlatformRule
from bindsync.publish.vcs import Mainline
from bindsync.source import SourceProvider
from bindsync.verify import TestRunner

DEFAULT_ARTIFACT_TEMPLATE = "bindings/{key}.rs"


@dataclass
class Pipeline:
    """The full declared binding-sync job."""

    name: str
    platforms: list[PlatformTarget] = field(default_factory=list)
    rules: list[PlatformRule] = field(default_factory=lambda: list(DEFAULT_RULES))
    generator: BindingGenerator | None = None
    test_runner: TestRunner | None = None
    artifact_path_template: str = DEFAULT_ARTIFACT_TEMPLATE
    source_provider: SourceProvider | None = None
    mainline_factory: Callable[[PlatformTarget], Mainline] | None = None
    watch: list[str] = field(default_factory=list)
    retry_budget: int | None = None  # None = settings
    retry_backoff: float | None = None
    verify_determinism: bool = True
    state_dir: str | None = None
    root_dir: str = "."  # watched paths resolve against this
    source_file: str | None = None  # set by load_pipeline, part of the trigger

    def add_platform(self, target: PlatformTarget) -> None:
        self.platforms.append(target)

    def add_rule(self, rule: PlatformRule) -> None:
        self.rules.append(rule)

    def artifact_path(self, target: PlatformTarget) -> str:
        """Repository-relative artifact path for a platform."""
        try:
            path = self.artifact_path_template.format(
                os=target.os, toolchain=target.toolchain, key=target.key,
            )
        except KeyError as e:
            raise PipelineError(
                f"Unknown placeholder {e} in artifact_path_template "
                f"(available: os, toolchain, key)"
            ) from e
        return Path(path).as_posix()


def validate_pipeline(pipeline: Pipeline, require_capabilities: bool = True) -> None:
    """Validate pipeline definition.

    Artifact paths must be pairwise disjoint: two platforms writing the
    same path could produce a genuine merge conflict on publish. Paths are
    compared case-insensitively since Windows and macOS checkouts fold case.
    """
    if not pipeline.platforms:
        raise PipelineError("Pipeline must declare at least one platform")

    keys = [t.key for t in pipeline.platforms]
    dupes = sorted({k for k in keys if keys.count(k) > 1})
    if dupes:
        raise PipelineError(f"Duplicate platforms: {dupes}")

    owners: dict[str, str] = {}
    for target in pipeline.platforms:
        path = pipeline.artifact_path(target)
        if Path(path).is_absolute() or ".." in Path(path).parts:
            raise PipelineError(f"Artifact path for {target.key} must stay inside the repository: {path}")
        folded = path.casefold()
        if folded in owners:
            raise PipelineError(
                f"Platforms '{owners[folded]}' and '{target.key}' share artifact path {path}; "
                f"include {{os}} or {{key}} in artifact_path_template"
            )
        owners[folded] = target.key

    if pipeline.retry_budget is not None and pipeline.retry_budget < 1:
        raise PipelineError("retry_budget must be at least 1")

    if require_capabilities:
        missing = [
            name for name in ("generator", "test_runner", "source_provider", "mainline_factory")
            if getattr(pipeline, name) is None
        ]
        if missing:
            raise PipelineError(f"Pipeline '{pipeline.name}' is missing: {', '.join(missing)}")


def load_pipeline(path: str, require_capabilities: bool = True) -> Pipeline:
    """Import a Python pipeline module and extract the `pipeline` variable."""
    filepath = Path(path).resolve()
    if not filepath.exists():
        raise FileNotFoundError(f"Pipeline file not found: {path}")

    module_name = f"_bindsync_pipeline_{filepath.stem}"
    spec = importlib.util.spec_from_file_location(module_name, filepath)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load pipeline module: {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    pipeline = getattr(module, "pipeline", None)
    if pipeline is None:
        raise ValueError(f"Pipeline module {path} must define a 'pipeline' variable")
    if not isinstance(pipeline, Pipeline):
        raise TypeError(f"'pipeline' variable must be a Pipeline instance, got {type(pipeline)}")

    if pipeline.root_dir == ".":
        pipeline.root_dir = str(filepath.parent)
    pipeline.source_file = str(filepath)
    validate_pipeline(pipeline, require_capabilities=require_capabilities)
    return pipeline
