"""bindsync - keep generated FFI bindings in sync with a pinned native library.

Usage:
    from bindsync import Pipeline, PlatformTarget, run

    pipeline = Pipeline("miniaudio-sys", platforms=[PlatformTarget("linux"), PlatformTarget("windows")])
    pipeline.generator = BindgenGenerator(header="miniaudio.h")
    pipeline.test_runner = CommandTestRunner(["cargo", "test"])
    pipeline.source_provider = GitSourceProvider(".", "miniaudio-sys/miniaudio")
    pipeline.mainline_factory = session_clones("git@github.com:org/repo.git", "/tmp/bindsync")
    result = run(pipeline)
"""

from bindsync.core.errors import (
    BindsyncError,
    ConfigError,
    ContentConflictError,
    GenerationError,
    IntegrationConflictError,
    PipelineError,
    PublishError,
    VerificationError,
)
from bindsync.core.models import (
    CandidateArtifact,
    GenerationConfig,
    PlatformTarget,
    PublishRecord,
    SessionOutcome,
    SessionState,
    SourceTree,
)
from bindsync.pipeline import Pipeline, load_pipeline
from bindsync.runner import RunResult, run

__all__ = [
    "BindsyncError",
    "CandidateArtifact",
    "ConfigError",
    "ContentConflictError",
    "GenerationConfig",
    "GenerationError",
    "IntegrationConflictError",
    "Pipeline",
    "PipelineError",
    "PlatformTarget",
    "PublishError",
    "PublishRecord",
    "RunResult",
    "SessionOutcome",
    "SessionState",
    "SourceTree",
    "VerificationError",
    "load_pipeline",
    "run",
]

__version__ = "0.1.0"
