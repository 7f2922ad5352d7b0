"""miniaudio-sys bindings: Linux, Windows and macOS from one pinned submodule.

Run from the wrapper repository root:

    bindsync check                 # would a run trigger, and why
    bindsync plan                  # resolved bindgen arguments per platform
    bindsync run -p linux          # on the Linux CI host
    bindsync run --dry-run -v      # generate + test everything, push nothing
"""

import os

from bindsync import Pipeline, PlatformTarget
from bindsync.generate import BindgenGenerator, load_rules
from bindsync.publish import session_clones
from bindsync.source import GitSourceProvider
from bindsync.verify import CommandTestRunner

MAINLINE_URL = os.environ.get("MINIAUDIO_RS_REMOTE", "git@github.com:miniaudio-rs/miniaudio-rs.git")

pipeline = Pipeline("miniaudio-sys")

pipeline.add_platform(PlatformTarget("linux"))
pipeline.add_platform(PlatformTarget("windows"))
pipeline.add_platform(PlatformTarget("macos"))

pipeline.rules = load_rules(os.path.join(os.path.dirname(__file__), "bindgen-rules.yaml"))
pipeline.generator = BindgenGenerator(header="miniaudio.h")
pipeline.artifact_path_template = "miniaudio-sys/bindings/{os}.rs"

pipeline.source_provider = GitSourceProvider(".", "miniaudio-sys/miniaudio", update=True)

# Expects miniaudio-sys/build.rs to read bindings from $BINDSYNC_ARTIFACT when set.
pipeline.test_runner = CommandTestRunner([
    "cargo", "test", "-vv",
    "--manifest-path=miniaudio-sys/Cargo.toml",
    "--no-default-features", "--features", "ma-log-level-error",
], workdir=".")

pipeline.mainline_factory = session_clones(MAINLINE_URL, os.path.join(".bindsync", "clones"))

pipeline.watch = [
    ".gitmodules",
    "bindgen-rules.yaml",
    "pipeline.py",
    "miniaudio-sys/build.rs",
]
