"""Publishing candidates to the shared mainline."""

from bindsync.publish.controller import PublishController, PublishOutcome, current_record
from bindsync.publish.vcs import (
    GitMainline,
    Mainline,
    PushResult,
    RebaseResult,
    clone_mainline,
    session_clones,
)

__all__ = [
    "GitMainline",
    "Mainline",
    "PublishController",
    "PublishOutcome",
    "PushResult",
    "RebaseResult",
    "clone_mainline",
    "current_record",
    "session_clones",
]
