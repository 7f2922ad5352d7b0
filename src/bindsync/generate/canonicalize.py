"""Canonicalizing post-process for generator output.

Generators that stamp a date or their own version into the file would
produce a spurious diff on every run and trigger a publish. These lines
are dropped before the output becomes a candidate.
"""

from __future__ import annotations

import difflib
import re

from bindsync.core.errors import GenerationError

DEFAULT_VOLATILE_PATTERNS: tuple[str, ...] = (
    r"^\s*(//|#|/\*|\*)\s*(generated|created)\s+(on|at)\b",
    r"^\s*(//|#|/\*|\*).*\b\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2})?",
    r"^\s*(//|#|/\*)\s*automatically generated by rust-bindgen\b",
)


def canonicalize(
    content: bytes,
    volatile_patterns: tuple[str, ...] | list[str] = DEFAULT_VOLATILE_PATTERNS,
) -> bytes:
    """Normalize line endings, trailing whitespace and volatile banner lines.

    Ends with exactly one newline. Output of canonicalize is a fixed point:
    canonicalize(canonicalize(x)) == canonicalize(x). Item order is kept
    as is; unstable symbol ordering is left for the determinism check.
    """
    compiled = [re.compile(p, re.IGNORECASE) for p in volatile_patterns]
    text = content.decode("utf-8", errors="surrogateescape")
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    lines = []
    for line in text.split("\n"):
        if any(p.search(line) for p in compiled):
            continue
        lines.append(line.rstrip())

    while lines and not lines[-1]:
        lines.pop()
    while lines and not lines[0]:
        lines.pop(0)
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8", errors="surrogateescape")


def check_deterministic(first: bytes, second: bytes, label: str = "") -> None:
    """Raise GenerationError if two generator runs disagree."""
    if first == second:
        return
    diff = "".join(difflib.unified_diff(
        first.decode("utf-8", errors="replace").splitlines(keepends=True),
        second.decode("utf-8", errors="replace").splitlines(keepends=True),
        fromfile="a/run1",
        tofile="b/run2",
        n=1,
    ))
    # Keep the message readable; the first hunk is enough to spot a timestamp.
    preview = "\n".join(diff.splitlines()[:20])
    where = f" for {label}" if label else ""
    raise GenerationError(f"Generator output is not deterministic{where}", stderr=preview)
