"""Generation session: resolve config, run the generator, produce a candidate."""

from __future__ import annotations

from collections.abc import Callable

from bindsync.core.models import CandidateArtifact, GenerationConfig, PlatformTarget, SourceTree
from bindsync.generate.canonicalize import canonicalize, check_deterministic
from bindsync.generate.generator import BindingGenerator
from bindsync.generate.rules import PlatformRule, resolve_config


class GenerationSession:
    """Produce one platform's Candidate Artifact from the pinned source tree.

    Output from a generator that does not declare itself deterministic is
    always canonicalized. With ``verify_determinism`` (the default) the
    generator runs twice and both outputs must match byte for byte, which
    also catches tools that merely claim to be deterministic.

    Canonicalization only drops volatile lines and normalizes whitespace.
    It does not reorder items, so a generator that emits symbols in an
    unstable order fails the double run instead of being repaired.
    """

    def __init__(
        self,
        target: PlatformTarget,
        source_tree: SourceTree,
        generator: BindingGenerator,
        artifact_path: str,
        rules: list[PlatformRule] | None = None,
        verify_determinism: bool = True,
        canonicalizer: Callable[[bytes], bytes] = canonicalize,
    ):
        self.target = target
        self.source_tree = source_tree
        self.generator = generator
        self.artifact_path = artifact_path
        self.rules = rules
        self.verify_determinism = verify_determinism
        self.canonicalizer = canonicalizer
        self._config: GenerationConfig | None = None

    def resolve(self) -> GenerationConfig:
        if self._config is None:
            self._config = resolve_config(self.target, self.source_tree, self.rules)
        return self._config

    def _generate_once(self, config: GenerationConfig) -> bytes:
        output = self.generator.generate(config, self.source_tree)
        if not self.generator.deterministic:
            output = self.canonicalizer(output)
        return output

    def run(self) -> CandidateArtifact:
        """Generate the candidate. GenerationError propagates to the caller."""
        config = self.resolve()
        content = self._generate_once(config)
        if self.verify_determinism:
            check_deterministic(content, self._generate_once(config), label=self.target.key)

        return CandidateArtifact(
            platform=self.target,
            source_revision=self.source_tree.revision,
            path=self.artifact_path,
            content=content,
            config_fingerprint=config.fingerprint().digest,
        )
