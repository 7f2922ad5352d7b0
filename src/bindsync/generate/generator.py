"""Binding generator interface and registry."""

from __future__ import annotations

import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from bindsync.core.errors import GenerationError
from bindsync.core.models import GenerationConfig, SourceTree

logger = logging.getLogger(__name__)


class BindingGenerator(ABC):
    """Abstract base class for binding generators.

    Implementations turn (config, source tree) into binding source bytes
    and raise GenerationError for unresolvable headers, ABI mismatches and
    any other failure to produce output.
    """

    # Set True only when the tool is known to produce byte-stable output.
    deterministic: bool = False

    @abstractmethod
    def generate(self, config: GenerationConfig, source_tree: SourceTree) -> bytes:
        ...


class CommandGenerator(BindingGenerator):
    """Run an external generator (e.g. ``bindgen``) and capture its output.

    ``argv`` may contain ``{header}``, ``{source}`` and ``{platform}``
    placeholders. The rendered config arguments are appended. When
    ``output_path`` is set the tool is expected to write a file instead of
    printing to stdout: ``output_path`` names it inside a private temporary
    directory created for each call, and ``{output}`` expands to its full
    path. The source tree is shared by concurrent sessions and is never
    written to.
    """

    def __init__(
        self,
        argv: list[str],
        header: str = "",
        output_path: str | None = None,
        timeout: float = 600.0,
        deterministic: bool = False,
    ):
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv = list(argv)
        self.header = header
        self.output_path = output_path
        self.timeout = timeout
        self.deterministic = deterministic

    def _placeholders(self, config: GenerationConfig, source_tree: SourceTree) -> dict[str, str]:
        header = source_tree.path / self.header if self.header else source_tree.path
        return {
            "header": header.as_posix(),
            "source": source_tree.path.as_posix(),
            "platform": config.platform.key,
        }

    def build_command(
        self,
        config: GenerationConfig,
        source_tree: SourceTree,
        output: Path | None = None,
    ) -> list[str]:
        values = self._placeholders(config, source_tree)
        if output is not None:
            values["output"] = output.as_posix()
        argv = [arg.format(**values) for arg in self.argv]
        return argv + config.to_args()

    def generate(self, config: GenerationConfig, source_tree: SourceTree) -> bytes:
        if self.output_path is None:
            return self._run(config, source_tree, None)
        with tempfile.TemporaryDirectory(prefix=f"bindsync-{config.platform.key}-") as out_dir:
            out_file = Path(out_dir) / self.output_path.format(**self._placeholders(config, source_tree))
            out_file.parent.mkdir(parents=True, exist_ok=True)
            return self._run(config, source_tree, out_file)

    def _run(self, config: GenerationConfig, source_tree: SourceTree, out_file: Path | None) -> bytes:
        cmd = self.build_command(config, source_tree, out_file)
        logger.debug("running generator for %s: %s", config.platform.key, cmd)
        try:
            result = subprocess.run(
                cmd,
                cwd=str(source_tree.path),
                capture_output=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise GenerationError(f"Generator executable not found: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise GenerationError(f"Generator timed out after {self.timeout}s") from e

        stderr = result.stderr.decode(errors="replace")
        if result.returncode != 0:
            raise GenerationError(
                f"Generator exited with status {result.returncode} for {config.platform.key}",
                stderr=stderr,
            )

        if out_file is None:
            output = result.stdout
        elif out_file.is_file():
            output = out_file.read_bytes()
        else:
            raise GenerationError(
                f"Generator did not write {self.output_path} for {config.platform.key}",
                stderr=stderr,
            )

        if not output.strip():
            raise GenerationError(
                f"Generator produced empty output for {config.platform.key}",
                stderr=stderr,
            )
        return output


# Generator registry
_GENERATORS: dict[str, type[BindingGenerator]] = {}


def register_generator(name: str):
    """Decorator to register a generator class."""

    def wrapper(cls):
        _GENERATORS[name] = cls
        return cls

    return wrapper


def get_generator(name: str, **kwargs) -> BindingGenerator:
    """Get an instantiated generator by name."""
    if name not in _GENERATORS:
        raise ValueError(f"Unknown generator: {name}. Available: {list(_GENERATORS.keys())}")
    return _GENERATORS[name](**kwargs)


@register_generator("bindgen")
class BindgenGenerator(CommandGenerator):
    """rust-bindgen CLI: ``bindgen <header> [options] -- [clang args]``."""

    def __init__(self, header: str, executable: str = "bindgen", **kwargs):
        argv = [executable, "{header}"]
        if kwargs.get("output_path"):
            argv += ["-o", "{output}"]
        super().__init__(argv, header=header, **kwargs)


register_generator("command")(CommandGenerator)
