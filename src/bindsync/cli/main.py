"""bindsync CLI: main entry point and shared utilities."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console

console = Console()

# Color per session state
STATE_COLORS = {
    "done": "green",
    "failed": "red",
    "retrying": "yellow",
}


def get_state_style(state: str) -> str:
    """Return Rich style string for a session state."""
    return STATE_COLORS.get(state, "white")


def _resolve_pipeline_path(
    ctx: click.Context, param: click.Parameter, value: str | None,
) -> str:
    """Click callback: default to ./pipeline.py when no argument is given."""
    if value is not None:
        return value
    default = str(Path.cwd() / "pipeline.py")
    if not Path(default).exists():
        console.print(
            "[red]Error:[/red] No pipeline file specified and "
            "[bold]pipeline.py[/bold] not found in the current directory."
        )
        sys.exit(1)
    return default


def pipeline_argument(fn):
    """Shared Click argument decorator for PIPELINE_PATH with ./pipeline.py default."""
    return click.argument(
        "pipeline_path",
        required=False,
        default=None,
        callback=_resolve_pipeline_path,
        is_eager=False,
    )(fn)


def load_or_exit(pipeline_path: str, require_capabilities: bool = True):
    """Load a pipeline module, printing a readable error and exiting on failure."""
    from bindsync.pipeline import load_pipeline

    try:
        return load_pipeline(pipeline_path, require_capabilities=require_capabilities)
    except Exception as e:
        console.print(f"[red]Error loading pipeline:[/red] {e}")
        sys.exit(1)


@click.group()
def main():
    """bindsync: regenerate, verify and publish FFI bindings per platform."""
    pass


def cli():
    """Entrypoint that loads .env before running the CLI."""
    from dotenv import load_dotenv

    load_dotenv()
    main()


# Import subcommand modules to register commands
from bindsync.cli.info_commands import plan, status  # noqa: E402
from bindsync.cli.run_commands import check, run_command  # noqa: E402

main.add_command(run_command, name="run")
main.add_command(check)
main.add_command(plan)
main.add_command(status)
