"""Run commands: bindsync run, bindsync check."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich import box
from rich.panel import Panel
from rich.table import Table

from bindsync.cli.main import console, get_state_style, load_or_exit, pipeline_argument


def _outcome_table(result) -> Table:
    table = Table(title="Platform Results", box=box.ROUNDED)
    table.add_column("Platform", style="bold")
    table.add_column("State", justify="center")
    table.add_column("Artifact")
    table.add_column("Commit")
    table.add_column("Attempts", justify="right")
    table.add_column("Detail")

    for outcome in result.outcomes:
        style = get_state_style(outcome.state.value)
        if outcome.error_kind:
            detail = f"[red]{outcome.error_kind}[/red] at {outcome.stage}: {outcome.message}"
        else:
            detail = outcome.message
        table.add_row(
            outcome.platform.key,
            f"[{style}]{outcome.state.value}[/{style}]",
            outcome.artifact_path,
            (outcome.commit_id or "-")[:12],
            str(outcome.attempts),
            detail,
        )
    return table


@click.command()
@pipeline_argument
@click.option("--force", is_flag=True, default=False, help="Run even if nothing watched changed")
@click.option("--dry-run", is_flag=True, default=False, help="Generate and verify, but do not commit or push")
@click.option("--verbose", "-v", count=True, help="Verbosity level: -v stage transitions, -vv push attempts")
@click.option("--jobs", "-j", default=0, type=int, help="Concurrent platform sessions (default: one per platform)")
@click.option("--retry-budget", default=None, type=click.IntRange(min=1), help="Push attempts per platform")
@click.option("--platform", "-p", "platforms", multiple=True, help="Only run this platform (repeatable)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def run_command(
    pipeline_path: str,
    force: bool,
    dry_run: bool,
    verbose: int,
    jobs: int,
    retry_budget: int | None,
    platforms: tuple[str, ...],
    output_json: bool,
):
    """Regenerate, verify and publish bindings for every platform.

    PIPELINE_PATH defaults to pipeline.py in the current directory.
    """
    from bindsync.runner import run

    pipeline = load_or_exit(pipeline_path)

    if not output_json:
        console.print(
            Panel(
                f"[bold]Pipeline:[/bold] {pipeline.name}\n"
                f"[bold]Platforms:[/bold] {', '.join(platforms or [t.key for t in pipeline.platforms])}\n"
                f"[bold]Mode:[/bold] {'dry run' if dry_run else 'publish'}",
                title="[bold cyan]bindsync[/bold cyan]",
                border_style="cyan",
            )
        )

    try:
        result = run(
            pipeline,
            force=force,
            dry_run=dry_run,
            verbosity=0 if output_json else verbose,
            max_workers=jobs or None,
            retry_budget=retry_budget,
            platforms=list(platforms) or None,
            console=console,
        )
    except Exception as e:
        console.print(f"\n[red]Run failed:[/red] {e}")
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.succeeded else 1)

    if result.skipped:
        console.print(
            f"[green]Up to date[/green] at source revision {result.source_revision[:12]} "
            "[dim](use --force to run anyway)[/dim]"
        )
        return

    if result.trigger_reasons:
        console.print(f"[dim]Triggered by: {', '.join(result.trigger_reasons)}[/dim]")

    console.print()
    console.print(_outcome_table(result))
    console.print(
        f"\n[bold]{result.published} published, {result.unchanged} unchanged, "
        f"{result.failed} failed[/bold] [dim]({result.total_time:.1f}s)[/dim]"
    )
    sys.exit(0 if result.succeeded else 1)


@click.command()
@pipeline_argument
def check(pipeline_path: str):
    """Report whether watched inputs changed since the last successful run."""
    from bindsync.config import get_settings
    from bindsync.trigger import check_trigger

    pipeline = load_or_exit(pipeline_path, require_capabilities=False)
    if pipeline.source_provider is None:
        console.print("[red]Pipeline has no source_provider[/red]")
        sys.exit(1)

    state_dir = Path(pipeline.state_dir) if pipeline.state_dir else get_settings().state_dir
    try:
        source_tree = pipeline.source_provider.checkout()
    except Exception as e:
        console.print(f"[red]Cannot resolve source revision:[/red] {e}")
        sys.exit(1)

    decision = check_trigger(pipeline, state_dir, source_tree)
    console.print(f"[bold]Source revision:[/bold] {source_tree.revision}")
    if decision.should_run:
        console.print("[yellow]Run needed:[/yellow]")
        for reason in decision.reasons:
            console.print(f"  - {reason}")
    else:
        console.print("[green]Up to date[/green]")
