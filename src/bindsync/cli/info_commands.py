"""Info commands: bindsync plan, bindsync status."""

from __future__ import annotations

import json
import sys

import click
from rich import box
from rich.table import Table
from rich.tree import Tree

from bindsync.cli.main import console, load_or_exit, pipeline_argument


@click.command()
@pipeline_argument
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def plan(pipeline_path: str, output_json: bool):
    """Show each platform's resolved generation config without generating."""
    from bindsync.core.errors import ConfigError
    from bindsync.generate.rules import resolve_config

    pipeline = load_or_exit(pipeline_path, require_capabilities=False)
    if pipeline.source_provider is None:
        console.print("[red]Pipeline has no source_provider[/red]")
        sys.exit(1)
    try:
        source_tree = pipeline.source_provider.checkout()
    except Exception as e:
        console.print(f"[red]Cannot resolve source tree:[/red] {e}")
        sys.exit(1)

    entries = []
    failed = False
    for target in pipeline.platforms:
        entry = {"platform": target.key, "artifact_path": pipeline.artifact_path(target)}
        try:
            config = resolve_config(target, source_tree, pipeline.rules)
            entry["config"] = config.to_dict()
            entry["args"] = config.to_args()
            entry["config_fingerprint"] = config.fingerprint().digest[:16]
        except ConfigError as e:
            entry["error"] = str(e)
            failed = True
        entries.append(entry)

    if output_json:
        click.echo(json.dumps({"source_revision": source_tree.revision, "platforms": entries}, indent=2))
        sys.exit(1 if failed else 0)

    tree = Tree(f"[bold]{pipeline.name}[/bold] [dim]@ {source_tree.revision[:12]}[/dim]")
    for entry in entries:
        node = tree.add(f"[bold]{entry['platform']}[/bold] -> {entry['artifact_path']}")
        if "error" in entry:
            node.add(f"[red]{entry['error']}[/red]")
            continue
        config = entry["config"]
        node.add(f"[dim]fingerprint[/dim] {entry['config_fingerprint']}")
        if config["include_paths"]:
            node.add("includes: " + ", ".join(config["include_paths"]))
        if config["defines"]:
            node.add("defines: " + ", ".join(
                name if value is None else f"{name}={value}"
                for name, value in sorted(config["defines"].items())
            ))
        if config["allowlist"]:
            node.add("allow: " + ", ".join(config["allowlist"]))
        if config["blocklist"]:
            node.add("block: " + ", ".join(config["blocklist"]))
        if config["flags"] or config["extra_args"]:
            node.add("args: " + " ".join(config["flags"] + config["extra_args"]))
    console.print(tree)
    sys.exit(1 if failed else 0)


@click.command()
@pipeline_argument
def status(pipeline_path: str):
    """Show the live publish record for every platform."""
    from bindsync.publish.controller import current_record

    pipeline = load_or_exit(pipeline_path, require_capabilities=False)
    if pipeline.mainline_factory is None:
        console.print("[red]Pipeline has no mainline_factory[/red]")
        sys.exit(1)

    table = Table(title="Publish Records", box=box.ROUNDED)
    table.add_column("Platform", style="bold")
    table.add_column("Artifact")
    table.add_column("Digest")
    table.add_column("Mainline tip")

    for target in pipeline.platforms:
        path = pipeline.artifact_path(target)
        mainline = None
        try:
            mainline = pipeline.mainline_factory(target)
            record = current_record(mainline, target, path)
        except Exception as e:
            table.add_row(target.key, path, f"[red]error: {e}[/red]", "-")
            continue
        finally:
            if mainline is not None:
                mainline.close()
        digest = record.digest.removeprefix("sha256:")[:16] if record.digest else "[yellow]not published[/yellow]"
        table.add_row(target.key, path, digest, record.commit_id[:12])

    console.print()
    console.print(table)
