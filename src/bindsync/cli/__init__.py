"""Command line interface."""

from bindsync.cli.main import cli, main

__all__ = ["cli", "main"]
