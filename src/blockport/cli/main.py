"""Main CLI entry point for blockport."""

from __future__ import annotations

import typer

from blockport.cli.commands import block

app = typer.Typer(
    help="Use `blockport block add --help` for the add options.",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(block.app, name="block", help="Add blocks and manage the block cache")


if __name__ == "__main__":
    app()
