"""CLI commands for adding blocks and managing the staging cache."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from blockport.blocks.cache import clear_staging_area
from blockport.blocks.integrator import BlockIntegrator, IntegrateOptions, IntegrationResult
from blockport.config import Settings, get_settings
from blockport.core.exceptions import BlockportError
from blockport.core.logging.logger import configure_logging
from blockport.ui.console import console, error_console
from blockport.ui.stage_display import ConsoleStageDisplay

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to a blockport.config.yaml file."),
]

app = typer.Typer(help="Add blocks to the current project (add/clear).")


def _print_section_header(title: str, color: str = "blue") -> None:
    width = console.size.width
    left = f"[{color}]▎[/{color}][dim {color}]▶[/dim {color}] [{color}]{title}[/{color}]"
    left_text = Text.from_markup(left)
    separator_count = max(1, width - left_text.cell_len - 1)

    combined = Text()
    combined.append_text(left_text)
    combined.append(" ")
    combined.append("─" * separator_count, style="dim")

    console.print()
    console.print(combined)
    console.print()


def _print_hint(message: str) -> None:
    console.print(f"[dim]▎• {message}[/dim]")


def _format_path(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


def _load_settings(config: Path | None) -> Settings:
    try:
        settings = get_settings(config) if config else get_settings()
    except FileNotFoundError as exc:
        error_console.print(escape(str(exc)))
        raise typer.Exit(1) from exc
    configure_logging(settings)
    return settings


def _print_error(error: BlockportError) -> None:
    error_console.print(escape(f"[{error.stage}] {error.message}"))
    if error.details:
        error_console.print(escape(error.details), style="red")


def _print_result(result: IntegrationResult) -> None:
    title = "Block Added (dry run)" if result.dry_run else "Block Added"
    _print_section_header(title, color="green")

    generation = result.generation
    console.print(f"[dim]▎• block:[/dim] [cyan]{generation.block_folder_name}[/cyan]")
    mode = "page" if result.is_page_block else "component"
    console.print(f"[dim]▎• mode:[/dim] [cyan]{mode}[/cyan]")
    console.print(f"[dim]▎• route:[/dim] [cyan]{result.route_path}[/cyan]")
    folder = _format_path(generation.block_folder_path)
    console.print(f"[dim]▎• folder:[/dim] [cyan]{folder}[/cyan]")

    table = Table(show_header=True, box=None)
    table.add_column("#", justify="right", style="dim", header_style="bold bright_white")
    table.add_column("Generated file", style="cyan", header_style="bold bright_white")
    for index, path in enumerate(result.generated_paths, 1):
        table.add_row(str(index), _format_path(path))
    console.print(table)

    if result.route_created:
        _print_hint(f"Route {result.route_path} added")
    if result.container_import_appended and generation.entry_path is not None:
        _print_hint(f"Imported into {_format_path(generation.entry_path)}")
    console.print(
        f"[green]probable url[/green] [cyan underline]{result.view_url}[/cyan underline] "
        "for view the block."
    )


@app.command("add")
def add_block(
    url: Annotated[str, typer.Argument(help="Git url, block name or local path of the block.")],
    path: Annotated[
        str | None, typer.Option("--path", help="Route path to add the block under.")
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", help="Git ref to fetch.")] = None,
    npm_client: Annotated[
        str | None, typer.Option("--npm-client", help="npm, yarn, cnpm or pnpm.")
    ] = None,
    registry: Annotated[str | None, typer.Option("--registry", help="npm registry url.")] = None,
    page: Annotated[
        bool | None,
        typer.Option("--page/--no-page", help="Add as a page block (or force component mode)."),
    ] = None,
    layout: Annotated[
        bool, typer.Option("--layout", help="Create the route with nested routes.")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Compute everything without writing.")
    ] = False,
    skip_dependencies: Annotated[
        bool, typer.Option("--skip-dependencies", help="Do not install dependencies.")
    ] = False,
    skip_modify_routes: Annotated[
        bool, typer.Option("--skip-modify-routes", help="Do not write the route config.")
    ] = False,
    js: Annotated[bool, typer.Option("--js", help="Convert TypeScript to JavaScript.")] = False,
    uni18n: Annotated[
        str | None, typer.Option("--uni18n", help="Strip locale lookups, keeping LOCALE.")
    ] = None,
    config: ConfigOption = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show stage details.")] = False,
) -> None:
    """Fetch a block and integrate it into the current project."""
    settings = _load_settings(config)

    integrator = BlockIntegrator(settings=settings)
    display = ConsoleStageDisplay(
        console, show_details=verbose or settings.logger.show_stage_details
    )
    options = IntegrateOptions(
        path=path,
        branch=branch,
        npm_client=npm_client,
        registry=registry,
        page=page,
        layout=layout,
        dry_run=dry_run,
        skip_dependencies=skip_dependencies,
        skip_modify_routes=skip_modify_routes,
        js=js,
        uni18n=uni18n,
    )

    try:
        result = asyncio.run(integrator.integrate(url, options, sink=display))
    except BlockportError as exc:
        _print_error(exc)
        raise typer.Exit(1) from exc

    _print_result(result)


@app.command("clear")
def clear_cache(config: ConfigOption = None) -> None:
    """Remove every cached block repository."""
    settings = _load_settings(config)
    staging_dir = settings.block.staging_dir

    try:
        removed = clear_staging_area(staging_dir)
    except (OSError, ValueError) as exc:
        error_console.print(escape(f"Failed to clear {staging_dir}: {exc}"))
        raise typer.Exit(1) from exc

    if removed:
        console.print(f"[green]Cleared block cache[/green] [cyan]{staging_dir}[/cyan]")
    else:
        console.print(f"[yellow]Block cache is already empty:[/yellow] {staging_dir}")
