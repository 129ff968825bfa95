"""CLI interface for Prestage.

Command-line tool for pre-rendering single-page applications to static HTML.
"""

import logging
import sys
from pathlib import Path

import click

from prestage.config import DIR_STYLES, FORMATTING_MODES, SCRIPT_MODES, SERVER_FORMATS, Config
from prestage.errors import BuildFailedError, PrestageError


@click.group()
def cli() -> None:
    """Prestage - Static pre-rendering for single-page applications."""


@cli.command("build")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: auto-discover prestage.toml)",
)
@click.option(
    "--root",
    "-r",
    type=click.Path(exists=True, path_type=Path, file_okay=False),
    default=None,
    help="Project root directory (overrides config)",
)
@click.option(
    "--out-dir",
    "-o",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Output directory (overrides config)",
)
@click.option(
    "--entry",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Server entry module (default: detected from index.html)",
)
@click.option(
    "--format",
    "server_format",
    type=click.Choice(SERVER_FORMATS),
    default=None,
    help="Server bundle format (overrides config)",
)
@click.option(
    "--mock",
    is_flag=True,
    default=None,
    help="Expose browser globals while importing the server entry",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of pages rendered at once (overrides config)",
)
@click.option(
    "--formatting",
    type=click.Choice(FORMATTING_MODES),
    default=None,
    help="Output formatting (overrides config)",
)
@click.option(
    "--dir-style",
    type=click.Choice(DIR_STYLES),
    default=None,
    help="Write about.html (flat) or about/index.html (nested)",
)
@click.option(
    "--script",
    type=click.Choice(SCRIPT_MODES),
    default=None,
    help="Loading mode of the module scripts (overrides config)",
)
@click.option(
    "--include-all-routes",
    is_flag=True,
    default=None,
    help="Render every discovered route, ignoring route filters",
)
@click.option(
    "--critical-css/--no-critical-css",
    default=None,
    help="Enable/disable critical CSS inlining (overrides config, default: enabled)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
def build_command(
    config_path: Path | None,
    root: Path | None,
    out_dir: Path | None,
    entry: Path | None,
    server_format: str | None,
    mock: bool | None,
    concurrency: int | None,
    formatting: str | None,
    dir_style: str | None,
    script: str | None,
    include_all_routes: bool | None,
    critical_css: bool | None,
    verbose: bool,
) -> None:
    """Build the client bundle and pre-render every static route."""
    import asyncio

    from prestage.build import build

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    # out_dir follows an overridden root unless it was configured outside it
    if root is not None and out_dir is None and config.build.out_dir.is_relative_to(config.build.root):
        out_dir = root / config.build.out_dir.relative_to(config.build.root)
    root = root.resolve() if root is not None else None
    config = config.with_overrides(
        root=root,
        out_dir=out_dir.resolve() if out_dir is not None else None,
        entry=entry.resolve() if entry is not None else None,
        server_format=server_format,
        mock=mock,
        concurrency=concurrency,
        script=script,
        formatting=formatting,
        dir_style=dir_style,
        include_all_routes=include_all_routes,
        critical_css_enabled=critical_css,
    )

    click.echo(f"Project root: {config.build.root}")
    click.echo(f"Output directory: {config.build.out_dir}")

    try:
        result = asyncio.run(build(config))
    except BuildFailedError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        for error in e.errors:
            click.echo(click.style(f"  {error}", fg="red"), err=True)
        sys.exit(1)
    except PrestageError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(
        click.style(
            f"\nBuild finished: {result.total_pages} page(s) in {result.duration_ms / 1000:.2f}s",
            fg="green",
            bold=True,
        ),
    )
