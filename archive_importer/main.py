"""archive-importer - inspect archive sources and run scripts against them."""

from __future__ import annotations

import logging
import runpy
import sys
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path

import click
from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from . import __version__
from .console import console
from .console import error_console
from .logging_setup import init_json_logging
from .module_resolution import ArchiveImporterError
from .module_resolution import IndexEntry
from .module_resolution import ResolutionIndex
from .module_resolution import build_index
from .module_resolution import extract_module
from .module_resolution import install
from .module_resolution import uninstall
from .settings import ArchiveImporterSettings
from .settings import load_settings

logger = logging.getLogger(__name__)

# Relative globs given on the command line resolve against the working directory
CLI_CALLER_NAME = "archive-importer"


def _format_size(size_bytes: int) -> str:
    """Format bytes as human-readable size."""
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size_float < 1024:
            return f"{size_float:.1f} {unit}"
        size_float /= 1024
    return f"{size_float:.1f} TB"


def source_options(func: Callable) -> Callable:
    """Options shared by every command that builds an index."""
    func = click.option(
        "--mirror",
        default=None,
        help="Repository mirror for CPAN:// sources",
    )(func)
    func = click.option(
        "--suffix",
        "suffixes",
        multiple=True,
        help="Module file suffix (repeatable, default: .py)",
    )(func)
    func = click.option(
        "--source",
        "-s",
        "sources",
        multiple=True,
        required=True,
        help="Glob, URL, CPAN://<file>.tar.gz or __DATA__ (repeatable, first wins)",
    )(func)
    return func


@contextmanager
def _reported_errors():
    try:
        yield
    except (ArchiveImporterError, ValidationError) as e:
        error_console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


def _settings(suffixes: tuple[str, ...], mirror: str | None, **overrides) -> ArchiveImporterSettings:
    return load_settings({"module_suffixes": list(suffixes) or None, "mirror": mirror, **overrides})


def _caller_file(caller: Path | None) -> Path:
    return caller if caller is not None else Path.cwd() / CLI_CALLER_NAME


def _lookup(index: ResolutionIndex, name: str, suffixes: list[str]) -> IndexEntry | None:
    """Find an entry by relative path or dotted module name."""
    if entry := index.get(name):
        return entry
    base = name.replace(".", "/")
    for suffix in suffixes:
        for candidate in (f"{base}/__init__{suffix}", f"{base}{suffix}"):
            if entry := index.get(candidate):
                return entry
    return None


caller_option = click.option(
    "--caller",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="File that relative globs and __DATA__ refer to (default: current directory)",
)


@click.group()
@click.version_option(__version__, prog_name="archive-importer")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write JSONL logs to this file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for the JSONL log",
)
def cli(log_file: Path | None, log_level: str | None):
    """Import Python modules directly from tar archives."""
    if log_file is not None:
        init_json_logging(log_file, log_level)


@cli.command(name="list")
@source_options
@caller_option
def list_cmd(sources: tuple[str, ...], suffixes: tuple[str, ...], mirror: str | None, caller: Path | None):
    """List the modules the given sources resolve."""
    with _reported_errors():
        settings = _settings(suffixes, mirror)
        index = build_index(sources, _caller_file(caller), settings)

    if not len(index):
        console.print("[dim]No modules found.[/dim]")
        return

    table = Table(title="Archive Modules")
    table.add_column("Module", style="cyan", no_wrap=True)
    table.add_column("Version", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Provenance", style="dim", overflow="fold")

    total_size = 0
    for entry in index:
        total_size += len(entry.content)
        table.add_row(
            escape(entry.relative_path),
            entry.version or "-",
            _format_size(len(entry.content)),
            escape(entry.provenance),
        )

    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(index)} modules, {_format_size(total_size)}")


@cli.command()
@click.argument("name")
@source_options
@caller_option
def show(name: str, sources: tuple[str, ...], suffixes: tuple[str, ...], mirror: str | None, caller: Path | None):
    """Print one module's source.

    NAME is a relative path (pkg/mod.py) or a dotted module name (pkg.mod).
    """
    with _reported_errors():
        settings = _settings(suffixes, mirror)
        index = build_index(sources, _caller_file(caller), settings)

    entry = _lookup(index, name, settings.module_suffixes)
    if entry is None:
        error_console.print(f"[red]Error:[/red] Module '{escape(name)}' not found in the given sources")
        sys.exit(1)

    click.echo(entry.content.decode("utf-8", errors="replace"), nl=False)


@cli.command()
@source_options
@caller_option
@click.option(
    "--to",
    "target",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Extraction root directory",
)
def extract(
    sources: tuple[str, ...],
    suffixes: tuple[str, ...],
    mirror: str | None,
    caller: Path | None,
    target: Path,
):
    """Write every resolved module to <to>/[<version>/]<path>."""
    with _reported_errors():
        settings = _settings(suffixes, mirror)
        index = build_index(sources, _caller_file(caller), settings)
        for entry in index:
            path = extract_module(target, entry.relative_path, entry.version, entry.content)
            console.print(f"[cyan]{escape(str(path))}[/cyan]")

    console.print(f"\n[bold]Extracted:[/bold] {len(index)} modules to {escape(str(target))}")


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@source_options
@click.option(
    "--extract-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Serve modules from files extracted below this directory",
)
@click.option("--debug", is_flag=True, help="Extract modules for debuggers")
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run(
    sources: tuple[str, ...],
    suffixes: tuple[str, ...],
    mirror: str | None,
    extract_dir: Path | None,
    debug: bool,
    script: Path,
    args: tuple[str, ...],
):
    """Run SCRIPT with the given sources importable.

    Relative globs and __DATA__ refer to SCRIPT.
    """
    with _reported_errors():
        settings = _settings(suffixes, mirror, extract_dir=extract_dir, debug=debug or None)
        finder = install(*sources, caller_file=script, settings=settings)
    logger.info(f"Running {script} with {finder!r}")

    saved_argv = sys.argv
    sys.argv = [str(script), *args]
    try:
        runpy.run_path(str(script), run_name="__main__")
    finally:
        sys.argv = saved_argv
        uninstall(finder)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
