"""Command-line interface for lcrules."""

import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Annotated, Optional, Sequence

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from . import __version__
from .filter_engine import FilterEngine, FilterStats
from .models import DisplayItem, LogLevel, Partition
from .parser_logcat import parse_logcat_line
from .presenter import FilterPresenter, InvalidIndexError, InvalidInputError
from .rules_file import (
    RulesParseError,
    format_rules,
    generate_sample_rules_file,
    parse_rules_file,
)
from .store import FilterStoreError, SqliteFilterStore

app = typer.Typer(
    name="lcrules",
    help="Manage inclusion and exclusion filters for Android logcat output.",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

DEFAULT_DB_FILE = ".lcrules.db"
DEFAULT_RULES_FILE = ".logcatfilters"

ExclusionsOption = Annotated[
    bool,
    typer.Option(
        "--exclusions",
        "-x",
        help="Work on exclusion filters instead of inclusion filters.",
    ),
]


class ConsoleSurface:
    """Renders a presenter's items as a rich table."""

    def __init__(self, partition: Partition, out: Console = console) -> None:
        self.partition = partition
        self.out = out
        self.items: list[DisplayItem] = []

    def on_items_changed(self, items: Sequence[DisplayItem], is_empty: bool) -> None:
        self.items = list(items)

    def render(self) -> None:
        if not self.items:
            self.out.print(f"[dim]No {self.partition.value} defined.[/dim]")
            return

        table = Table(title=self.partition.value.capitalize())
        table.add_column("#", justify="right")
        table.add_column("Type")
        table.add_column("Content")
        for index, item in enumerate(self.items):
            table.add_row(str(index), item.type_label, Text(item.display_text))
        self.out.print(table)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"lcrules {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    db: Annotated[
        Path,
        typer.Option(
            "--db",
            envvar="LCRULES_DB",
            help="Path to the filter database.",
        ),
    ] = Path(DEFAULT_DB_FILE),
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Log debug output to stderr."),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """lcrules - Manage logcat filters."""
    _configure_logging(debug)
    ctx.obj = db


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _open_store(ctx: typer.Context) -> SqliteFilterStore:
    try:
        return SqliteFilterStore(ctx.obj)
    except FilterStoreError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _wait(future: Future | None) -> None:
    """Block until a presenter mutation is stored; report failures."""
    if future is None:
        return
    try:
        future.result()
    except FilterStoreError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


@app.command("list")
def list_filters(ctx: typer.Context, exclusions: ExclusionsOption = False) -> None:
    """Show the stored filters."""
    partition = Partition.of(exclusions)
    surface = ConsoleSurface(partition)
    with _open_store(ctx) as store, FilterPresenter(store, partition, surface=surface):
        surface.render()


@app.command()
def add(
    ctx: typer.Context,
    exclusions: ExclusionsOption = False,
    keyword: Annotated[str, typer.Option("--keyword", "-k", help="Message keyword.")] = "",
    tag: Annotated[str, typer.Option("--tag", "-t", help="Log tag.")] = "",
    pid: Annotated[str, typer.Option("--pid", help="Process id.")] = "",
    tid: Annotated[str, typer.Option("--tid", help="Thread id.")] = "",
    levels: Annotated[
        Optional[list[str]],
        typer.Option(
            "--level",
            "-l",
            help="Log level (name or letter). Repeat for several levels.",
        ),
    ] = None,
) -> None:
    """Add filters; one filter is stored per option given."""
    partition = Partition.of(exclusions)
    with _open_store(ctx) as store, FilterPresenter(store, partition) as presenter:
        try:
            future = presenter.add(keyword, tag, pid, tid, levels or ())
        except InvalidInputError as e:
            err_console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)

        if future is None:
            err_console.print("[yellow]Nothing to add.[/yellow] Give at least one filter option.")
            raise typer.Exit(1)
        _wait(future)
        console.print(f"[green]Added {len(future.result())} {partition.value[:-1]}(s).[/green]")


@app.command()
def remove(
    ctx: typer.Context,
    index: Annotated[int, typer.Argument(help="Position shown by 'lcrules list'.")],
    exclusions: ExclusionsOption = False,
) -> None:
    """Remove the filter at a list position."""
    partition = Partition.of(exclusions)
    with _open_store(ctx) as store, FilterPresenter(store, partition) as presenter:
        try:
            item = presenter[index] if 0 <= index < len(presenter) else None
            future = presenter.remove(index)
        except InvalidIndexError as e:
            err_console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)
        _wait(future)
        console.print(f"[green]Removed:[/green] {item.type_label} {escape(item.display_text)}")


@app.command("import")
def import_rules(
    ctx: typer.Context,
    rules_file: Annotated[
        Path,
        typer.Argument(help="Path to a .logcatfilters file.", exists=True, readable=True),
    ] = Path(DEFAULT_RULES_FILE),
    replace: Annotated[
        bool,
        typer.Option("--replace", help="Delete existing filters first."),
    ] = False,
) -> None:
    """Load filters from a .logcatfilters file."""
    try:
        records = parse_rules_file(rules_file)
    except RulesParseError as e:
        err_console.print(f"[red]Error parsing {rules_file}:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    with _open_store(ctx) as store:
        try:
            if replace:
                for partition in Partition:
                    store.clear(partition)
            stored = store.insert(records)
        except FilterStoreError as e:
            err_console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)
    console.print(f"[green]Imported {len(stored)} filter(s) from {rules_file}.[/green]")


@app.command("export")
def export_rules(
    ctx: typer.Context,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write to a file instead of stdout."),
    ] = None,
) -> None:
    """Write the stored filters in .logcatfilters format."""
    with _open_store(ctx) as store:
        records = store.snapshot(Partition.INCLUSIONS) + store.snapshot(Partition.EXCLUSIONS)
    try:
        text = format_rules(records)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if output is None:
        console.print(text, end="", highlight=False, markup=False, soft_wrap=True)
        return
    output.write_text(text, encoding="utf-8")
    err_console.print(f"[green]Wrote {len(records)} filter(s) to {output}.[/green]")


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing file."),
    ] = False,
) -> None:
    """Create a sample .logcatfilters file in the current directory."""
    path = Path.cwd() / DEFAULT_RULES_FILE
    if force and path.exists():
        path.unlink()

    if generate_sample_rules_file(path):
        console.print(f"[green]Created:[/green] {DEFAULT_RULES_FILE}")
    else:
        console.print(f"[yellow]Skipped (already exists):[/yellow] {DEFAULT_RULES_FILE}")
        console.print("[dim]Use --force to overwrite it.[/dim]")


@app.command("dry-run")
def dry_run(
    ctx: typer.Context,
    input_file: Annotated[
        Path,
        typer.Option(
            "--input",
            "-i",
            help="Path to a file containing logcat output.",
            exists=True,
            readable=True,
        ),
    ],
    stats: Annotated[
        bool,
        typer.Option("--stats", "-s", help="Show filtering statistics at the end."),
    ] = False,
    color: Annotated[
        bool,
        typer.Option("--color/--no-color", help="Enable/disable colored output."),
    ] = True,
) -> None:
    """Apply the stored filters to a logcat capture and print what stays visible."""
    with _open_store(ctx) as store:
        engine = FilterEngine.from_store(store)
    filter_stats = FilterStats() if stats else None

    try:
        content = input_file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        err_console.print(f"[red]Error reading input file:[/red] {e}")
        raise typer.Exit(1)

    for line in content.splitlines():
        result = engine.filter_entry(parse_logcat_line(line))
        if filter_stats:
            filter_stats.record(result)
        if result.should_display:
            _print_line(result.entry.raw_line, result.entry.level, color=color)

    if filter_stats:
        err_console.print()
        err_console.print("[bold]Filter Statistics:[/bold]")
        err_console.print(filter_stats.summary(), highlight=False, markup=False)


LEVEL_COLORS = {
    LogLevel.VERBOSE: "dim",
    LogLevel.DEBUG: "blue",
    LogLevel.INFO: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
    LogLevel.FATAL: "red bold",
    LogLevel.ASSERT: "red bold",
}


def _print_line(raw_line: str, level: LogLevel | None, color: bool = True) -> None:
    if color and level in LEVEL_COLORS:
        console.print(Text(raw_line, style=LEVEL_COLORS[level]), highlight=False, soft_wrap=True)
    else:
        console.print(Text(raw_line), highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()
