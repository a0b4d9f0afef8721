"""Command line interface: load, validate, verify and summarize fixtures.

Usage:
    docseed load fixtures/sample-data --database sampledb
    docseed load fixtures/sample-data --dry-run
    docseed validate fixtures/sample-invalid-data
    docseed verify fixtures/sample-data --database sampledb
    docseed summary --database sampledb
    docseed summary fixtures/sample-data --dry-run
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docseed.config import LoaderConfig
from docseed.errors import FixtureLoadError, MalformedFixtureError
from docseed.fixtures import (
    discover_fixture_files,
    iter_fixture_files,
    validate_fixture_directory,
)
from docseed.loader import load as load_fixtures
from docseed.loader import load_database
from docseed.models import FixtureSet
from docseed.reports import (
    DEFAULT_SUMMARY_COLLECTIONS,
    collection_counts,
    counts_table,
    load_report_table,
    order_summary_table,
    user_order_summary,
)
from docseed.store import open_store
from docseed.verify import verify_seed

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

FIXTURES_DIR_TYPE = click.Path(file_okay=False, path_type=Path)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(error: FixtureLoadError, fallback_name: str) -> NoReturn:
    """Print the failing fixture set and error kind to stderr, then exit 1."""
    name = error.fixture_set or fallback_name
    logger.debug(f"{error.kind} while loading {name}", exc_info=error)
    err_console.print(
        f"[bold red]✗ {escape(name)}: {error.kind}[/bold red] {escape(error.message)}"
    )
    if isinstance(error, MalformedFixtureError):
        for message in error.errors[1:]:
            err_console.print(f"    {escape(message)}")
    sys.exit(1)


def _discover(fixtures_path: Path) -> list[Path]:
    try:
        return discover_fixture_files(fixtures_path)
    except FileNotFoundError as e:
        err_console.print(f"[bold red]✗ {escape(str(e))}[/bold red]")
        sys.exit(1)


def _read_fixtures(fixtures_path: Path) -> list[FixtureSet]:
    paths = _discover(fixtures_path)
    try:
        return list(iter_fixture_files(paths))
    except MalformedFixtureError as e:
        _fail(e, str(fixtures_path))


@click.group()
@click.version_option(package_name="docseed")
def cli() -> None:
    """Seed document databases from fixture files."""


@cli.command()
@click.argument("fixtures_dir", type=FIXTURES_DIR_TYPE, required=False)
@click.option("--database", "-d", type=str, default=None, help="Target database name")
@click.option("--uri", type=str, default=None, help="MongoDB connection string")
@click.option(
    "--atomic/--no-atomic",
    default=None,
    help="Remove a failed batch's committed documents before aborting",
)
@click.option("--drop", is_flag=True, default=False, help="Drop destination collections first")
@click.option("--dry-run", is_flag=True, default=False, help="Load into memory, touch no server")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable verbose output")
def load(
    fixtures_dir: Path | None,
    database: str | None,
    uri: str | None,
    atomic: bool | None,
    drop: bool,
    dry_run: bool,
    verbose: bool,
) -> None:
    """Load every fixture file in FIXTURES_DIR into the target database.

    Files are parsed one at a time as they are loaded, so a malformed file
    stops the run after the files before it were applied. Run `validate`
    first to check the whole directory without writing anything.
    """
    _configure_logging(verbose)
    config = LoaderConfig.from_env(
        uri=uri,
        database=database,
        fixtures_path=fixtures_dir,
        atomic_batches=atomic,
        dry_run=dry_run,
    )

    paths = _discover(config.fixtures_path)
    mode = " (dry run)" if config.dry_run else ""
    console.print(
        f"\n[bold blue]Loading {len(paths)} fixture files into "
        f"{escape(config.database)}{mode}...[/bold blue]\n"
    )

    try:
        report = load_database(
            config,
            iter_fixture_files(paths),
            drop_existing=drop,
            progress=lambda message: console.print(f"  ✓ {escape(message)}"),
        )
    except FixtureLoadError as e:
        if e.report is not None and e.report.counts:
            console.print(counts_table(e.report.counts, title="Counts before failure"))
        _fail(e, config.database)

    console.print()
    console.print(load_report_table(report))
    console.print(f"\n[bold green]✓ Loaded {report.total_documents} documents![/bold green]")


@cli.command()
@click.argument("fixtures_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def validate(fixtures_dir: Path) -> None:
    """Check fixture files in FIXTURES_DIR without touching a database."""
    console.print(f"[bold blue]Validating {escape(str(fixtures_dir))}...[/bold blue]")

    files = discover_fixture_files(fixtures_dir)
    results = validate_fixture_directory(fixtures_dir)
    if results:
        for path, errors in results.items():
            console.print(f"[red]✗ {escape(path)}[/red]")
            for error in errors:
                console.print(f"    {escape(error)}")
        console.print(f"\n[red]{len(results)} of {len(files)} file(s) failed validation[/red]")
        sys.exit(1)

    console.print(f"[green]✓ All {len(files)} files valid[/green]")


def _verification_table(title: str, results: list) -> Table:
    table = Table(title=title)
    table.add_column("Check", style="cyan")
    table.add_column("Expected", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Status", justify="center")

    for result in results:
        status = "✓" if result.passed else "✗"
        color = "green" if result.passed else "red"
        status_text = f"[{color}]{status}[/{color}]"
        if result.message:
            status_text += f" {escape(result.message)}"
        expected = "-" if result.expected is None else str(result.expected)
        table.add_row(escape(result.name), expected, str(result.actual), status_text)
    return table


@cli.command()
@click.argument("fixtures_dir", type=FIXTURES_DIR_TYPE, required=False)
@click.option("--database", "-d", type=str, default=None, help="Target database name")
@click.option("--uri", type=str, default=None, help="MongoDB connection string")
def verify(fixtures_dir: Path | None, database: str | None, uri: str | None) -> None:
    """Compare a seeded database against the fixture files in FIXTURES_DIR."""
    config = LoaderConfig.from_env(uri=uri, database=database, fixtures_path=fixtures_dir)
    fixture_sets = _read_fixtures(config.fixtures_path)

    console.print(f"\n[bold blue]Verifying {escape(config.database)}...[/bold blue]\n")
    try:
        with open_store(config) as store:
            report = verify_seed(store, fixture_sets)
    except FixtureLoadError as e:
        _fail(e, config.database)

    console.print(_verification_table("Document Counts", report.counts))
    console.print()
    console.print(_verification_table("Indexes", report.indexes))
    console.print()

    if report.all_passed:
        console.print("[bold green]✓ All verifications passed![/bold green]\n")
        return

    console.print("[bold yellow]⚠ Some verifications failed:[/bold yellow]")
    for failure in report.failures:
        console.print(f"  - {escape(failure.name)}: {escape(failure.message or 'Failed')}")
    sys.exit(1)


@cli.command()
@click.argument("fixtures_dir", type=FIXTURES_DIR_TYPE, required=False)
@click.option("--database", "-d", type=str, default=None, help="Target database name")
@click.option("--uri", type=str, default=None, help="MongoDB connection string")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Load FIXTURES_DIR into memory and summarize that instead of a server",
)
@click.option(
    "--collection",
    "collections",
    multiple=True,
    default=DEFAULT_SUMMARY_COLLECTIONS,
    show_default=True,
    help="Collections to count (repeatable)",
)
def summary(
    fixtures_dir: Path | None,
    database: str | None,
    uri: str | None,
    dry_run: bool,
    collections: tuple[str, ...],
) -> None:
    """Print collection counts and the user order summary.

    FIXTURES_DIR is only read with --dry-run.
    """
    config = LoaderConfig.from_env(
        uri=uri, database=database, fixtures_path=fixtures_dir, dry_run=dry_run
    )
    paths = _discover(config.fixtures_path) if config.dry_run else []

    try:
        with open_store(config) as store:
            if config.dry_run:
                load_fixtures(store, iter_fixture_files(paths))
            counts = collection_counts(store, collections)
            rows = user_order_summary(store)
    except FixtureLoadError as e:
        _fail(e, config.database)

    console.print(counts_table(counts))
    console.print()
    console.print(order_summary_table(rows))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
