"""
CLI interface for Offline Books.

Provides command-line access to the record store and its backups.
"""

import logging
import sys
from dataclasses import dataclass
from typing import NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from offline_books.config.loader import AppConfig, load_config_or_default
from offline_books.core.sync import ImportMode, ImportResult, SyncEngine
from offline_books.demo.seed_demo_data import seed_demo_data
from offline_books.storage.errors import StoreError
from offline_books.storage.repository import Books, open_books

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@dataclass
class CliState:
    """Options shared by every command."""
    db_path: str
    config: AppConfig


def _open_books(ctx: typer.Context) -> Books:
    state: CliState = ctx.obj
    return open_books(state.db_path, state.config.business)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/] {escape(message)}")
    sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    """Format currency with sign and thousands separators."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        "-d",
        help="Path to the database file (overrides the config file)"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    ),
):
    """Offline Books CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app_config = load_config_or_default(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")
    ctx.obj = CliState(db_path=db or app_config.storage.db_path, config=app_config)
    if ctx.invoked_subcommand is None:
        console.print("Offline Books - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Create or upgrade the local database."""
    try:
        with _open_books(ctx) as books:
            version = books.engine.stored_version()
        console.print(f"[green]✓[/] Database ready at {escape(ctx.obj.db_path)} (schema v{version})")
        sys.exit(EXIT_CODE_PASS)
    except StoreError as e:
        _fail(str(e))


@app.command()
def stats(ctx: typer.Context):
    """Show record counts."""
    try:
        with _open_books(ctx) as books:
            counts = SyncEngine.from_books(books).get_stats()
    except StoreError as e:
        _fail(str(e))

    table = Table(title="Database Stats")
    table.add_column("Store")
    table.add_column("Records", justify="right")
    table.add_row("Clients", str(counts["totalClients"]))
    table.add_row("Estimates", str(counts["totalEstimates"]))
    table.add_row("Invoices", str(counts["totalInvoices"]))
    table.add_row("[bold]Total[/]", f"[bold]{counts['totalRecords']}[/]")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def clients(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(
        None,
        "--search",
        "-s",
        help="Only clients whose name contains this text"
    ),
):
    """List clients."""
    try:
        with _open_books(ctx) as books:
            if search:
                rows = books.clients.search_by_name(search)
            else:
                rows = books.clients.list_all()
    except StoreError as e:
        _fail(str(e))

    if not rows:
        console.print("[dim]No clients found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Clients")
    table.add_column("Name")
    table.add_column("Phone")
    table.add_column("Email")
    table.add_column("ID", style="dim")
    for client in sorted(rows, key=lambda c: c.name.lower()):
        table.add_row(
            escape(client.name), escape(client.phone),
            escape(client.email), client.client_id[:8],
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def invoices(
    ctx: typer.Context,
    unpaid: bool = typer.Option(False, "--unpaid", help="Only draft and sent invoices"),
    paid: bool = typer.Option(False, "--paid", help="Only paid invoices"),
):
    """List invoices, newest first."""
    if unpaid and paid:
        _fail("--unpaid and --paid cannot be combined")
    try:
        with _open_books(ctx) as books:
            if unpaid:
                rows = books.invoices.list_unpaid()
            elif paid:
                rows = books.invoices.list_paid()
            else:
                rows = books.invoices.list_all()
    except StoreError as e:
        _fail(str(e))

    if not rows:
        console.print("[dim]No invoices found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Invoices")
    table.add_column("Invoice", style="dim")
    table.add_column("Client", style="dim")
    table.add_column("Status")
    table.add_column("Subtotal", justify="right")
    table.add_column("Tax", justify="right")
    table.add_column("Total", justify="right")
    for invoice in sorted(rows, key=lambda i: i.created_at, reverse=True):
        table.add_row(
            invoice.invoice_id[:8],
            invoice.client_id[:8],
            invoice.status.value,
            _format_currency(invoice.subtotal),
            _format_currency(invoice.tax_amount),
            _format_currency(invoice.total),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def export(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="File to write (default: books-backup-YYYY-MM-DD.json)"
    ),
):
    """Export every record to a JSON file."""
    try:
        with _open_books(ctx) as books:
            path = SyncEngine.from_books(books).export_to_file(output)
    except (StoreError, OSError) as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Exported to {escape(str(path))}")
    sys.exit(EXIT_CODE_PASS)


@app.command("import")
def import_data(
    ctx: typer.Context,
    file: str = typer.Argument(..., help="Export file to import"),
    mode: ImportMode = typer.Option(
        ImportMode.MERGE,
        "--mode",
        "-m",
        help="merge overwrites matching records; replace erases everything first"
    ),
):
    """Import records from an export file."""
    try:
        with _open_books(ctx) as books:
            result = SyncEngine.from_books(books).import_from_file(file, mode)
    except StoreError as e:
        _fail(str(e))
    _display_import_result(result)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def backup(ctx: typer.Context):
    """Print the whole dataset as one shareable base64 string."""
    try:
        with _open_books(ctx) as books:
            encoded = SyncEngine.from_books(books).create_shareable_backup()
    except StoreError as e:
        _fail(str(e))
    # Plain output so the string is never wrapped
    typer.echo(encoded)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def restore(
    ctx: typer.Context,
    backup_string: str = typer.Argument(..., help="String printed by `backup`"),
    mode: ImportMode = typer.Option(ImportMode.MERGE, "--mode", "-m"),
):
    """Restore a shareable backup string."""
    try:
        with _open_books(ctx) as books:
            result = SyncEngine.from_books(books).restore_from_shareable_backup(
                backup_string, mode
            )
    except StoreError as e:
        _fail(str(e))
    _display_import_result(result)
    sys.exit(EXIT_CODE_PASS)


@app.command("seed-demo")
def seed_demo(ctx: typer.Context):
    """Insert a small demo dataset."""
    try:
        with _open_books(ctx) as books:
            created = seed_demo_data(books)
    except StoreError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Demo data inserted ({sum(created.values())} records)")
    sys.exit(EXIT_CODE_PASS)


def _display_import_result(result: ImportResult):
    """Show per-kind import tallies."""
    table = Table(title="Import Result")
    table.add_column("Records")
    table.add_column("Imported", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right")
    for kind, tally in result.as_dict().items():
        errors = str(tally["errors"])
        if tally["errors"]:
            errors = f"[red]{errors}[/]"
        table.add_row(
            kind.capitalize(), str(tally["imported"]), str(tally["skipped"]), errors
        )
    console.print(table)


if __name__ == "__main__":
    app()
