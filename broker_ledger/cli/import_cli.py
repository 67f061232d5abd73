"""Import CLI commands for broker statement CSV imports."""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from broker_ledger.lib.db import init_db
from broker_ledger.lib.errors import AccountNotFoundError, ValidationError
from broker_ledger.lib.validators import SUPPORTED_BROKERS, validate_account_name
from broker_ledger.services.import_service import ImportResult, ImportService
from broker_ledger.services.persistence_service import (
    InMemoryPersistenceService,
    PersistenceService,
    SqlAlchemyPersistenceService,
)

console = Console()

MAX_ERRORS_SHOWN = 20


def validate_file_path(file_path: Path) -> None:
    """Validate file path for security risks.

    Args:
        file_path: Path to validate

    Raises:
        click.BadParameter: If path is unsafe or not a CSV file
    """
    if not file_path.exists():
        raise click.BadParameter(f"File not found: {file_path}")

    # Check if it's a symlink (security risk)
    if file_path.is_symlink():
        raise click.BadParameter(f"Symlinks are not allowed for security reasons: {file_path}")

    try:
        resolved_path = file_path.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise click.BadParameter(f"Invalid file path: {e}")

    # Check if it's a regular file (not directory, device, etc.)
    if not resolved_path.is_file():
        raise click.BadParameter(f"Path must be a regular file: {file_path}")

    if resolved_path.suffix.lower() not in [".csv"]:
        raise click.BadParameter(f"Only CSV files are allowed, got: {resolved_path.suffix}")

    sensitive_paths = ["/etc/", "/sys/", "/proc/", "/dev/", "/boot/"]
    for sensitive in sensitive_paths:
        if str(resolved_path).startswith(sensitive):
            raise click.BadParameter(
                f"Access to system directories is not allowed: {resolved_path}"
            )


def _print_result(result: ImportResult) -> None:
    files = Table(title="Files")
    files.add_column("File", style="cyan")
    files.add_column("Status")
    files.add_column("Rows", justify="right")
    files.add_column("Processed", justify="right", style="green")
    files.add_column("Skipped", justify="right", style="dim")
    files.add_column("Errors", justify="right", style="red")
    files.add_column("Time", justify="right", style="dim")

    for file_result in result.file_results:
        status_color = "green" if file_result.success else ("yellow" if file_result.processed_records else "red")
        files.add_row(
            file_result.filename,
            f"[{status_color}]{file_result.status.value}[/{status_color}]",
            str(file_result.total_rows),
            str(file_result.processed_records),
            str(file_result.skipped_records),
            str(len(file_result.errors) + (1 if file_result.duplicate_of else 0)),
            f"{file_result.processing_time_ms} ms",
        )

    console.print()
    console.print(files)

    summary = Table(title="Import Summary")
    summary.add_column("Metric", style="cyan")
    summary.add_column("Count", justify="right", style="green")

    data = result.imported_data
    summary.add_row("Files", str(result.processed_files))
    summary.add_row("Total Rows", str(result.total_records))
    summary.add_row("Processed", str(result.processed_records))
    summary.add_row("Skipped", str(result.skipped_records))
    if result.reference_records:
        summary.add_row("Reference Rows", str(result.reference_records))
    summary.add_row("Equity Trades", str(data.trades))
    summary.add_row("Option Contracts", str(data.option_trades))
    summary.add_row("Movements", str(data.broker_movements))
    summary.add_row("Dividends", str(data.dividends))
    summary.add_row("New Tickers", str(data.new_tickers))
    summary.add_row("Errors", str(len(result.errors)), style="red" if result.errors else None)
    summary.add_row("Warnings", str(len(result.warnings)), style="yellow" if result.warnings else None)
    summary.add_row("Duration", f"{result.processing_time_ms} ms", style="dim")

    console.print(summary)

    if result.errors:
        errors = Table(title=f"Errors ({len(result.errors)})")
        errors.add_column("File", style="cyan")
        errors.add_column("Row", justify="right", style="dim")
        errors.add_column("Type", style="magenta")
        errors.add_column("Message", style="red")
        for error in result.errors[:MAX_ERRORS_SHOWN]:
            errors.add_row(
                error.filename,
                str(error.row_number) if error.row_number else "-",
                error.error_type.value,
                error.error_message,
            )
        console.print(errors)
        if len(result.errors) > MAX_ERRORS_SHOWN:
            console.print(f"[dim]... and {len(result.errors) - MAX_ERRORS_SHOWN} more[/dim]")

    for warning in result.warnings[:MAX_ERRORS_SHOWN]:
        console.print(f"[yellow]⚠️  {warning.warning_message}[/yellow]")


@click.group(name="import")
def import_group() -> None:
    """Import broker statements and review import history."""
    pass


@import_group.command(name="files")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option(
    "--broker",
    "-b",
    required=True,
    type=click.Choice(list(SUPPORTED_BROKERS), case_sensitive=False),
    help="Broker export format",
)
@click.option("--account", "-a", required=True, help="Broker account name")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Parse, convert and match without writing to the database",
)
def import_files(paths: tuple[Path, ...], broker: str, account: str, dry_run: bool) -> None:
    """Import one or more broker CSV files.

    Files are processed oldest first, whatever order they are given in.

    Examples:
        broker-ledger import files tastytrade_240101_to_240131.csv -b tastytrade -a main
        broker-ledger import files U1234567_20240131.csv -b ibkr -a ira --dry-run
    """
    for path in paths:
        validate_file_path(path)
    try:
        account = validate_account_name(account)
    except ValidationError as e:
        raise click.BadParameter(e.message, param_hint="--account")

    persistence: PersistenceService
    if dry_run:
        console.print("[yellow]DRY RUN MODE - No data will be saved[/yellow]")
        persistence = InMemoryPersistenceService()
    else:
        init_db()
        persistence = SqlAlchemyPersistenceService()

    service = ImportService(persistence)
    console.print(f"\n[bold]Importing {len(paths)} file(s)[/bold] (broker: {broker}, account: {account})")

    def report_progress(filename: str, fraction: float) -> None:
        console.print(f"[dim]  {filename} done ({fraction:.0%})[/dim]")

    result = asyncio.run(
        service.import_files(list(paths), broker.lower(), account, progress=report_progress)
    )
    _print_result(result)

    if result.success:
        console.print("\n[green]✓ Import completed[/green]\n")
        return

    if result.processed_records:
        console.print("\n[yellow]⚠️  Import completed with errors[/yellow]\n")
    else:
        console.print("\n[red]✗ Import failed[/red]\n")
    raise SystemExit(1)


@import_group.command(name="history")
@click.option(
    "--limit",
    "-n",
    default=10,
    type=int,
    help="Number of recent imports to show",
)
def import_history(limit: int) -> None:
    """Show recent import history.

    Example:
        broker-ledger import history
        broker-ledger import history -n 20
    """
    init_db()
    batches = SqlAlchemyPersistenceService().get_import_history(limit=limit)

    if not batches:
        console.print("\n[yellow]No import history found[/yellow]\n")
        return

    table = Table(title=f"Import History (last {limit})")
    table.add_column("Batch ID", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Broker", style="magenta")
    table.add_column("Account")
    table.add_column("Status", style="green")
    table.add_column("Rows", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Date", style="dim")

    for batch in batches:
        status_color = "green" if batch.status == "completed" else "yellow"
        table.add_row(
            str(batch.batch_id),
            batch.filename,
            batch.broker,
            batch.account_name or "-",
            f"[{status_color}]{batch.status}[/{status_color}]",
            str(batch.total_rows),
            str(batch.successful_count),
            str(batch.error_count),
            batch.started_at.strftime("%Y-%m-%d %H:%M") if batch.started_at else "N/A",
        )

    console.print()
    console.print(table)
    console.print()


@import_group.command(name="errors")
@click.argument("batch_id", type=int)
def import_errors(batch_id: int) -> None:
    """Show row errors stored for an import batch.

    BATCH_ID: Import batch ID (from import history)

    Example:
        broker-ledger import errors 12
    """
    init_db()
    try:
        errors = SqlAlchemyPersistenceService().get_import_errors(batch_id)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise click.Abort()

    if not errors:
        console.print(f"\n[green]✓ No errors in batch {batch_id}[/green]\n")
        return

    table = Table(title=f"Errors in Batch {batch_id}")
    table.add_column("Row", justify="right", style="dim")
    table.add_column("Type", style="magenta")
    table.add_column("Message", style="red")
    table.add_column("Raw", style="dim")

    for error in errors:
        raw = (error.original_data.get("raw_line") or "")[:60]
        table.add_row(str(error.row_number), error.error_type, error.error_message, raw)

    console.print()
    console.print(table)
    console.print()


@import_group.command(name="snapshots")
@click.option("--account", "-a", required=True, help="Broker account name")
@click.option(
    "--broker",
    "-b",
    required=True,
    type=click.Choice(list(SUPPORTED_BROKERS), case_sensitive=False),
    help="Broker of the account",
)
def import_snapshots(account: str, broker: str) -> None:
    """Show the latest financial snapshot per currency for an account.

    Example:
        broker-ledger import snapshots -a main -b tastytrade
    """
    init_db()
    persistence = SqlAlchemyPersistenceService()
    try:
        account_id = persistence.get_account_id(broker.lower(), account)
    except AccountNotFoundError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise click.Abort()

    snapshots = persistence.get_latest_snapshots(account_id)
    if not snapshots:
        console.print(f"\n[yellow]No snapshots for account {account}[/yellow]\n")
        return

    table = Table(title=f"Latest Snapshots: {account}")
    table.add_column("Currency", style="cyan")
    table.add_column("Date", style="dim")
    table.add_column("Movements", justify="right")
    table.add_column("Deposited", justify="right")
    table.add_column("Withdrawn", justify="right")
    table.add_column("Net Cash Flow", justify="right", style="bold")
    table.add_column("Options Income", justify="right")
    table.add_column("Realized", justify="right", style="green")
    table.add_column("Unrealized", justify="right")
    table.add_column("Invested", justify="right")
    table.add_column("Commissions", justify="right", style="red")
    table.add_column("Fees", justify="right", style="red")
    table.add_column("Dividends", justify="right")
    table.add_column("Open", justify="center")

    for s in snapshots:
        table.add_row(
            s.currency,
            s.date.isoformat(),
            str(s.movement_counter),
            f"{s.deposited:,.2f}",
            f"{s.withdrawn:,.2f}",
            f"{s.net_cash_flow:,.2f}",
            f"{s.options_income:,.2f}",
            f"{s.realized_gains:,.2f}",
            f"{s.unrealized_gains:,.2f}",
            f"{s.invested:,.2f}",
            f"{s.commissions:,.2f}",
            f"{s.fees:,.2f}",
            f"{s.dividends_received:,.2f}",
            "✓" if s.open_trades else "",
        )

    console.print()
    console.print(table)
    console.print()
