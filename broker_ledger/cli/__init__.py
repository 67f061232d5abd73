"""CLI entry point for broker-ledger."""

import logging
import sys
import traceback

import click
from rich.console import Console

from broker_ledger.cli import import_cli
from broker_ledger.cli import init as init_cmd
from broker_ledger.lib.errors import BrokerLedgerError, format_error_message, get_error_color
from broker_ledger.lib.logging_config import setup_logging

console = Console()

__version__ = "0.1.0"


@click.group()  # type: ignore[misc]
@click.option("--debug", is_flag=True, help="Enable debug mode")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def main(ctx: click.Context, debug: bool) -> None:
    """Broker Ledger - Import broker statements into a local trading ledger."""
    ctx.ensure_object(dict)
    ctx.obj["DEBUG"] = debug
    if debug:
        setup_logging(logging.DEBUG)


def handle_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: object
) -> None:
    """
    Global exception handler for CLI.

    Formats exceptions with Rich colors and provides user-friendly messages.
    """
    # Don't handle KeyboardInterrupt
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)  # type: ignore[arg-type]
        return

    color = get_error_color(exc_value) if isinstance(exc_value, Exception) else "red"
    message = (
        format_error_message(exc_value) if isinstance(exc_value, Exception) else str(exc_value)
    )

    console.print(f"\n[{color}]✗ Error: {message}[/{color}]\n")

    debug_mode = "--debug" in sys.argv
    if isinstance(exc_value, BrokerLedgerError):
        # Known errors only show a traceback when asked for
        if debug_mode:
            console.print("[dim]Traceback:[/dim]")
            traceback.print_exception(exc_value)
    else:
        console.print("[dim]Unexpected error occurred. Use --debug for full traceback.[/dim]")
        if debug_mode:
            traceback.print_exception(exc_value)

    sys.exit(1)


# Install global exception handler
sys.excepthook = handle_exception


@main.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    click.echo(f"broker-ledger version {__version__}")


# Register subcommands
main.add_command(import_cli.import_group)
main.add_command(init_cmd.init)


if __name__ == "__main__":
    main()
