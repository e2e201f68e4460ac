"""Main CLI entry point for shiftmarket."""

import typer
from rich.console import Console

from shiftmarket import __version__
from shiftmarket.utils.config import get_settings
from shiftmarket.utils.logging import configure_logging_from_settings, set_correlation_id

from .commands import lightning, listings

app = typer.Typer(
    name="shiftmarket",
    help="🛍️ Peer-to-peer marketplace with Lightning escrow payments",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]shiftmarket[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """
    shiftmarket - browse listings, check sellers and quote Lightning payments.
    """
    configure_logging_from_settings(get_settings(), verbose=verbose)
    set_correlation_id()


app.add_typer(listings.app, name="listings", help="🔎 Browse marketplace listings")
app.add_typer(lightning.app, name="lightning", help="⚡ Lightning payment tools")


if __name__ == "__main__":
    app()
