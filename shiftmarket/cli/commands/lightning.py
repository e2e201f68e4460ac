"""Lightning payment commands."""

import asyncio
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from shiftmarket.exceptions import ShiftMarketError
from shiftmarket.lightning.domain.value_objects import (
    calculate_platform_fee,
    convert_gbp_to_sats,
)
from shiftmarket.lightning.infrastructure import rate_provider
from shiftmarket.lightning.infrastructure.lnurl_resolver import (
    LightningAddressResolver,
    is_valid_lightning_address,
)
from shiftmarket.utils.config import get_settings
from shiftmarket.utils.formatting import format_price, format_sats

app = typer.Typer(name="lightning", help="⚡ Lightning payment tools", no_args_is_help=True)
console = Console()


@app.command("quote")
def quote_payment(
    item_price: int | None = typer.Argument(None, help="Item price in sats"),
    gbp: float | None = typer.Option(None, "--gbp", help="Item price in GBP, converted to sats"),
    rate: float | None = typer.Option(
        None, "--rate", help="BTC/GBP rate to use instead of the live rate"
    ),
):
    """Show what a buyer pays for an item, platform fee included."""
    settings = get_settings()

    if item_price is None and gbp is None:
        console.print("[red]❌ Provide an item price in sats or --gbp[/red]")
        raise typer.Exit(1)

    if item_price is None:
        amount = Decimal(str(gbp))
        if rate is not None:
            item_price = convert_gbp_to_sats(amount, Decimal(str(rate)))
        else:
            service = rate_provider.create_btc_conversion_service(settings)

            async def _convert() -> int:
                try:
                    return await service.gbp_to_sats(amount)
                finally:
                    await service.close()

            item_price = asyncio.run(_convert())
        console.print(f"{format_price(amount, 'GBP')} ≈ {format_sats(item_price)}")

    if item_price < 0:
        console.print("[red]❌ Item price must be non-negative[/red]")
        raise typer.Exit(1)

    fee = calculate_platform_fee(item_price, settings.platform_fee_percent)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Item price:", format_sats(item_price))
    table.add_row(f"Platform fee ({settings.platform_fee_percent}%):", format_sats(fee))
    table.add_row("Total:", f"[bold green]{format_sats(item_price + fee)}[/bold green]")
    table.add_row("Seller receives:", format_sats(item_price))
    console.print(table)


@app.command("resolve")
def resolve_address(
    address: str = typer.Argument(..., help="Lightning address (name@domain)"),
    amount: int = typer.Argument(..., help="Amount in sats"),
):
    """Resolve a Lightning address to an invoice."""
    if not is_valid_lightning_address(address):
        console.print(f"[red]❌ Invalid Lightning address: {address}[/red]")
        raise typer.Exit(1)

    settings = get_settings()

    async def _resolve() -> str:
        async with LightningAddressResolver(timeout_seconds=settings.http_timeout_seconds) as r:
            return await r.resolve(address, amount)

    try:
        invoice = asyncio.run(_resolve())
    except ShiftMarketError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✅ Invoice for {format_sats(amount)}:[/green]")
    typer.echo(invoice)
