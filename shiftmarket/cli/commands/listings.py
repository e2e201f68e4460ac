"""Marketplace listing commands."""

import asyncio
import json
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from shiftmarket.exceptions import QueryFailure
from shiftmarket.marketplace.application.services import listing_service, reputation_service
from shiftmarket.marketplace.domain.enums import ListingStatus
from shiftmarket.marketplace.domain.regions import REGIONS
from shiftmarket.marketplace.domain.value_objects import ListingFilters
from shiftmarket.utils.config import get_settings
from shiftmarket.utils.formatting import format_price, format_sats

app = typer.Typer(name="listings", help="🔎 Browse marketplace listings", no_args_is_help=True)
console = Console()


@app.command("search")
def search_listings(
    query: str | None = typer.Argument(
        None, help="Text to search in title, summary and description"
    ),
    category: str | None = typer.Option(None, "--category", "-c", help="Category tag"),
    seller: str | None = typer.Option(None, "--seller", help="Seller pubkey"),
    location: str | None = typer.Option(
        None, "--location", "-l", help="Free-text location (overrides the region filter)"
    ),
    region: str | None = typer.Option(
        None, "--region", "-r", help="Region code (GB, US, EU, CA, AU, ALL)"
    ),
    min_price: float | None = typer.Option(None, "--min-price", help="Minimum price"),
    max_price: float | None = typer.Option(None, "--max-price", help="Maximum price"),
    status: ListingStatus | None = typer.Option(None, "--status", help="Listing status"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to show"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
):
    """Search listings, newest first."""
    filters = ListingFilters(
        category=category,
        seller_pubkey=seller,
        location=location,
        min_price=Decimal(str(min_price)) if min_price is not None else None,
        max_price=Decimal(str(max_price)) if max_price is not None else None,
        search=query,
        status=status,
        region=region.upper() if region else None,
    )
    service = listing_service.create_listing_service()

    try:
        results = asyncio.run(service.query_listings(filters))
    except QueryFailure as e:
        console.print(f"[red]❌ Listing query failed: {e}[/red]")
        raise typer.Exit(1)

    results = results[:limit]
    if as_json:
        typer.echo(json.dumps([listing.to_dict() for listing in results], indent=2))
        return

    if not results:
        console.print("[yellow]No listings found[/yellow]")
        return

    table = Table(title=f"Listings ({len(results)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Location")
    table.add_column("Status")

    for listing in results:
        price = format_price(listing.price, listing.currency)
        if listing.price_sats is not None:
            price = f"{price}\n[dim]{format_sats(listing.price_sats)}[/dim]"
        table.add_row(listing.id, listing.title, price, listing.location, str(listing.status))

    console.print(table)


@app.command("show")
def show_listing(listing_id: str = typer.Argument(..., help="Listing identifier")):
    """Show one listing and its seller's reputation."""
    service = listing_service.create_listing_service()
    reputation = reputation_service.create_reputation_service(client=service.client)

    async def _load():
        found = await service.get_listing(listing_id)
        if found is None:
            return None, None
        return found, await reputation.get_seller_reputation(found.seller_pubkey)

    try:
        listing, seller_reputation = asyncio.run(_load())
    except QueryFailure as e:
        console.print(f"[red]❌ Listing lookup failed: {e}[/red]")
        raise typer.Exit(1)

    if listing is None:
        console.print(f"[red]❌ Listing {listing_id} not found[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]{listing.title}[/bold cyan]")
    if listing.summary:
        console.print(f"[dim]{listing.summary}[/dim]")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Price:", f"[green]{format_price(listing.price, listing.currency)}[/green]")
    if listing.price_sats is not None:
        table.add_row("Price (sats):", format_sats(listing.price_sats))
    table.add_row("Location:", listing.location)
    table.add_row("Status:", str(listing.status))
    table.add_row("Categories:", ", ".join(sorted(listing.category)) or "-")
    table.add_row("Seller:", listing.seller_pubkey[:16] + "...")
    table.add_row(
        "Seller rating:",
        f"{seller_reputation.average_rating:.1f} ({seller_reputation.total_reviews} reviews)"
        + (" ✅ verified" if seller_reputation.is_verified else ""),
    )
    console.print(table)

    if listing.description:
        console.print(f"\n{listing.description}")


@app.command("reputation")
def seller_reputation(
    pubkey: str = typer.Argument(..., help="Seller pubkey"),
    reviews: int = typer.Option(5, "--reviews", help="Number of recent reviews to show"),
):
    """Show a seller's rating and recent reviews."""
    service = reputation_service.create_reputation_service()

    async def _load():
        return (
            await service.get_seller_reputation(pubkey),
            await service.get_seller_reviews(pubkey, limit=reviews) if reviews > 0 else [],
        )

    try:
        result, recent = asyncio.run(_load())
    except QueryFailure as e:
        console.print(f"[red]❌ Review query failed: {e}[/red]")
        raise typer.Exit(1)

    verified = "[green]✅ verified[/green]" if result.is_verified else "[dim]not verified[/dim]"
    console.print(
        f"\n[bold]⭐ {result.average_rating:.2f}[/bold] "
        f"from {result.total_reviews} reviews, {verified}"
    )

    for review in recent:
        stars = "★" * review.rating + "☆" * (5 - review.rating)
        console.print(f"  {stars}  {review.content or '[dim](no comment)[/dim]'}")


@app.command("regions")
def list_regions():
    """List the selectable regions and their location keywords."""
    table = Table(title="Regions")
    table.add_column("Code", style="cyan")
    table.add_column("Region")
    table.add_column("Keywords", style="dim")

    default = get_settings().default_region
    for region in REGIONS:
        name = f"{region.flag} {region.display_name}"
        if region.code == default:
            name += " [green](default)[/green]"
        table.add_row(region.code, name, ", ".join(region.keywords) or "any location")

    console.print(table)
