"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.http import PortalHttpClient
from ..adapters.mock_portal_client import build_mock_portal_client
from ..adapters.portal_client import CustomerPortalClient
from ..config import AppConfig, get_default_config_path
from ..domain.models import (
    Availability,
    CartItem,
    CustomerInfo,
    Unavailable,
    UnavailableReason,
    format_stock_display,
)
from ..domain.results import Err
from ..services.availability import AvailabilityResolver
from ..services.checkout import CheckoutError, CheckoutOrchestrator, lookup_inventory

app = typer.Typer(
    name="salonkit",
    help="Booking availability and storefront checkout against the customer portal",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
MockOption = Annotated[
    bool,
    typer.Option("--mock", help="Use the built-in mock portal instead of a backend."),
]


def _load_config(config_file: Optional[Path], mock: bool) -> AppConfig:
    """
    Load configuration; in mock mode a missing config file is fine.
    """
    config_path = config_file or get_default_config_path()
    if mock and not config_path.exists():
        return AppConfig(backend_url="http://mock-portal.local", tenant="mock-salon")
    return AppConfig.load_from_yaml(config_path)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _build_client(config: AppConfig, mock: bool) -> CustomerPortalClient:
    if mock:
        console.print("[yellow]⚠  MOCK MODE: using built-in test data[/yellow]\n")
        return build_mock_portal_client(tenant=config.tenant, timezone=config.timezone)

    http = PortalHttpClient(
        base_url=config.backend_url,
        tenant=config.tenant,
        timeout=config.request_timeout_seconds,
    )
    return CustomerPortalClient(http=http, timezone=config.timezone)


def _print_availability(outcome, day_label: str) -> None:
    if isinstance(outcome, Unavailable):
        if outcome.reason == UnavailableReason.CLOSED:
            console.print(f"[yellow]Closed:[/yellow] {outcome.message or day_label}")
        else:
            console.print(
                f"[yellow]No opening hours configured for {day_label}.[/yellow] "
                "Ask the salon to set up its opening hours."
            )
        return

    if outcome.fully_booked:
        console.print(f"[yellow]⚠ Fully booked on {day_label}.[/yellow] Try another day.")
        return

    table = Table(title=f"Available times {day_label}", show_header=True, header_style="bold cyan")
    table.add_column("Start", style="bold yellow")
    table.add_column("End", style="dim")
    for slot in outcome.slots:
        table.add_row(slot.display, slot.end.format("HH:mm"))

    console.print()
    console.print(table)
    if isinstance(outcome, Availability) and outcome.using_fallback_hours:
        console.print("[dim]Based on the salon's general opening hours.[/dim]")
    console.print()


@app.command()
def slots(
    provider_id: Annotated[str, typer.Argument(help="Provider id")],
    service_id: Annotated[str, typer.Argument(help="Service id")],
    config_file: ConfigOption = None,
    date: Annotated[Optional[str], typer.Option("--date", "-d", help="Date (YYYY-MM-DD), defaults to today")] = None,
    mock: MockOption = False,
):
    """
    Show bookable start times for a provider and service on one day.

    Examples:

        salonkit slots prov_anna svc_cut --date 2026-10-19

        salonkit slots prov_anna svc_cut --mock
    """
    try:
        config = _load_config(config_file, mock)
        _setup_logging(config.log_level)

        tz = config.timezone
        if date:
            try:
                day = pendulum.from_format(date, "YYYY-MM-DD", tz=tz).date()
            except ValueError as e:
                console.print(f"[red]Could not parse date: {e}[/red]")
                raise typer.Exit(1)
        else:
            day = pendulum.now(tz).date()

        outcome = asyncio.run(_resolve_slots(config, mock, provider_id, service_id, day))
        _print_availability(outcome, day.to_date_string())

    except typer.Exit:
        raise

    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


async def _resolve_slots(config: AppConfig, mock: bool, provider_id: str, service_id: str, day):
    client = _build_client(config, mock)
    try:
        services = await client.list_services()
        if isinstance(services, Err):
            raise RuntimeError(services.message)

        service = next((s for s in services.value if s.id == service_id), None)
        if service is None:
            raise ValueError(f"Unknown service: {service_id}")

        providers = await client.list_providers()
        provider = None
        if isinstance(providers, Err):
            logging.getLogger(__name__).warning("Providers unavailable: %s", providers.message)
        else:
            provider = next((p for p in providers.value if p.id == provider_id), None)

        console.print(
            f"[bold cyan]{service.name}[/bold cyan] ({service.duration_minutes} min) "
            f"with [bold]{provider.name if provider else provider_id}[/bold]"
        )

        resolver = AvailabilityResolver(
            source=client,
            timezone=config.timezone,
            default_interval_minutes=config.booking.default_slot_interval_minutes,
        )
        return await resolver.resolve_availability(provider_id, day, service, provider=provider)
    finally:
        await client.aclose()


@app.command()
def services(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List active services and providers.
    """
    try:
        config = _load_config(config_file, mock)
        _setup_logging(config.log_level)

        service_list, provider_list = asyncio.run(_fetch_catalog(config, mock))

        table = Table(title="Services", show_header=True, header_style="bold cyan")
        table.add_column("Id", style="dim")
        table.add_column("Name", style="bold yellow")
        table.add_column("Duration")
        for service in service_list:
            table.add_row(service.id, service.name, f"{service.duration_minutes} min")

        provider_table = Table(title="Providers", show_header=True, header_style="bold cyan")
        provider_table.add_column("Id", style="dim")
        provider_table.add_column("Name", style="bold yellow")
        provider_table.add_column("Own hours")
        for provider in provider_list:
            provider_table.add_row(provider.id, provider.name, "yes" if provider.opening_hours else "no")

        console.print()
        console.print(table)
        console.print(provider_table)
        console.print()

    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


async def _fetch_catalog(config: AppConfig, mock: bool):
    client = _build_client(config, mock)
    try:
        service_result, provider_result = await asyncio.gather(client.list_services(), client.list_providers())
        for result in (service_result, provider_result):
            if isinstance(result, Err):
                raise RuntimeError(result.message)
        return service_result.value, provider_result.value
    finally:
        await client.aclose()


@app.command()
def products(
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    List storefront products with their stock status.
    """
    try:
        config = _load_config(config_file, mock)
        _setup_logging(config.log_level)

        rows = asyncio.run(_fetch_products(config, mock))

        table = Table(title="Products", show_header=True, header_style="bold cyan")
        table.add_column("Product", style="bold yellow")
        table.add_column("Article", style="dim")
        table.add_column("Price id", style="dim")
        table.add_column("Stock")
        for product, stock_label in rows:
            for variant in product.variants:
                table.add_row(product.name, variant.article_number, variant.stripe_price_id or "", stock_label)

        console.print()
        console.print(table)
        console.print()

    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


async def _fetch_products(config: AppConfig, mock: bool):
    client = _build_client(config, mock)
    try:
        result = await client.list_products()
        if isinstance(result, Err):
            raise RuntimeError(result.message)

        inventories = await asyncio.gather(*(lookup_inventory(client, p.id) for p in result.value))
        return [
            (product, format_stock_display(inventory))
            for product, inventory in zip(result.value, inventories)
        ]
    finally:
        await client.aclose()


@app.command()
def checkout(
    product_id: Annotated[str, typer.Argument(help="Product id")],
    price_id: Annotated[str, typer.Argument(help="Stripe price id of the variant")],
    config_file: ConfigOption = None,
    quantity: Annotated[int, typer.Option("--quantity", "-q", min=1, help="Quantity")] = 1,
    email: Annotated[Optional[str], typer.Option("--email", help="Customer email")] = None,
    gift_card: Annotated[Optional[str], typer.Option("--gift-card", help="Gift card code to redeem")] = None,
    mock: MockOption = False,
):
    """
    Create a checkout session for a single product.

    Examples:

        salonkit checkout prod_oil price_oil_50 --mock

        salonkit checkout prod_shampoo price_shampoo_500 -q 2 --email kund@example.se
    """
    try:
        config = _load_config(config_file, mock)
        _setup_logging(config.log_level)

        item = CartItem(product_id=product_id, stripe_price_id=price_id, quantity=quantity)
        outcome = asyncio.run(_run_checkout(config, mock, item, CustomerInfo(email=email), gift_card))

        if isinstance(outcome, CheckoutError):
            console.print(f"[bold red]✗ {outcome.kind.value}:[/bold red] {outcome.message}")
            for failed in outcome.items:
                console.print(f"   - {failed.name or failed.product_id} ({failed.stripe_price_id})")
            raise typer.Exit(1)

        tracking = "registered" if outcome.tracking_registered else "[yellow]not registered[/yellow]"
        console.print(Panel.fit(
            f"[bold green]✓ Checkout session created[/bold green]\n\n"
            f"[bold]Session:[/bold] {outcome.session_id}\n"
            f"[bold]Order:[/bold] {outcome.order_id or 'N/A'}\n"
            f"[bold]Total:[/bold] {outcome.session.amount_total / 100:.2f} {outcome.session.currency}\n"
            f"[bold]Cart tracking:[/bold] {tracking}\n\n"
            f"{outcome.checkout_url}",
            title="Checkout"
        ))

    except typer.Exit:
        raise

    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


async def _run_checkout(config: AppConfig, mock: bool, item: CartItem, customer: CustomerInfo, gift_card: Optional[str]):
    client = _build_client(config, mock)
    try:
        orchestrator = CheckoutOrchestrator.from_config(client, config)
        return await orchestrator.submit_checkout([item], customer, gift_card_code=gift_card)
    finally:
        await client.aclose()


@app.command("gift-card")
def gift_card(
    code: Annotated[str, typer.Argument(help="Gift card code")],
    config_file: ConfigOption = None,
    mock: MockOption = False,
):
    """
    Verify a gift card code and show its balance.
    """
    try:
        config = _load_config(config_file, mock)
        _setup_logging(config.log_level)

        result = asyncio.run(_verify_gift_card(config, mock, code))
        if isinstance(result, Err):
            console.print(f"[bold red]✗ {result.kind.value}:[/bold red] {result.message}")
            raise typer.Exit(1)

        card = result.value
        if not card.valid:
            console.print(f"[yellow]✗ {card.code}: {card.message}[/yellow]")
            raise typer.Exit(1)

        console.print(Panel.fit(
            f"[bold green]✓ Valid gift card[/bold green]\n\n"
            f"[bold]Balance:[/bold] {card.balance_minor_units / 100:.2f} {config.currency}\n"
            f"[bold]Expires:[/bold] {card.expires_at or 'N/A'}",
            title=card.code
        ))

    except typer.Exit:
        raise

    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


async def _verify_gift_card(config: AppConfig, mock: bool, code: str):
    client = _build_client(config, mock)
    try:
        return await client.verify_gift_card(code)
    finally:
        await client.aclose()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]salonkit[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
