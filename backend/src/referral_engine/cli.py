"""Command-line interface for the referral engine."""

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from referral_engine.logging_config import configure_logging, get_logger
from referral_engine.referral.admin import AdminService
from referral_engine.referral.errors import NotFoundError
from referral_engine.referral.rewards import RewardIssuer
from referral_engine.settings import settings
from referral_engine.shopify.client import ShopifyClient
from referral_engine.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="referral-engine",
    help="Referral Engine - customer referral program for a Shopify storefront",
    no_args_is_help=True,
)

console = Console()


def _admin_service() -> AdminService:
    return AdminService(RewardIssuer(ShopifyClient(), db), db)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    _admin_service().get_settings()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("process-queue")
def process_queue() -> None:
    """Issue rewards for every referral past its cooldown."""
    console.print("[bold blue]Processing reward queue...[/bold blue]")

    try:
        result = asyncio.run(_admin_service().process_queue())
    except Exception as e:
        console.print(f"[bold red]✗[/bold red] Queue processing failed: {str(e)}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Processed {result.processed}/{result.total} referrals")


@app.command("worker")
def run_worker(
    interval: Annotated[
        int | None,
        typer.Option("--interval", "-i", help="Seconds between queue runs"),
    ] = None,
) -> None:
    """Run the reward queue periodically until interrupted."""
    interval = interval or settings.reward_worker_interval_seconds
    console.print(f"[bold blue]Reward worker running every {interval}s (Ctrl+C to stop)[/bold blue]")

    try:
        asyncio.run(_admin_service().scheduler.run_periodically(interval))
    except KeyboardInterrupt:
        console.print("[yellow]Worker stopped[/yellow]")


@app.command("settings-show")
def show_settings() -> None:
    """Show the current program settings."""
    values = _admin_service().get_settings()

    table = Table(title="Program Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in values.items():
        table.add_row(key, str(value))

    console.print(table)


@app.command("flags")
def show_fraud_flags(
    resolve: Annotated[
        int | None,
        typer.Option("--resolve", "-r", help="Resolve the fraud flag with this ID"),
    ] = None,
) -> None:
    """List unresolved fraud flags, or resolve one."""
    service = _admin_service()

    if resolve is not None:
        try:
            service.resolve_flag(resolve)
        except NotFoundError:
            console.print(f"[red]Fraud flag {resolve} not found[/red]")
            raise typer.Exit(1)
        console.print(f"[bold green]✓[/bold green] Fraud flag {resolve} resolved")
        return

    flags = service.list_open_flags()
    if not flags:
        console.print("[green]No open fraud flags[/green]")
        return

    table = Table(title="Open Fraud Flags")
    table.add_column("ID", style="cyan")
    table.add_column("Referral", justify="right")
    table.add_column("Customer")
    table.add_column("Reason", style="red")
    table.add_column("Created At")

    for flag in flags:
        table.add_row(
            str(flag["id"]),
            str(flag["referral_id"]),
            flag["customer_email"] or "N/A",
            flag["reason"],
            (flag["created_at"] or "")[:16].replace("T", " "),
        )

    console.print(table)


if __name__ == "__main__":
    app()
