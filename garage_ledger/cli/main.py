"""
CLI interface for Garage Ledger.

Provides command-line access to the stock, debt and report screens.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from garage_ledger.config.loader import LedgerConfig, resolve_config
from garage_ledger.core.debts import Rejected
from garage_ledger.core.errors import LedgerError
from garage_ledger.core.money import format_money
from garage_ledger.core.period import make_period
from garage_ledger.sdk.shop_ledger import ShopLedger
from garage_ledger.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Failures and rejected payments

DATE_FORMATS = ["%Y-%m-%d"]


def _config(ctx: typer.Context) -> LedgerConfig:
    return ctx.obj or LedgerConfig()


def _ledger(ctx: typer.Context) -> ShopLedger:
    return ShopLedger(_config(ctx))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config (defaults to $GARAGE_LEDGER_CONFIG)"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output"
    )
):
    """Garage Ledger CLI."""
    try:
        config = resolve_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    logging.basicConfig(
        level=logging.DEBUG if verbose else config.logging_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("Garage Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the ledger database."""
    try:
        initialize_schema(_config(ctx).database_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show which database and settings are in use."""
    config = _config(ctx)
    console.print(f"Database: {config.database_path}")
    console.print(f"Low stock threshold: {config.inventory.low_stock_threshold}")
    console.print(f"Write retries: {config.max_retries}")


@app.command()
def stock(
    ctx: typer.Context,
    date_from: Optional[datetime] = typer.Option(
        None, "--from", formats=DATE_FORMATS, help="Period start (YYYY-MM-DD)"
    ),
    date_to: Optional[datetime] = typer.Option(
        None, "--to", formats=DATE_FORMATS, help="Period end (YYYY-MM-DD)"
    )
):
    """
    Show begin and end stock per part.

    Without a period, shows totals to date. With one, reconstructs the
    stock at the start and end of the period from current stock.
    """
    try:
        period = make_period(date_from, date_to)
        ledger = _ledger(ctx)
        report = ledger.stock_levels(period)
        names = {p.id: p.name for p in ledger.repository.fetch_parts()}
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    title = f"Stock {period.label}" if period else "Stock to date"
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Part")
    table.add_column("Begin", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("End", justify="right")
    for index, snapshot in enumerate(report.snapshots, start=1):
        style = "red" if snapshot.is_anomalous else None
        table.add_row(
            str(index),
            names.get(snapshot.part_id, snapshot.part_id),
            str(snapshot.begin_stock),
            str(snapshot.used_during_period),
            str(snapshot.end_stock),
            style=style,
        )
    console.print(table)

    if report.degraded:
        console.print("[yellow]Usage history unavailable: showing current stock only[/]")
    for anomaly in report.anomalies:
        console.print(f"[red]Data integrity:[/] part {anomaly.entity_id}: {anomaly.message}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def debts(
    ctx: typer.Context,
    date_from: Optional[datetime] = typer.Option(
        None, "--from", formats=DATE_FORMATS, help="Only charges received from this date"
    ),
    date_to: Optional[datetime] = typer.Option(
        None, "--to", formats=DATE_FORMATS, help="Only charges received up to this date"
    ),
    search: Optional[str] = typer.Option(
        None, "--search", "-s", help="Match plate, brand or customer"
    ),
    show_all: bool = typer.Option(
        False, "--all", "-a", help="Include vehicles with nothing left to pay"
    ),
    page: int = typer.Option(1, "--page", help="Page number")
):
    """List vehicles with outstanding debt."""
    try:
        period = make_period(date_from, date_to)
        rows = _ledger(ctx).vehicle_debts(
            period=period,
            search=search,
            include_settled=True if show_all else None,
            page=page,
        )
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not rows:
        console.print("[dim]No outstanding debts found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Vehicle debts")
    table.add_column("Vehicle")
    table.add_column("Plate")
    table.add_column("Brand")
    table.add_column("Customer")
    table.add_column("Charged", justify="right")
    table.add_column("Paid", justify="right")
    table.add_column("Remaining", justify="right")
    for row in rows:
        table.add_row(
            row.vehicle.id,
            row.vehicle.license_plate,
            row.vehicle.brand,
            row.vehicle.customer_name,
            format_money(row.debt.total_charged),
            format_money(row.debt.total_paid),
            format_money(row.debt.remaining_debt),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pay(
    ctx: typer.Context,
    vehicle_id: str = typer.Argument(..., help="Vehicle to pay for"),
    amount: str = typer.Argument(..., help="Amount, e.g. 150.00"),
    method: str = typer.Option("cash", "--method", "-m", help="Payment method"),
    created_by: Optional[str] = typer.Option(None, "--by", help="Staff member taking the payment"),
    key: Optional[str] = typer.Option(
        None, "--key", "-k", help="Idempotency key; a repeated key never pays twice"
    )
):
    """Record a payment against a vehicle's outstanding debt."""
    try:
        result = _ledger(ctx).process_payment(
            vehicle_id,
            amount,
            method,
            created_by=created_by,
            idempotency_key=key,
        )
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if isinstance(result, Rejected):
        console.print(f"[red]Payment rejected:[/] {result.message}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Payment #{result.id} of {format_money(result.amount)} "
        f"({result.method}) recorded for vehicle {result.vehicle_id}"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def inventory(ctx: typer.Context):
    """Value the stock currently on hand."""
    try:
        analytics = _ledger(ctx).inventory_analytics()
    except LedgerError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("\n[bold]Inventory valuation[/bold]")
    console.print("-" * 40)
    console.print(f"Parts: {analytics.total_parts}")
    console.print(f"Total value: {format_money(analytics.total_value)}")
    console.print(f"Average part value: {format_money(analytics.average_part_value)}")
    console.print(f"Low stock: {analytics.low_stock_items}")
    console.print(f"Out of stock: {analytics.out_of_stock_items}")

    if analytics.top_value_parts:
        table = Table(title="Highest value stock")
        table.add_column("Part")
        table.add_column("Stock", justify="right")
        table.add_column("Value", justify="right")
        for entry in analytics.top_value_parts:
            table.add_row(
                entry.part.name,
                str(entry.part.current_stock),
                format_money(entry.total_value),
            )
        console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def sales(
    ctx: typer.Context,
    date_from: datetime = typer.Option(..., "--from", formats=DATE_FORMATS, help="Period start"),
    date_to: datetime = typer.Option(..., "--to", formats=DATE_FORMATS, help="Period end")
):
    """Revenue per vehicle brand for a period."""
    try:
        report = _ledger(ctx).sales_report(make_period(date_from, date_to))
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Sales {report.period.label}")
    table.add_column("#", justify="right")
    table.add_column("Brand")
    table.add_column("Repairs", justify="right")
    table.add_column("Revenue", justify="right")
    table.add_column("Share %", justify="right")
    for brand in report.brands:
        table.add_row(
            str(brand.row),
            brand.brand,
            str(brand.repair_count),
            format_money(brand.revenue),
            f"{brand.share_percent}",
        )
    console.print(table)
    console.print(f"Total revenue: {format_money(report.total_revenue)}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
