"""tracksync CLI: carrier tracking reconciliation.

Usage:
    tracksync update               Refresh tracking for eligible orders
    tracksync update-unfetched     Fetch orders that have never been fetched
    tracksync refresh 1234         Refresh one order now
    tracksync status               Show settings and stored record counts
    tracksync show 1234            Show one order's tracking record
    tracksync backfill             Move legacy order payloads into records
    tracksync cleanup --all        Delete tracking records
    tracksync init-db              Create database tables
    tracksync config show          Display resolved configuration
"""

import asyncio
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from sqlalchemy.engine import make_url

from tracksync.cli.output import (
    format_maintenance,
    format_record,
    format_status_overview,
    format_summary,
)
from tracksync.config import TrackSyncConfig, load_config
from tracksync.db.connection import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
)
from tracksync.errors import DomainError
from tracksync.orchestrator import ReconciliationFilters, open_engine, run_reconciliation
from tracksync.orchestrator.models import RunOutcome
from tracksync.services.maintenance import (
    assign_test_numbers,
    backfill,
    cleanup,
    read_tracking_numbers,
)
from tracksync.services.order_repository import SqlOrderRepository
from tracksync.services.selection import SelectionMode
from tracksync.services.tracking_repository import TrackingRepository

_log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(
    name="tracksync",
    help="Carrier shipment tracking reconciliation",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to tracksync.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """tracksync: keep order tracking in step with the carrier."""
    global _config_path
    _config_path = config
    level = "DEBUG" if verbose else _load().logging.level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)


def _load() -> TrackSyncConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid config:[/red] {e}")
        raise typer.Exit(1)


@contextmanager
def _open_db(cfg: TrackSyncConfig) -> Iterator[SessionFactory]:
    engine = create_db_engine(cfg.database)
    try:
        init_db(engine)
        yield create_session_factory(engine)
    finally:
        engine.dispose()


def _print(output: str, json_output: bool) -> None:
    # JSON goes out raw so Rich markup and highlighting cannot alter it
    if json_output:
        typer.echo(output)
    else:
        console.print(output)


def _split_statuses(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [s.strip() for s in value.split(",") if s.strip()]


def _run_update(
    mode: SelectionMode,
    status: str | None,
    limit: int | None,
    include_delivered: bool,
    json_output: bool,
    quiet: bool = False,
) -> None:
    cfg = _load()
    filters = ReconciliationFilters(
        statuses=_split_statuses(status),
        limit=limit,
        exclude_delivered=False if include_delivered else None,
    )
    summary = asyncio.run(run_reconciliation(cfg, mode, filters))
    if not quiet or summary.outcome is not RunOutcome.SUCCESS:
        _print(format_summary(summary, as_json=json_output), json_output)
    if summary.outcome is RunOutcome.ABORTED:
        raise typer.Exit(2)


# --- Reconciliation commands ---


@app.command()
def update(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Comma-separated order statuses"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max orders, 0 for no cap"),
    include_delivered: bool = typer.Option(False, "--include-delivered", help="Also refresh delivered orders"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only when the run did not fully succeed"),
):
    """Refresh tracking for every eligible order."""
    _run_update(SelectionMode.REFRESH, status, limit, include_delivered, json_output, quiet)


@app.command("update-unfetched")
def update_unfetched(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Comma-separated order statuses"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max orders, 0 for no cap"),
    include_delivered: bool = typer.Option(False, "--include-delivered", help="Also consider delivered orders"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only when the run did not fully succeed"),
):
    """Fetch tracking for orders that have never been fetched."""
    _run_update(SelectionMode.UNFETCHED, status, limit, include_delivered, json_output, quiet)


@app.command()
def refresh(order_id: int = typer.Argument(..., help="Order id")):
    """Refresh one order's tracking immediately."""
    cfg = _load()

    async def _run():
        async with open_engine(cfg) as engine:
            return await engine.refresh_order(order_id)

    result = asyncio.run(_run())
    if result.success:
        console.print(f"[green]{result.message}[/green]")
    else:
        console.print(f"[red]Refresh failed:[/red] {result.message}")
        raise typer.Exit(1)


# --- Read-only commands ---


@app.command()
def status(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Show reconciliation settings and stored record counts."""
    cfg = _load()
    with _open_db(cfg) as session_factory:
        counts = TrackingRepository(session_factory).count_by_status()
    output = format_status_overview(cfg, counts, as_json=json_output)
    _print(output, json_output)


@app.command()
def show(
    order_id: int = typer.Argument(..., help="Order id"),
    lang: str = typer.Option("en", "--lang", help="Language for tracking links"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the stored tracking record for one order."""
    cfg = _load()
    with _open_db(cfg) as session_factory:
        record = TrackingRepository(session_factory).get(order_id)
        order = SqlOrderRepository(session_factory).get_order(order_id)
    if record is None:
        console.print(f"[yellow]No tracking record for order {order_id}.[/yellow]")
        raise typer.Exit(1)
    output = format_record(record, order, language=lang, as_json=json_output)
    _print(output, json_output)


# --- Maintenance commands ---


@app.command("backfill")
def backfill_cmd(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Move tracking payloads stored on orders into tracking records."""
    cfg = _load()
    with _open_db(cfg) as session_factory:
        result = backfill(SqlOrderRepository(session_factory), TrackingRepository(session_factory))
    output = format_maintenance("Backfill", result, as_json=json_output)
    _print(output, json_output)


@app.command("cleanup")
def cleanup_cmd(
    order_id: Optional[List[int]] = typer.Option(None, "--order-id", help="Order id, repeatable"),
    all_records: bool = typer.Option(False, "--all", help="Delete every tracking record"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete tracking records for the given orders or for all orders."""
    if not order_id and not all_records:
        console.print("[red]Pass --order-id or --all.[/red]")
        raise typer.Exit(1)
    if order_id and all_records:
        console.print("[red]--order-id and --all are mutually exclusive.[/red]")
        raise typer.Exit(1)
    if all_records and not yes:
        typer.confirm("Delete ALL tracking records?", abort=True)

    cfg = _load()
    with _open_db(cfg) as session_factory:
        deleted = cleanup(TrackingRepository(session_factory), None if all_records else order_id)
    console.print(f"[green]Deleted {deleted} tracking record(s).[/green]")


@app.command("init-db")
def init_db_cmd():
    """Create database tables (safe to run repeatedly)."""
    cfg = _load()
    with _open_db(cfg):
        pass
    console.print("[green]Database ready.[/green]")


@app.command("assign-test-numbers")
def assign_test_numbers_cmd(
    file: Path = typer.Option(..., "--file", help="File with one tracking number per line"),
    status: str = typer.Option("processing,completed", "--status", "-s", help="Comma-separated order statuses"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max numbers to assign"),
    force: bool = typer.Option(False, "--force", help="Skip confirmation"),
):
    """Assign tracking numbers from a file to orders without one (development only)."""
    cfg = _load()
    if cfg.carrier.environment != "development":
        console.print(
            "[red]assign-test-numbers is only available in development environments. "
            f"Current environment: {cfg.carrier.environment}[/red]"
        )
        raise typer.Exit(1)

    try:
        numbers = read_tracking_numbers(file)
    except DomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if not force:
        typer.confirm(f"Assign up to {len(numbers)} tracking number(s) to orders?", abort=True)

    with _open_db(cfg) as session_factory:
        try:
            result = assign_test_numbers(
                SqlOrderRepository(session_factory),
                numbers,
                _split_statuses(status) or [],
                limit,
            )
        except DomainError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
    console.print(format_maintenance("Assign test numbers", result))


# --- Config commands ---


@config_app.command("show")
def config_show(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Display resolved configuration (database password masked)."""
    cfg = _load()
    data = cfg.model_dump()
    url = make_url(get_database_url(cfg.database))
    data["database"]["url"] = url.render_as_string(hide_password=True)
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return

    for section, values in data.items():
        console.print(f"[bold]{section}:[/bold]")
        for key, value in values.items():
            console.print(f"  {key}: {value}")


if __name__ == "__main__":
    app()
