"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
output (--json flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import dataclasses
import json

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tracksync.config import TrackSyncConfig
from tracksync.errors import TrackSyncError, format_error
from tracksync.models import TrackingRecord, TrackingStatus
from tracksync.orchestrator.models import ReconciliationSummary, RunOutcome
from tracksync.services.maintenance import MaintenanceResult
from tracksync.services.order_repository import OrderSnapshot
from tracksync.services.status_classifier import delivery_date, status_class
from tracksync.services.transporters import tracking_link

console = Console()

STATUS_COLORS = {
    TrackingStatus.DELIVERED.value: "green",
    TrackingStatus.AVAILABLE_FOR_PICKUP.value: "cyan",
    TrackingStatus.EN_ROUTE.value: "blue",
    TrackingStatus.SENT.value: "blue",
    TrackingStatus.WAITING_TO_BE_PICKED.value: "yellow",
    TrackingStatus.PICKING.value: "yellow",
    TrackingStatus.OTHER.value: "white",
    TrackingStatus.UNKNOWN.value: "dim",
}

OUTCOME_COLORS = {
    RunOutcome.SUCCESS: "green",
    RunOutcome.PARTIAL_FAILURE: "yellow",
    RunOutcome.ABORTED: "red",
}


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_summary(summary: ReconciliationSummary, as_json: bool = False) -> str:
    """Format a reconciliation summary as a Rich panel or JSON."""
    if as_json:
        return json.dumps(summary.to_dict(), indent=2)

    color = OUTCOME_COLORS.get(summary.outcome, "white")
    lines = [
        f"[bold]Mode:[/bold]      {summary.mode}",
        f"[bold]Outcome:[/bold]   [{color}]{summary.outcome.value}[/{color}]",
        f"[bold]Selected:[/bold]  {summary.selected}",
        f"[bold]Updated:[/bold]   [green]{summary.updated}[/green]",
        f"[bold]Failed:[/bold]    [red]{summary.permanently_failed}[/red]",
        f"[bold]Gave up:[/bold]   [red]{summary.still_retryable_after_max_passes}[/red] (retryable after max passes)",
        f"[bold]Skipped:[/bold]   {summary.skipped}",
        f"[bold]Duration:[/bold]  {summary.duration_seconds:.2f}s",
    ]
    if summary.abort_reason:
        lines.append("")
        stopped = TrackSyncError.from_code("E-4002", details=summary.abort_reason)
        lines.append(f"[bold red]Stopped:[/bold red] {format_error(stopped)}")
    if summary.errors:
        lines.append("")
        lines.append("[bold yellow]Errors:[/bold yellow]")
        for error in summary.errors[:20]:
            lines.append(f"  - {error}")
        if len(summary.errors) > 20:
            lines.append(f"  ... and {len(summary.errors) - 20} more")

    return _render(Panel("\n".join(lines), title="Reconciliation", border_style="cyan"))


def format_status_overview(
    config: TrackSyncConfig,
    counts: dict[str, int],
    as_json: bool = False,
) -> str:
    """Format the read-only status overview: settings and record counts."""
    recon = config.reconciliation
    if as_json:
        return json.dumps(
            {
                "enabled_statuses": recon.enabled_statuses,
                "age_limits_days": recon.age_limits(),
                "exclude_delivered": recon.exclude_delivered,
                "max_updates_per_run": recon.max_updates_per_run,
                "batch_size": recon.batch_size,
                "rate_limit": config.rate_limit.model_dump(),
                "records_by_status": counts,
                "total_records": sum(counts.values()),
            },
            indent=2,
        )

    settings = Table(title="Settings", show_header=False)
    settings.add_column("Setting", style="bold")
    settings.add_column("Value")
    limits = recon.age_limits()
    settings.add_row(
        "Enabled statuses",
        ", ".join(f"{s} ({limits[s]}d)" if limits[s] else f"{s} (no limit)" for s in recon.enabled_statuses),
    )
    settings.add_row("Exclude delivered", "yes" if recon.exclude_delivered else "no")
    settings.add_row("Max updates per run", str(recon.max_updates_per_run))
    settings.add_row("Batch size", str(recon.batch_size))
    settings.add_row(
        "Rate limit",
        f"{config.rate_limit.max_requests} per {config.rate_limit.window_seconds:g}s",
    )

    records = Table(title="Tracking records")
    records.add_column("Status")
    records.add_column("Orders", justify="right")
    for status, count in sorted(counts.items()):
        color = STATUS_COLORS.get(status, "white")
        records.add_row(f"[{color}]{status}[/{color}]", str(count))
    records.add_row("[bold]total[/bold]", f"[bold]{sum(counts.values())}[/bold]")

    return _render(settings) + _render(records)


def format_record(
    record: TrackingRecord,
    order: OrderSnapshot | None = None,
    language: str = "en",
    as_json: bool = False,
) -> str:
    """Format one tracking record with its events, newest first."""
    delivered = delivery_date(record.events)
    link = tracking_link(record.tracking_number, order.shipping_method if order else None, language)
    if as_json:
        data = record.model_dump(mode="json")
        data["tracking_link"] = link
        data["delivery_date"] = delivered.display_date if delivered else None
        return json.dumps(data, indent=2)

    color = STATUS_COLORS.get(record.latest_status.value, "white")
    lines = [
        f"[bold]Order:[/bold]     {record.order_id}",
        f"[bold]Tracking:[/bold]  {record.tracking_number}",
        f"[bold]Status:[/bold]    [{color}]{record.latest_status.value}[/{color}]",
        f"[bold]Updated:[/bold]   {record.last_updated.isoformat()[:19]}",
    ]
    if delivered:
        lines.append(f"[bold]Delivered:[/bold] {delivered.display_date}")
    if link:
        lines.append(f"[bold]Link:[/bold]      {link}")
    if record.carrier_error:
        lines.append(f"[bold yellow]Carrier:[/bold yellow]   {record.carrier_error}")

    output = _render(Panel("\n".join(lines), title="Tracking Record", border_style="cyan"))
    if not record.events:
        return output + "No tracking events.\n"

    table = Table(title="Events", show_lines=False)
    table.add_column("Date", no_wrap=True)
    table.add_column("Description")
    table.add_column("Location")
    table.add_column("Code")
    for event in reversed(record.events):
        table.add_row(
            event.display_date or "-",
            event.description or "-",
            event.location or "-",
            status_class(event.carrier_status, event.event_type),
        )
    return output + _render(table)


def format_maintenance(title: str, result: MaintenanceResult, as_json: bool = False) -> str:
    """Format a backfill or assignment result."""
    if as_json:
        return json.dumps(dataclasses.asdict(result), indent=2)

    lines = [
        f"[bold]Processed:[/bold] [green]{result.processed}[/green]",
        f"[bold]Skipped:[/bold]   {result.skipped}",
        f"[bold]Failed:[/bold]    [red]{result.failed}[/red]",
    ]
    for error in result.errors:
        lines.append(f"  - {error}")
    return _render(Panel("\n".join(lines), title=title, border_style="cyan"))
