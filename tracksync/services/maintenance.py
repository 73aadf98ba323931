"""Administrative operations: backfill, cleanup and test number assignment."""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tracksync.errors import ValidationError
from tracksync.models import EPOCH_ZERO, TrackingFeed
from tracksync.services.event_normalizer import normalize, parse_carrier_date
from tracksync.services.order_repository import OrderRepository
from tracksync.services.status_classifier import classify
from tracksync.services.tracking_repository import TrackingRepository

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceResult:
    """Counts and error lines from a maintenance command."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def _legacy_event(raw: Any) -> Any:
    # Older payloads stored display-formatted events with "description".
    if isinstance(raw, dict) and "eventdescription" not in raw and "description" in raw:
        return {**raw, "eventdescription": raw["description"]}
    return raw


def backfill(orders: OrderRepository, records: TrackingRepository) -> MaintenanceResult:
    """Move tracking payloads stored on orders into tracking records.

    Orders that already have a tracking record keep it; their stored
    payload is left in place. Migrated payloads are cleared from the order.

    Returns:
        MaintenanceResult where processed counts migrated orders.
    """
    result = MaintenanceResult()
    for stored in orders.list_tracking_payloads():
        order_id = stored.order_id
        if records.get_status(order_id) is not None:
            result.skipped += 1
            continue
        try:
            data = json.loads(stored.payload)
        except ValueError as e:
            result.failed += 1
            result.errors.append(f"order {order_id}: invalid stored payload ({e})")
            continue
        if not isinstance(data, dict):
            result.failed += 1
            result.errors.append(f"order {order_id}: stored payload is not an object")
            continue

        tracking_number = (data.get("tracking_number") or stored.tracking_number or "").strip()
        if not tracking_number:
            result.failed += 1
            result.errors.append(f"order {order_id}: no tracking number")
            continue

        raw_events = data.get("events") or []
        events = normalize(_legacy_event(raw) for raw in raw_events) if isinstance(raw_events, list) else []
        fetched_at = parse_carrier_date(data.get("last_updated"))
        if fetched_at == EPOCH_ZERO:
            fetched_at = datetime.now(UTC)
        feed = TrackingFeed(
            events=events,
            raw_payload=data,
            fetched_at=fetched_at,
            carrier_error=str(data["error"]) if data.get("error") else None,
        )
        records.upsert(order_id, tracking_number, feed, classify(events))
        orders.clear_tracking_payload(order_id)
        result.processed += 1

    logger.info(
        "Backfill: %d migrated, %d already present, %d failed",
        result.processed,
        result.skipped,
        result.failed,
    )
    return result


def cleanup(records: TrackingRepository, order_ids: Sequence[int] | None = None) -> int:
    """Delete tracking records for the given orders, or all when None."""
    return records.delete_all(order_ids)


def read_tracking_numbers(path: Path) -> list[str]:
    """Read one tracking number per line, skipping blank lines.

    Raises:
        ValidationError: If the file is missing or holds no numbers.
    """
    if not path.exists():
        raise ValidationError(f"File not found: {path}")
    numbers = [line.strip() for line in path.read_text().splitlines() if line.strip()]
    if not numbers:
        raise ValidationError("No tracking numbers found in file.")
    return numbers


def assign_test_numbers(
    orders: OrderRepository,
    tracking_numbers: Sequence[str],
    statuses: Sequence[str],
    limit: int | None = None,
) -> MaintenanceResult:
    """Give orders without a tracking number one from the list, in order.

    Args:
        orders: Order store.
        tracking_numbers: Numbers to hand out.
        statuses: Only orders in these statuses are considered.
        limit: Max numbers to assign, defaults to all of them.

    Returns:
        MaintenanceResult where processed counts assigned numbers.

    Raises:
        ValidationError: If no order lacks a tracking number.
    """
    count = len(tracking_numbers) if limit is None else min(limit, len(tracking_numbers))
    order_ids = orders.list_orders_without_tracking(statuses, count)
    if not order_ids:
        raise ValidationError("No orders found without tracking numbers.")

    result = MaintenanceResult()
    for order_id, number in zip(order_ids, tracking_numbers):
        orders.set_tracking_number(order_id, number)
        result.processed += 1
    logger.info("Assigned %d test tracking number(s)", result.processed)
    return result
