"""Convert raw carrier event records into TrackingEvent objects.

Carrier dates carry their own offset (ISO 8601). They are converted to
UTC; naive dates are read as UTC. A date that cannot be parsed becomes
epoch zero, which sorts first, while the original string survives in
display_date.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as date_parser

from tracksync.models import EPOCH_ZERO, TrackingEvent

logger = logging.getLogger(__name__)


def parse_carrier_date(value: Any) -> datetime:
    """Parse a carrier date string into an aware UTC datetime.

    Args:
        value: Raw ``date`` field from the carrier.

    Returns:
        UTC datetime, or EPOCH_ZERO when missing or unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return EPOCH_ZERO
    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.parse(value.strip())
        except (ValueError, OverflowError) as e:
            logger.debug("Unparseable carrier date %r: %s", value, e)
            return EPOCH_ZERO
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_event(raw: dict[str, Any]) -> TrackingEvent:
    """Map one raw carrier record onto the canonical event shape."""
    raw_date = raw.get("date")
    return TrackingEvent(
        timestamp=parse_carrier_date(raw_date),
        display_date=str(raw_date) if raw_date is not None else "",
        description=str(raw.get("eventdescription") or ""),
        location=_optional_text(raw.get("location")),
        carrier_status=_optional_text(raw.get("transporter_status")),
        event_type=_optional_text(raw.get("type")),
    )


def normalize(raw_events: Iterable[Any]) -> list[TrackingEvent]:
    """Normalize and chronologically order a carrier event list.

    The sort is stable so events sharing a timestamp keep the order the
    carrier sent them in.

    Args:
        raw_events: The ``events`` list of a carrier response.

    Returns:
        Events sorted ascending by UTC timestamp.
    """
    events = []
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object carrier event at index %d", index)
            continue
        events.append(normalize_event(raw))
    return sorted(events, key=lambda event: event.timestamp)
