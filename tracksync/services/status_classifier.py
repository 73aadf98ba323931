"""Rule-based classification of a tracking history into a TrackingStatus.

Carrier status codes win when present. Warehouse keyword cues cover the
stretch between "order placed" and "carrier has custody", which carriers
never code explicitly. The cues are English substring matches against the
original carrier text and break if the upstream wording changes.
"""

from collections.abc import Sequence

from tracksync.models import TrackingEvent, TrackingStatus

DELIVERED_CODE = "DELIVERED"
OTHER_CODE = "OTHER"

CARRIER_STATUS_MAP: dict[str, TrackingStatus] = {
    "DELIVERED": TrackingStatus.DELIVERED,
    "AVAILABLE_FOR_DELIVERY": TrackingStatus.AVAILABLE_FOR_PICKUP,
    "EN_ROUTE": TrackingStatus.EN_ROUTE,
}

SENT_KEYWORDS = (
    "left the warehouse",
    "being transported to the terminal",
    "beeing transported to the terminal",
    "transported to the terminal",
)
PICKING_KEYWORDS = (
    "prepared for picking",
    "picking",
    "being picked",
    "order has been picked",
    "picked and is ready",
)
WAITING_KEYWORDS = (
    "placed in the warehouse and will be prepared for picking",
)


def _matches(event: TrackingEvent, keywords: Sequence[str]) -> bool:
    description = (event.description or "").lower()
    return any(keyword in description for keyword in keywords)


def is_sent_event(event: TrackingEvent) -> bool:
    return _matches(event, SENT_KEYWORDS)


def is_picking_event(event: TrackingEvent) -> bool:
    return _matches(event, PICKING_KEYWORDS)


def is_waiting_event(event: TrackingEvent) -> bool:
    return _matches(event, WAITING_KEYWORDS)


def map_carrier_status(code: str) -> TrackingStatus:
    """Map a non-empty carrier code onto the status vocabulary."""
    return CARRIER_STATUS_MAP.get(code.upper(), TrackingStatus.OTHER)


def _cue_status(event: TrackingEvent) -> TrackingStatus | None:
    # The waiting phrase also contains "prepared for picking", so it is
    # checked before the broader picking cue.
    if is_sent_event(event):
        return TrackingStatus.SENT
    if is_waiting_event(event):
        return TrackingStatus.WAITING_TO_BE_PICKED
    if is_picking_event(event):
        return TrackingStatus.PICKING
    return None


def classify(events: Sequence[TrackingEvent]) -> TrackingStatus:
    """Derive the logical status of an order from its event history.

    Args:
        events: Events sorted ascending by timestamp.

    Returns:
        The classified TrackingStatus. An empty history is UNKNOWN.
    """
    if not events:
        return TrackingStatus.UNKNOWN

    if any((e.carrier_status or "").upper() == DELIVERED_CODE for e in events):
        return TrackingStatus.DELIVERED

    last_known = ""
    seen_sent = seen_picking = seen_waiting = False
    for event in events:
        code = (event.carrier_status or "").strip()
        if code and code.upper() != OTHER_CODE:
            last_known = code
        cue = _cue_status(event)
        seen_sent = seen_sent or cue is TrackingStatus.SENT
        seen_picking = seen_picking or cue is TrackingStatus.PICKING
        seen_waiting = seen_waiting or cue is TrackingStatus.WAITING_TO_BE_PICKED

    if last_known:
        return map_carrier_status(last_known)

    latest_cue = _cue_status(events[-1])
    if latest_cue is not None:
        return latest_cue

    if seen_sent:
        return TrackingStatus.SENT
    if seen_picking:
        return TrackingStatus.PICKING
    if seen_waiting:
        return TrackingStatus.WAITING_TO_BE_PICKED
    return TrackingStatus.UNKNOWN


def merge_sticky(previous: TrackingStatus | None, current: TrackingStatus) -> TrackingStatus:
    """Keep DELIVERED once an order has reached it."""
    if previous == TrackingStatus.DELIVERED:
        return TrackingStatus.DELIVERED
    return current


def status_class(carrier_status: str | None, event_type: str | None) -> str:
    """Display class for one event, a pure function of its code and type."""
    mapping = {
        "DELIVERED": "delivered",
        "AVAILABLE_FOR_DELIVERY": "available",
        "EN_ROUTE": "en-route",
        "OTHER": "other",
    }
    if carrier_status in mapping:
        return mapping[carrier_status]
    if (event_type or "").lower() == "warehouse":
        return "warehouse"
    return "default"


def delivery_date(events: Sequence[TrackingEvent]) -> TrackingEvent | None:
    """Return the first DELIVERED event, or None when not delivered."""
    for event in events:
        if (event.carrier_status or "").upper() == DELIVERED_CODE:
            return event
    return None
