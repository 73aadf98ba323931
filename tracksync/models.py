"""Tracking domain models shared by the carrier client, classifier and repository."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=UTC)


class TrackingStatus(str, Enum):
    """Carrier-agnostic classification of an order's tracking history."""

    DELIVERED = "delivered"
    AVAILABLE_FOR_PICKUP = "available_for_pickup"
    EN_ROUTE = "en_route"
    SENT = "sent"
    WAITING_TO_BE_PICKED = "waiting_to_be_picked"
    PICKING = "picking"
    OTHER = "other"
    UNKNOWN = "unknown"


class TrackingEvent(BaseModel):
    """One carrier-reported occurrence, normalized."""

    timestamp: datetime = Field(
        default=EPOCH_ZERO, description="UTC instant, epoch zero when unparseable"
    )
    display_date: str = Field(default="", description="Carrier date string as received")
    description: str = Field(default="", description="Original untranslated carrier text")
    location: str | None = Field(None, description="Free text location")
    carrier_status: str | None = Field(None, description="Opaque carrier status code")
    event_type: str | None = Field(None, description="Carrier category, e.g. Warehouse")


class TrackingFeed(BaseModel):
    """Result of one successful carrier fetch."""

    events: list[TrackingEvent] = Field(default_factory=list)
    raw_payload: dict[str, Any] = Field(default_factory=dict, description="Decoded carrier body")
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    carrier_error: str | None = Field(
        None, description="Set when the carrier reported no data for the number"
    )


class TrackingRecord(BaseModel):
    """The unit of persistence, one per order."""

    order_id: int
    tracking_number: str
    events: list[TrackingEvent] = Field(default_factory=list)
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    carrier_error: str | None = None
    latest_status: TrackingStatus = TrackingStatus.UNKNOWN
    last_updated: datetime

    @property
    def has_data(self) -> bool:
        """True when the carrier returned at least one event."""
        return bool(self.events)
