"""SQLAlchemy ORM models for the tracksync state database.

Two tables: ``orders`` is the bundled order store used by the SQL order
repository, ``tracking_records`` holds one reconciled tracking record per
order. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum

from dateutil.parser import isoparse
from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return to_iso(datetime.now(UTC))


def to_iso(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC ISO8601 string.

    Fixed width keeps string comparison in SQL equivalent to time comparison.
    """
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class OrderStatus(str, Enum):
    """Order lifecycle statuses known to the bundled order store."""

    pending = "pending"
    processing = "processing"
    on_hold = "on-hold"
    completed = "completed"
    cancelled = "cancelled"
    refunded = "refunded"
    failed = "failed"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Order(Base):
    """Order record consumed by reconciliation.

    Attributes:
        id: Integer primary key (order number)
        status: Order status, see OrderStatus
        created_at: Order creation time as a fixed-width UTC ISO8601 string
            (see to_iso). Selection compares it as a string, so rows written
            outside the ORM must use the same format.
        shipping_method: Shipping method id or title, used for transporter links
        tracking_number: Carrier tracking number, empty until the warehouse ships
        tracking_payload: Legacy tracking JSON stored on the order, moved
            into tracking_records by backfill
        status_note: Note attached by the last status change
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.pending.value
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    shipping_method: Mapped[str] = mapped_column(
        String(255), nullable=False, default=""
    )
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    @validates("created_at")
    def _normalize_created_at(self, key: str, value: str | datetime) -> str:
        if isinstance(value, str):
            value = isoparse(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return to_iso(value)

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status})>"


class TrackingRecordRow(Base):
    """Persisted tracking record, one row per order.

    Attributes:
        id: Surrogate primary key
        order_id: Order the record belongs to (unique)
        tracking_number: Tracking number the feed was fetched for
        data_json: Serialized TrackingRecord (events, raw payload, carrier error)
        latest_status: Classified TrackingStatus value
        last_updated: ISO8601 fetch time of the feed that produced the row
        created_at: ISO8601 timestamp of the first write
        updated_at: ISO8601 timestamp of the last write
    """

    __tablename__ = "tracking_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    tracking_number: Mapped[str] = mapped_column(String(100), nullable=False)
    data_json: Mapped[str] = mapped_column(Text, nullable=False)
    latest_status: Mapped[str] = mapped_column(String(32), nullable=False)
    last_updated: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_tracking_records_latest_status", "latest_status"),
        Index("idx_tracking_records_tracking_number", "tracking_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<TrackingRecordRow(order_id={self.order_id}, "
            f"latest_status={self.latest_status})>"
        )
