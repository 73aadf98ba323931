"""Durable storage of one TrackingRecord per order.

Writes replace the whole record in a single statement so readers never
see a half-written record. Concurrent upserts for the same order
serialize on the unique ``order_id`` constraint, last write wins.
"""

import logging
from collections.abc import Iterable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tracksync.db.connection import SessionFactory, get_db_context
from tracksync.db.models import TrackingRecordRow, to_iso, utc_now_iso
from tracksync.models import TrackingFeed, TrackingRecord, TrackingStatus
from tracksync.services.errors import PersistenceError

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = ("tracking_number", "data_json", "latest_status", "last_updated", "updated_at")


def _dialect_insert(dialect_name: str):
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        return None
    return insert


def _persistence_error(order_id: int, action: str, error: SQLAlchemyError) -> PersistenceError:
    logger.error("Tracking record %s failed for order %d: %s", action, order_id, error)
    return PersistenceError(
        order_id=order_id,
        message=f"Database operation failed: {error.__class__.__name__}",
    )


class TrackingRepository:
    """Tracking record storage, one session per operation."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def upsert(
        self,
        order_id: int,
        tracking_number: str,
        feed: TrackingFeed,
        latest_status: TrackingStatus,
    ) -> TrackingRecord:
        """Insert or wholesale replace the record for an order.

        Args:
            order_id: Order the record belongs to.
            tracking_number: Number the feed was fetched for.
            feed: Fetched feed; its fetched_at becomes last_updated.
            latest_status: Classified status to cache.

        Returns:
            The stored TrackingRecord.

        Raises:
            PersistenceError: If the write fails.
        """
        record = TrackingRecord(
            order_id=order_id,
            tracking_number=tracking_number,
            events=feed.events,
            raw_payload=feed.raw_payload,
            carrier_error=feed.carrier_error,
            latest_status=latest_status,
            last_updated=feed.fetched_at,
        )
        now = utc_now_iso()
        values = {
            "order_id": order_id,
            "tracking_number": tracking_number,
            "data_json": record.model_dump_json(),
            "latest_status": TrackingStatus(latest_status).value,
            "last_updated": to_iso(feed.fetched_at),
            "created_at": now,
            "updated_at": now,
        }
        try:
            with get_db_context(self._session_factory) as db:
                self._write(db, values)
        except SQLAlchemyError as e:
            raise _persistence_error(order_id, "write", e) from e
        logger.debug("Stored tracking record for order %d (%s)", order_id, values["latest_status"])
        return record

    def _write(self, db: Session, values: dict) -> None:
        insert = _dialect_insert(db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(TrackingRecordRow).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[TrackingRecordRow.order_id],
                set_={name: stmt.excluded[name] for name in _UPDATABLE_COLUMNS},
            )
            db.execute(stmt)
            return

        row = db.execute(
            select(TrackingRecordRow)
            .where(TrackingRecordRow.order_id == values["order_id"])
            .with_for_update()
        ).scalar_one_or_none()
        if row is None:
            db.add(TrackingRecordRow(**values))
        else:
            for name in _UPDATABLE_COLUMNS:
                setattr(row, name, values[name])

    def get(self, order_id: int) -> TrackingRecord | None:
        """Return the stored record, or None when the order has none."""
        try:
            with get_db_context(self._session_factory) as db:
                data_json = db.scalar(
                    select(TrackingRecordRow.data_json).where(TrackingRecordRow.order_id == order_id)
                )
        except SQLAlchemyError as e:
            raise _persistence_error(order_id, "read", e) from e
        if data_json is None:
            return None
        try:
            return TrackingRecord.model_validate_json(data_json)
        except PydanticValidationError as e:
            logger.warning("Stored tracking record for order %d is unreadable: %s", order_id, e)
            return None

    def get_status(self, order_id: int) -> TrackingStatus | None:
        """Return the cached status, or None when the order has no record."""
        try:
            with get_db_context(self._session_factory) as db:
                value = db.scalar(
                    select(TrackingRecordRow.latest_status).where(TrackingRecordRow.order_id == order_id)
                )
        except SQLAlchemyError as e:
            raise _persistence_error(order_id, "read", e) from e
        if value is None:
            return None
        try:
            return TrackingStatus(value)
        except ValueError:
            logger.warning("Unknown stored status %r for order %d", value, order_id)
            return TrackingStatus.UNKNOWN

    def delete(self, order_id: int) -> bool:
        """Delete one order's record. Returns True if a row was removed."""
        with get_db_context(self._session_factory) as db:
            result = db.execute(delete(TrackingRecordRow).where(TrackingRecordRow.order_id == order_id))
            return result.rowcount > 0

    def delete_all(self, order_ids: Iterable[int] | None = None) -> int:
        """Delete records for the given orders, or every record when None."""
        stmt = delete(TrackingRecordRow)
        if order_ids is not None:
            ids = list(order_ids)
            if not ids:
                return 0
            stmt = stmt.where(TrackingRecordRow.order_id.in_(ids))
        with get_db_context(self._session_factory) as db:
            deleted = db.execute(stmt).rowcount
        logger.info("Deleted %d tracking record(s)", deleted)
        return deleted

    def count(self) -> int:
        with get_db_context(self._session_factory) as db:
            return db.scalar(select(func.count()).select_from(TrackingRecordRow)) or 0

    def count_by_status(self) -> dict[str, int]:
        """Number of records per cached status."""
        stmt = select(TrackingRecordRow.latest_status, func.count()).group_by(
            TrackingRecordRow.latest_status
        )
        with get_db_context(self._session_factory) as db:
            return {status: count for status, count in db.execute(stmt)}
