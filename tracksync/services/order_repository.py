"""Order store access used by reconciliation.

The engine only depends on the OrderRepository protocol. SqlOrderRepository
implements it over the bundled ``orders`` table; shops with their own order
store supply another implementation.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from tracksync.db.connection import SessionFactory, get_db_context
from tracksync.db.models import Order
from tracksync.errors import NotFoundError
from tracksync.services.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderSnapshot:
    """Read-only view of the order fields reconciliation needs."""

    id: int
    status: str
    created_at: str
    shipping_method: str
    tracking_number: str | None


@dataclass(frozen=True)
class StoredPayload:
    """Tracking JSON kept on an order by older versions, pending backfill."""

    order_id: int
    tracking_number: str | None
    payload: str


class OrderRepository(Protocol):
    """Operations reconciliation performs against the order store.

    Implementations raise PersistenceError when the store cannot be read
    so the engine retries the order instead of dropping it.
    """

    def get_order(self, order_id: int) -> OrderSnapshot | None: ...

    def set_tracking_number(self, order_id: int, value: str) -> None: ...

    def mark_status(self, order_id: int, new_status: str, note: str | None = None) -> None: ...

    def list_orders_without_tracking(self, statuses: Sequence[str], limit: int) -> list[int]: ...

    def list_tracking_payloads(self) -> list[StoredPayload]: ...

    def clear_tracking_payload(self, order_id: int) -> None: ...


def _snapshot(order: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=order.id,
        status=order.status,
        created_at=order.created_at,
        shipping_method=order.shipping_method,
        tracking_number=order.tracking_number,
    )


class SqlOrderRepository:
    """OrderRepository over the ``orders`` table, one session per call."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_order(self, order_id: int) -> OrderSnapshot | None:
        """Return the order, or None when it does not exist.

        Raises:
            PersistenceError: If the order store cannot be read.
        """
        try:
            with get_db_context(self._session_factory) as db:
                order = db.get(Order, order_id)
                return _snapshot(order) if order is not None else None
        except SQLAlchemyError as e:
            logger.error("Order read failed for order %d: %s", order_id, e)
            raise PersistenceError(
                order_id=order_id,
                message=f"Database operation failed: {e.__class__.__name__}",
            ) from e

    def set_tracking_number(self, order_id: int, value: str) -> None:
        """Set or replace an order's tracking number.

        Raises:
            NotFoundError: If the order does not exist.
        """
        with get_db_context(self._session_factory) as db:
            order = db.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            order.tracking_number = value.strip()
        logger.info("Set tracking number for order %d", order_id)

    def mark_status(self, order_id: int, new_status: str, note: str | None = None) -> None:
        """Move an order to a new status.

        Raises:
            NotFoundError: If the order does not exist.
        """
        with get_db_context(self._session_factory) as db:
            order = db.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            old_status = order.status
            order.status = new_status
            if note:
                order.status_note = note
        logger.info("Order %d status %s -> %s", order_id, old_status, new_status)

    def list_orders_without_tracking(self, statuses: Sequence[str], limit: int) -> list[int]:
        """Order ids in the given statuses that have no tracking number yet."""
        stmt = (
            select(Order.id)
            .where(Order.status.in_(list(statuses)))
            .where(
                (Order.tracking_number.is_(None))
                | (func.trim(Order.tracking_number) == "")
            )
            .order_by(Order.id)
        )
        if limit > 0:
            stmt = stmt.limit(limit)
        with get_db_context(self._session_factory) as db:
            return list(db.scalars(stmt))

    def list_tracking_payloads(self) -> list[StoredPayload]:
        stmt = (
            select(Order.id, Order.tracking_number, Order.tracking_payload)
            .where(Order.tracking_payload.is_not(None))
            .where(Order.tracking_payload != "")
            .order_by(Order.id)
        )
        with get_db_context(self._session_factory) as db:
            return [
                StoredPayload(order_id=row.id, tracking_number=row.tracking_number, payload=row.tracking_payload)
                for row in db.execute(stmt)
            ]

    def clear_tracking_payload(self, order_id: int) -> None:
        with get_db_context(self._session_factory) as db:
            order = db.get(Order, order_id)
            if order is not None:
                order.tracking_payload = None
