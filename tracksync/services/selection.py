"""Candidate selection for reconciliation runs.

A single SQL query over ``orders`` LEFT JOIN ``tracking_records``. Each
enabled status contributes its own age clause, so statuses with different
age limits are selected correctly in one pass.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy import Select, and_, func, or_, select

from tracksync.config import DEFAULT_ENABLED_STATUSES
from tracksync.db.connection import SessionFactory, get_db_context
from tracksync.db.models import Order, TrackingRecordRow, to_iso
from tracksync.models import TrackingStatus

logger = logging.getLogger(__name__)


class SelectionMode(str, Enum):
    """Which orders a run looks at."""

    REFRESH = "refresh"  # every eligible order with a tracking number
    UNFETCHED = "unfetched"  # eligible orders with no tracking record yet


class SelectionQuery:
    """Build and run the candidate query."""

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def build(
        self,
        enabled_statuses: Sequence[str],
        per_status_age_limit_days: Mapping[str, int],
        exclude_delivered: bool,
        mode: SelectionMode,
        limit: int,
    ) -> Select:
        """Return the SELECT statement for the given filters."""
        statuses = list(enabled_statuses) or list(DEFAULT_ENABLED_STATUSES)
        now = self._clock()

        status_clauses = []
        for status in statuses:
            days = per_status_age_limit_days.get(status, 0)
            if days > 0:
                cutoff = to_iso(now - timedelta(days=days))
                status_clauses.append(and_(Order.status == status, Order.created_at >= cutoff))
            else:
                status_clauses.append(Order.status == status)

        stmt = (
            select(Order.id)
            .outerjoin(TrackingRecordRow, TrackingRecordRow.order_id == Order.id)
            .where(or_(*status_clauses))
            .where(Order.tracking_number.is_not(None))
            .where(func.trim(Order.tracking_number) != "")
        )
        if exclude_delivered:
            stmt = stmt.where(
                or_(
                    TrackingRecordRow.latest_status.is_(None),
                    TrackingRecordRow.latest_status != TrackingStatus.DELIVERED.value,
                )
            )
        if mode == SelectionMode.UNFETCHED:
            stmt = stmt.where(TrackingRecordRow.id.is_(None))

        stmt = stmt.order_by(Order.id)
        if limit > 0:
            stmt = stmt.limit(limit)
        return stmt

    def select(
        self,
        enabled_statuses: Sequence[str],
        per_status_age_limit_days: Mapping[str, int],
        exclude_delivered: bool,
        mode: SelectionMode = SelectionMode.REFRESH,
        limit: int = 0,
    ) -> list[int]:
        """Return candidate order ids in ascending order.

        Args:
            enabled_statuses: Order statuses to consider. Empty means the
                processing and completed defaults.
            per_status_age_limit_days: Max order age per status, 0 or
                missing means no limit.
            exclude_delivered: Skip orders whose stored status is delivered.
            mode: REFRESH or UNFETCHED.
            limit: Max ids to return, 0 or less for no cap.

        Returns:
            Order ids sorted ascending.
        """
        stmt = self.build(enabled_statuses, per_status_age_limit_days, exclude_delivered, mode, limit)
        with get_db_context(self._session_factory) as db:
            order_ids = list(db.scalars(stmt))
        logger.debug("Selected %d order(s) in %s mode", len(order_ids), SelectionMode(mode).value)
        return order_ids
