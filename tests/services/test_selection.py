"""Tests for the candidate selection query."""

from datetime import UTC, datetime, timedelta

import pytest

from tracksync.db.connection import get_db_context
from tracksync.db.models import Order
from tracksync.models import TrackingFeed, TrackingStatus
from tracksync.services.selection import SelectionMode, SelectionQuery


@pytest.fixture
def selection(session_factory) -> SelectionQuery:
    return SelectionQuery(session_factory)


def _store(tracking_repository, order_id: int, status: TrackingStatus) -> None:
    tracking_repository.upsert(
        order_id, f"TRK{order_id}", TrackingFeed(fetched_at=datetime.now(UTC)), status
    )


class TestRefreshMode:
    """mode=refresh."""

    def test_enabled_statuses_with_tracking_number(self, selection, add_order):
        add_order(3, status="processing")
        add_order(1, status="completed")
        add_order(2, status="on-hold")
        add_order(4, status="processing", tracking_number=None)
        add_order(5, status="processing", tracking_number="   ")

        result = selection.select(["processing", "completed"], {}, exclude_delivered=False)
        assert result == [1, 3]

    def test_empty_statuses_default_to_processing_and_completed(self, selection, add_order):
        add_order(1, status="processing")
        add_order(2, status="completed")
        add_order(3, status="pending")
        assert selection.select([], {}, exclude_delivered=False) == [1, 2]

    def test_exclude_delivered_uses_stored_status(self, selection, add_order, tracking_repository):
        add_order(1, status="processing")
        add_order(2, status="processing")
        add_order(3, status="processing")
        _store(tracking_repository, 1, TrackingStatus.DELIVERED)
        _store(tracking_repository, 2, TrackingStatus.EN_ROUTE)

        assert selection.select(["processing"], {}, exclude_delivered=True) == [2, 3]
        assert selection.select(["processing"], {}, exclude_delivered=False) == [1, 2, 3]

    def test_per_status_age_limits(self, selection, add_order):
        add_order(1, status="processing", age_days=5)
        add_order(2, status="processing", age_days=20)
        add_order(3, status="completed", age_days=5)
        add_order(4, status="completed", age_days=20)
        add_order(5, status="completed", age_days=400)

        limits = {"processing": 10, "completed": 0}
        assert selection.select(["processing", "completed"], limits, exclude_delivered=False) == [1, 3, 4, 5]

        limits = {"processing": 30, "completed": 7}
        assert selection.select(["processing", "completed"], limits, exclude_delivered=False) == [1, 2, 3]

    def test_age_limit_with_mixed_timestamp_formats(self, session_factory, add_order):
        now = datetime.now(UTC)
        with get_db_context(session_factory) as db:
            for order_id, created in ((1, now - timedelta(days=2)), (2, now - timedelta(days=20))):
                db.add(
                    Order(
                        id=order_id,
                        status="processing",
                        created_at=created.strftime("%Y-%m-%dT%H:%M:%SZ"),
                        tracking_number=f"TRK{order_id}",
                    )
                )
        add_order(3, status="processing", age_days=5)
        selection = SelectionQuery(session_factory, clock=lambda: now)

        assert selection.select(["processing"], {"processing": 10}, exclude_delivered=False) == [1, 3]

    def test_limit_caps_ascending(self, selection, add_order):
        for order_id in (5, 4, 3, 2, 1):
            add_order(order_id)
        assert selection.select(["processing"], {}, False, limit=2) == [1, 2]
        assert selection.select(["processing"], {}, False, limit=0) == [1, 2, 3, 4, 5]


class TestUnfetchedMode:
    """mode=unfetched."""

    def test_only_orders_without_record(self, selection, add_order, tracking_repository):
        add_order(1)
        add_order(2)
        add_order(3, tracking_number=None)
        _store(tracking_repository, 1, TrackingStatus.EN_ROUTE)

        result = selection.select(["processing"], {}, False, mode=SelectionMode.UNFETCHED)
        assert result == [2]

    def test_same_filters_apply(self, selection, add_order):
        add_order(1, status="processing", age_days=40)
        add_order(2, status="processing", age_days=1)
        add_order(3, status="cancelled")
        result = selection.select(["processing"], {"processing": 30}, True, mode="unfetched")
        assert result == [2]


def test_clock_is_injectable(session_factory, add_order):
    add_order(1, age_days=3)
    past = SelectionQuery(session_factory, clock=lambda: datetime(2000, 1, 1, tzinfo=UTC))
    # Seen from the year 2000 the order is not older than the limit
    assert past.select(["processing"], {"processing": 1}, False) == [1]
