"""Tests for TrackingRepository against a real SQLite file."""

import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tracksync.db.connection import get_db_context
from tracksync.db.models import TrackingRecordRow
from tracksync.models import TrackingFeed, TrackingStatus
from tracksync.services.errors import PersistenceError
from tracksync.services.event_normalizer import normalize
from tracksync.services.tracking_repository import TrackingRepository

from tests.helpers.carrier import raw_event


def _feed(*descriptions: str, fetched_at: datetime | None = None) -> TrackingFeed:
    raw = [raw_event(d, date=f"2026-03-0{i + 1}T10:00:00Z", status="EN_ROUTE") for i, d in enumerate(descriptions)]
    return TrackingFeed(
        events=normalize(raw),
        raw_payload={"events": raw},
        fetched_at=fetched_at or datetime(2026, 3, 5, 12, tzinfo=UTC),
    )


def _row_count(session_factory) -> int:
    with get_db_context(session_factory) as db:
        return db.scalar(select(func.count()).select_from(TrackingRecordRow))


class TestUpsert:
    """Insert-or-replace semantics."""

    def test_insert_then_get(self, tracking_repository):
        feed = _feed("Picked up", "In transit")
        stored = tracking_repository.upsert(1, "TRK1", feed, TrackingStatus.EN_ROUTE)

        record = tracking_repository.get(1)
        assert record == stored
        assert record.tracking_number == "TRK1"
        assert [e.description for e in record.events] == ["Picked up", "In transit"]
        assert record.raw_payload == feed.raw_payload
        assert record.last_updated == feed.fetched_at
        assert record.latest_status == TrackingStatus.EN_ROUTE

    def test_same_feed_twice_is_idempotent(self, tracking_repository, session_factory):
        feed = _feed("Picked up")
        tracking_repository.upsert(1, "TRK1", feed, TrackingStatus.EN_ROUTE)
        first = tracking_repository.get(1)
        tracking_repository.upsert(1, "TRK1", feed, TrackingStatus.EN_ROUTE)

        assert tracking_repository.get(1) == first
        assert _row_count(session_factory) == 1

    def test_replaces_wholesale(self, tracking_repository, session_factory):
        tracking_repository.upsert(1, "TRK1", _feed("a", "b", "c"), TrackingStatus.EN_ROUTE)
        tracking_repository.upsert(1, "TRK2", _feed("x"), TrackingStatus.SENT)

        record = tracking_repository.get(1)
        assert record.tracking_number == "TRK2"
        assert [e.description for e in record.events] == ["x"]
        assert record.latest_status == TrackingStatus.SENT
        assert _row_count(session_factory) == 1

    def test_keeps_created_at_on_update(self, tracking_repository, session_factory):
        tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.EN_ROUTE)
        with get_db_context(session_factory) as db:
            created = db.scalar(select(TrackingRecordRow.created_at))
        tracking_repository.upsert(1, "TRK1", _feed("b"), TrackingStatus.EN_ROUTE)
        with get_db_context(session_factory) as db:
            row = db.scalars(select(TrackingRecordRow)).one()
            assert row.created_at == created
            assert row.updated_at >= created

    def test_carrier_error_record(self, tracking_repository):
        feed = TrackingFeed(events=[], raw_payload={"error": "not found"}, carrier_error="not found")
        tracking_repository.upsert(3, "TRK3", feed, TrackingStatus.UNKNOWN)
        record = tracking_repository.get(3)
        assert record.carrier_error == "not found"
        assert record.has_data is False

    def test_concurrent_upserts_leave_one_row(self, tracking_repository, session_factory):
        errors: list[Exception] = []

        def write(n: int):
            try:
                tracking_repository.upsert(1, f"TRK{n}", _feed(f"event {n}"), TrackingStatus.EN_ROUTE)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert _row_count(session_factory) == 1
        record = tracking_repository.get(1)
        # Last write wins wholesale: number and events come from the same write
        assert record.events[0].description == f"event {record.tracking_number[3:]}"

    def test_write_failure_raises_persistence_error(self, tracking_repository, monkeypatch):
        def boom(db, values):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(tracking_repository, "_write", boom)
        with pytest.raises(PersistenceError) as exc_info:
            tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.EN_ROUTE)
        assert exc_info.value.order_id == 1
        assert exc_info.value.code == "E-4001"


class TestReads:
    """Read-only lookups."""

    @pytest.mark.parametrize("method", ["get", "get_status"])
    def test_read_failure_raises_persistence_error(self, tracking_repository, monkeypatch, method):
        session = MagicMock()
        session.scalar.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        monkeypatch.setattr(tracking_repository, "_session_factory", lambda: session)

        with pytest.raises(PersistenceError) as exc_info:
            getattr(tracking_repository, method)(1)

        assert exc_info.value.order_id == 1
        session.rollback.assert_called_once()

    def test_get_missing_returns_none(self, tracking_repository):
        assert tracking_repository.get(404) is None

    def test_get_status(self, tracking_repository):
        tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.DELIVERED)
        assert tracking_repository.get_status(1) == TrackingStatus.DELIVERED
        assert tracking_repository.get_status(2) is None

    def test_corrupt_json_reads_as_missing(self, tracking_repository, session_factory):
        tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.EN_ROUTE)
        with get_db_context(session_factory) as db:
            db.scalars(select(TrackingRecordRow)).one().data_json = "{not json"
        assert tracking_repository.get(1) is None

    def test_count_by_status(self, tracking_repository):
        tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.EN_ROUTE)
        tracking_repository.upsert(2, "TRK2", _feed("a"), TrackingStatus.EN_ROUTE)
        tracking_repository.upsert(3, "TRK3", _feed("a"), TrackingStatus.DELIVERED)
        assert tracking_repository.count_by_status() == {"en_route": 2, "delivered": 1}
        assert tracking_repository.count() == 3


class TestDelete:
    """Administrative cleanup."""

    def test_delete_one(self, tracking_repository):
        tracking_repository.upsert(1, "TRK1", _feed("a"), TrackingStatus.EN_ROUTE)
        assert tracking_repository.delete(1) is True
        assert tracking_repository.delete(1) is False
        assert tracking_repository.get(1) is None

    def test_delete_selected_and_all(self, tracking_repository):
        for order_id in (1, 2, 3):
            tracking_repository.upsert(order_id, f"TRK{order_id}", _feed("a"), TrackingStatus.EN_ROUTE)
        assert tracking_repository.delete_all([1, 3]) == 2
        assert tracking_repository.delete_all([]) == 0
        assert tracking_repository.delete_all() == 1
        assert tracking_repository.count() == 0


def test_separate_instances_share_storage(session_factory):
    TrackingRepository(session_factory).upsert(9, "TRK9", _feed("a"), TrackingStatus.SENT)
    assert TrackingRepository(session_factory).get_status(9) == TrackingStatus.SENT
