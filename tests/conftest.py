"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Database fixtures (file-based SQLite)
- Order factory for the bundled order table
- Repositories bound to the test database
"""

import os
import tempfile
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta

import pytest

from tracksync.db.connection import (
    create_db_engine,
    create_session_factory,
    get_db_context,
    init_db,
)
from tracksync.db.models import Order, to_iso
from tracksync.services.order_repository import SqlOrderRepository
from tracksync.services.tracking_repository import TrackingRepository


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database path.

    Unlike in-memory databases, this persists across connections, which
    repository calls made from worker threads rely on.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield path

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def db_url(file_based_db: str) -> str:
    return f"sqlite:///{file_based_db}"


@pytest.fixture
def session_factory(db_url: str):
    """Session factory over a freshly initialized database."""
    engine = create_db_engine(url=db_url)
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def tracking_repository(session_factory) -> TrackingRepository:
    return TrackingRepository(session_factory)


@pytest.fixture
def order_repository(session_factory) -> SqlOrderRepository:
    return SqlOrderRepository(session_factory)


@pytest.fixture
def add_order(session_factory) -> Callable[..., int]:
    """Factory inserting an order row and returning its id."""

    def _add(
        order_id: int,
        status: str = "processing",
        tracking_number: str | None = "TRK{order_id}",
        age_days: float = 1,
        shipping_method: str = "bring_home_delivery",
        tracking_payload: str | None = None,
    ) -> int:
        if tracking_number is not None:
            tracking_number = tracking_number.format(order_id=order_id)
        with get_db_context(session_factory) as db:
            db.add(
                Order(
                    id=order_id,
                    status=status,
                    tracking_number=tracking_number,
                    created_at=to_iso(datetime.now(UTC) - timedelta(days=age_days)),
                    shipping_method=shipping_method,
                    tracking_payload=tracking_payload,
                )
            )
        return order_id

    return _add
