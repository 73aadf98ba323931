"""Database package for the tracksync state store.

Exports models, engine construction and session helpers.
"""

from tracksync.db.connection import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    get_db_context,
    init_db,
)
from tracksync.db.models import (
    Base,
    Order,
    OrderStatus,
    TrackingRecordRow,
    to_iso,
    utc_now_iso,
)

__all__ = [
    # Models
    "Base",
    "Order",
    "OrderStatus",
    "TrackingRecordRow",
    "to_iso",
    "utc_now_iso",
    # Connection
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "get_db_context",
    "init_db",
]
