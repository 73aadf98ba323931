"""Tests for database URL precedence, engine setup and session scopes."""

import pytest
from sqlalchemy import inspect, select, text

from tracksync.config import DatabaseConfig
from tracksync.db.connection import (
    create_db_engine,
    create_session_factory,
    get_database_url,
    get_db_context,
    init_db,
)
from tracksync.db.models import Order, utc_now_iso


def test_get_database_url_prefers_config(monkeypatch):
    monkeypatch.setenv("TRACKSYNC_DATABASE_URL", "sqlite:///./env.db")
    assert get_database_url(DatabaseConfig(url="sqlite:///./config.db")) == "sqlite:///./config.db"


def test_get_database_url_env_precedence(monkeypatch):
    monkeypatch.setenv("TRACKSYNC_DATABASE_URL", "sqlite:///./tracksync.db")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./shared.db")
    assert get_database_url() == "sqlite:///./tracksync.db"

    monkeypatch.delenv("TRACKSYNC_DATABASE_URL")
    assert get_database_url(DatabaseConfig()) == "sqlite:///./shared.db"


def test_get_database_url_defaults_to_platformdirs_path(monkeypatch, tmp_path):
    monkeypatch.delenv("TRACKSYNC_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr("tracksync.utils.paths.get_data_dir", lambda: tmp_path / "data")

    url = get_database_url()

    assert url == f"sqlite:///{tmp_path / 'data' / 'tracksync.db'}"
    assert (tmp_path / "data").is_dir()


def test_sqlite_pragmas(db_url):
    engine = create_db_engine(url=db_url)
    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
    engine.dispose()


def test_init_db_is_repeatable(db_url):
    engine = create_db_engine(url=db_url)
    init_db(engine)
    init_db(engine)

    inspector = inspect(engine)
    assert {"orders", "tracking_records"} <= set(inspector.get_table_names())
    index_names = {index["name"] for index in inspector.get_indexes("tracking_records")}
    assert "idx_tracking_records_latest_status" in index_names
    engine.dispose()


class TestDbContext:
    """get_db_context() commit and rollback."""

    def test_commits_on_success(self, session_factory):
        with get_db_context(session_factory) as db:
            db.add(Order(id=1, status="processing", created_at=utc_now_iso()))

        with get_db_context(session_factory) as db:
            assert db.scalar(select(Order.status).where(Order.id == 1)) == "processing"

    def test_rolls_back_on_error(self, session_factory):
        with pytest.raises(RuntimeError):
            with get_db_context(session_factory) as db:
                db.add(Order(id=2, status="processing", created_at=utc_now_iso()))
                db.flush()
                raise RuntimeError("abort")

        with get_db_context(session_factory) as db:
            assert db.get(Order, 2) is None


def test_session_factory_keeps_loaded_values(db_url):
    engine = create_db_engine(url=db_url)
    init_db(engine)
    factory = create_session_factory(engine)
    with get_db_context(factory) as db:
        order = Order(id=3, status="completed", created_at=utc_now_iso())
        db.add(order)
    assert order.status == "completed"
    engine.dispose()

