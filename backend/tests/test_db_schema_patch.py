"""Tests for the startup patch adding lifecycle columns to legacy tournament tables."""

from sqlalchemy import text
from sqlmodel import create_engine

from app.db_schema_patch import _get_existing_columns_sqlite, ensure_tournament_columns


def _legacy_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE tournament ("
                "id INTEGER PRIMARY KEY, name VARCHAR NOT NULL, status VARCHAR NOT NULL, "
                "start_time DATETIME NOT NULL, created_at DATETIME, updated_at DATETIME)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO tournament (id, name, status, start_time) "
                "VALUES (1, 'Legacy Cup', 'active', '2026-03-15 12:00:00')"
            )
        )
    return engine


def test_adds_missing_lifecycle_columns(tmp_path):
    engine = _legacy_engine(tmp_path)

    added = ensure_tournament_columns(engine)

    assert set(added) == {"host_id", "ttl", "notification_sent", "notification_sent_at"}
    columns = _get_existing_columns_sqlite(engine, "tournament")
    assert {"ttl", "notification_sent"} <= set(columns)

    with engine.connect() as conn:
        row = conn.execute(text("SELECT ttl, notification_sent FROM tournament WHERE id = 1")).one()
    assert row[0] is None
    assert row[1] == 0


def test_is_idempotent(tmp_path):
    engine = _legacy_engine(tmp_path)
    ensure_tournament_columns(engine)
    assert ensure_tournament_columns(engine) == []


def test_missing_table_is_skipped(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    assert ensure_tournament_columns(engine) == []


def test_current_schema_needs_nothing(engine):
    assert ensure_tournament_columns(engine) == []
