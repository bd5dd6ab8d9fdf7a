from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Lifecycle columns added after the first tournament tables shipped.
# (name, sqlite_type, postgres_type, default)
REQUIRED_TOURNAMENT_COLUMNS: List[Tuple[str, str, str, str]] = [
    ("host_id", "VARCHAR", "VARCHAR", "DEFAULT NULL"),
    ("ttl", "DATETIME", "TIMESTAMP", "DEFAULT NULL"),
    ("notification_sent", "BOOLEAN", "BOOLEAN", "DEFAULT 0"),
    ("notification_sent_at", "DATETIME", "TIMESTAMP", "DEFAULT NULL"),
]

# Indexes the lifecycle queries filter on: (index name, column)
REQUIRED_TOURNAMENT_INDEXES: List[Tuple[str, str]] = [
    ("ix_tournament_ttl", "ttl"),
    ("ix_tournament_host_id", "host_id"),
]


def _is_sqlite(engine: Engine) -> bool:
    return engine.dialect.name.lower() == "sqlite"


def _get_existing_columns_sqlite(engine: Engine, table_name: str) -> Dict[str, str]:
    cols: Dict[str, str] = {}
    with engine.connect() as conn:
        res = conn.execute(text(f"PRAGMA table_info({table_name});")).fetchall()
        # PRAGMA table_info returns rows: (cid, name, type, notnull, dflt_value, pk)
        for row in res:
            cols[str(row[1])] = str(row[2])
    return cols


def _get_existing_columns_postgres(engine: Engine, table_name: str) -> Dict[str, str]:
    cols: Dict[str, str] = {}
    sql = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = :table_name;
    """
    with engine.connect() as conn:
        res = conn.execute(text(sql), {"table_name": table_name}).fetchall()
        for row in res:
            cols[str(row[0])] = str(row[1])
    return cols


def _table_exists(engine: Engine, table: str) -> bool:
    if _is_sqlite(engine):
        sql = "SELECT name FROM sqlite_master WHERE type='table' AND name=:table_name"
    else:
        sql = """
        SELECT 1 FROM information_schema.tables
        WHERE table_schema = 'public' AND table_name = :table_name
        """
    with engine.connect() as conn:
        return conn.execute(text(sql), {"table_name": table}).fetchone() is not None


def ensure_tournament_columns(engine: Engine) -> List[str]:
    """
    Idempotently adds lifecycle columns and indexes to the 'tournament' table.
    Safe to run at every startup.

    Returns:
        Names of the columns that were added.
    """
    added: List[str] = []
    try:
        from app.models.tournament import Tournament

        table = Tournament.__table__.name
        if not _table_exists(engine, table):
            # create_all will build the full table
            return added

        sqlite = _is_sqlite(engine)
        existing = (
            _get_existing_columns_sqlite(engine, table) if sqlite else _get_existing_columns_postgres(engine, table)
        )
        with engine.begin() as conn:
            for name, sqlite_type, pg_type, default in REQUIRED_TOURNAMENT_COLUMNS:
                if name in existing:
                    continue
                if sqlite:
                    # SQLite supports ADD COLUMN without IF NOT EXISTS
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {sqlite_type} {default};"))
                else:
                    if default == "DEFAULT 0":
                        default = "DEFAULT FALSE"
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {name} {pg_type} {default};"))
                added.append(name)
            for index_name, column in REQUIRED_TOURNAMENT_INDEXES:
                conn.execute(text(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table} ({column});"))
    except Exception as e:
        # Log error but don't crash the server
        logger.warning(f"Failed to ensure tournament columns: {e}")
    if added:
        logger.info(f"Added tournament lifecycle columns: {', '.join(added)}")
    return added
