"""Database utilities for the hearing notifier."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from flask import current_app, g

# Global schema version for the application database.
_SCHEMA_VERSION = 2

PathLike = Union[str, Path]


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    row = conn.execute(
        "SELECT value FROM app_meta WHERE key = 'schema_version'"
    ).fetchone()
    current_version = int(row["value"]) if row else 0

    if current_version < 1:
        _migrate_to_v1(conn)
        current_version = 1

    if current_version < 2:
        _migrate_to_v2(conn)
        current_version = 2

    conn.execute(
        "INSERT INTO app_meta(key, value) VALUES('schema_version', ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(_SCHEMA_VERSION),),
    )
    conn.commit()


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            plaintiff_name TEXT NOT NULL,
            defendant_name TEXT NOT NULL,
            third_party TEXT,
            claim_subject TEXT,
            first_instance_court TEXT,
            first_instance_hearing TEXT,
            appeal_court TEXT,
            appeal_hearing TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_cases_updated_at
        AFTER UPDATE ON cases
        BEGIN
            UPDATE cases SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS system_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_system_settings_updated_at
        AFTER UPDATE ON system_settings
        BEGIN
            UPDATE system_settings SET updated_at = CURRENT_TIMESTAMP WHERE key = NEW.key;
        END;
        """
    )


def connect_app_db(db_path: PathLike) -> sqlite3.Connection:
    """Open the application database at ``db_path`` with the schema in place."""
    path = Path(db_path)
    _ensure_parent_dir(path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    _ensure_schema(conn)
    return conn


@contextmanager
def open_app_db(db_path: PathLike) -> Iterator[sqlite3.Connection]:
    """Short-lived connection for code running outside a request (scheduler ticks)."""
    conn = connect_app_db(db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_app_db() -> sqlite3.Connection:
    """Return a connection to the application database bound to Flask's context."""
    if "app_db" not in g:
        g.app_db = connect_app_db(current_app.config["HEARINGS_DB_PATH"])
    return g.app_db


def close_app_db(_: Optional[BaseException]) -> None:
    conn = g.pop("app_db", None)
    if conn is not None:
        conn.close()
