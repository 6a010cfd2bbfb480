"""
db.py
SQLite snapshot store.

The whole system state is one JSON document in a single-row `snapshot` table.
Mutations go through `transaction()`: one writer at a time (process lock plus
BEGIN IMMEDIATE across processes), load, mutate, save with a version check,
commit. Readers only ever see a committed document.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import config
from errors import GymError, StoreIOFailure
from models import Snapshot

logger = logging.getLogger(__name__)

EMPTY_DOCUMENT = {"accounts": {}, "facility_classes": {}}

_write_lock = threading.Lock()


@contextmanager
def get_conn(db_file: Path | str | None = None):
    try:
        conn = sqlite3.connect(
            db_file or config.DB_FILE,
            timeout=config.DB_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        raise StoreIOFailure(f"Cannot open store {db_file or config.DB_FILE}: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _create_tables(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS snapshot (
            id INTEGER PRIMARY KEY CHECK(id = 1),
            version INTEGER NOT NULL,
            document TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    # Small settings table (used to force password change on first login)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )
    cur = conn.execute(
        "INSERT OR IGNORE INTO snapshot(id, version, document, updated_at) VALUES(1, 0, ?, ?)",
        (json.dumps(EMPTY_DOCUMENT), _utc_now()),
    )
    if cur.rowcount:
        logger.info("Created empty snapshot")


def init_db(db_file: Path | str | None = None) -> None:
    """Create tables and an empty snapshot if the store is new. Existing data is left alone."""
    with _write_lock, get_conn(db_file) as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            _create_tables(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreIOFailure(f"Cannot initialize store: {e}") from e


def _read(conn: sqlite3.Connection) -> Snapshot:
    try:
        row = conn.execute("SELECT version, document FROM snapshot WHERE id = 1").fetchone()
    except sqlite3.OperationalError:
        row = None
    if row is None:
        _create_tables(conn)
        row = conn.execute("SELECT version, document FROM snapshot WHERE id = 1").fetchone()
    try:
        document = json.loads(row["document"])
        if not isinstance(document, dict):
            raise ValueError("snapshot document is not an object")
        return Snapshot.from_document(document, version=row["version"])
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise StoreIOFailure(f"Snapshot is corrupt: {e}") from e


def _write(conn: sqlite3.Connection, snapshot: Snapshot) -> None:
    document = json.dumps(snapshot.to_document(), ensure_ascii=False)
    cur = conn.execute(
        "UPDATE snapshot SET version = version + 1, document = ?, updated_at = ? "
        "WHERE id = 1 AND version = ?",
        (document, _utc_now(), snapshot.version),
    )
    if cur.rowcount != 1:
        raise StoreIOFailure(f"Snapshot changed since version {snapshot.version} was loaded")
    snapshot.version += 1


def _get_setting(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
    if row:
        return str(row["value"])
    return default


def _set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def load(db_file: Path | str | None = None) -> Snapshot:
    """Read the committed snapshot, creating an empty one on first use."""
    try:
        with get_conn(db_file) as conn:
            if _has_snapshot(conn):
                return _read(conn)
        init_db(db_file)
        with get_conn(db_file) as conn:
            return _read(conn)
    except sqlite3.Error as e:
        raise StoreIOFailure(f"Cannot read snapshot: {e}") from e


def _has_snapshot(conn: sqlite3.Connection) -> bool:
    try:
        return conn.execute("SELECT 1 FROM snapshot WHERE id = 1").fetchone() is not None
    except sqlite3.OperationalError:
        return False


def save(snapshot: Snapshot, db_file: Path | str | None = None) -> None:
    """Overwrite the stored snapshot. Fails if someone saved since `snapshot` was loaded."""
    with _write_lock, get_conn(db_file) as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            _create_tables(conn)
            _write(conn, snapshot)
            conn.execute("COMMIT")
        except (sqlite3.Error, StoreIOFailure) as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, StoreIOFailure):
                raise
            raise StoreIOFailure(f"Cannot save snapshot: {e}") from e
    logger.debug("Saved snapshot version %d", snapshot.version)


def get_setting(key: str, default: str | None = None, db_file: Path | str | None = None) -> str | None:
    with get_conn(db_file) as conn:
        try:
            return _get_setting(conn, key, default)
        except sqlite3.OperationalError:
            return default


@dataclass
class Transaction:
    conn: sqlite3.Connection
    snapshot: Snapshot

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        return _get_setting(self.conn, key, default)

    def set_setting(self, key: str, value: str) -> None:
        _set_setting(self.conn, key, value)


def _commit(conn: sqlite3.Connection, snapshot: Snapshot) -> None:
    try:
        _write(conn, snapshot)
        conn.execute("COMMIT")
    except (sqlite3.Error, StoreIOFailure) as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error("Commit failed, snapshot rolled back: %s", e)
        if isinstance(e, StoreIOFailure):
            raise
        raise StoreIOFailure(f"Cannot save snapshot: {e}") from e
    logger.debug("Committed snapshot version %d", snapshot.version)


@contextmanager
def transaction(db_file: Path | str | None = None):
    """
    Load -> mutate -> save as one serialized unit.

    Any exception rolls the store back, except a GymError flagged
    `keep_changes`, whose mutations are committed before it propagates.
    """
    with _write_lock, get_conn(db_file) as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            tx = Transaction(conn, _read(conn))
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreIOFailure(f"Cannot start transaction: {e}") from e
        except StoreIOFailure:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

        try:
            yield tx
        except GymError as e:
            if e.keep_changes:
                _commit(conn, tx.snapshot)
            elif conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            _commit(conn, tx.snapshot)
