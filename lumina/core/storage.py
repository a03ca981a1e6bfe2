"""Durable whole-snapshot storage backed by sqlite.

Each store owns one key in the `snapshots` table and rewrites the complete
JSON document on every mutation. There are no incremental writes.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from lumina.core.settings import Settings

logger = logging.getLogger(__name__)

LIBRARY_KEY = "lumina-library"
HIGHLIGHTS_KEY = "lumina-highlights"
SETTINGS_KEY = "lumina-settings"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS snapshots (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT DEFAULT (datetime('now'))
);
"""


class StorageError(Exception):
    """A durable snapshot could not be written."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


@dataclass
class DB:
    conn: sqlite3.Connection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _tx_depth: int = field(default=0, repr=False)

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def get_snapshot(self, key: str) -> Any | None:
        """Return the decoded snapshot for `key`, or None if absent or unreadable."""
        with self._lock:
            cur = self.conn.execute("SELECT value FROM snapshots WHERE key = ?", (key,))
            row = cur.fetchone()
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt snapshot for {key}")
            return None

    def set_snapshot(self, key: str, value: Any) -> None:
        """Replace the snapshot stored under `key`."""
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            try:
                self.conn.execute(
                    """
                    INSERT INTO snapshots (key, value, updated_at)
                    VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = datetime('now')
                    """,
                    (key, payload),
                )
                if self._tx_depth == 0:
                    self.conn.commit()
            except sqlite3.Error as e:
                if self._tx_depth == 0:
                    self.conn.rollback()
                raise StorageError(f"Could not write snapshot {key}: {e}", key=key) from e

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several snapshot writes into one commit."""
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except Exception:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                try:
                    self.conn.commit()
                except sqlite3.Error as e:
                    self.conn.rollback()
                    raise StorageError(f"Could not commit transaction: {e}") from e

    def list_keys(self) -> list[str]:
        with self._lock:
            cur = self.conn.execute("SELECT key FROM snapshots ORDER BY key")
            return [row[0] for row in cur.fetchall()]


def connect(path: str) -> DB:
    """Open (and initialise) a snapshot database at `path`."""
    if path != ":memory:":
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    db = DB(conn=conn)
    db.init()
    return db


_db: DB | None = None


def init_db(settings: Settings | None = None) -> DB:
    global _db
    s = settings or Settings.from_env()
    _db = connect(s.db_path)
    logger.info(f"Snapshot store opened at {s.db_path}")
    return _db


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db
