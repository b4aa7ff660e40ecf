# wishsync/storage.py
import os
import json
import time
import sqlite3
import datetime
from contextlib import contextmanager
from typing import Any, Dict, List

import pytz

from .logger import get_logger

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "data/wishsync.sqlite3")


def now_utc_iso() -> str:
    return datetime.datetime.now(tz=pytz.UTC).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


class LocalStorage:
    """
    Durable key/value storage, the equivalent of a browser's localStorage.
    Values are JSON-serialized into a single SQLite table.
    """

    def __init__(self, path: str = DB_PATH):
        self.path = path
        self.ensure_db()

    @contextmanager
    def _connect(self):
        db_dir = os.path.dirname(self.path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        con = sqlite3.connect(self.path)
        try:
            with con:
                yield con
        finally:
            con.close()

    def ensure_db(self):
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            """
            )
            con.commit()

    def get_item(self, key: str, default: Any = None) -> Any:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("SELECT value FROM kv WHERE key=?", (key,))
            row = cur.fetchone()
        if row is None or row[0] is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning("Discarding unreadable value stored under '%s'.", key)
            return default

    def set_item(self, key: str, value: Any) -> None:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
            """,
                (key, json.dumps(value), now_utc_iso()),
            )
            con.commit()

    def remove_item(self, key: str) -> None:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("DELETE FROM kv WHERE key=?", (key,))
            con.commit()

    def keys(self) -> List[str]:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("SELECT key FROM kv ORDER BY key")
            rows = cur.fetchall()
        return [row[0] for row in rows]

    def clear(self) -> None:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute("DELETE FROM kv")
            con.commit()


class SessionStorage:
    """
    Transient key/value storage scoped to one browser session (sessionStorage).
    Same interface as LocalStorage, nothing survives the process.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get_item(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_item(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)

    def clear(self) -> None:
        self._data.clear()
