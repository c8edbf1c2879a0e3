"""Durable key-value cache holding the OAuth credential."""

from __future__ import annotations

import logging
from pathlib import Path
import sqlite3
import threading
import time
from typing import Optional

from vibes.config import get_config_dir
from vibes.models import Credential

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "vibes:spotify_token"


def default_db_path(app_name: str = "vibes") -> Path:
    try:
        base = get_config_dir(app_name)
    except OSError:
        base = Path.cwd() / ".vibes"
        base.mkdir(parents=True, exist_ok=True)
    return base / "cache.db"


class KeyValueStoreSQLite:
    """Tiny string key-value table in SQLite."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._path = db_path or default_db_path()
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._apply_pragmas()
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        now = int(time.time())
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()

    def _apply_pragmas(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA busy_timeout = 3000")

    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                );
                """
            )
            self._conn.commit()


class CredentialStore:
    """Reads and writes the serialized Credential under a fixed key."""

    def __init__(
        self, kv: KeyValueStoreSQLite, *, key: str = TOKEN_CACHE_KEY
    ) -> None:
        self._kv = kv
        self._key = key

    def get(self) -> Optional[Credential]:
        try:
            raw = self._kv.get(self._key)
        except sqlite3.Error:
            logger.exception("Credential cache read failed")
            return None
        if raw is None:
            return None
        try:
            return Credential.from_json(raw)
        except ValueError:
            logger.warning("Discarding unreadable cached credential")
            self.delete()
            return None

    def set(self, credential: Credential) -> None:
        try:
            self._kv.set(self._key, credential.to_json())
        except sqlite3.Error:
            logger.exception("Credential cache write failed")
            return
        logger.info("Credential cached (expires_at=%.0f)", credential.expires_at)

    def delete(self) -> None:
        try:
            self._kv.delete(self._key)
        except sqlite3.Error:
            logger.exception("Credential cache delete failed")
            return
        logger.info("Credential cache cleared")
