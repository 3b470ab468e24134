"""
Key/value state with per-key TTL, kept in a local SQLite file.

Used for OAuth tokens, lookup tables (regions, tax classes, HTS codes,
customer groups), the UPS rate cache and the ERP audit artifacts.
"""

import json
import logging
import sqlite3
import time
from typing import Any, Optional

from .errors import StateError

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60
YEAR = 365 * DAY


class KVStore:
    """
    get() returns None for an absent or expired key; an empty string is a
    real value. Reads that fail are logged and treated as a miss; failed
    writes raise StateError. Last writer wins.
    """

    def __init__(self, path: str = "state.db"):
        self.path = path
        self.init()

    def _connect(self):
        return sqlite3.connect(self.path, timeout=10)

    def init(self):
        """Create the kv table if it does not exist yet."""
        conn = self._connect()
        try:
            conn.execute("""CREATE TABLE IF NOT EXISTS kv(
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL
            )""")
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self._connect()
            try:
                c = conn.cursor()
                c.execute("SELECT value, expires_at FROM kv WHERE key=?", (key,))
                row = c.fetchone()
                if row is None:
                    return None
                value, expires_at = row
                if expires_at is not None and expires_at <= time.time():
                    c.execute("DELETE FROM kv WHERE key=? AND expires_at=?", (key, expires_at))
                    conn.commit()
                    return None
                return value
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning("state read failed for %s: %s", key, e)
            return None

    def put(self, key: str, value: str, ttl: Optional[int] = None):
        expires_at = time.time() + ttl if ttl else None
        try:
            conn = self._connect()
            try:
                conn.execute("""INSERT OR REPLACE INTO kv(key,value,expires_at)
                                VALUES(?,?,?)""", (key, value, expires_at))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StateError(f"state write failed for {key}: {e}")

    def delete(self, key: str):
        try:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM kv WHERE key=?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StateError(f"state delete failed for {key}: {e}")

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("state value for %s is not JSON, ignoring", key)
            return None

    def put_json(self, key: str, value: Any, ttl: Optional[int] = None):
        self.put(key, json.dumps(value), ttl)

    def purge_expired(self) -> int:
        """Delete every expired row; returns how many were removed."""
        conn = self._connect()
        try:
            c = conn.cursor()
            c.execute("DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                      (time.time(),))
            conn.commit()
            return c.rowcount
        finally:
            conn.close()
