"""Counter stores backing the rate limiter.

Admission relies on ``increment_below``, an atomic check-and-increment that
opens a TTL window on the first write. TTL introspection (``ttl``) is
optional; the limiter degrades to the full decay period when a store
cannot report it.
"""

from __future__ import annotations

import math
import sqlite3
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from evolution_api.config import RateLimitSettings


@runtime_checkable
class CounterStore(Protocol):
    def get(self, key: str) -> int: ...

    def increment(self, key: str, ttl_seconds: int) -> int: ...

    def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool: ...

    def forget(self, key: str) -> None: ...

    def has(self, key: str) -> bool: ...


class MemoryCounterStore:
    """Process-local counters, guarded by a lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[str, tuple[int, float]] = {}

    def _live(self, key: str) -> tuple[int, float] | None:
        entry = self._counters.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._counters[key]
            return None
        return entry

    def get(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else 0

    def increment(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = (1, self._clock() + ttl_seconds)
            else:
                entry = (entry[0] + 1, entry[1])
            self._counters[key] = entry
            return entry[0]

    def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool:
        """Increment only while the live count is below ``limit``."""
        with self._lock:
            entry = self._live(key)
            count = entry[0] if entry else 0
            if count >= limit:
                return False
            expires = entry[1] if entry else self._clock() + ttl_seconds
            self._counters[key] = (count + 1, expires)
            return True

    def forget(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ttl(self, key: str) -> int | None:
        """Whole seconds left in the key's window, or None without a window."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            return max(0, math.ceil(entry[1] - self._clock()))


class SqliteCounterStore:
    """Counters shared between processes through a SQLite file."""

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS rate_limit_counters (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL,
                expires_at REAL NOT NULL
            )
        """)
        self.conn.commit()

    def _row(self, key: str) -> sqlite3.Row | None:
        return self.conn.execute(
            "SELECT value, expires_at FROM rate_limit_counters WHERE key = ? AND expires_at > ?",
            (key, self._clock()),
        ).fetchone()

    def get(self, key: str) -> int:
        with self._lock:
            row = self._row(key)
            return int(row["value"]) if row else 0

    def increment(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            # An expired row restarts at 1 with a fresh window.
            self.conn.execute(
                """INSERT INTO rate_limit_counters (key, value, expires_at)
                   VALUES (?, 1, ?)
                   ON CONFLICT(key) DO UPDATE SET
                     value = CASE WHEN expires_at <= ? THEN 1 ELSE value + 1 END,
                     expires_at = CASE WHEN expires_at <= ? THEN excluded.expires_at
                                       ELSE expires_at END""",
                (key, now + ttl_seconds, now, now),
            )
            self.conn.commit()
            row = self.conn.execute(
                "SELECT value FROM rate_limit_counters WHERE key = ?", (key,),
            ).fetchone()
            return int(row["value"])

    def increment_below(self, key: str, limit: int, ttl_seconds: int) -> bool:
        """Atomically increment while the live count is below ``limit``.

        The check and the write are one statement, so other processes
        sharing the file cannot slip in between them.
        """
        if limit <= 0:
            return False
        now = self._clock()
        with self._lock:
            cursor = self.conn.execute(
                """INSERT INTO rate_limit_counters (key, value, expires_at)
                   VALUES (?, 1, ?)
                   ON CONFLICT(key) DO UPDATE SET
                     value = CASE WHEN expires_at <= ? THEN 1 ELSE value + 1 END,
                     expires_at = CASE WHEN expires_at <= ? THEN excluded.expires_at
                                       ELSE expires_at END
                   WHERE expires_at <= ? OR value < ?""",
                (key, now + ttl_seconds, now, now, now, limit),
            )
            self.conn.commit()
            return cursor.rowcount > 0

    def forget(self, key: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM rate_limit_counters WHERE key = ?", (key,))
            self.conn.commit()

    def has(self, key: str) -> bool:
        with self._lock:
            return self._row(key) is not None

    def ttl(self, key: str) -> int | None:
        with self._lock:
            row = self._row(key)
            if row is None:
                return None
            return max(0, math.ceil(row["expires_at"] - self._clock()))

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> SqliteCounterStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def build_store(settings: RateLimitSettings | None = None) -> CounterStore:
    if settings is not None and settings.driver == "sqlite":
        return SqliteCounterStore(settings.path)
    return MemoryCounterStore()
