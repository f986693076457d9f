"""
localmem Database -- the explicitly constructed SQLite handle.

One ``Database`` owns one sqlite3 connection. Components receive the handle
at construction time; nothing in localmem reaches for a global connection.

Writes go through ``transaction()`` (BEGIN IMMEDIATE ... COMMIT, rolled back
on any exception) so a memory row and its vector row are always written
together. Reads go through ``read()``. Both serialise on one re-entrant lock,
since the connection is shared across request threads.

Usage:
    db = Database("/tmp/memory.db")
    with db.transaction() as conn:
        conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
"""

import contextlib
import json
import logging
import os
import sqlite3
import stat
import struct
import threading
import time as _time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from localmem.types import MemoryKind

logger = logging.getLogger("localmem.db")

SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# SQLite retry -- WAL + busy_timeout handle most writer contention, but when
# several server processes share one file the timeout can still expire.
# ---------------------------------------------------------------------------
_DB_RETRY_ATTEMPTS = 3
_DB_RETRY_BASE_DELAY = 0.5  # seconds
_WAL_CHECKPOINT_INTERVAL = 50  # writes between PASSIVE checkpoints
_BUSY_TIMEOUT_MS = 30000

# Pre-seeded policies; protected from casual deletion.
DEFAULT_BAGS = (
    {
        "name": "session-summaries",
        "description": "Session-level takeaways and brief summaries.",
        "default_top_k": 8,
        "recency_half_life_days": 14,
        "importance_weight": 0.4,
        "allowed_kinds": [MemoryKind.SUMMARY, MemoryKind.DECISION, MemoryKind.NOTE],
    },
    {
        "name": "coding-style",
        "description": "User preferences for code style and implementation choices.",
        "default_top_k": 8,
        "recency_half_life_days": 120,
        "importance_weight": 0.45,
        "allowed_kinds": [MemoryKind.PREFERENCE, MemoryKind.CONSTRAINT, MemoryKind.FACT, MemoryKind.NOTE],
    },
    {
        "name": "life-preferences",
        "description": "Personal preferences and non-technical context.",
        "default_top_k": 6,
        "recency_half_life_days": 180,
        "importance_weight": 0.5,
        "allowed_kinds": [MemoryKind.PREFERENCE, MemoryKind.FACT, MemoryKind.NOTE],
    },
)

PROTECTED_BAGS = frozenset(b["name"] for b in DEFAULT_BAGS)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS bags (
        name TEXT PRIMARY KEY,
        description TEXT,
        default_top_k INTEGER NOT NULL DEFAULT 8,
        recency_half_life_days REAL NOT NULL DEFAULT 30,
        importance_weight REAL NOT NULL DEFAULT 0.35,
        allowed_kinds_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        bag TEXT NOT NULL,
        kind TEXT NOT NULL,
        content TEXT NOT NULL,
        tags_json TEXT NOT NULL,
        importance INTEGER NOT NULL DEFAULT 3,
        source_json TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_accessed_at TEXT,
        expires_at TEXT,
        FOREIGN KEY (bag) REFERENCES bags(name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_vectors (
        memory_id TEXT PRIMARY KEY,
        embedding BLOB NOT NULL,
        embedding_model TEXT NOT NULL,
        embedding_dim INTEGER NOT NULL,
        embedding_norm REAL NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (memory_id) REFERENCES memories(id) ON DELETE CASCADE
    )
    """,
)


def _retry_on_locked(fn, *args, **kwargs):
    """Call fn with retry on 'database is locked' OperationalError."""
    for attempt in range(_DB_RETRY_ATTEMPTS):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as e:
            if "database is locked" in str(e) and attempt < _DB_RETRY_ATTEMPTS - 1:
                delay = _DB_RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning("database is locked (attempt %d/%d), retrying in %.1fs",
                               attempt + 1, _DB_RETRY_ATTEMPTS, delay)
                _time.sleep(delay)
            else:
                raise


def now_iso(now: Optional[datetime] = None) -> str:
    """UTC timestamp with fixed microsecond precision.

    Fixed width keeps lexical order equal to chronological order, which the
    candidate query and the expiry filter rely on.
    """
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="microseconds")


def serialize_vector(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float64."""
    return struct.pack(f"<{len(vector)}d", *vector)


def deserialize_vector(data: bytes, dim: int) -> List[float]:
    return list(struct.unpack(f"<{dim}d", data))


def secure_connect(db_path, **kwargs) -> sqlite3.Connection:
    """Create a SQLite connection with owner-only file permissions (0o600)."""
    db_path_str = str(db_path)
    if db_path_str == ":memory:":
        return sqlite3.connect(db_path_str, **kwargs)

    path_obj = Path(db_path_str)
    if not path_obj.exists():
        fd = os.open(db_path_str, os.O_CREAT | os.O_WRONLY, 0o600)
        os.close(fd)
    else:
        current_mode = path_obj.stat().st_mode
        if current_mode & (stat.S_IRWXG | stat.S_IRWXO):
            os.chmod(db_path_str, 0o600)

    return sqlite3.connect(db_path_str, **kwargs)


class Database:
    """Owner of the SQLite connection, schema and transaction boundaries."""

    def __init__(self, db_path, seed_defaults: bool = True):
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        self._lock = threading.RLock()
        self._wal_write_count = 0
        self._closed = False
        self._conn = self._connect()
        self._init_schema()
        if seed_defaults:
            self.seed_default_bags()

    def _connect(self) -> sqlite3.Connection:
        """Create the connection with WAL and foreign keys enabled."""
        conn = secure_connect(
            self.db_path,
            timeout=30,
            check_same_thread=False,
            isolation_level=None,  # explicit BEGIN/COMMIT in transaction()
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self.transaction() as c:
            c.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = c.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                c.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row[0] > SCHEMA_VERSION:
                logger.warning("Database schema v%d is newer than this build (v%d)", row[0], SCHEMA_VERSION)

            for ddl in _SCHEMA:
                c.execute(ddl)
            for col in ("bag", "kind", "created_at", "expires_at"):
                c.execute(f"CREATE INDEX IF NOT EXISTS idx_memories_{col} ON memories({col})")

    def seed_default_bags(self) -> int:
        """Insert the protected default bags if missing. Returns rows inserted."""
        ts = now_iso()
        inserted = 0
        with self.transaction() as c:
            for bag in DEFAULT_BAGS:
                cur = c.execute(
                    """INSERT INTO bags (name, description, default_top_k, recency_half_life_days,
                                         importance_weight, allowed_kinds_json, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(name) DO NOTHING""",
                    (
                        bag["name"],
                        bag["description"],
                        bag["default_top_k"],
                        bag["recency_half_life_days"],
                        bag["importance_weight"],
                        json.dumps([k.value for k in bag["allowed_kinds"]]),
                        ts,
                        ts,
                    ),
                )
                inserted += cur.rowcount
        if inserted:
            logger.info("Seeded %d default bag(s)", inserted)
        return inserted

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Serialised read access to the connection."""
        with self._lock:
            yield self._conn

    @contextlib.contextmanager
    def transaction(self, retry: bool = True, busy_timeout_ms: Optional[int] = None) -> Iterator[sqlite3.Connection]:
        """Atomic write scope: everything inside commits together or not at all.

        Nested use joins the outer transaction. ``retry=False`` makes a single
        attempt at the write lock; ``busy_timeout_ms`` shortens the wait for it.
        """
        with self._lock:
            if self._conn.in_transaction:
                yield self._conn
                return
            if busy_timeout_ms is not None:
                self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
            try:
                self._execute("BEGIN IMMEDIATE", retry)
                try:
                    yield self._conn
                except BaseException:
                    self._conn.rollback()
                    raise
                try:
                    self._execute("COMMIT", retry)
                except BaseException:
                    self._conn.rollback()
                    raise
            finally:
                if busy_timeout_ms is not None:
                    self._conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
            self._maybe_wal_checkpoint()

    def _execute(self, sql: str, retry: bool) -> None:
        if retry:
            _retry_on_locked(self._conn.execute, sql)
        else:
            self._conn.execute(sql)

    def _maybe_wal_checkpoint(self) -> None:
        """Run a PASSIVE WAL checkpoint every N writes to bound WAL growth."""
        self._wal_write_count += 1
        if self._wal_write_count < _WAL_CHECKPOINT_INTERVAL:
            return
        self._wal_write_count = 0
        try:
            result = self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)").fetchone()
            if result and result[1] > 0:
                logger.debug("WAL checkpoint: %d/%d pages checkpointed (%d busy)",
                             result[1], result[2], result[0])
        except sqlite3.Error as e:
            logger.debug("WAL checkpoint failed (non-fatal): %s", e)

    def schema_version(self) -> int:
        with self.read() as c:
            row = c.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        return row[0] if row else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
            except sqlite3.Error as e:
                logger.debug("Final WAL checkpoint failed: %s", e)
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
