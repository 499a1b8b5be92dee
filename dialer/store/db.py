"""SQLite datastore: schema migrations and per-unit-of-work connections.

Every unit of work (materialize, record, query) opens its own connection,
runs, commits and closes. Async callers go through ``Db.run`` which executes
the unit of work on a worker thread so the event loop never blocks on disk.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Applied in order; PRAGMA user_version holds the number already applied.
MIGRATIONS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS checks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('http', 'ping')),
        UNIQUE (name, kind)
    );

    CREATE TABLE IF NOT EXISTS results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        check_id INTEGER NOT NULL,
        epoch INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
        ms INTEGER,
        err TEXT,
        err_kind TEXT,
        code INTEGER,
        FOREIGN KEY (check_id) REFERENCES checks (id)
    );

    CREATE INDEX IF NOT EXISTS idx_results_epoch ON results (epoch);
    """,
)


class StorageError(Exception):
    """Raised when the datastore cannot complete a unit of work."""


class Db:
    """Handle on the SQLite file. Holds no open connection between calls."""

    def __init__(self, db_path: Path | str, busy_timeout: float = 10.0) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.migrate()

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection for one unit of work; commit on success."""
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout)
        except sqlite3.Error as e:
            raise StorageError(f"could not open {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"{type(e).__name__}: {e}") from e
        finally:
            conn.close()

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            for i, script in enumerate(MIGRATIONS[version:], start=version + 1):
                conn.executescript(script)
                conn.execute(f"PRAGMA user_version = {i}")
                logger.info("Applied migration V%03d to %s", i, self._db_path)
            return max(version, len(MIGRATIONS))

    def call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn`` against a fresh connection and return its result."""
        with self.connect() as conn:
            return fn(conn)

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Async form of ``call``: the unit of work runs on a worker thread."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.call, fn)
