"""Result recorder: append-only storage of probe outcomes."""

from __future__ import annotations

import logging
import sqlite3
import time

from ..checks.models import Outcome, Record
from .db import Db

logger = logging.getLogger(__name__)


def append_record(conn: sqlite3.Connection, record: Record) -> None:
    conn.execute(
        "INSERT INTO results (check_id, epoch, ms, err, err_kind, code) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            record.check_id, record.epoch, record.latency_ms,
            record.error, record.error_kind, record.status_code,
        ),
    )


def query_records(conn: sqlite3.Connection, start: int, end: int) -> list[Record]:
    """Records with ``start <= epoch < end`` in epoch order."""
    rows = conn.execute(
        "SELECT check_id, epoch, ms, err, err_kind, code FROM results "
        "WHERE epoch >= ? AND epoch < ? "
        "ORDER BY epoch, id",
        (start, end),
    ).fetchall()
    return [
        Record(
            check_id=r["check_id"], epoch=r["epoch"], latency_ms=r["ms"],
            error=r["err"], error_kind=r["err_kind"], status_code=r["code"],
        )
        for r in rows
    ]


class ResultRecorder:
    """Writes one ``results`` row per probe attempt."""

    def __init__(self, db: Db) -> None:
        self.db = db

    async def record(self, check_id: int, outcome: Outcome, epoch: int | None = None) -> Record:
        """Persist ``outcome`` for ``check_id``; raises ``StorageError`` on failure."""
        if epoch is None:
            epoch = int(time.time())
        record = Record.from_outcome(check_id, outcome, epoch)
        await self.db.run(lambda conn: append_record(conn, record))
        logger.debug("Recorded %s for check %d @ %d", "error" if record.is_error else "ok", check_id, epoch)
        return record

    async def query_records(self, start: int, end: int) -> list[Record]:
        return await self.db.run(lambda conn: query_records(conn, start, end))
