"""Identity store: stable integer ids for ``(name, kind)`` check keys.

Uniqueness is enforced by the ``UNIQUE (name, kind)`` constraint, not by an
in-process lock, so concurrent materialization (threads, tasks or separate
processes on the same file) converges on a single row.
"""

from __future__ import annotations

import logging
import sqlite3

from ..checks.models import CheckIdentity, CheckKind
from .db import Db

logger = logging.getLogger(__name__)


def _lookup(conn: sqlite3.Connection, name: str, kind: CheckKind) -> int | None:
    row = conn.execute(
        "SELECT id FROM checks WHERE name = ? AND kind = ?",
        (name, kind.value),
    ).fetchone()
    return int(row["id"]) if row else None


def get_or_create_identity(conn: sqlite3.Connection, name: str, kind: CheckKind) -> int:
    """Select, else insert, else re-select after losing an insert race."""
    existing = _lookup(conn, name, kind)
    if existing is not None:
        return existing

    try:
        cursor = conn.execute(
            "INSERT INTO checks (name, kind) VALUES (?, ?)",
            (name, kind.value),
        )
        conn.commit()
        logger.info("Created identity %d for %s (%s)", cursor.lastrowid, name, kind.value)
        return int(cursor.lastrowid)
    except sqlite3.IntegrityError:
        # Another writer inserted the same key between our select and insert.
        conn.rollback()
        winner = _lookup(conn, name, kind)
        if winner is None:
            raise
        return winner


class IdentityStore:
    """Get-or-create for check identities, backed by the ``checks`` table."""

    def __init__(self, db: Db) -> None:
        self.db = db

    async def materialize(self, name: str, kind: CheckKind) -> int:
        """Return the stable id for ``(name, kind)``, creating it if absent.

        Raises ``StorageError`` if the datastore is unavailable.
        """
        return await self.db.run(lambda conn: get_or_create_identity(conn, name, kind))

    async def identities(self) -> dict[int, CheckIdentity]:
        """All known identities keyed by id."""

        def _all(conn: sqlite3.Connection) -> dict[int, CheckIdentity]:
            rows = conn.execute("SELECT id, name, kind FROM checks ORDER BY id").fetchall()
            return {
                int(r["id"]): CheckIdentity(id=int(r["id"]), name=r["name"], kind=CheckKind(r["kind"]))
                for r in rows
            }

        return await self.db.run(_all)
