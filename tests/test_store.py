"""Tests for the SQLite datastore, identity store and result recorder."""

from __future__ import annotations

import asyncio
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from dialer.checks.models import CheckKind, Err, ErrorKind, Ok, Record
from dialer.store import Db, IdentityStore, ResultRecorder, StorageError
from dialer.store.db import MIGRATIONS
from dialer.store.identity import get_or_create_identity


# ── Db ───────────────────────────────────────────────────────────────────────


class TestDb:
    def test_migrations_applied(self, db: Db) -> None:
        version = db.call(lambda conn: conn.execute("PRAGMA user_version").fetchone()[0])
        assert version == len(MIGRATIONS)

        tables = db.call(lambda conn: {
            r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        })
        assert {"checks", "results"} <= tables

    def test_migrate_is_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "again.db"
        Db(path)
        db = Db(path)
        assert db.migrate() == len(MIGRATIONS)

    def test_sqlite_errors_become_storage_errors(self, db: Db) -> None:
        with pytest.raises(StorageError):
            db.call(lambda conn: conn.execute("SELECT * FROM no_such_table"))

    def test_unopenable_path(self, tmp_path: Path) -> None:
        # A directory cannot be opened as a database file
        target = tmp_path / "is-a-dir"
        target.mkdir()
        with pytest.raises(StorageError):
            Db(target)

    def test_kind_constraint(self, db: Db) -> None:
        with pytest.raises(StorageError):
            db.call(lambda conn: conn.execute(
                "INSERT INTO checks (name, kind) VALUES ('x', 'smtp')",
            ))


# ── Identity store ───────────────────────────────────────────────────────────


class TestIdentityStore:
    def test_materialize_is_idempotent(self, identity_store: IdentityStore) -> None:
        async def go() -> list[int]:
            return [await identity_store.materialize("google", CheckKind.HTTP) for _ in range(3)]

        ids = asyncio.run(go())
        assert len(set(ids)) == 1

    def test_kind_is_part_of_the_key(self, identity_store: IdentityStore) -> None:
        async def go() -> tuple[int, int]:
            return (
                await identity_store.materialize("google", CheckKind.HTTP),
                await identity_store.materialize("google", CheckKind.PING),
            )

        http_id, ping_id = asyncio.run(go())
        assert http_id != ping_id

    def test_stable_across_handles(self, tmp_path: Path) -> None:
        path = tmp_path / "stable.db"
        first = asyncio.run(IdentityStore(Db(path)).materialize("api", CheckKind.HTTP))
        second = asyncio.run(IdentityStore(Db(path)).materialize("api", CheckKind.HTTP))
        assert first == second

    def test_concurrent_tasks_create_one_row(self, db: Db, identity_store: IdentityStore) -> None:
        async def go() -> list[int]:
            return await asyncio.gather(
                *(identity_store.materialize("api", CheckKind.HTTP) for _ in range(16))
            )

        ids = asyncio.run(go())
        assert len(set(ids)) == 1
        rows = db.call(lambda conn: conn.execute(
            "SELECT COUNT(*) FROM checks WHERE name = 'api' AND kind = 'http'",
        ).fetchone()[0])
        assert rows == 1

    def test_concurrent_threads_create_one_row(self, db: Db) -> None:
        def materialize(_: int) -> int:
            return db.call(lambda conn: get_or_create_identity(conn, "edge", CheckKind.PING))

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(materialize, range(32)))

        assert len(set(ids)) == 1
        rows = db.call(lambda conn: conn.execute("SELECT COUNT(*) FROM checks").fetchone()[0])
        assert rows == 1

    def test_lost_insert_race_rereads(self, db: Db) -> None:
        """An insert that hits the unique constraint returns the winner's id."""
        winner = db.call(lambda conn: get_or_create_identity(conn, "api", CheckKind.HTTP))

        class RacingConnection:
            """Reports the key as absent on the first lookup only."""

            def __init__(self, conn: sqlite3.Connection) -> None:
                self._conn = conn
                self._lookups = 0

            def execute(self, sql: str, params: tuple = ()):
                if sql.startswith("SELECT"):
                    self._lookups += 1
                    if self._lookups == 1:
                        return self._conn.execute("SELECT id FROM checks WHERE 0")
                return self._conn.execute(sql, params)

            def __getattr__(self, name: str):
                return getattr(self._conn, name)

        got = db.call(lambda conn: get_or_create_identity(RacingConnection(conn), "api", CheckKind.HTTP))
        assert got == winner

    def test_identities(self, identity_store: IdentityStore) -> None:
        async def go():
            a = await identity_store.materialize("a", CheckKind.HTTP)
            b = await identity_store.materialize("b", CheckKind.PING)
            return a, b, await identity_store.identities()

        a, b, identities = asyncio.run(go())
        assert identities[a].name == "a"
        assert identities[a].kind == CheckKind.HTTP
        assert identities[b].kind == CheckKind.PING


# ── Recorder ─────────────────────────────────────────────────────────────────


class TestResultRecorder:
    def test_ok_round_trip(self, identity_store: IdentityStore, recorder: ResultRecorder) -> None:
        async def go() -> tuple[Record, list[Record]]:
            check_id = await identity_store.materialize("api", CheckKind.HTTP)
            written = await recorder.record(check_id, Ok(latency=0.0421, status_code=204), epoch=1000)
            return written, await recorder.query_records(1000, 1001)

        written, stored = asyncio.run(go())
        assert stored == [written]
        assert stored[0].latency_ms == 42
        assert stored[0].status_code == 204
        assert stored[0].error is None

    def test_err_round_trip(self, identity_store: IdentityStore, recorder: ResultRecorder) -> None:
        async def go() -> list[Record]:
            check_id = await identity_store.materialize("edge", CheckKind.PING)
            await recorder.record(check_id, Err("No ip for host 'x'", ErrorKind.NO_IP_FOR_HOST), epoch=50)
            return await recorder.query_records(0, 100)

        (stored,) = asyncio.run(go())
        assert stored.latency_ms is None
        assert stored.error == "No ip for host 'x'"
        assert stored.error_kind == "no_ip_for_host"
        assert stored.is_error

    def test_one_row_per_call(self, db: Db, recorder: ResultRecorder, identity_store: IdentityStore) -> None:
        async def go() -> None:
            check_id = await identity_store.materialize("api", CheckKind.HTTP)
            for epoch in range(5):
                await recorder.record(check_id, Ok(latency=0.01), epoch=epoch)

        asyncio.run(go())
        count = db.call(lambda conn: conn.execute("SELECT COUNT(*) FROM results").fetchone()[0])
        assert count == 5

    def test_default_epoch_is_now(self, recorder: ResultRecorder) -> None:
        import time

        before = int(time.time())
        record = asyncio.run(recorder.record(1, Ok(latency=0.001)))
        assert before <= record.epoch <= int(time.time())

    def test_query_window_is_half_open(self, recorder: ResultRecorder) -> None:
        async def go() -> list[Record]:
            for epoch in (99, 100, 101, 102):
                await recorder.record(1, Ok(latency=0.001), epoch=epoch)
            return await recorder.query_records(100, 102)

        assert [r.epoch for r in asyncio.run(go())] == [100, 101]

    def test_storage_failure_raises(self, tmp_path: Path) -> None:
        db = Db(tmp_path / "gone.db")
        db.call(lambda conn: conn.execute("DROP TABLE results"))
        with pytest.raises(StorageError):
            asyncio.run(ResultRecorder(db).record(1, Ok(latency=0.001)))
