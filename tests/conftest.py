"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from dialer.checks.models import Check, Ok, Outcome
from dialer.store import Db, IdentityStore, ResultRecorder, RollupAggregator


class FakeProbe:
    """Scriptable probe: per-check outcomes, hangs and crashes by check name."""

    def __init__(
        self,
        outcomes: dict[str, Outcome] | None = None,
        hang: set[str] | None = None,
        crash: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.outcomes = outcomes or {}
        self.hang = hang or set()
        self.crash = crash or set()
        self.delay = delay
        self.calls: list[tuple[str, float]] = []

    async def attempt(self, check: Check, timeout: float) -> Outcome:
        self.calls.append((check.name, timeout))
        if check.name in self.hang:
            await asyncio.Event().wait()
        if check.name in self.crash:
            raise RuntimeError(f"probe for {check.name} blew up")
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.outcomes.get(check.name, Ok(latency=0.012, status_code=200))


@pytest.fixture
def db(tmp_path: Path) -> Db:
    return Db(tmp_path / "checks.db")


@pytest.fixture
def identity_store(db: Db) -> IdentityStore:
    return IdentityStore(db)


@pytest.fixture
def recorder(db: Db) -> ResultRecorder:
    return ResultRecorder(db)


@pytest.fixture
def aggregator(recorder: ResultRecorder, identity_store: IdentityStore) -> RollupAggregator:
    return RollupAggregator(recorder, identity_store)
