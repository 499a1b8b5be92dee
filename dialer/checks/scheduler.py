"""Check scheduler: fixed-interval ticks fanning out one task per check.

Each tick: spawn a task per check (probe wrapped in a timeout equal to the
interval, outcome handed to the recorder), wait for all of them, then sleep
for whatever is left of the interval. A failing or hanging check only ever
affects its own record for that tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..store.db import StorageError
from ..store.identity import IdentityStore
from ..store.recorder import ResultRecorder
from .models import (
    Check, CheckIdentity, CheckKind, Err, ErrorKind, Ok, Outcome, Record, TrackedCheck,
)
from .probes import Probe

logger = logging.getLogger(__name__)


async def materialize_all(
    checks: Iterable[Check], identity_store: IdentityStore,
) -> list[TrackedCheck]:
    """Resolve the identity of every check. Any storage failure is raised."""
    tracked = []
    for check in checks:
        check_id = await identity_store.materialize(check.name, check.kind)
        tracked.append(TrackedCheck(
            check=check,
            identity=CheckIdentity(id=check_id, name=check.name, kind=check.kind),
        ))
    return tracked


class CheckScheduler:
    """Runs every tracked check once per interval until stopped."""

    def __init__(
        self,
        checks: list[TrackedCheck],
        probes: Mapping[CheckKind, Probe],
        recorder: ResultRecorder,
        interval: float,
        on_result: Callable[[TrackedCheck, Record], Any] | None = None,
        max_concurrency: int = 0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.checks = checks
        self.probes = probes
        self.recorder = recorder
        self.interval = interval
        self.on_result = on_result  # SSE broadcast callback
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.ticks = 0
        self.last_tick_at: str | None = None

    @classmethod
    async def from_checks(
        cls,
        checks: Iterable[Check],
        identity_store: IdentityStore,
        recorder: ResultRecorder,
        probes: Mapping[CheckKind, Probe],
        interval: float,
        **kwargs: Any,
    ) -> "CheckScheduler":
        tracked = await materialize_all(checks, identity_store)
        return cls(tracked, probes, recorder, interval, **kwargs)

    # -- lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the tick loop on the running event loop."""
        if self._running:
            return
        self._running = True
        if not self.checks:
            logger.info("No checks configured, scheduler idle")
            return
        self._task = asyncio.create_task(self._tick_loop(), name="dialer-ticks")
        logger.info(
            "Check scheduler started: %d checks every %.1fs", len(self.checks), self.interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Check scheduler stopped")

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self.interval,
            "checks": len(self.checks),
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at,
        }

    # -- core loop -------------------------------------------------------------

    async def _tick_loop(self) -> None:
        """tick -> await all -> sleep(interval - elapsed) -> repeat."""
        loop = asyncio.get_event_loop()
        while self._running:
            started = loop.time()
            try:
                await self.run_once()
            except Exception:
                logger.exception("Tick failed")
            elapsed = loop.time() - started
            if elapsed > self.interval:
                logger.warning("Tick took %.2fs, longer than the %.2fs interval", elapsed, self.interval)
            await asyncio.sleep(max(0.0, self.interval - elapsed))

    async def run_once(self) -> list[Record | None]:
        """Run every check once, concurrently.

        Returns one entry per check, in check order: the stored record, or
        ``None`` when nothing could be recorded for it this tick.
        """
        self.last_tick_at = datetime.now(timezone.utc).isoformat()
        results = await asyncio.gather(
            *(self._run_check(t) for t in self.checks), return_exceptions=True,
        )
        self.ticks += 1

        records: list[Record | None] = []
        for tracked, result in zip(self.checks, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Check task %s crashed: %s", tracked.check, result,
                    exc_info=(type(result), result, result.__traceback__),
                )
                records.append(None)
            else:
                records.append(result)
        return records

    async def _run_check(self, tracked: TrackedCheck) -> Record | None:
        check = tracked.check
        probe = self.probes[check.kind]

        if self._semaphore is not None:
            async with self._semaphore:
                outcome = await self._attempt(probe, check)
        else:
            outcome = await self._attempt(probe, check)

        if isinstance(outcome, Err):
            logger.warning("%s: %s [%s]", check, outcome.message, outcome.error_kind.value)
        elif isinstance(outcome, Ok):
            logger.debug("%s: ok (%dms)", check, outcome.latency_ms)

        try:
            record = await self.recorder.record(tracked.id, outcome, int(time.time()))
        except StorageError as e:
            logger.error("Could not record result for %s: %s", check, e)
            return None

        if self.on_result:
            try:
                self.on_result(tracked, record)
            except Exception:
                logger.exception("Result callback error")
        return record

    async def _attempt(self, probe: Probe, check: Check) -> Outcome:
        try:
            return await asyncio.wait_for(probe.attempt(check, self.interval), timeout=self.interval)
        except asyncio.TimeoutError:
            return Err(f"Check did not complete within {self.interval}s", ErrorKind.TIMEOUT)
