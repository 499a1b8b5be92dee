"""Rollup aggregation: fixed-width time buckets over recorded outcomes.

Window ``[start, end)`` in epoch seconds. Short windows (<= 10 minutes) use
1-second buckets, anything longer uses 5-second buckets. Error records count
towards ``count`` / ``error_count`` but not towards the latency statistics; a
bucket with no successful sample reports ``min``/``avg``/``max`` as ``None``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..checks.models import CheckIdentity, CheckKind, Record, RollupBucket
from .identity import IdentityStore
from .recorder import ResultRecorder

logger = logging.getLogger(__name__)

FINE_WINDOW_SECONDS = 600
FINE_BUCKET_SECONDS = 1
COARSE_BUCKET_SECONDS = 5


class InvalidRangeError(ValueError):
    """Raised when a query window does not end after it starts."""

    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(f"end ({end}) must be after start ({start})")


def bucket_width(window_seconds: int) -> int:
    if window_seconds <= FINE_WINDOW_SECONDS:
        return FINE_BUCKET_SECONDS
    return COARSE_BUCKET_SECONDS


def rollup(
    records: Iterable[Record],
    identities: Mapping[int, CheckIdentity],
    start: int,
    end: int,
) -> list[RollupBucket]:
    """Bucket ``records`` falling in ``[start, end)`` per check."""
    if end <= start:
        raise InvalidRangeError(start, end)
    width = bucket_width(end - start)

    groups: dict[tuple[int, int], list[Record]] = {}
    for r in records:
        if not start <= r.epoch < end:
            continue
        bucket = r.epoch - r.epoch % width
        groups.setdefault((r.check_id, bucket), []).append(r)

    buckets: list[RollupBucket] = []
    for (check_id, bucket), members in groups.items():
        identity = identities.get(check_id)
        if identity is None:
            logger.warning("Skipping %d records for unknown check id %d", len(members), check_id)
            continue

        latencies = [r.latency_ms for r in members if not r.is_error and r.latency_ms is not None]
        buckets.append(RollupBucket(
            check_id=check_id,
            name=identity.name,
            kind=identity.kind,
            bucket_start=bucket,
            min=min(latencies) if latencies else None,
            avg=sum(latencies) // len(latencies) if latencies else None,
            max=max(latencies) if latencies else None,
            count=len(members),
            error_count=sum(1 for r in members if r.is_error),
        ))

    buckets.sort(key=lambda b: (b.bucket_start, b.name, b.kind.value))
    return buckets


# ── Series view ──────────────────────────────────────────────────────────────


@dataclass
class Series:
    check_id: int
    name: str
    kind: CheckKind
    values: list[RollupBucket] = field(default_factory=list)


def to_series(buckets: Iterable[RollupBucket]) -> list[Series]:
    """Group sorted buckets per check, series ordered by first appearance."""
    series: dict[int, Series] = {}
    for b in buckets:
        s = series.get(b.check_id)
        if s is None:
            s = series[b.check_id] = Series(check_id=b.check_id, name=b.name, kind=b.kind)
        s.values.append(b)
    return list(series.values())


# ── Aggregator ───────────────────────────────────────────────────────────────


class RollupAggregator:
    """Answers metrics queries from the recorder's stored results."""

    def __init__(self, recorder: ResultRecorder, identity_store: IdentityStore) -> None:
        self.recorder = recorder
        self.identity_store = identity_store

    async def query(self, start: int, end: int) -> list[RollupBucket]:
        """Rollup buckets for ``[start, end)``.

        Raises ``InvalidRangeError`` before touching storage, ``StorageError``
        if the datastore is unavailable.
        """
        if end <= start:
            raise InvalidRangeError(start, end)
        records = await self.recorder.query_records(start, end)
        identities = await self.identity_store.identities()
        buckets = rollup(records, identities, start, end)
        logger.debug(
            "Rollup [%d, %d): %d records -> %d buckets (width %ds)",
            start, end, len(records), len(buckets), bucket_width(end - start),
        )
        return buckets
