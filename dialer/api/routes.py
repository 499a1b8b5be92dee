"""API routes for checks, rollup metrics and the live result stream.

Endpoints:
  GET  /api/query    rollup buckets per check (start/end or last=<duration>)
  GET  /api/checks   configured checks with their ids + scheduler status
  GET  /api/stream   SSE stream of recorded results
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from dialer.checks.models import Record, RollupBucket, TrackedCheck
from dialer.checks.registry import ConfigError, parse_duration
from dialer.store import InvalidRangeError, StorageError, to_series

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_WINDOW = timedelta(hours=1)

# ── SSE subscriber list (in-memory) ──────────────────────────────────────────

_sse_queues: list[asyncio.Queue[dict[str, Any]]] = []


def result_to_dict(tracked: TrackedCheck, record: Record) -> dict[str, Any]:
    return {
        "check_id": tracked.id,
        "name": tracked.check.name,
        "kind": tracked.check.kind.value,
        "epoch": record.epoch,
        "ms": record.latency_ms,
        "code": record.status_code,
        "err": {"msg": record.error, "kind": record.error_kind} if record.is_error else None,
    }


def broadcast_result(tracked: TrackedCheck, record: Record) -> None:
    """Push a recorded result to all SSE subscribers."""
    data = result_to_dict(tracked, record)
    for q in _sse_queues:
        try:
            q.put_nowait(data)
        except asyncio.QueueFull:
            pass  # slow consumer, drop


# ── Helpers ──────────────────────────────────────────────────────────────────


def _epoch(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp())


def bucket_to_dict(b: RollupBucket) -> dict[str, Any]:
    return {
        "ts": datetime.fromtimestamp(b.bucket_start, tz=timezone.utc).isoformat(),
        "bucket": b.bucket_start,
        "min": b.min,
        "avg": b.avg,
        "max": b.max,
        "count": b.count,
        "errors": b.error_count,
    }


def resolve_window(
    start: datetime | None,
    end: datetime | None,
    last: str | None,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Epoch ``[start, end)`` from query params; ``last`` wins when given."""
    now = now or datetime.now(timezone.utc)
    if last is not None:
        start, end = now - timedelta(seconds=parse_duration(last)), now
    start = start or now - DEFAULT_WINDOW
    end = end or now
    return _epoch(start), _epoch(end)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/query")
async def query_metrics(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    last: str | None = None,
) -> dict[str, Any]:
    """Rollup buckets grouped into one series per check."""
    aggregator = request.app.state.aggregator
    try:
        window_start, window_end = resolve_window(start, end, last)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (OverflowError, ValueError):
        # durations or datetimes past what datetime can represent
        raise HTTPException(status_code=400, detail="query window out of range")

    try:
        buckets = await aggregator.query(window_start, window_end)
    except InvalidRangeError:
        logger.warning("Invalid query range [%d, %d)", window_start, window_end)
        raise HTTPException(status_code=400, detail="end date must be after start date")
    except StorageError as e:
        logger.error("Query failed: %s", e)
        raise HTTPException(status_code=500, detail="storage unavailable")

    return {
        "start": window_start,
        "end": window_end,
        "series": [
            {
                "check_id": s.check_id,
                "name": s.name,
                "kind": s.kind.value,
                "values": [bucket_to_dict(b) for b in s.values],
            }
            for s in to_series(buckets)
        ],
    }


@router.get("/checks")
def list_checks(request: Request) -> dict[str, Any]:
    """Configured checks with their stable ids."""
    scheduler = request.app.state.scheduler
    return {
        "checks": [
            {
                "id": t.id,
                "name": t.check.name,
                "kind": t.check.kind.value,
                "target": t.check.target,
                "expected_code": t.check.expected_code,
            }
            for t in scheduler.checks
        ],
        "scheduler": scheduler.status(),
    }


# ── SSE stream ───────────────────────────────────────────────────────────────


@router.get("/stream")
async def result_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of results as they are recorded."""
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=50)
    _sse_queues.append(queue)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break

                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: result\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            _sse_queues.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
