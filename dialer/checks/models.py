"""Check models: configured checks, probe outcomes, stored records, rollups.

Check kinds and outcome variants are plain tagged values: a ``str`` enum for
the kind, and two frozen dataclasses (``Ok`` / ``Err``) joined by the
``Outcome`` union. Consumers branch with ``isinstance``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


# ── Enums ────────────────────────────────────────────────────────────────────


class CheckKind(str, Enum):
    HTTP = "http"
    PING = "ping"


class ErrorKind(str, Enum):
    """Coarse, storage-friendly classification of a failed probe."""

    TIMEOUT = "timeout"
    RESOLVE_HOST = "resolve_host"
    NO_IP_FOR_HOST = "no_ip_for_host"
    TRANSPORT = "transport"
    STATUS = "status"
    DECODE = "decode"


# ── Checks ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Check:
    """A configured probe target. ``(name, kind)`` is its natural key."""

    name: str
    kind: CheckKind
    target: str  # url for http, hostname / literal ip for ping
    expected_code: int | None = None

    def __str__(self) -> str:
        return f"{self.name} ({self.kind.value})"


@dataclass(frozen=True)
class CheckIdentity:
    """Stable storage identity of a check, created once per natural key."""

    id: int
    name: str
    kind: CheckKind


@dataclass(frozen=True)
class TrackedCheck:
    """A check paired with its materialized identity, ready to schedule."""

    check: Check
    identity: CheckIdentity

    @property
    def id(self) -> int:
        return self.identity.id


# ── Outcomes ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Ok:
    latency: float  # seconds
    status_code: int | None = None

    @property
    def latency_ms(self) -> int:
        return round(self.latency * 1000)


@dataclass(frozen=True)
class Err:
    message: str
    error_kind: ErrorKind


Outcome = Union[Ok, Err]


# ── Persisted / derived ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Record:
    """One persisted probe outcome. Exactly one of latency_ms / error is set."""

    check_id: int
    epoch: int
    latency_ms: int | None = None
    error: str | None = None
    error_kind: str | None = None
    status_code: int | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_outcome(cls, check_id: int, outcome: Outcome, epoch: int) -> "Record":
        if isinstance(outcome, Ok):
            return cls(
                check_id=check_id, epoch=epoch,
                latency_ms=outcome.latency_ms, status_code=outcome.status_code,
            )
        return cls(
            check_id=check_id, epoch=epoch,
            error=outcome.message, error_kind=outcome.error_kind.value,
        )


@dataclass(frozen=True)
class RollupBucket:
    check_id: int
    name: str
    kind: CheckKind
    bucket_start: int
    min: int | None
    avg: int | None
    max: int | None
    count: int
    error_count: int
