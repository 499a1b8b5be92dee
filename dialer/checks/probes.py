"""Probe implementations: one network measurement per attempt.

Supports: HTTP(S) GET and ICMP echo. ``attempt`` never raises for expected
network conditions; failures come back as ``Err`` with a coarse ``ErrorKind``.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import httpx
import icmplib

from .models import Check, CheckKind, Err, ErrorKind, Ok, Outcome

logger = logging.getLogger(__name__)

PING_PAYLOAD = bytes([1, 2, 3, 4])


class Probe(Protocol):
    async def attempt(self, check: Check, timeout: float) -> Outcome: ...


# ── HTTP ─────────────────────────────────────────────────────────────────────


class HttpProbe:
    """Single GET with redirects disabled; a 3xx is reported, not followed."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def attempt(self, check: Check, timeout: float) -> Outcome:
        try:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=False, transport=self._transport,
            ) as client:
                t0 = time.perf_counter()
                resp = await client.get(check.target)
                latency = time.perf_counter() - t0
        except httpx.TimeoutException as e:
            return Err(f"Request timed out after {timeout}s: {type(e).__name__}", ErrorKind.TIMEOUT)
        except httpx.DecodingError as e:
            return Err(f"Could not decode response body: {e}", ErrorKind.DECODE)
        except httpx.HTTPError as e:
            return Err(f"Request failed: {type(e).__name__}: {e}", ErrorKind.TRANSPORT)

        if check.expected_code is not None and resp.status_code != check.expected_code:
            return Err(
                f"Expected {check.expected_code}, got {resp.status_code}",
                ErrorKind.STATUS,
            )
        return Ok(latency=latency, status_code=resp.status_code)


# ── Ping ─────────────────────────────────────────────────────────────────────


class NoIpForHost(Exception):
    """Raised when a hostname resolves, but to no IPv4 address."""


def resolve_ipv4(host: str) -> str:
    """Literal IPs pass through; hostnames resolve to their first IPv4 address.

    Raises ``OSError`` (``socket.gaierror``) when resolution fails,
    ``UnicodeError`` when the name is not a valid hostname and
    ``NoIpForHost`` when it yields no IPv4 result.
    """
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        pass

    for family, _, _, _, sockaddr in socket.getaddrinfo(host, None):
        if family == socket.AF_INET:
            return sockaddr[0]
    raise NoIpForHost(host)


class PingProbe:
    """One ICMP echo request, run on a dedicated thread pool.

    The blocking socket work never runs on the event loop; if the scheduler
    stops waiting, the thread finishes on its own and the result is dropped.
    """

    def __init__(
        self,
        executor: ThreadPoolExecutor | None = None,
        privileged: bool = False,
        max_workers: int | None = None,
    ) -> None:
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ping",
        )
        self.privileged = privileged

    async def attempt(self, check: Check, timeout: float) -> Outcome:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self._executor, self.ping, check.target, timeout)

    def ping(self, host: str, timeout: float) -> Outcome:
        try:
            address = resolve_ipv4(host)
        except NoIpForHost:
            return Err(f"No ip for host '{host}'", ErrorKind.NO_IP_FOR_HOST)
        except (OSError, UnicodeError) as e:
            # UnicodeError: idna encoding rejects the hostname before any lookup
            return Err(f"Could not resolve host '{host}': {e}", ErrorKind.RESOLVE_HOST)

        try:
            reply = icmplib.ping(
                address, count=1, timeout=timeout,
                privileged=self.privileged, payload=PING_PAYLOAD,
            )
        except icmplib.ICMPLibError as e:
            return Err(f"Ping failed: {type(e).__name__}: {e}", ErrorKind.TRANSPORT)

        if not reply.is_alive:
            return Err(f"No echo reply from {address} within {timeout}s", ErrorKind.TIMEOUT)
        return Ok(latency=reply.avg_rtt / 1000)

    def close(self) -> None:
        self._executor.shutdown(wait=False)


def ping_pool_size(checks: Iterable[Check]) -> int:
    """Two workers per ping check: one for this tick, one for a lookup left
    running past the previous tick's timeout."""
    return max(1, 2 * sum(1 for c in checks if c.kind == CheckKind.PING))


def default_probes(
    ping_privileged: bool = False, ping_workers: int | None = None,
) -> dict[CheckKind, Probe]:
    """Dispatcher: one probe instance per check kind."""
    return {
        CheckKind.HTTP: HttpProbe(),
        CheckKind.PING: PingProbe(privileged=ping_privileged, max_workers=ping_workers),
    }


def close_probes(probes: Mapping[CheckKind, Probe]) -> None:
    for probe in probes.values():
        close = getattr(probe, "close", None)
        if close:
            close()
