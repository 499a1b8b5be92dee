"""Check registry: loads checks.yaml into typed ``Check`` values.

File layout::

    interval: 5s
    http:
      google: { url: https://google.com, code: 200 }
    ping:
      cloudflare: { host: 1.1.1.1 }

Unlike a best-effort listing, every entry must parse: a malformed check is a
``ConfigError`` raised before anything is scheduled.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import yaml

from .models import Check, CheckKind

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(ValueError):
    """Raised when the check file or a duration cannot be parsed."""


def parse_duration(value: Any) -> float:
    """Seconds from ``5``, ``2.5``, ``"500ms"``, ``"30s"``, ``"5m"`` or ``"1h"``."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        m = _DURATION_RE.match(value)
        if not m:
            raise ConfigError(f"Invalid duration: {value!r}")
        seconds = float(m.group(1)) * _UNIT_SECONDS[m.group(2) or "s"]
    else:
        raise ConfigError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise ConfigError(f"Duration must be positive: {value!r}")
    return seconds


@dataclass
class CheckConfig:
    """Parsed check file. ``interval`` is ``None`` when the file omits it."""

    interval: float | None = None
    checks: list[Check] = field(default_factory=list)


# ── Parsers ──────────────────────────────────────────────────────────────────


def _require_name(name: Any, section: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"[{section}] check names must be non-empty strings, got {name!r}")
    return name


def _parse_http(name: str, raw: Any) -> Check:
    if not isinstance(raw, dict):
        raise ConfigError(f"[http.{name}] expected a mapping, got {type(raw).__name__}")

    url = raw.get("url")
    if not isinstance(url, str) or not url:
        raise ConfigError(f"[http.{name}] 'url' is required")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ConfigError(f"[http.{name}] could not parse url {url!r}: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigError(f"[http.{name}] url must be an absolute http(s) url: {url!r}")

    code = raw.get("code")
    if code is not None and (isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 599):
        raise ConfigError(f"[http.{name}] 'code' must be an HTTP status code, got {code!r}")

    return Check(name=name, kind=CheckKind.HTTP, target=url, expected_code=code)


def _parse_ping(name: str, raw: Any) -> Check:
    if not isinstance(raw, dict):
        raise ConfigError(f"[ping.{name}] expected a mapping, got {type(raw).__name__}")

    host = raw.get("host")
    if not isinstance(host, str) or not host.strip():
        raise ConfigError(f"[ping.{name}] 'host' is required")
    host = host.strip()
    try:
        host.encode("idna")
    except UnicodeError as e:
        raise ConfigError(f"[ping.{name}] invalid hostname {host!r}: {e}") from e
    return Check(name=name, kind=CheckKind.PING, target=host)


def parse_config(raw: Any) -> CheckConfig:
    if raw is None:
        return CheckConfig()
    if not isinstance(raw, dict):
        raise ConfigError("Check file must be a mapping at the top level")

    interval = raw.get("interval")
    config = CheckConfig(interval=parse_duration(interval) if interval is not None else None)

    for section, parser in (("http", _parse_http), ("ping", _parse_ping)):
        entries = raw.get(section) or {}
        if not isinstance(entries, dict):
            raise ConfigError(f"[{section}] expected a mapping of name -> settings")
        for name, settings in entries.items():
            config.checks.append(parser(_require_name(name, section), settings))

    return config


# ── Registry ─────────────────────────────────────────────────────────────────


class CheckRegistry:
    """Loads and caches checks from the check file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._config: CheckConfig | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> CheckConfig:
        """Parse the check file; raises ``ConfigError`` on any problem."""
        if self._config is not None and not force:
            return self._config

        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Could not read check file {self._path}: {e}") from e
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {self._path}: {e}") from e

        self._config = parse_config(raw)
        logger.info("Loaded %d checks from %s", len(self._config.checks), self._path)
        return self._config
