"""Entry point for the dialer availability monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dialer.api.server import create_app
from dialer.checks.models import Record, TrackedCheck
from dialer.checks.probes import close_probes, default_probes, ping_pool_size
from dialer.checks.registry import CheckRegistry, ConfigError, parse_duration
from dialer.checks.scheduler import CheckScheduler
from dialer.config import Settings, settings
from dialer.store import (
    Db, IdentityStore, InvalidRangeError, ResultRecorder, RollupAggregator, StorageError,
)

console = Console()


def run_server(cfg: Settings) -> None:
    """Start the API server; the scheduler runs inside its lifespan."""
    console.print(Panel(
        f"Starting dialer on {cfg.api_host}:{cfg.api_port}\n"
        f"checks: {cfg.config_path}  db: {cfg.db_path}",
        style="bold green",
    ))
    uvicorn.run(create_app(cfg), host=cfg.api_host, port=cfg.api_port, reload=False)


async def _check_once(cfg: Settings) -> list[tuple[TrackedCheck, Record | None]]:
    check_config = CheckRegistry(cfg.config_path).load()
    db = Db(cfg.db_path)
    probes = default_probes(
        ping_privileged=cfg.ping_privileged,
        ping_workers=ping_pool_size(check_config.checks),
    )
    try:
        scheduler = await CheckScheduler.from_checks(
            check_config.checks,
            IdentityStore(db),
            ResultRecorder(db),
            probes,
            check_config.interval or cfg.interval_seconds,
            max_concurrency=cfg.max_concurrency,
        )
        records = await scheduler.run_once()
    finally:
        close_probes(probes)
    return list(zip(scheduler.checks, records))


def run_check(cfg: Settings) -> None:
    """Run every check once, record and print the outcomes."""
    with console.status("[bold green]Probing..."):
        results = asyncio.run(_check_once(cfg))

    table = Table(title="Check results")
    table.add_column("Check")
    table.add_column("Kind")
    table.add_column("Target")
    table.add_column("Result")
    for tracked, record in results:
        if record is None:
            outcome = "[yellow]not recorded[/yellow]"
        elif record.is_error:
            outcome = f"[red]{record.error_kind}[/red]: {record.error}"
        else:
            code = f" ({record.status_code})" if record.status_code is not None else ""
            outcome = f"[green]{record.latency_ms}ms{code}[/green]"
        table.add_row(tracked.check.name, tracked.check.kind.value, tracked.check.target, outcome)
    console.print(table)


def run_query(cfg: Settings, last: str) -> None:
    """Print rollup buckets for the trailing window."""
    seconds = parse_duration(last)
    end = int(time.time())
    start = end - int(seconds)

    db = Db(cfg.db_path)
    recorder = ResultRecorder(db)
    aggregator = RollupAggregator(recorder, IdentityStore(db))
    buckets = asyncio.run(aggregator.query(start, end))

    table = Table(title=f"Rollup, last {last}")
    for col in ("Bucket", "Check", "Kind", "Min", "Avg", "Max", "Count", "Errors"):
        table.add_column(col)
    for b in buckets:
        table.add_row(
            time.strftime("%H:%M:%S", time.gmtime(b.bucket_start)),
            b.name, b.kind.value,
            *("-" if v is None else str(v) for v in (b.min, b.avg, b.max)),
            str(b.count), str(b.error_count),
        )
    console.print(table)


def main() -> None:
    parser = argparse.ArgumentParser(description="dialer availability monitor")
    parser.add_argument("--config", help=f"Check file (default: {settings.config_path})")
    parser.add_argument("--db", help=f"SQLite datastore (default: {settings.db_path})")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the scheduler and the API server")
    sub.add_parser("check", help="Run every check once and print the results")
    query_parser = sub.add_parser("query", help="Print rolled-up results")
    query_parser.add_argument("--last", default="5m", help="Trailing window, e.g. 30s, 5m, 1h")

    args = parser.parse_args()

    overrides = {}
    if args.config:
        overrides["config_path"] = args.config
    if args.db:
        overrides["db_path"] = args.db
    cfg = settings.model_copy(update=overrides)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        if args.command == "serve":
            run_server(cfg)
        elif args.command == "check":
            run_check(cfg)
        elif args.command == "query":
            run_query(cfg, args.last)
        else:
            parser.print_help()
            sys.exit(1)
    except (ConfigError, InvalidRangeError, StorageError) as e:
        console.print(f"[bold red]error:[/bold red] {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
