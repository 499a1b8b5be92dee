"""FastAPI server: metrics API, live stream and the static dashboard."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from dialer import __version__
from dialer.api.routes import broadcast_result, router
from dialer.checks.probes import close_probes, default_probes, ping_pool_size
from dialer.checks.registry import CheckRegistry
from dialer.checks.scheduler import CheckScheduler
from dialer.config import Settings, settings as default_settings
from dialer.store import Db, IdentityStore, ResultRecorder, RollupAggregator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the datastore, materialize checks and run the scheduler.

    Check file and identity errors are raised here and abort startup: the
    monitor never runs with a partial set of checks.
    """
    cfg: Settings = app.state.settings

    check_config = CheckRegistry(cfg.config_path).load()

    db = Db(cfg.db_path)
    identity_store = IdentityStore(db)
    recorder = ResultRecorder(db)
    app.state.aggregator = RollupAggregator(recorder, identity_store)
    logger.info("Datastore ready at %s", db.path)

    probes = default_probes(
        ping_privileged=cfg.ping_privileged,
        ping_workers=ping_pool_size(check_config.checks),
    )
    interval = check_config.interval or cfg.interval_seconds
    scheduler = await CheckScheduler.from_checks(
        check_config.checks,
        identity_store,
        recorder,
        probes,
        interval,
        on_result=broadcast_result,
        max_concurrency=cfg.max_concurrency,
    )
    app.state.scheduler = scheduler
    await scheduler.start()

    yield

    # Shutdown
    await scheduler.stop()
    close_probes(probes)


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="dialer - availability monitor",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or default_settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    # Dashboard assets; mounted last so /api routes take precedence
    html_dir = Path(app.state.settings.html_dir)
    if html_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(html_dir), html=True), name="html")
    else:
        logger.info("No dashboard directory at %s, serving API only", html_dir)

    return app
