"""
Application initialisation and startup.

Creates the aiohttp application, registers all routes and middlewares,
opens the database on startup and closes it on shutdown.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

from aiohttp import web

import config
from radio.context import MACHINE, RELAY, RESOLVER
from radio.database.db import close_db, init_db
from radio.handlers import listen, queue, stations, stream
from radio.middlewares.errors import error_middleware
from radio.middlewares.rate_limit import RateLimiter
from radio.services import ytdlp_service as _yt
from radio.services.cache import state_cache
from radio.services.catalog import TrackMetadata
from radio.services.ffmpeg_service import YtdlpFfmpegFetcher
from radio.services.playback import PlaybackMachine
from radio.services.relay import AudioFetcher, Relay

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = Path(config.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format=fmt,
        handlers=handlers,
    )
    # Silence noisy libraries
    for noisy in ("aiohttp.access", "yt_dlp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


def create_app(
    db_path: Optional[Path] = None,
    fetcher: Optional[AudioFetcher] = None,
    resolver: Optional[Callable[[str], Awaitable[TrackMetadata]]] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> web.Application:
    limiter = rate_limiter or RateLimiter()
    app = web.Application(middlewares=[error_middleware, limiter.middleware])

    machine = PlaybackMachine()
    app[MACHINE]  = machine
    app[RELAY]    = Relay(machine, fetcher or YtdlpFfmpegFetcher())
    app[RESOLVER] = resolver or _yt.resolve_track

    async def on_startup(_app: web.Application) -> None:
        await init_db(db_path)
        state_cache.clear()
        logger.info("Database ready: %s", db_path or config.DATABASE_PATH)

    async def on_cleanup(_app: web.Application) -> None:
        await close_db()
        logger.info("Radio shutdown.")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    # ── Routes ─────────────────────────────────────────────────────────────
    app.router.add_get("/health", health)
    app.add_routes(stations.routes)
    app.add_routes(queue.routes)
    app.add_routes(listen.routes)
    app.add_routes(stream.routes)
    return app


def main() -> None:
    setup_logging()
    logger.info("Starting radio on %s:%s…", config.HOST, config.PORT)
    web.run_app(create_app(), host=config.HOST, port=config.PORT, print=None)
