"""
Audio stream route – the station's "radio URL".

  GET /stream/{listen_key} – continuous audio for browsers, VLC, car radios

Listeners never see raw errors: a broken track just ends the response and
the player reconnects to whatever plays next.
"""
from __future__ import annotations

import logging

from aiohttp import web

from config import PUBLIC_BASE_URL
from radio.context import RELAY
from radio.database import db as _db
from radio.errors import NotFound, UpstreamUnavailable
from radio.services.relay import RelayOutcome
from radio.utils.helpers import human_duration
from radio.utils.security import mask_key

logger = logging.getLogger(__name__)
routes = web.RouteTableDef()

RETRY_AFTER_SECONDS = 2


def base_url(request: web.Request) -> str:
    return PUBLIC_BASE_URL or f"{request.scheme}://{request.host}"


@routes.get("/stream/{listen_key}")
async def stream(request: web.Request) -> web.StreamResponse:
    listen_key = request.match_info["listen_key"]
    station = await _db.get_station_by_listen_key(listen_key)
    if not station:
        raise NotFound("Station not found")

    try:
        session = await request.app[RELAY].open(station["id"])
    except UpstreamUnavailable:
        return web.Response(
            status=503,
            text="Station moved to next track",
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    if session is None:
        return web.Response(status=204)

    logger.info(
        "Listener joined %s: %s [%s] from %ss",
        mask_key(listen_key), session.now_playing,
        human_duration(session.state.track.get("duration")), session.seek_seconds,
    )
    # The upstream is ours from here on, whatever happens to the response
    try:
        response = web.StreamResponse(status=200, headers=session.headers(base_url(request)))
        try:
            await response.prepare(request)
        except ConnectionResetError:
            return response

        outcome = await session.pump(response.write)
        if outcome is not RelayOutcome.DISCONNECTED:
            try:
                await response.write_eof()
            except ConnectionResetError:
                pass
        return response
    finally:
        await session.upstream.close()
