"""
Public listen-page route.

  GET /listen/{listen_key}?poll=bool – now playing + up next
"""
from __future__ import annotations

from aiohttp import web

from radio.context import MACHINE
from radio.services import projection
from radio.utils.helpers import parse_bool

routes = web.RouteTableDef()


@routes.get("/listen/{listen_key}")
async def listen(request: web.Request) -> web.Response:
    station = await projection.get_now_playing(
        request.app[MACHINE],
        request.match_info["listen_key"],
        poll=parse_bool(request.query.get("poll")),
    )
    return web.json_response({"station": station})
