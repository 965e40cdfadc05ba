"""
Station routes.

  POST   /stations        – create a station
  GET    /stations        – public directory, newest first, with a total
  GET    /stations/best   – most played public stations
  GET    /stations/{id}   – station, playback state and full queue
  PATCH  /stations/{id}   – edit name, description, image or visibility
  DELETE /stations/{id}   – delete the station with its queue and history
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from aiohttp import web

from radio.context import MACHINE
from radio.database import db as _db
from radio.database.models import PLAYING
from radio.errors import NotFound, ValidationError
from radio.services import queue_store
from radio.services.cache import state_cache
from radio.services.playback import state_to_dict
from radio.utils.helpers import parse_bool
from radio.utils.security import generate_listen_key, mask_key

logger = logging.getLogger(__name__)
routes = web.RouteTableDef()


async def read_json(request: web.Request, required: bool = True) -> Dict:
    if not request.can_read_body:
        if required:
            raise ValidationError("JSON body is required")
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Malformed JSON body") from exc
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


async def require_station(station_id: str) -> Dict:
    station = await _db.get_station(station_id)
    if not station:
        raise NotFound("Station not found")
    return station


def station_to_dict(station: Dict) -> Dict:
    return {
        "id": station["id"],
        "ownerId": station["owner_id"],
        "name": station["name"],
        "description": station["description"],
        "imageUrl": station["image_url"],
        "isPublic": bool(station["is_public"]),
        "isLive": bool(station["is_live"]),
        "liveStartedAt": station["live_started_at"],
        "currentPositionSeconds": station["current_position"],
        "listenKey": station["listen_key"],
        "playCount": station["play_count"],
        "queueExhausted": bool(station["queue_exhausted"]),
    }


@routes.post("/stations")
async def create_station(request: web.Request) -> web.Response:
    body = await read_json(request)
    name = (body.get("name") or "").strip()
    if not name:
        raise ValidationError("Station name is required")

    station = await _db.create_station(
        name=name,
        listen_key=generate_listen_key(),
        owner_id=body.get("ownerId"),
        description=body.get("description") or None,
        image_url=body.get("imageUrl") or None,
        is_public=parse_bool(body.get("isPublic", True)),
    )
    logger.info("Station created: %s (listen key %s)", station["id"], mask_key(station["listen_key"]))
    return web.json_response({"station": station_to_dict(station)}, status=201)


def public_station_to_dict(station: Dict, now_playing: Optional[Dict]) -> Dict:
    """Directory card: no owner id, no internal state."""
    return {
        "id": station["id"],
        "name": station["name"],
        "description": station["description"],
        "imageUrl": station["image_url"],
        "isLive": bool(station["is_live"]),
        "listenKey": station["listen_key"],
        "playCount": station["play_count"],
        "pendingCount": station["pending_count"],
        "nowPlaying": queue_store.entry_to_dict(now_playing) if now_playing else None,
    }


async def public_cards(stations: List[Dict]) -> List[Dict]:
    cards = []
    for station in stations:
        playing = await queue_store.fetch_entries(_db.get_db(), station["id"], [PLAYING])
        cards.append(public_station_to_dict(station, playing[0] if playing else None))
    return cards


def query_int(request: web.Request, name: str, default: int, maximum: int) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    if value < 0:
        raise ValidationError(f"{name} must not be negative")
    return min(value, maximum)


@routes.get("/stations")
async def list_stations(request: web.Request) -> web.Response:
    limit = query_int(request, "limit", 20, 100)
    offset = query_int(request, "offset", 0, 1_000_000)
    stations = await _db.list_public_stations(limit, offset)
    return web.json_response({
        "stations": await public_cards(stations),
        "total": await _db.count_public_stations(),
    })


# Registered before /stations/{station_id} so "best" is not taken for an id
@routes.get("/stations/best")
async def best_stations(request: web.Request) -> web.Response:
    limit = query_int(request, "limit", 10, 50)
    stations = await _db.best_stations(limit)
    return web.json_response({"stations": await public_cards(stations)})


@routes.get("/stations/{station_id}")
async def get_station(request: web.Request) -> web.Response:
    station = await require_station(request.match_info["station_id"])
    state = await request.app[MACHINE].state(station["id"])
    entries = await queue_store.list_entries(station["id"])
    return web.json_response({
        "station": station_to_dict(station),
        "playback": state_to_dict(state),
        "queue": [queue_store.entry_to_dict(e) for e in entries],
    })


# JSON field -> column; liveness only moves through the queue actions
_EDITABLE = {
    "name": "name",
    "description": "description",
    "imageUrl": "image_url",
    "isPublic": "is_public",
}


@routes.patch("/stations/{station_id}")
async def edit_station(request: web.Request) -> web.Response:
    station_id = request.match_info["station_id"]
    body = await read_json(request)
    unknown = set(body) - set(_EDITABLE)
    if unknown:
        raise ValidationError(f"Cannot edit: {', '.join(sorted(unknown))}")

    fields = {}
    for key, value in body.items():
        if key == "name":
            value = value.strip() if isinstance(value, str) else ""
            if not value:
                raise ValidationError("Station name is required")
        elif key == "isPublic":
            value = parse_bool(value)
        else:
            value = value or None
        fields[_EDITABLE[key]] = value

    station = await _db.edit_station(station_id, **fields)
    if not station:
        raise NotFound("Station not found")
    logger.info("Station %s edited: %s", station_id, ", ".join(sorted(body)) or "nothing")
    return web.json_response({"station": station_to_dict(station)})


@routes.delete("/stations/{station_id}")
async def delete_station(request: web.Request) -> web.Response:
    station_id = request.match_info["station_id"]
    if not await _db.delete_station(station_id):
        raise NotFound("Station not found")
    state_cache.invalidate(station_id)
    logger.info("Station %s deleted", station_id)
    return web.json_response({"success": True})
