"""
Queue routes (owner side).

  GET    /stations/{id}/queue  – full queue
  POST   /stations/{id}/queue  – append by trackId, url or trackData
  PATCH  /stations/{id}/queue  – one playback action or a reorder
  DELETE /stations/{id}/queue  – remove one entry (itemId) or all (clearAll=true)
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Union

from aiohttp import web

from radio.context import MACHINE, RESOLVER
from radio.errors import NotFound, ValidationError
from radio.handlers.stations import read_json, require_station
from radio.services import catalog, queue_store
from radio.services.catalog import TrackMetadata
from radio.services.playback import (
    AdvanceToNext,
    GoLive,
    GoOffline,
    SkipExplicit,
    SyncPlaying,
    SyncPosition,
    Transition,
    state_to_dict,
)
from radio.utils.helpers import is_youtube_url, parse_bool

logger = logging.getLogger(__name__)
routes = web.RouteTableDef()


class QueueAction(enum.Enum):
    GO_LIVE       = "go-live"
    GO_OFFLINE    = "go-offline"
    SYNC_POSITION = "sync-position"
    SYNC_PLAYING  = "sync-playing"
    PLAY_NEXT     = "play-next"
    SKIP          = "skip"
    REORDER       = "reorder"


@dataclass(frozen=True)
class Reorder:
    entry_id: str
    new_position: int


QueueCommand = Union[Transition, Reorder]


def _require(body: Dict, key: str) -> object:
    value = body.get(key)
    if value is None or value == "":
        raise ValidationError(f"'{key}' is required for this action")
    return value


def _number(value: object, key: str) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{key}' must be a number") from exc


def parse_command(body: Dict) -> QueueCommand:
    """Translate the PATCH body into a typed command."""
    raw = body.get("action")
    if raw is None and body.get("itemId") and body.get("newPosition") is not None:
        raw = QueueAction.REORDER.value
    try:
        action = QueueAction(raw)
    except ValueError as exc:
        raise ValidationError("Invalid action or parameters") from exc

    if action is QueueAction.GO_LIVE:
        return GoLive()
    if action is QueueAction.GO_OFFLINE:
        return GoOffline()
    if action is QueueAction.PLAY_NEXT:
        return AdvanceToNext()
    if action is QueueAction.SKIP:
        return SkipExplicit(str(_require(body, "itemId")))
    if action is QueueAction.SYNC_PLAYING:
        return SyncPlaying(str(_require(body, "itemId")))
    if action is QueueAction.SYNC_POSITION:
        return SyncPosition(_number(_require(body, "position"), "position"))
    if action is QueueAction.REORDER:
        return Reorder(
            str(_require(body, "itemId")),
            int(_number(_require(body, "newPosition"), "newPosition")),
        )
    raise AssertionError(f"unhandled action {action}")


async def _queue_payload(request: web.Request, station_id: str) -> Dict:
    state = await request.app[MACHINE].state(station_id)
    entries = await queue_store.list_entries(station_id)
    return {
        "success": True,
        "playback": state_to_dict(state),
        "queue": [queue_store.entry_to_dict(e) for e in entries],
    }


@routes.get("/stations/{station_id}/queue")
async def get_queue(request: web.Request) -> web.Response:
    station = await require_station(request.match_info["station_id"])
    entries = await queue_store.list_entries(station["id"])
    return web.json_response({"queue": [queue_store.entry_to_dict(e) for e in entries]})


@routes.post("/stations/{station_id}/queue")
async def add_to_queue(request: web.Request) -> web.Response:
    station = await require_station(request.match_info["station_id"])
    body = await read_json(request)

    if body.get("trackId"):
        track = await catalog.get_track(str(body["trackId"]))
        if not track:
            raise NotFound("Track not found")
    elif body.get("url"):
        url = str(body["url"]).strip()
        if not is_youtube_url(url):
            raise ValidationError("Not a YouTube video URL")
        meta = await request.app[RESOLVER](url)
        track = await catalog.get_or_create_track(meta)
    elif isinstance(body.get("trackData"), dict):
        track = await catalog.get_or_create_track(TrackMetadata.from_payload(body["trackData"]))
    else:
        raise ValidationError("Either trackId, url or trackData is required")

    entry = await queue_store.append(station["id"], track["id"])
    return web.json_response(
        {"success": True, "queueItem": queue_store.entry_to_dict(entry)}, status=201
    )


@routes.patch("/stations/{station_id}/queue")
async def update_queue(request: web.Request) -> web.Response:
    station = await require_station(request.match_info["station_id"])
    command = parse_command(await read_json(request))

    if isinstance(command, Reorder):
        await queue_store.reorder(station["id"], command.entry_id, command.new_position)
    else:
        await request.app[MACHINE].apply(station["id"], command)
    return web.json_response(await _queue_payload(request, station["id"]))


@routes.delete("/stations/{station_id}/queue")
async def remove_from_queue(request: web.Request) -> web.Response:
    station = await require_station(request.match_info["station_id"])

    if parse_bool(request.query.get("clearAll")):
        removed = await queue_store.clear_all(station["id"])
        return web.json_response({"success": True, "removed": removed})

    item_id = request.query.get("itemId")
    if not item_id:
        body = await read_json(request, required=False)
        item_id = body.get("queueItemId") or body.get("itemId")
    if not item_id:
        raise ValidationError("Item ID is required")

    await queue_store.remove(station["id"], str(item_id))
    return web.json_response(await _queue_payload(request, station["id"]))
