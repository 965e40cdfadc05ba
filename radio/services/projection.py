"""
Listener-facing read model.

Answers "what is playing and what is next" for a listen key without ever
mutating queue or playback state. Works the same whether or not anybody
is streaming.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from config import UP_NEXT_LIMIT
from radio.database import db as _db
from radio.database.models import PENDING, PLAYING
from radio.errors import NotFound
from radio.services import queue_store
from radio.services.catalog import track_to_dict
from radio.services.playback import PlaybackMachine, Playing, state_to_dict

logger = logging.getLogger(__name__)


def pick_now_playing(entries: List[Dict]) -> Optional[Dict]:
    """The playing entry, or the first pending one as a best guess when idle."""
    for entry in entries:
        if entry["status"] == PLAYING:
            return entry
    return next((e for e in entries if e["status"] == PENDING), None)


def pick_up_next(entries: List[Dict], current: Optional[Dict], limit: int = UP_NEXT_LIMIT) -> List[Dict]:
    current_id = current["id"] if current else None
    upcoming = [e for e in entries if e["status"] == PENDING and e["id"] != current_id]
    return upcoming[:limit]


async def get_now_playing(
    machine: PlaybackMachine,
    listen_key: str,
    poll: bool = False,
    limit: int = UP_NEXT_LIMIT,
) -> Dict:
    station = await _db.get_station_by_listen_key(listen_key)
    if not station:
        raise NotFound("Station not found")

    play_count = station["play_count"]
    if not poll:
        play_count = await _db.increment_play_count(station["id"])

    state = await machine.state(station["id"])
    entries = await queue_store.list_entries(station["id"], [PLAYING, PENDING])
    current = pick_now_playing(entries)
    up_next = pick_up_next(entries, current, limit)

    playback = state_to_dict(state)
    return {
        "name": station["name"],
        "description": station["description"],
        "imageUrl": station["image_url"],
        "isLive": bool(station["is_live"]),
        "listenKey": station["listen_key"],
        "playCount": play_count,
        "state": playback["state"],
        "positionSeconds": playback["positionSeconds"] if isinstance(state, Playing) else 0,
        "queueExhausted": playback["queueExhausted"],
        "nowPlaying": track_to_dict(current["track"]) if current else None,
        "upNext": [track_to_dict(e["track"]) for e in up_next],
    }
