"""
Track catalog.

One row per (source_type, source_id). Rows are created lazily the first
time a track is queued and afterwards only receive metadata backfill.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import aiosqlite

from radio.database import db as _db
from radio.database.models import SOURCE_YOUTUBE
from radio.errors import Conflict, NotFound, ValidationError
from radio.utils.helpers import youtube_watch_url

logger = logging.getLogger(__name__)

# Columns a later lookup is allowed to fill in when still NULL
_BACKFILL_COLUMNS = ("title", "artist", "album", "duration", "image_url")


@dataclass
class TrackMetadata:
    source_id: str
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    duration: Optional[int] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    source_type: str = SOURCE_YOUTUBE

    @classmethod
    def from_payload(cls, data: Dict) -> "TrackMetadata":
        """Build from a client-supplied ``trackData`` object (camelCase keys)."""
        source_id = (data.get("sourceId") or "").strip()
        if not source_id:
            raise ValidationError("trackData.sourceId is required")
        source_type = (data.get("sourceType") or SOURCE_YOUTUBE).upper()
        if source_type != SOURCE_YOUTUBE:
            raise ValidationError(f"Unsupported sourceType: {source_type}")
        duration = data.get("duration", data.get("durationSeconds"))
        return cls(
            source_id=source_id,
            title=data.get("title") or None,
            artist=data.get("artist") or None,
            album=data.get("album") or None,
            duration=int(duration) if duration else None,
            image_url=data.get("imageUrl") or None,
            source_url=data.get("sourceUrl") or None,
            source_type=source_type,
        )


async def get_or_create_track(meta: TrackMetadata) -> Dict:
    """Atomic insert-or-fetch keyed by (source_type, source_id)."""
    async with _db.transaction() as db:
        return await _get_or_create(db, meta)


async def _get_or_create(db: aiosqlite.Connection, meta: TrackMetadata) -> Dict:
    source_url = meta.source_url or youtube_watch_url(meta.source_id)
    await db.execute(
        """INSERT INTO tracks
           (id, title, artist, album, duration, image_url, source_type, source_id, source_url)
           VALUES (?,?,?,?,?,?,?,?,?)
           ON CONFLICT(source_type, source_id) DO NOTHING""",
        (
            _db.new_id(), meta.title, meta.artist, meta.album, meta.duration,
            meta.image_url, meta.source_type, meta.source_id, source_url,
        ),
    )
    track = await _db.fetch_one(
        db,
        "SELECT * FROM tracks WHERE source_type = ? AND source_id = ?",
        (meta.source_type, meta.source_id),
    )
    assert track is not None

    missing = {
        col: getattr(meta, col)
        for col in _BACKFILL_COLUMNS
        if track[col] is None and getattr(meta, col) is not None
    }
    if missing:
        assignments = ", ".join(f"{col} = COALESCE({col}, :{col})" for col in missing)
        await db.execute(
            f"UPDATE tracks SET {assignments} WHERE id = :id", {**missing, "id": track["id"]}
        )
        track.update(missing)
        logger.debug("Backfilled %s for track %s", sorted(missing), track["id"])
    return track


async def get_track(track_id: str) -> Optional[Dict]:
    return await _db.fetch_one(_db.get_db(), "SELECT * FROM tracks WHERE id = ?", (track_id,))


async def get_track_by_source(source_id: str, source_type: str = SOURCE_YOUTUBE) -> Optional[Dict]:
    return await _db.fetch_one(
        _db.get_db(),
        "SELECT * FROM tracks WHERE source_type = ? AND source_id = ?",
        (source_type, source_id),
    )


async def delete_track(track_id: str) -> None:
    """Delete a catalog row that nothing references any more."""
    async with _db.transaction() as db:
        track = await _db.fetch_one(db, "SELECT id FROM tracks WHERE id = ?", (track_id,))
        if not track:
            raise NotFound("Track not found")
        try:
            await db.execute("DELETE FROM tracks WHERE id = ?", (track_id,))
        except aiosqlite.IntegrityError as exc:
            raise Conflict("Track is still referenced by a queue or play history") from exc


def track_to_dict(track: Optional[Dict]) -> Optional[Dict]:
    """Public JSON shape of a catalog row."""
    if not track:
        return None
    return {
        "id": track["id"],
        "title": track["title"],
        "artist": track["artist"],
        "album": track["album"],
        "durationSeconds": track["duration"],
        "imageUrl": track["image_url"],
        "sourceType": track["source_type"],
        "sourceId": track["source_id"],
        "sourceUrl": track["source_url"],
    }
