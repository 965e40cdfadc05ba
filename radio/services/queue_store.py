"""
Queue store: the ordered, per-station list of queue entries.

Positions are dense and zero-based after every mutation. Entry status is
only flipped by the playback state machine; callers here may add, remove
and reorder.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import aiosqlite

from radio.database import db as _db
from radio.database.models import PENDING, PLAYING
from radio.errors import DuplicateTrack, InvalidState, NotFound
from radio.services.cache import state_cache
from radio.services.catalog import track_to_dict

logger = logging.getLogger(__name__)

_ENTRY_WITH_TRACK = """
    SELECT q.id, q.station_id, q.track_id, q.position, q.status, q.added_at,
           t.title       AS track_title,
           t.artist      AS track_artist,
           t.album       AS track_album,
           t.duration    AS track_duration,
           t.image_url   AS track_image_url,
           t.source_type AS track_source_type,
           t.source_id   AS track_source_id,
           t.source_url  AS track_source_url
      FROM queue_entries q
      JOIN tracks t ON t.id = q.track_id
"""


def split_track(row: Dict) -> Dict:
    """Turn a joined row into an entry dict with a nested ``track`` dict."""
    entry = {k: v for k, v in row.items() if not k.startswith("track_") or k == "track_id"}
    entry["track"] = {
        "id": row["track_id"],
        **{k[len("track_"):]: v for k, v in row.items() if k.startswith("track_") and k != "track_id"},
    }
    return entry


def entry_to_dict(entry: Dict) -> Dict:
    return {
        "id": entry["id"],
        "trackId": entry["track_id"],
        "position": entry["position"],
        "status": entry["status"],
        "addedAt": entry["added_at"],
        "track": track_to_dict(entry.get("track")),
    }


# ─── Reads ───────────────────────────────────────────────────────────────────

async def fetch_entries(
    db: aiosqlite.Connection,
    station_id: str,
    statuses: Optional[Iterable[str]] = None,
) -> List[Dict]:
    query = _ENTRY_WITH_TRACK + " WHERE q.station_id = ?"
    params: list = [station_id]
    if statuses:
        statuses = list(statuses)
        query += f" AND q.status IN ({','.join('?' * len(statuses))})"
        params.extend(statuses)
    query += " ORDER BY q.position"
    rows = await _db.fetch_all(db, query, params)
    return [split_track(r) for r in rows]


async def fetch_entry(db: aiosqlite.Connection, entry_id: str) -> Optional[Dict]:
    row = await _db.fetch_one(db, _ENTRY_WITH_TRACK + " WHERE q.id = ?", (entry_id,))
    return split_track(row) if row else None


async def list_entries(station_id: str, statuses: Optional[Iterable[str]] = None) -> List[Dict]:
    return await fetch_entries(_db.get_db(), station_id, statuses)


async def get_entry(entry_id: str) -> Optional[Dict]:
    return await fetch_entry(_db.get_db(), entry_id)


# ─── Mutations ───────────────────────────────────────────────────────────────

async def append(station_id: str, track_id: str) -> Dict:
    """Add a track at the end of the queue as Pending."""
    async with _db.transaction() as db:
        if not await _db.fetch_one(db, "SELECT id FROM stations WHERE id = ?", (station_id,)):
            raise NotFound("Station not found")
        if not await _db.fetch_one(db, "SELECT id FROM tracks WHERE id = ?", (track_id,)):
            raise NotFound("Track not found")

        dup = await _db.fetch_one(
            db,
            "SELECT id FROM queue_entries WHERE station_id = ? AND track_id = ? AND status IN (?, ?)",
            (station_id, track_id, PENDING, PLAYING),
        )
        if dup:
            raise DuplicateTrack("Track already in queue")

        async with db.execute(
            "SELECT COUNT(*) FROM queue_entries WHERE station_id = ?", (station_id,)
        ) as cur:
            count = (await cur.fetchone())[0]

        entry_id = _db.new_id()
        await db.execute(
            "INSERT INTO queue_entries (id, station_id, track_id, position, status, added_at) "
            "VALUES (?,?,?,?,?,?)",
            (entry_id, station_id, track_id, count, PENDING, _db.now_iso()),
        )
        # New music gives an exhausted station another chance
        await _db.update_station(db, station_id, queue_exhausted=0, consecutive_failures=0)
        await _db.bump_state_version(db, station_id)
        entry = await fetch_entry(db, entry_id)

    state_cache.invalidate(station_id)
    logger.info("Queued track %s on station %s at position %d", track_id, station_id, count)
    assert entry is not None
    return entry


async def remove(station_id: str, entry_id: str) -> None:
    """Delete one entry and re-pack the remaining positions.

    Pending entries and finished ones (Played, Skipped) may be removed, so
    owners can tidy the queue's history. Only the Playing entry is refused;
    skip it first.
    """
    async with _db.transaction() as db:
        entry = await _owned_entry(db, station_id, entry_id)
        if entry["status"] == PLAYING:
            raise InvalidState("Cannot remove the entry that is currently playing")
        await db.execute("DELETE FROM queue_entries WHERE id = ?", (entry_id,))
        await _repack(db, station_id)
        await _db.bump_state_version(db, station_id)
    state_cache.invalidate(station_id)
    logger.info("Removed queue entry %s from station %s", entry_id, station_id)


async def reorder(station_id: str, entry_id: str, new_position: int) -> List[Dict]:
    """Move a Pending entry so it lands exactly at ``new_position`` (clamped)."""
    async with _db.transaction() as db:
        entry = await _owned_entry(db, station_id, entry_id)
        if entry["status"] != PENDING:
            raise InvalidState(f"Only pending entries can be reordered (is {entry['status']})")

        ids = await _ordered_ids(db, station_id)
        ids.remove(entry_id)
        target = max(0, min(int(new_position), len(ids)))
        ids.insert(target, entry_id)
        await _write_positions(db, ids)
        await _db.bump_state_version(db, station_id)
        entries = await fetch_entries(db, station_id)

    state_cache.invalidate(station_id)
    logger.info("Moved queue entry %s to position %d", entry_id, target)
    return entries


async def clear_all(station_id: str) -> int:
    async with _db.transaction() as db:
        cur = await db.execute("DELETE FROM queue_entries WHERE station_id = ?", (station_id,))
        removed = cur.rowcount
        await _db.bump_state_version(db, station_id)
    state_cache.invalidate(station_id)
    logger.info("Cleared %d queue entries from station %s", removed, station_id)
    return removed


# ─── Internal ────────────────────────────────────────────────────────────────

async def _owned_entry(db: aiosqlite.Connection, station_id: str, entry_id: str) -> Dict:
    entry = await _db.fetch_one(
        db, "SELECT * FROM queue_entries WHERE id = ? AND station_id = ?", (entry_id, station_id)
    )
    if not entry:
        raise NotFound("Item not found in queue")
    return entry


async def _ordered_ids(db: aiosqlite.Connection, station_id: str) -> List[str]:
    rows = await _db.fetch_all(
        db,
        "SELECT id FROM queue_entries WHERE station_id = ? ORDER BY position, added_at",
        (station_id,),
    )
    return [r["id"] for r in rows]


async def _write_positions(db: aiosqlite.Connection, ids: List[str]) -> None:
    await db.executemany(
        "UPDATE queue_entries SET position = ? WHERE id = ?",
        [(index, entry_id) for index, entry_id in enumerate(ids)],
    )


async def _repack(db: aiosqlite.Connection, station_id: str) -> None:
    await _write_positions(db, await _ordered_ids(db, station_id))
