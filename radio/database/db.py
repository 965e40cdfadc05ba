"""Async database access layer (aiosqlite)."""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from config import DATABASE_PATH
from radio.database.models import SCHEMA


_DB: Optional[aiosqlite.Connection] = None
# One shared connection: writers must not interleave their transactions
_TX_LOCK: Optional[asyncio.Lock] = None

_STATION_COLUMNS = {
    "name", "description", "image_url", "is_public", "is_live", "live_started_at",
    "current_position", "position_updated_at", "play_count",
    "consecutive_failures", "queue_exhausted",
}


async def init_db(path: Optional[Path] = None) -> None:
    global _DB, _TX_LOCK
    _DB = await aiosqlite.connect(str(path or DATABASE_PATH), isolation_level=None)
    _DB.row_factory = aiosqlite.Row
    await _DB.executescript(SCHEMA)
    _TX_LOCK = asyncio.Lock()


async def close_db() -> None:
    global _DB
    if _DB:
        await _DB.close()
        _DB = None


def get_db() -> aiosqlite.Connection:
    assert _DB is not None, "Database not initialised – call init_db() first"
    return _DB


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Serialized write transaction; rolled back on any exception."""
    db = get_db()
    assert _TX_LOCK is not None
    async with _TX_LOCK:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.execute("ROLLBACK")
            raise
        else:
            await db.execute("COMMIT")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


async def fetch_one(db: aiosqlite.Connection, query: str, params: Any = ()) -> Optional[Dict]:
    async with db.execute(query, params) as cur:
        row = await cur.fetchone()
    return dict(row) if row else None


async def fetch_all(db: aiosqlite.Connection, query: str, params: Any = ()) -> List[Dict]:
    async with db.execute(query, params) as cur:
        rows = await cur.fetchall()
    return [dict(r) for r in rows]


# ─── Stations ────────────────────────────────────────────────────────────────

async def create_station(
    name: str,
    listen_key: str,
    owner_id: Optional[str] = None,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    is_public: bool = True,
) -> Dict:
    station_id = new_id()
    async with transaction() as db:
        await db.execute(
            """INSERT INTO stations (id, owner_id, name, description, image_url, is_public, listen_key)
               VALUES (?,?,?,?,?,?,?)""",
            (station_id, owner_id, name, description, image_url, int(is_public), listen_key),
        )
        station = await fetch_one(db, "SELECT * FROM stations WHERE id = ?", (station_id,))
    assert station is not None
    return station


async def get_station(station_id: str) -> Optional[Dict]:
    return await fetch_one(get_db(), "SELECT * FROM stations WHERE id = ?", (station_id,))


async def get_station_by_listen_key(listen_key: str) -> Optional[Dict]:
    return await fetch_one(get_db(), "SELECT * FROM stations WHERE listen_key = ?", (listen_key,))


async def update_station(db: aiosqlite.Connection, station_id: str, **fields: Any) -> None:
    """Update station columns inside the caller's transaction."""
    unknown = set(fields) - _STATION_COLUMNS
    if unknown:
        raise ValueError(f"Unknown station columns: {sorted(unknown)}")
    assignments = ", ".join(f"{col} = :{col}" for col in fields)
    await db.execute(
        f"UPDATE stations SET {assignments} WHERE id = :station_id",
        {**fields, "station_id": station_id},
    )


async def edit_station(station_id: str, **fields: Any) -> Optional[Dict]:
    """Owner edit of descriptive columns; None if the station does not exist."""
    async with transaction() as db:
        if fields:
            await update_station(db, station_id, **fields)
        return await fetch_one(db, "SELECT * FROM stations WHERE id = ?", (station_id,))


async def delete_station(station_id: str) -> bool:
    """Delete a station; its queue entries and play history cascade."""
    async with transaction() as db:
        cur = await db.execute("DELETE FROM stations WHERE id = ?", (station_id,))
        return cur.rowcount > 0


_PUBLIC_STATIONS = """
    SELECT s.*,
           (SELECT COUNT(*) FROM queue_entries q
             WHERE q.station_id = s.id AND q.status = 'PENDING') AS pending_count
      FROM stations s
     WHERE s.is_public = 1
"""


async def list_public_stations(limit: int = 20, offset: int = 0) -> List[Dict]:
    """Newest first."""
    return await fetch_all(
        get_db(),
        _PUBLIC_STATIONS + " ORDER BY s.created_at DESC, s.rowid DESC LIMIT ? OFFSET ?",
        (limit, offset),
    )


async def count_public_stations() -> int:
    async with get_db().execute("SELECT COUNT(*) FROM stations WHERE is_public = 1") as cur:
        return (await cur.fetchone())[0]


async def best_stations(limit: int = 10) -> List[Dict]:
    """Most played public stations."""
    return await fetch_all(
        get_db(),
        _PUBLIC_STATIONS + " ORDER BY s.play_count DESC, s.rowid LIMIT ?",
        (limit,),
    )


# ─── Playback state version ──────────────────────────────────────────────────

async def bump_state_version(db: aiosqlite.Connection, station_id: str) -> None:
    """Mark cached playback state of this station stale, in every process."""
    await db.execute(
        "UPDATE stations SET state_version = state_version + 1 WHERE id = ?", (station_id,)
    )


async def get_state_version(db: aiosqlite.Connection, station_id: str) -> Optional[int]:
    async with db.execute("SELECT state_version FROM stations WHERE id = ?", (station_id,)) as cur:
        row = await cur.fetchone()
    return row[0] if row else None


async def increment_play_count(station_id: str) -> int:
    async with transaction() as db:
        await db.execute(
            "UPDATE stations SET play_count = play_count + 1 WHERE id = ?", (station_id,)
        )
        row = await fetch_one(db, "SELECT play_count FROM stations WHERE id = ?", (station_id,))
    return row["play_count"] if row else 0


# ─── Play history ────────────────────────────────────────────────────────────

async def record_play(db: aiosqlite.Connection, station_id: str, track_id: str) -> None:
    """Append a history row inside the caller's transaction."""
    await db.execute(
        "INSERT INTO play_history (station_id, track_id, played_at) VALUES (?,?,?)",
        (station_id, track_id, now_iso()),
    )


async def list_history(station_id: str, limit: Optional[int] = None) -> List[Dict]:
    query = "SELECT * FROM play_history WHERE station_id = ? ORDER BY id"
    params: tuple = (station_id,)
    if limit is not None:
        query += " LIMIT ?"
        params = (station_id, limit)
    return await fetch_all(get_db(), query, params)
