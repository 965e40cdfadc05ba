"""
Station playback state machine.

The single authority on which queue entry is playing on a station and since
when. Every transition for a station runs under that station's lock and in
one database transaction, so concurrent advance/skip/go-live calls cannot
produce two playing entries.

Transitions are a closed set of dataclasses; ``PlaybackMachine.apply``
dispatches them through ``_HANDLERS``, which is checked at import time to
cover every member of ``Transition``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union, get_args

import aiosqlite

from config import MAX_CONSECUTIVE_FAILURES
from radio.database import db as _db
from radio.database.models import PENDING, PLAYED, PLAYING, SKIPPED
from radio.errors import InvalidState, InvariantViolation, NotFound, RadioError, ValidationError
from radio.services import queue_store
from radio.services.cache import PlaybackCache, state_cache

logger = logging.getLogger(__name__)


# ─── States ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Idle:
    station_id: str
    is_live: bool
    queue_exhausted: bool = False


@dataclass(frozen=True)
class Playing:
    station_id: str
    is_live: bool
    entry_id: str
    track: Dict = field(hash=False, compare=False)
    position_offset: float = 0.0     # last checkpointed position, seconds
    checkpoint_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def started_at(self) -> datetime:
        return datetime.fromtimestamp(
            self.checkpoint_at.timestamp() - self.position_offset, tz=timezone.utc
        )

    def live_position(self, now: Optional[datetime] = None) -> float:
        """Where every listener should be right now, in seconds."""
        now = now or datetime.now(timezone.utc)
        return max(0.0, self.position_offset + (now - self.checkpoint_at).total_seconds())


PlaybackState = Union[Idle, Playing]


def state_to_dict(state: PlaybackState) -> Dict:
    if isinstance(state, Playing):
        return {
            "state": "playing",
            "isLive": state.is_live,
            "entryId": state.entry_id,
            "startedAt": state.started_at.isoformat(),
            "positionSeconds": round(state.live_position(), 1),
            "queueExhausted": False,
        }
    return {
        "state": "idle",
        "isLive": state.is_live,
        "entryId": None,
        "startedAt": None,
        "positionSeconds": 0,
        "queueExhausted": state.queue_exhausted,
    }


# ─── Transitions ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GoLive:
    pass


@dataclass(frozen=True)
class GoOffline:
    pass


@dataclass(frozen=True)
class AdvanceToNext:
    # Set by the relay: only advance if this entry is still the one playing
    expected_entry_id: Optional[str] = None
    failed: bool = False


@dataclass(frozen=True)
class SkipExplicit:
    entry_id: str


@dataclass(frozen=True)
class SyncPlaying:
    entry_id: str


@dataclass(frozen=True)
class SyncPosition:
    seconds: float


Transition = Union[GoLive, GoOffline, AdvanceToNext, SkipExplicit, SyncPlaying, SyncPosition]


# ─── Machine ─────────────────────────────────────────────────────────────────

class PlaybackMachine:
    """Instantiate once per process (see radio.main)."""

    def __init__(
        self,
        cache: PlaybackCache = state_cache,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
    ) -> None:
        self._cache = cache
        self._max_failures = max_failures
        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    # ─── Public API ──────────────────────────────────────────────────────────

    async def apply(self, station_id: str, transition: Transition) -> PlaybackState:
        """Apply one transition atomically and return the resulting state."""
        if isinstance(transition, AdvanceToNext) and transition.expected_entry_id is None:
            return await self._coalesced_advance(station_id, transition)
        return await self._run(station_id, transition)

    async def state(self, station_id: str) -> PlaybackState:
        """Current state; the cache is trusted only while its version is current."""
        db = _db.get_db()
        version = await _db.get_state_version(db, station_id)
        if version is None:
            raise NotFound("Station not found")
        cached = self._cache.get(station_id, version)
        if cached is not None:
            return cached
        version, state = await self._read_state(db, station_id)
        self._cache.put(station_id, version, state)
        return state

    async def go_live(self, station_id: str) -> PlaybackState:
        return await self.apply(station_id, GoLive())

    async def go_offline(self, station_id: str) -> PlaybackState:
        return await self.apply(station_id, GoOffline())

    async def advance(
        self,
        station_id: str,
        expected_entry_id: Optional[str] = None,
        failed: bool = False,
    ) -> PlaybackState:
        return await self.apply(station_id, AdvanceToNext(expected_entry_id, failed))

    async def skip(self, station_id: str, entry_id: str) -> PlaybackState:
        return await self.apply(station_id, SkipExplicit(entry_id))

    async def sync_playing(self, station_id: str, entry_id: str) -> PlaybackState:
        return await self.apply(station_id, SyncPlaying(entry_id))

    async def sync_position(self, station_id: str, seconds: float) -> PlaybackState:
        return await self.apply(station_id, SyncPosition(seconds))

    async def checkpoint(
        self,
        station_id: str,
        entry_id: str,
        seconds: float,
        min_age: float = 0.0,
    ) -> bool:
        """Best-effort position write from the relay; dropped on any failure.

        Skipped when another listener checkpointed less than ``min_age``
        seconds ago.
        """
        try:
            state = await self.state(station_id)
            if not isinstance(state, Playing) or state.entry_id != entry_id:
                return False
            age = (datetime.now(timezone.utc) - state.checkpoint_at).total_seconds()
            if age < min_age:
                return False
            await self.sync_position(station_id, seconds)
            return True
        except (RadioError, aiosqlite.Error) as exc:
            logger.warning("Position checkpoint dropped for %s: %s", station_id, exc)
            return False

    # ─── Internal ────────────────────────────────────────────────────────────

    def _lock(self, station_id: str) -> asyncio.Lock:
        lock = self._locks.get(station_id)
        if lock is None:
            lock = self._locks[station_id] = asyncio.Lock()
        return lock

    async def _coalesced_advance(self, station_id: str, transition: AdvanceToNext) -> PlaybackState:
        """Concurrent untargeted advances on one station collapse into one."""
        task = self._inflight.get(station_id)
        if task is not None:
            logger.info("Advance already in flight on %s, joining it", station_id)
        else:
            task = asyncio.ensure_future(self._run(station_id, transition))
            self._inflight[station_id] = task
            task.add_done_callback(lambda done: self._forget_inflight(station_id, done))
        return await asyncio.shield(task)

    def _forget_inflight(self, station_id: str, task: asyncio.Future) -> None:
        if self._inflight.get(station_id) is task:
            del self._inflight[station_id]

    async def _run(self, station_id: str, transition: Transition) -> PlaybackState:
        handler = _HANDLERS[type(transition)]
        async with self._lock(station_id):
            try:
                async with _db.transaction() as db:
                    station = await _db.fetch_one(
                        db, "SELECT * FROM stations WHERE id = ?", (station_id,)
                    )
                    if not station:
                        raise NotFound("Station not found")
                    await handler(self, db, station, transition)
                    await self._check_invariants(db, station_id)
                    await _db.bump_state_version(db, station_id)
                    version, state = await self._read_state(db, station_id)
            finally:
                self._cache.invalidate(station_id)
            self._cache.put(station_id, version, state)
        logger.debug("%s on %s -> %s", type(transition).__name__, station_id, type(state).__name__)
        return state

    async def _go_live(self, db: aiosqlite.Connection, station: Dict, t: GoLive) -> None:
        station_id = station["id"]
        if station["is_live"]:
            raise InvalidState("Station is already live")
        await db.execute(
            "UPDATE queue_entries SET status = ? WHERE station_id = ?", (PENDING, station_id)
        )
        first = await self._next_pending(db, station_id)
        if first is None:
            raise InvalidState("Cannot go live with an empty queue")
        now = _db.now_iso()
        await self._start_entry(db, station_id, first)
        await _db.update_station(
            db, station_id,
            is_live=1, live_started_at=now,
            consecutive_failures=0, queue_exhausted=0,
        )
        logger.info("Station %s is live", station_id)

    async def _go_offline(self, db: aiosqlite.Connection, station: Dict, t: GoOffline) -> None:
        await _db.update_station(
            db, station["id"],
            is_live=0, live_started_at=None, current_position=0, position_updated_at=None,
        )
        logger.info("Station %s went offline", station["id"])

    async def _advance(self, db: aiosqlite.Connection, station: Dict, t: AdvanceToNext) -> None:
        station_id = station["id"]
        playing = await self._playing_entry(db, station_id)

        if t.expected_entry_id is not None and (playing is None or playing["id"] != t.expected_entry_id):
            logger.debug("Advance for %s skipped: entry %s no longer playing", station_id, t.expected_entry_id)
            return

        if playing is not None:
            await db.execute(
                "UPDATE queue_entries SET status = ? WHERE id = ?", (PLAYED, playing["id"])
            )

        failures = station["consecutive_failures"] + 1 if t.failed else 0
        if t.failed and failures >= await self._failure_limit(db, station_id):
            logger.warning(
                "Station %s hit %d consecutive failed tracks; stopping auto-advance",
                station_id, failures,
            )
            await _db.update_station(
                db, station_id,
                consecutive_failures=failures, queue_exhausted=1,
                current_position=0, position_updated_at=None,
            )
            return

        await _db.update_station(db, station_id, consecutive_failures=failures)
        nxt = await self._next_pending(db, station_id)
        if nxt is None:
            logger.info("Station %s ran out of music", station_id)
            await _db.update_station(db, station_id, current_position=0, position_updated_at=None)
            return
        await self._start_entry(db, station_id, nxt)

    async def _skip(self, db: aiosqlite.Connection, station: Dict, t: SkipExplicit) -> None:
        entry = await self._station_entry(db, station["id"], t.entry_id)
        await db.execute(
            "UPDATE queue_entries SET status = ? WHERE id = ?", (SKIPPED, entry["id"])
        )
        logger.info("Skipped queue entry %s on %s", entry["id"], station["id"])
        if entry["status"] == PLAYING:
            await self._advance(db, station, AdvanceToNext())

    async def _sync_playing(self, db: aiosqlite.Connection, station: Dict, t: SyncPlaying) -> None:
        station_id = station["id"]
        target = await self._station_entry(db, station_id, t.entry_id)
        if target["status"] not in (PENDING, PLAYING):
            raise InvalidState(f"Cannot sync to a {target['status'].lower()} entry")

        entries = await _db.fetch_all(
            db,
            "SELECT id, status, track_id FROM queue_entries WHERE station_id = ? ORDER BY position",
            (station_id,),
        )
        index = next(i for i, e in enumerate(entries) if e["id"] == target["id"])
        updates = []
        for i, e in enumerate(entries):
            wanted = PLAYED if i < index else PLAYING if i == index else PENDING
            if e["status"] != wanted and i != index:
                updates.append((wanted, e["id"]))
        await db.executemany("UPDATE queue_entries SET status = ? WHERE id = ?", updates)

        if target["status"] != PLAYING:
            await self._start_entry(db, station_id, target)
            await _db.update_station(db, station_id, consecutive_failures=0, queue_exhausted=0)

    async def _sync_position(self, db: aiosqlite.Connection, station: Dict, t: SyncPosition) -> None:
        if t.seconds < 0:
            raise ValidationError("position must be >= 0")
        if await self._playing_entry(db, station["id"]) is None:
            raise InvalidState("Nothing is playing")
        await _db.update_station(
            db, station["id"],
            current_position=float(t.seconds), position_updated_at=_db.now_iso(),
        )

    async def _start_entry(self, db: aiosqlite.Connection, station_id: str, entry: Dict) -> None:
        await db.execute(
            "UPDATE queue_entries SET status = ? WHERE id = ?", (PLAYING, entry["id"])
        )
        await _db.record_play(db, station_id, entry["track_id"])
        await _db.update_station(
            db, station_id, current_position=0, position_updated_at=_db.now_iso()
        )
        logger.info("Now playing on %s: entry %s (track %s)", station_id, entry["id"], entry["track_id"])

    async def _failure_limit(self, db: aiosqlite.Connection, station_id: str) -> int:
        """One full failed pass over the queue, capped by config."""
        async with db.execute(
            "SELECT COUNT(*) FROM queue_entries WHERE station_id = ?", (station_id,)
        ) as cur:
            total = (await cur.fetchone())[0]
        return max(1, min(self._max_failures, total))

    @staticmethod
    async def _playing_entry(db: aiosqlite.Connection, station_id: str) -> Optional[Dict]:
        return await _db.fetch_one(
            db,
            "SELECT * FROM queue_entries WHERE station_id = ? AND status = ? ORDER BY position LIMIT 1",
            (station_id, PLAYING),
        )

    @staticmethod
    async def _next_pending(db: aiosqlite.Connection, station_id: str) -> Optional[Dict]:
        return await _db.fetch_one(
            db,
            "SELECT * FROM queue_entries WHERE station_id = ? AND status = ? ORDER BY position LIMIT 1",
            (station_id, PENDING),
        )

    @staticmethod
    async def _station_entry(db: aiosqlite.Connection, station_id: str, entry_id: str) -> Dict:
        entry = await _db.fetch_one(
            db, "SELECT * FROM queue_entries WHERE id = ? AND station_id = ?", (entry_id, station_id)
        )
        if not entry:
            raise NotFound("Item not found in queue")
        return entry

    @staticmethod
    async def _check_invariants(db: aiosqlite.Connection, station_id: str) -> None:
        async with db.execute(
            "SELECT COUNT(*) FROM queue_entries WHERE station_id = ? AND status = ?",
            (station_id, PLAYING),
        ) as cur:
            playing = (await cur.fetchone())[0]
        if playing > 1:
            logger.critical("Station %s has %d playing entries", station_id, playing)
            raise InvariantViolation(f"{playing} entries playing on station {station_id}")

    @staticmethod
    async def _read_state(db: aiosqlite.Connection, station_id: str) -> Tuple[int, PlaybackState]:
        """Rebuild the state from the database, with the version it reflects."""
        station = await _db.fetch_one(db, "SELECT * FROM stations WHERE id = ?", (station_id,))
        if not station:
            raise NotFound("Station not found")
        version = station["state_version"]
        is_live = bool(station["is_live"])
        playing = await queue_store.fetch_entries(db, station_id, [PLAYING])
        if not playing:
            return version, Idle(station_id, is_live, bool(station["queue_exhausted"]))
        entry = playing[0]
        return version, Playing(
            station_id=station_id,
            is_live=is_live,
            entry_id=entry["id"],
            track=entry["track"],
            position_offset=float(station["current_position"] or 0),
            checkpoint_at=_db.parse_ts(station["position_updated_at"]) or datetime.now(timezone.utc),
        )


_Handler = Callable[[PlaybackMachine, aiosqlite.Connection, Dict, Transition], Awaitable[None]]

_HANDLERS: Dict[type, _Handler] = {
    GoLive:        PlaybackMachine._go_live,
    GoOffline:     PlaybackMachine._go_offline,
    AdvanceToNext: PlaybackMachine._advance,
    SkipExplicit:  PlaybackMachine._skip,
    SyncPlaying:   PlaybackMachine._sync_playing,
    SyncPosition:  PlaybackMachine._sync_position,
}

assert set(_HANDLERS) == set(get_args(Transition)), "every transition needs a handler"
