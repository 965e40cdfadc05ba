"""
Audio relay.

Each listener connection gets its own upstream fetch of the track that is
currently playing, started near the station's live position. The relay is
what tells the state machine a track is over: normal end-of-stream advances
the station, an upstream failure advances it and counts toward the failure
breaker, a listener leaving does neither.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

from config import CHECKPOINT_INTERVAL, SEEK_THRESHOLD_SECONDS
from radio.database import db as _db
from radio.errors import NotFound, UpstreamUnavailable
from radio.services.playback import Idle, PlaybackMachine, Playing
from radio.utils.helpers import header_safe, now_playing_label
from radio.utils.security import mask_key

logger = logging.getLogger(__name__)


class UpstreamAudio(Protocol):
    """A byte stream of one track, already positioned."""

    mime_type: str
    bitrate: int
    sample_rate: int

    def chunks(self) -> AsyncIterator[bytes]:
        """Yield audio bytes; raise UpstreamUnavailable if the source breaks."""
        ...

    async def close(self) -> None:
        ...


class AudioFetcher(Protocol):
    async def open(self, source_id: str, seek_seconds: int = 0) -> UpstreamAudio:
        """Open the best audio-only variant, optionally resumed at an offset."""
        ...


class RelayOutcome(enum.Enum):
    ENDED = "ended"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


def seek_offset(state: Playing, threshold: int = SEEK_THRESHOLD_SECONDS) -> int:
    """Live position in whole seconds, or 0 when too small to bother seeking."""
    position = int(state.live_position())
    return position if position > threshold else 0


@dataclass
class RelaySession:
    station: Dict
    state: Playing
    upstream: UpstreamAudio
    seek_seconds: int
    machine: PlaybackMachine
    checkpoint_interval: float = CHECKPOINT_INTERVAL
    # Station clock when the listener joined; may be ahead of seek_seconds
    start_position: float = 0.0

    @property
    def now_playing(self) -> str:
        return now_playing_label(self.state.track)

    def headers(self, base_url: str) -> Dict[str, str]:
        return {
            "Content-Type": self.upstream.mime_type,
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Connection": "keep-alive",
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": "*",
            # ICY metadata headers (for media players)
            "icy-name": header_safe(self.station["name"]),
            "icy-description": header_safe(self.station["description"]),
            "icy-genre": "Various",
            "icy-url": f"{base_url}/listen/{self.station['listen_key']}",
            "icy-br": str(self.upstream.bitrate),
            "icy-sr": str(self.upstream.sample_rate),
            "x-now-playing": header_safe(self.now_playing),
        }

    async def pump(self, write: Callable[[bytes], Awaitable[None]]) -> RelayOutcome:
        """Forward upstream bytes until the track ends, fails or the listener leaves."""
        station_id = self.station["id"]
        entry_id = self.state.entry_id
        loop = asyncio.get_running_loop()
        started = last_checkpoint = loop.time()
        try:
            try:
                async for chunk in self.upstream.chunks():
                    try:
                        await write(chunk)
                    except ConnectionResetError:
                        logger.info("Listener left %s", mask_key(self.station["listen_key"]))
                        return RelayOutcome.DISCONNECTED
                    now = loop.time()
                    if now - last_checkpoint >= self.checkpoint_interval:
                        last_checkpoint = now
                        await self.machine.checkpoint(
                            station_id, entry_id, self.start_position + (now - started),
                            min_age=self.checkpoint_interval / 2,
                        )
            except UpstreamUnavailable as exc:
                logger.warning("Upstream failed on %s, advancing: %s", station_id, exc)
                await self.machine.advance(station_id, expected_entry_id=entry_id, failed=True)
                return RelayOutcome.FAILED

            logger.info("Track finished on %s (entry %s)", station_id, entry_id)
            await self.machine.advance(station_id, expected_entry_id=entry_id)
            return RelayOutcome.ENDED
        finally:
            await self.upstream.close()


class Relay:
    """Opens per-listener relay sessions (instantiate once in radio.main)."""

    def __init__(
        self,
        machine: PlaybackMachine,
        fetcher: AudioFetcher,
        seek_threshold: int = SEEK_THRESHOLD_SECONDS,
        checkpoint_interval: float = CHECKPOINT_INTERVAL,
    ) -> None:
        self.machine = machine
        self.fetcher = fetcher
        self.seek_threshold = seek_threshold
        self.checkpoint_interval = checkpoint_interval

    async def open(self, station_id: str) -> Optional[RelaySession]:
        """Start relaying the playing track; None means there is nothing to play."""
        station = await _db.get_station(station_id)
        if not station:
            raise NotFound("Station not found")
        if not station["is_live"]:
            logger.info("Station %s is offline, not relaying", station_id)
            return None

        state = await self.machine.state(station_id)
        if isinstance(state, Idle):
            if state.queue_exhausted:
                logger.info("Station %s is exhausted, not auto-starting", station_id)
                return None
            state = await self.machine.advance(station_id)
        if not isinstance(state, Playing):
            return None

        position = state.live_position()
        seek = seek_offset(state, self.seek_threshold)
        try:
            upstream = await self.fetcher.open(state.track["source_id"], seek)
        except UpstreamUnavailable as exc:
            logger.warning("Could not open upstream for %s: %s", station_id, exc)
            await self.machine.advance(station_id, expected_entry_id=state.entry_id, failed=True)
            raise

        await _db.increment_play_count(station_id)
        return RelaySession(
            station=station,
            state=state,
            upstream=upstream,
            seek_seconds=seek,
            start_position=position,
            machine=self.machine,
            checkpoint_interval=self.checkpoint_interval,
        )
