"""Tests for the per-listener audio relay."""

import pytest

from radio.database import db as _db
from radio.database.models import PENDING, PLAYED, PLAYING
from radio.errors import NotFound, UpstreamUnavailable
from radio.services import queue_store
from radio.services.playback import Idle, Playing
from radio.services.relay import Relay, RelayOutcome, seek_offset
from tests.conftest import statuses


class Sink:
    """Collects written bytes; optionally drops the connection after N writes."""

    def __init__(self, reset_after: int | None = None) -> None:
        self.data = b""
        self.writes = 0
        self._reset_after = reset_after

    async def __call__(self, chunk: bytes) -> None:
        if self._reset_after is not None and self.writes >= self._reset_after:
            raise ConnectionResetError("listener went away")
        self.writes += 1
        self.data += chunk


@pytest.fixture
def live_station(make_station, queue_tracks, machine):
    """Factory: station with the given tracks queued, already live."""

    async def _make(*source_ids: str):
        station = await make_station()
        entries = await queue_tracks(station["id"], *source_ids)
        await machine.go_live(station["id"])
        return station, entries

    return _make


class TestOpen:
    async def test_relays_the_playing_track(self, live_station, relay, fetcher):
        station, entries = await live_station("song01", "song02")

        session = await relay.open(station["id"])

        assert session is not None
        assert session.state.entry_id == entries[0]["id"]
        assert fetcher.opened == [("song01", 0)]

    async def test_unknown_station(self, db, relay):
        with pytest.raises(NotFound):
            await relay.open("missing")

    async def test_offline_station_gets_nothing(self, live_station, relay, machine, fetcher):
        station, _ = await live_station("song01")
        await machine.go_offline(station["id"])

        assert await relay.open(station["id"]) is None
        assert fetcher.opened == []

    async def test_empty_queue_then_new_entry(self, live_station, relay, machine, fetcher, make_track):
        """Scenario E: nothing to play until an entry is queued, then it starts."""
        station, _ = await live_station("first1")
        await machine.advance(station["id"])

        assert await relay.open(station["id"]) is None
        assert fetcher.opened == []
        assert await statuses(station["id"]) == [PLAYED]

        track = await make_track("fresh1")
        entry = await queue_store.append(station["id"], track["id"])
        session = await relay.open(station["id"])

        assert session is not None
        assert session.state.entry_id == entry["id"]
        assert await statuses(station["id"]) == [PLAYED, PLAYING]
        assert fetcher.opened == [("fresh1", 0)]

    async def test_counts_plays(self, live_station, relay):
        station, _ = await live_station("song01")

        await relay.open(station["id"])
        await relay.open(station["id"])

        assert (await _db.get_station(station["id"]))["play_count"] == 2


class TestSeek:
    async def test_joins_at_live_position(self, live_station, relay, machine, fetcher):
        station, _ = await live_station("seek01")
        await machine.sync_position(station["id"], 60)

        session = await relay.open(station["id"])

        assert session.seek_seconds >= 60
        assert fetcher.opened[0][1] == session.seek_seconds

    async def test_small_offsets_are_not_seeked(self, live_station, relay, machine, fetcher):
        station, _ = await live_station("seek02")
        await machine.sync_position(station["id"], 3)

        await relay.open(station["id"])

        assert fetcher.opened == [("seek02", 0)]

    def test_seek_offset_threshold(self):
        assert seek_offset(Playing("s", True, "e", {}, position_offset=4.0), threshold=5) == 0
        assert seek_offset(Playing("s", True, "e", {}, position_offset=90.0), threshold=5) >= 90


class TestPump:
    async def test_end_of_stream_advances(self, live_station, relay, machine, fetcher):
        station, entries = await live_station("end001", "end002")
        session = await relay.open(station["id"])
        sink = Sink()

        outcome = await session.pump(sink)

        assert outcome is RelayOutcome.ENDED
        assert sink.data == b"".join(fetcher.payload)
        assert fetcher.streams[0].closed
        state = await machine.state(station["id"])
        assert state.entry_id == entries[1]["id"]

    async def test_last_track_ending_leaves_station_idle(self, live_station, relay, machine):
        station, _ = await live_station("only01")
        session = await relay.open(station["id"])

        await session.pump(Sink())

        state = await machine.state(station["id"])
        assert isinstance(state, Idle)
        assert state.is_live

    async def test_mid_stream_failure_advances(self, live_station, relay, machine, fetcher):
        station, entries = await live_station("brk001", "brk002")
        fetcher.broken.add("brk001")
        session = await relay.open(station["id"])
        sink = Sink()

        outcome = await session.pump(sink)

        assert outcome is RelayOutcome.FAILED
        assert sink.writes == 1
        assert fetcher.streams[0].closed
        assert (await machine.state(station["id"])).entry_id == entries[1]["id"]
        assert (await _db.get_station(station["id"]))["consecutive_failures"] == 1

    async def test_disconnect_does_not_advance(self, live_station, relay, machine, fetcher):
        station, entries = await live_station("dis001", "dis002")
        session = await relay.open(station["id"])

        outcome = await session.pump(Sink(reset_after=1))

        assert outcome is RelayOutcome.DISCONNECTED
        assert fetcher.streams[0].closed
        assert (await machine.state(station["id"])).entry_id == entries[0]["id"]
        assert await statuses(station["id"]) == [PLAYING, PENDING]

    async def test_two_listeners_ending_advance_once(self, live_station, relay, machine):
        """Both relays report the same entry finished; the second report is stale."""
        station, entries = await live_station("two001", "two002", "two003")
        first = await relay.open(station["id"])
        second = await relay.open(station["id"])

        await first.pump(Sink())
        await second.pump(Sink())

        assert (await machine.state(station["id"])).entry_id == entries[1]["id"]
        assert await statuses(station["id"]) == [PLAYED, PLAYING, PENDING]

    async def test_checkpoint_keeps_unseeked_position(self, live_station, machine, fetcher):
        """Joining below the seek threshold must not wind the station clock back."""
        station, _ = await live_station("clk001")
        await machine.sync_position(station["id"], 3.5)
        relay = Relay(machine, fetcher, seek_threshold=5, checkpoint_interval=0)

        session = await relay.open(station["id"])
        await session.pump(Sink(reset_after=1))

        assert session.seek_seconds == 0
        assert session.start_position >= 3.5
        row = await _db.get_station(station["id"])
        assert row["current_position"] >= 3.5

    async def test_headers(self, live_station, relay):
        station, _ = await live_station("hdr001")
        session = await relay.open(station["id"])

        headers = session.headers("http://radio.test")

        assert headers["Content-Type"] == "audio/mpeg"
        assert headers["icy-name"] == station["name"]
        assert headers["icy-br"] == "128"
        assert headers["icy-url"] == f"http://radio.test/listen/{station['listen_key']}"
        assert headers["x-now-playing"] == "Test Artist - Song hdr001"
        await session.upstream.close()


class TestUpstreamFailures:
    async def test_open_failure_advances_and_raises(self, live_station, relay, machine, fetcher):
        station, entries = await live_station("gone01", "good01")
        fetcher.unavailable.add("gone01")

        with pytest.raises(UpstreamUnavailable):
            await relay.open(station["id"])

        assert (await machine.state(station["id"])).entry_id == entries[1]["id"]
        session = await relay.open(station["id"])
        assert session.state.entry_id == entries[1]["id"]

    async def test_all_tracks_unavailable_stops_the_station(self, live_station, relay, machine, fetcher):
        """One failed pass over the queue marks the station exhausted."""
        station, _ = await live_station("dead01", "dead02", "dead03")
        fetcher.unavailable.update({"dead01", "dead02", "dead03"})

        for _ in range(3):
            with pytest.raises(UpstreamUnavailable):
                await relay.open(station["id"])

        state = await machine.state(station["id"])
        assert isinstance(state, Idle)
        assert state.queue_exhausted

        assert await relay.open(station["id"]) is None
        assert len(fetcher.opened) == 3

    async def test_new_entry_revives_exhausted_station(self, live_station, relay, fetcher, make_track):
        station, _ = await live_station("dead01")
        fetcher.unavailable.add("dead01")
        with pytest.raises(UpstreamUnavailable):
            await relay.open(station["id"])

        track = await make_track("alive1")
        await queue_store.append(station["id"], track["id"])
        session = await relay.open(station["id"])

        assert session is not None
        assert fetcher.opened[-1] == ("alive1", 0)
