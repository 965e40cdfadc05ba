"""Shared test fixtures and utilities."""

import os
import tempfile

# config.py creates its storage directories at import time
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="radio-test-"))

import pytest

from radio.database import db as _db
from radio.main import create_app
from radio.middlewares.rate_limit import RateLimiter
from radio.services import catalog, queue_store
from radio.services.cache import state_cache
from radio.services.catalog import TrackMetadata
from radio.services.playback import PlaybackMachine
from radio.services.relay import Relay
from radio.utils.security import generate_listen_key
from tests.mocks.fake_audio import FakeFetcher
from tests.mocks.fake_resolver import FakeResolver


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    await _db.init_db(tmp_path / "radio.db")
    state_cache.clear()
    yield _db.get_db()
    await _db.close_db()


@pytest.fixture
def machine(db) -> PlaybackMachine:
    return PlaybackMachine()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def relay(machine, fetcher) -> Relay:
    return Relay(machine, fetcher, seek_threshold=5, checkpoint_interval=3600)


@pytest.fixture
def make_station(db):
    """Factory: create a station row."""

    async def _make(name: str = "Test Station", **kwargs) -> dict:
        return await _db.create_station(name=name, listen_key=generate_listen_key(), **kwargs)

    return _make


@pytest.fixture
def make_track(db):
    """Factory: catalog row for a fake video id."""

    async def _make(source_id: str, title: str | None = None, duration: int | None = 180) -> dict:
        return await catalog.get_or_create_track(
            TrackMetadata(
                source_id=source_id,
                title=title or f"Song {source_id}",
                artist="Test Artist",
                duration=duration,
            )
        )

    return _make


@pytest.fixture
def queue_tracks(make_track):
    """Factory: append one entry per video id, returns the entries in order."""

    async def _queue(station_id: str, *source_ids: str) -> list[dict]:
        entries = []
        for source_id in source_ids:
            track = await make_track(source_id)
            entries.append(await queue_store.append(station_id, track["id"]))
        return entries

    return _queue


async def statuses(station_id: str) -> list[str]:
    return [e["status"] for e in await queue_store.list_entries(station_id)]


@pytest.fixture
async def client(aiohttp_client, tmp_path, fetcher, resolver):
    """HTTP test client over a fully wired app with fake upstreams."""
    state_cache.clear()
    app = create_app(
        db_path=tmp_path / "api.db",
        fetcher=fetcher,
        resolver=resolver,
        rate_limiter=RateLimiter(calls=1000, period=60),
    )
    return await aiohttp_client(app)
