"""SQLite models using aiosqlite directly (no ORM overhead)."""
from __future__ import annotations

# Queue entry lifecycle values
PENDING = "PENDING"
PLAYING = "PLAYING"
PLAYED  = "PLAYED"
SKIPPED = "SKIPPED"

# Only one upstream platform for now
SOURCE_YOUTUBE = "YOUTUBE"

# Table creation SQL – executed once at startup
SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS tracks (
    id          TEXT PRIMARY KEY,       -- UUID
    title       TEXT,
    artist      TEXT,
    album       TEXT,
    duration    INTEGER,                -- seconds, NULL when unknown
    image_url   TEXT,
    source_type TEXT NOT NULL DEFAULT 'YOUTUBE',
    source_id   TEXT NOT NULL,          -- platform-native id (video id)
    source_url  TEXT NOT NULL,
    created_at  TEXT DEFAULT (datetime('now')),
    UNIQUE (source_type, source_id)
);

CREATE TABLE IF NOT EXISTS stations (
    id                   TEXT PRIMARY KEY,   -- UUID
    owner_id             TEXT,
    name                 TEXT NOT NULL,
    description          TEXT,
    image_url            TEXT,
    is_public            INTEGER DEFAULT 1,
    is_live              INTEGER DEFAULT 0,
    live_started_at      TEXT,
    current_position     REAL DEFAULT 0,     -- seconds into the playing track
    position_updated_at  TEXT,               -- when current_position was true
    listen_key           TEXT NOT NULL UNIQUE,
    play_count           INTEGER DEFAULT 0,
    consecutive_failures INTEGER DEFAULT 0,
    queue_exhausted      INTEGER DEFAULT 0,
    state_version        INTEGER NOT NULL DEFAULT 0,  -- bumped on every playback/queue change
    created_at           TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS queue_entries (
    id          TEXT PRIMARY KEY,       -- UUID
    station_id  TEXT NOT NULL,
    track_id    TEXT NOT NULL,
    position    INTEGER NOT NULL,
    status      TEXT NOT NULL DEFAULT 'PENDING',  -- PENDING | PLAYING | PLAYED | SKIPPED
    added_at    TEXT DEFAULT (datetime('now')),
    FOREIGN KEY (station_id) REFERENCES stations(id) ON DELETE CASCADE,
    FOREIGN KEY (track_id)   REFERENCES tracks(id)   ON DELETE RESTRICT
);

CREATE INDEX IF NOT EXISTS idx_queue_station_position
    ON queue_entries (station_id, position);

CREATE TABLE IF NOT EXISTS play_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    station_id  TEXT NOT NULL,
    track_id    TEXT NOT NULL,
    played_at   TEXT NOT NULL,
    FOREIGN KEY (station_id) REFERENCES stations(id) ON DELETE CASCADE,
    FOREIGN KEY (track_id)   REFERENCES tracks(id)   ON DELETE RESTRICT
);
"""
