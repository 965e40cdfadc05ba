"""
Central configuration – all settings are read from environment variables
(or a .env file loaded by python-dotenv).
"""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ─── HTTP ────────────────────────────────────────────────────────────────────
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8080"))
# Used for the icy-url header; falls back to the request origin when empty
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

# ─── Paths ───────────────────────────────────────────────────────────────────
STORAGE_PATH = Path(os.getenv("STORAGE_PATH", "./storage"))
LOGS_PATH = STORAGE_PATH / "logs"
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", str(STORAGE_PATH / "radio.db")))

# Ensure directories exist at import time
for _p in (STORAGE_PATH, LOGS_PATH):
    _p.mkdir(parents=True, exist_ok=True)

FFMPEG_PATH: str = os.getenv("FFMPEG_PATH", "ffmpeg")

# ─── Rate limiting (mutation endpoints) ──────────────────────────────────────
RATE_LIMIT_CALLS: int = int(os.getenv("RATE_LIMIT_CALLS", "30"))
RATE_LIMIT_PERIOD: int = int(os.getenv("RATE_LIMIT_PERIOD", "60"))

# ─── Playback ────────────────────────────────────────────────────────────────
# Offsets below this are not worth a seek (player stutter)
SEEK_THRESHOLD_SECONDS: int = int(os.getenv("SEEK_THRESHOLD_SECONDS", "5"))
CHECKPOINT_INTERVAL: float = float(os.getenv("CHECKPOINT_INTERVAL", "10"))
UP_NEXT_LIMIT: int = int(os.getenv("UP_NEXT_LIMIT", "5"))
# Hard cap for the failure circuit breaker; a full failed pass over the queue trips it earlier
MAX_CONSECUTIVE_FAILURES: int = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "10"))

# ─── Relay output ────────────────────────────────────────────────────────────
RELAY_FORMAT: str = os.getenv("RELAY_FORMAT", "mp3")
RELAY_AUDIO_BITRATE: str = os.getenv("RELAY_AUDIO_BITRATE", "128k")
RELAY_CHUNK_SIZE: int = int(os.getenv("RELAY_CHUNK_SIZE", str(16 * 1024)))

# ─── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE: str = os.getenv("LOG_FILE", str(LOGS_PATH / "radio.log"))

# ─── Relay format map ────────────────────────────────────────────────────────
RELAY_FORMATS = {
    "mp3": {"codec": "libmp3lame", "muxer": "mp3",  "mime": "audio/mpeg"},
    "aac": {"codec": "aac",        "muxer": "adts", "mime": "audio/aac"},
    "ogg": {"codec": "libopus",    "muxer": "ogg",  "mime": "audio/ogg"},
}
