"""General helper utilities."""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlparse


# ─── URL helpers ─────────────────────────────────────────────────────────────

VIDEO_ID_RE = re.compile(r"^[\w\-]{6,64}$")

_YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}


def parse_youtube_id(url: str) -> Optional[str]:
    """Extract the video id from a watch / youtu.be / shorts URL."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    candidate: Optional[str] = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in _YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        elif parsed.path.startswith(("/shorts/", "/live/", "/embed/")):
            candidate = parsed.path.split("/")[2]
    if candidate and VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def is_youtube_url(text: str) -> bool:
    return parse_youtube_id(text) is not None


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


# ─── Display helpers ─────────────────────────────────────────────────────────

UNKNOWN = "Unknown"


def human_duration(seconds: Optional[float]) -> str:
    """MM:SS or H:MM:SS; unknown durations render as 0:00."""
    if not seconds:
        return "0:00"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def now_playing_label(track: Optional[Mapping[str, Any]]) -> str:
    if not track:
        return ""
    return f"{track.get('artist') or UNKNOWN} - {track.get('title') or UNKNOWN}"


def header_safe(text: Optional[str], max_len: int = 256) -> str:
    """Free text folded onto one line, fit for an HTTP header value."""
    if not text:
        return ""
    printable = "".join(ch if ch.isprintable() else " " for ch in text)
    return " ".join(printable.split())[:max_len]


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
