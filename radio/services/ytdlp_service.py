"""
yt-dlp lookups wrapped in async helpers.

Two jobs: best-effort track metadata for a URL, and resolving the best
audio-only variant of a video to a direct media URL for the relay.
All heavy work runs in an executor so the event loop stays free.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import yt_dlp  # type: ignore

from radio.errors import UpstreamUnavailable, ValidationError
from radio.services.catalog import TrackMetadata
from radio.utils.helpers import parse_youtube_id, youtube_watch_url

logger = logging.getLogger(__name__)

_BASE_OPTS = {"quiet": True, "no_warnings": True, "noplaylist": True, "skip_download": True}


@dataclass
class AudioSource:
    """Direct media URL of the chosen audio format plus what we know about it."""
    source_id: str
    stream_url: str
    mime_type: str
    bitrate: Optional[int] = None        # kbps
    sample_rate: Optional[int] = None    # Hz
    http_headers: Dict[str, str] = field(default_factory=dict)


# ─── Core helper ─────────────────────────────────────────────────────────────

async def _extract(url: str, opts: dict) -> Dict:
    """Run extract_info in a thread pool and return the sanitized info dict."""
    loop = asyncio.get_running_loop()

    def _fetch():
        with yt_dlp.YoutubeDL({**_BASE_OPTS, **opts}) as ydl:
            info = ydl.extract_info(url, download=False)
            return ydl.sanitize_info(info) if info else None

    info = await loop.run_in_executor(None, _fetch)
    if not info:
        raise UpstreamUnavailable(f"No info returned for {url}")
    return info


# ─── Public API ──────────────────────────────────────────────────────────────

async def resolve_track(url: str) -> TrackMetadata:
    """Best-effort metadata; degrades to the bare video id on lookup failure."""
    video_id = parse_youtube_id(url)
    if not video_id:
        raise ValidationError("Not a YouTube video URL")
    try:
        info = await _extract(youtube_watch_url(video_id), {})
    except (yt_dlp.utils.DownloadError, UpstreamUnavailable) as exc:
        logger.warning("Metadata lookup failed for %s, using minimal metadata: %s", video_id, exc)
        return TrackMetadata(source_id=video_id, source_url=youtube_watch_url(video_id))

    duration = info.get("duration")
    return TrackMetadata(
        source_id=info.get("id") or video_id,
        title=info.get("track") or info.get("title"),
        artist=info.get("artist") or info.get("uploader") or info.get("channel"),
        album=info.get("album"),
        duration=int(duration) if duration else None,
        image_url=info.get("thumbnail"),
        source_url=info.get("webpage_url") or youtube_watch_url(video_id),
    )


async def resolve_audio(source_id: str) -> AudioSource:
    """Pick the best audio-only format of a video."""
    try:
        info = await _extract(youtube_watch_url(source_id), {"format": "bestaudio/best"})
    except yt_dlp.utils.DownloadError as exc:
        raise UpstreamUnavailable(f"Audio format unavailable for {source_id}: {exc}") from exc

    stream_url = info.get("url")
    if not stream_url:
        raise UpstreamUnavailable(f"No direct audio URL for {source_id}")

    ext = info.get("audio_ext") if info.get("audio_ext") not in (None, "none") else info.get("ext")
    abr = info.get("abr") or info.get("tbr")
    asr = info.get("asr")
    return AudioSource(
        source_id=source_id,
        stream_url=stream_url,
        mime_type=f"audio/{ext or 'webm'}",
        bitrate=int(abr) if abr else None,
        sample_rate=int(asr) if asr else None,
        http_headers=dict(info.get("http_headers") or {}),
    )
