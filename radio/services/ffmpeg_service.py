"""
FFmpeg relay pipe.

Provides async helpers for:
- Starting ffmpeg on a remote audio URL, optionally seeked
- Transcoding to the configured relay format on stdout
- Reading the output in chunks and tearing the process down
"""
from __future__ import annotations

import asyncio
import logging
import shlex
from collections import deque
from typing import AsyncIterator, List, Optional

from config import (
    FFMPEG_PATH,
    RELAY_AUDIO_BITRATE,
    RELAY_CHUNK_SIZE,
    RELAY_FORMAT,
    RELAY_FORMATS,
)
from radio.errors import UpstreamUnavailable
from radio.services import ytdlp_service as _yt

logger = logging.getLogger(__name__)

_MP3_RATES = (32000, 44100, 48000)


def _kbps(bitrate: str) -> int:
    return int(bitrate.lower().rstrip("k"))


def output_sample_rate(codec: str, source_rate: Optional[int]) -> int:
    if codec == "libopus":
        return 48000
    return source_rate if source_rate in _MP3_RATES else 44100


# ─── Low-level async runner ───────────────────────────────────────────────────

async def run_ffmpeg(args: List[str]) -> asyncio.subprocess.Process:
    """Start an ffmpeg process and return it (caller manages it)."""
    cmd = [FFMPEG_PATH, "-hide_banner", "-loglevel", "warning", "-nostdin"] + args
    logger.debug("FFmpeg command: %s", " ".join(shlex.quote(a) for a in cmd))
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


def build_relay_args(
    source: _yt.AudioSource,
    seek_seconds: int = 0,
    fmt: str = RELAY_FORMAT,
    abitrate: str = RELAY_AUDIO_BITRATE,
) -> List[str]:
    """Build the ffmpeg argument list for one listener (does NOT start process)."""
    profile = RELAY_FORMATS.get(fmt, RELAY_FORMATS["mp3"])
    headers = "".join(f"{k}: {v}\r\n" for k, v in source.http_headers.items())
    header_args = ["-headers", headers] if headers else []
    seek_args   = ["-ss", str(int(seek_seconds))] if seek_seconds > 0 else []
    return (
        ["-reconnect", "1", "-reconnect_streamed", "1", "-reconnect_delay_max", "5"]
        + header_args
        + seek_args
        # Real-time pacing keeps listeners together and end-of-stream honest
        + ["-re", "-i", source.stream_url]
        + [
            "-vn",
            "-c:a", profile["codec"], "-b:a", abitrate,
            "-ar", str(output_sample_rate(profile["codec"], source.sample_rate)),
            "-f", profile["muxer"],
            "pipe:1",
        ]
    )


# ─── Per-listener upstream ────────────────────────────────────────────────────

class FfmpegAudio:
    """One running ffmpeg process feeding one listener."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        mime_type: str,
        bitrate: int,
        sample_rate: int,
        chunk_size: int = RELAY_CHUNK_SIZE,
    ) -> None:
        self.process = process
        self.mime_type = mime_type
        self.bitrate = bitrate
        self.sample_rate = sample_rate
        self._chunk_size = chunk_size
        self._stderr_tail: deque[str] = deque(maxlen=20)
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def chunks(self) -> AsyncIterator[bytes]:
        assert self.process.stdout is not None
        while True:
            chunk = await self.process.stdout.read(self._chunk_size)
            if not chunk:
                break
            yield chunk
        rc = await self.process.wait()
        if rc != 0:
            raise UpstreamUnavailable(f"ffmpeg exited with {rc}: {' | '.join(self._stderr_tail)}")

    async def close(self) -> None:
        if self.process.returncode is None:
            try:
                self.process.terminate()
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()
        self._stderr_task.cancel()

    async def _drain_stderr(self) -> None:
        assert self.process.stderr is not None
        async for line in self.process.stderr:
            text = line.decode(errors="replace").strip()
            if text:
                self._stderr_tail.append(text)
                logger.debug("ffmpeg: %s", text)


class YtdlpFfmpegFetcher:
    """Default audio fetcher: yt-dlp picks the format, ffmpeg seeks and transcodes."""

    def __init__(
        self,
        fmt: str = RELAY_FORMAT,
        abitrate: str = RELAY_AUDIO_BITRATE,
        chunk_size: int = RELAY_CHUNK_SIZE,
    ) -> None:
        self.fmt = fmt if fmt in RELAY_FORMATS else "mp3"
        self.abitrate = abitrate
        self.chunk_size = chunk_size

    async def open(self, source_id: str, seek_seconds: int = 0) -> FfmpegAudio:
        source = await _yt.resolve_audio(source_id)
        profile = RELAY_FORMATS[self.fmt]
        args = build_relay_args(source, seek_seconds, self.fmt, self.abitrate)
        try:
            proc = await run_ffmpeg(args)
        except OSError as exc:
            raise UpstreamUnavailable(f"Could not start ffmpeg: {exc}") from exc
        logger.info(
            "Relaying %s (%s, %s kbps source) from %ss",
            source_id, source.mime_type, source.bitrate or "?", seek_seconds,
        )
        return FfmpegAudio(
            proc,
            mime_type=profile["mime"],
            bitrate=_kbps(self.abitrate),
            sample_rate=output_sample_rate(profile["codec"], source.sample_rate),
            chunk_size=self.chunk_size,
        )
