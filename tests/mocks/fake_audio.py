"""Test doubles for the relay's AudioFetcher / UpstreamAudio protocols."""

import asyncio

from radio.errors import UpstreamUnavailable


class FakeAudio:
    """Scripted upstream: yields chunks, optionally failing part-way."""

    def __init__(
        self,
        chunks: list[bytes],
        fail_after: int | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.mime_type = "audio/mpeg"
        self.bitrate = 128
        self.sample_rate = 44100
        self.closed = False
        self._chunks = chunks
        self._fail_after = fail_after
        self._gate = gate

    async def chunks(self):
        for index, chunk in enumerate(self._chunks):
            if self._fail_after is not None and index >= self._fail_after:
                raise UpstreamUnavailable("upstream dropped")
            if self._gate is not None:
                await self._gate.wait()
            yield chunk

    async def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """Records every open() and hands out FakeAudio streams.

    Source ids in ``unavailable`` fail at open time, ids in ``broken`` fail
    after the first chunk.
    """

    def __init__(self, payload: list[bytes] | None = None) -> None:
        self.payload = payload or [b"ID3" + b"\x00" * 13, b"\xff\xfb" + b"\x00" * 14]
        self.opened: list[tuple[str, int]] = []
        self.streams: list[FakeAudio] = []
        self.unavailable: set[str] = set()
        self.broken: set[str] = set()
        self.gate: asyncio.Event | None = None

    async def open(self, source_id: str, seek_seconds: int = 0) -> FakeAudio:
        self.opened.append((source_id, seek_seconds))
        if source_id in self.unavailable:
            raise UpstreamUnavailable(f"no audio format for {source_id}")
        audio = FakeAudio(
            list(self.payload),
            fail_after=1 if source_id in self.broken else None,
            gate=self.gate,
        )
        self.streams.append(audio)
        return audio
