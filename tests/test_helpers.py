"""Tests for pure helpers: URL parsing, display, ffmpeg args, rate limiting."""

import pytest

from radio.middlewares.rate_limit import RateLimiter
from radio.services.ffmpeg_service import build_relay_args, output_sample_rate
from radio.services.ytdlp_service import AudioSource
from radio.utils.helpers import (
    header_safe,
    human_duration,
    is_youtube_url,
    now_playing_label,
    parse_bool,
    parse_youtube_id,
)
from radio.utils.security import generate_listen_key, mask_key


class TestParseYoutubeId:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtube.com/watch?v=dQw4w9WgXcQ&t=42",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://music.youtube.com/watch?v=dQw4w9WgXcQ&list=RD",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ?si=abc",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
        ],
    )
    def test_known_shapes(self, url):
        assert parse_youtube_id(url) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize(
        "url",
        [
            "https://vimeo.com/123456789",
            "https://www.youtube.com/playlist?list=PL123456",
            "https://www.youtube.com/watch",
            "youtube.com/watch?v=dQw4w9WgXcQ",
            "not a url",
        ],
    )
    def test_rejects_everything_else(self, url):
        assert parse_youtube_id(url) is None
        assert not is_youtube_url(url)


class TestDisplay:
    @pytest.mark.parametrize(
        "seconds, expected",
        [(None, "0:00"), (0, "0:00"), (59, "0:59"), (241, "4:01"), (3725, "1:02:05")],
    )
    def test_human_duration(self, seconds, expected):
        assert human_duration(seconds) == expected

    def test_label_falls_back_to_unknown(self):
        assert now_playing_label({"artist": "Band", "title": "Song"}) == "Band - Song"
        assert now_playing_label({"artist": None, "title": "Song"}) == "Unknown - Song"
        assert now_playing_label(None) == ""

    @pytest.mark.parametrize("value", ["true", "1", "YES", True])
    def test_parse_bool_truthy(self, value):
        assert parse_bool(value)

    @pytest.mark.parametrize("value", ["false", "0", "", None, False])
    def test_parse_bool_falsy(self, value):
        assert not parse_bool(value)


class TestListenKey:
    def test_keys_are_unique_and_url_safe(self):
        keys = {generate_listen_key() for _ in range(50)}
        assert len(keys) == 50
        assert all("/" not in k and "+" not in k for k in keys)

    def test_mask_key(self):
        assert mask_key("abcdefgh") == "****efgh"
        assert mask_key("abc") == "****"


class TestRelayArgs:
    def _source(self, **kwargs) -> AudioSource:
        defaults = dict(
            source_id="abc123",
            stream_url="https://media.example/audio",
            mime_type="audio/webm",
            sample_rate=48000,
        )
        defaults.update(kwargs)
        return AudioSource(**defaults)

    def test_zero_seek_omits_ss(self):
        args = build_relay_args(self._source(), seek_seconds=0)
        assert "-ss" not in args
        assert args[args.index("-i") + 1] == "https://media.example/audio"
        assert args[-1] == "pipe:1"

    def test_seek_comes_before_input(self):
        args = build_relay_args(self._source(), seek_seconds=75)
        assert args[args.index("-ss") + 1] == "75"
        assert args.index("-ss") < args.index("-i")
        assert args.index("-re") < args.index("-i")

    def test_mp3_output(self):
        args = build_relay_args(self._source(), fmt="mp3", abitrate="192k")
        assert args[args.index("-c:a") + 1] == "libmp3lame"
        assert args[args.index("-b:a") + 1] == "192k"
        assert args[args.index("-f") + 1] == "mp3"
        assert args[args.index("-ar") + 1] == "48000"

    def test_unknown_format_falls_back_to_mp3(self):
        args = build_relay_args(self._source(), fmt="flac")
        assert args[args.index("-c:a") + 1] == "libmp3lame"

    def test_forwards_upstream_headers(self):
        args = build_relay_args(self._source(http_headers={"User-Agent": "UA/1.0"}))
        assert args[args.index("-headers") + 1] == "User-Agent: UA/1.0\r\n"

    def test_output_sample_rate(self):
        assert output_sample_rate("libopus", 44100) == 48000
        assert output_sample_rate("libmp3lame", 22050) == 44100
        assert output_sample_rate("libmp3lame", None) == 44100
        assert output_sample_rate("aac", 48000) == 48000


class TestRateLimiter:
    def test_blocks_after_budget(self):
        limiter = RateLimiter(calls=2, period=60)
        assert limiter.hit("1.2.3.4") == 0
        assert limiter.hit("1.2.3.4") == 0
        assert limiter.hit("1.2.3.4") > 0

    def test_clients_are_independent(self):
        limiter = RateLimiter(calls=1, period=60)
        assert limiter.hit("a") == 0
        assert limiter.hit("b") == 0
        assert limiter.hit("a") > 0


class TestHeaderSafe:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Line one\nLine two", "Line one Line two"),
            ("Tab\tand\r\nCRLF", "Tab and CRLF"),
            ("  padded  ", "padded"),
            ("bell\x07ring", "bell ring"),
            ("Café Tokyo", "Café Tokyo"),
            (None, ""),
        ],
    )
    def test_folds_to_one_line(self, text, expected):
        assert header_safe(text) == expected

    def test_truncates(self):
        assert header_safe("x" * 500, max_len=10) == "x" * 10
