"""Typed keys for objects stored on the aiohttp application."""
from __future__ import annotations

from typing import Awaitable, Callable

from aiohttp import web

from radio.services.catalog import TrackMetadata
from radio.services.playback import PlaybackMachine
from radio.services.relay import Relay

MACHINE  = web.AppKey("machine", PlaybackMachine)
RELAY    = web.AppKey("relay", Relay)
RESOLVER = web.AppKey("resolver", Callable[[str], Awaitable[TrackMetadata]])
