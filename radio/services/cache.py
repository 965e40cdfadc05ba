"""
Per-process read-through cache of station playback state.

Never authoritative: each entry is stamped with the station's
``state_version`` and only served while that still matches the database.
Every transition and queue mutation bumps the version, so a change made by
another process sharing the database is seen on the next read.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class PlaybackCache:
    def __init__(self) -> None:
        self._states: Dict[str, Tuple[int, Any]] = {}

    def get(self, station_id: str, version: int) -> Optional[Any]:
        cached = self._states.get(station_id)
        if cached is None:
            return None
        if cached[0] != version:
            logger.debug("Playback cache stale for %s (v%d, now v%d)", station_id, cached[0], version)
            del self._states[station_id]
            return None
        return cached[1]

    def put(self, station_id: str, version: int, state: Any) -> None:
        self._states[station_id] = (version, state)

    def invalidate(self, station_id: str) -> None:
        if self._states.pop(station_id, None) is not None:
            logger.debug("Playback cache invalidated: %s", station_id)

    def clear(self) -> None:
        self._states.clear()


# ─── Global instance (import and use everywhere) ─────────────────────────────
state_cache = PlaybackCache()
