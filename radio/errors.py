"""
Error taxonomy shared by services and HTTP handlers.

Each error carries the HTTP status the error middleware answers with.
"""
from __future__ import annotations


class RadioError(Exception):
    status: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__

    @property
    def code(self) -> str:
        return self.__class__.__name__


class ValidationError(RadioError):
    """Bad input; rejected before any state change."""
    status = 400


class NotFound(RadioError):
    status = 404


class Conflict(RadioError):
    status = 409


class DuplicateTrack(Conflict):
    """Track already Pending/Playing in this station's queue."""


class InvalidState(Conflict):
    """Operation not allowed in the entry's or station's current state."""


class UpstreamUnavailable(RadioError):
    """Metadata resolver or audio fetch failed."""
    status = 502


class InvariantViolation(RadioError):
    """Persisted state broke a hard invariant (e.g. two Playing entries)."""
    status = 500
