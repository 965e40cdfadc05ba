"""
Security helpers: listen-key generation and masking for logs.
"""
from __future__ import annotations

import secrets

LISTEN_KEY_BYTES = 18


def generate_listen_key() -> str:
    """Non-guessable public identifier for a station."""
    return secrets.token_urlsafe(LISTEN_KEY_BYTES)


def mask_key(key: str, visible: int = 4) -> str:
    """Show only last `visible` chars of a listen key."""
    if len(key) <= visible:
        return "****"
    return "*" * (len(key) - visible) + key[-visible:]
