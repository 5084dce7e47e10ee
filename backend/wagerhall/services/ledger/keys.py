"""Keypair loading from environment-style secrets."""

from __future__ import annotations

import json

from solders.keypair import Keypair


def load_keypair(secret: str) -> Keypair:
    """Load a keypair from a JSON byte array or a base58 secret string."""
    text = str(secret or "").strip()
    if not text:
        raise ValueError("Empty keypair secret")

    if text.startswith("["):
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON keypair secret: {e}") from e
        return Keypair.from_bytes(bytes(raw))

    return Keypair.from_base58_string(text)
