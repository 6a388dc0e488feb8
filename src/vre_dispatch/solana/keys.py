"""Signing authority loading."""

from __future__ import annotations

import json
import logging

import base58
from solders.keypair import Keypair

log = logging.getLogger(__name__)


def load_authority_keypair(raw: str) -> Keypair:
    """Load a Keypair from a JSON array of 64 key bytes or a base58 string."""
    value = (raw or "").strip()
    if not value:
        raise ValueError("No authority key configured")
    if value.startswith("["):
        try:
            arr = json.loads(value)
            if isinstance(arr, list) and len(arr) >= 64:
                return Keypair.from_bytes(bytes(arr[:64]))
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            raise ValueError("Invalid authority key: malformed JSON byte array") from exc
        raise ValueError("Invalid authority key: expected 64 bytes")
    try:
        return Keypair.from_bytes(base58.b58decode(value))
    except Exception as exc:
        log.warning("Authority key could not be decoded as base58: %s", type(exc).__name__)
        raise ValueError("Invalid authority key format. Expected JSON array or base58 string.") from exc
