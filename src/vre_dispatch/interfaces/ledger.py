"""DedupLedger protocol - remembers which payment signatures were delivered."""

from __future__ import annotations

from typing import Protocol


class DedupLedger(Protocol):
    """At-most-once delivery guard keyed by source signature."""

    async def has_seen(self, signature: str) -> bool:
        """True if this signature was already delivered."""
        ...

    async def mark_seen(self, signature: str) -> None:
        """Record a signature. Entries are never removed."""
        ...

    async def count(self) -> int:
        """Number of signatures recorded."""
        ...
