"""In-memory dedup ledger for single-instance deployments and tests."""

from __future__ import annotations


class MemoryDedupLedger:
    """Process-lifetime set of delivered signatures. Lost on restart."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    async def has_seen(self, signature: str) -> bool:
        return signature in self._seen

    async def mark_seen(self, signature: str) -> None:
        self._seen.add(signature)

    async def count(self) -> int:
        return len(self._seen)
