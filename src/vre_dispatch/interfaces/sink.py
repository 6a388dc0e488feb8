"""RecordSink protocol - durable delivery bookkeeping."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from vre_dispatch.models.records import RecordResult


class RecordSink(Protocol):
    """Persists completed deliveries and exposes them for polling."""

    async def record(
        self,
        source_signature: str,
        transfer_signature: str,
        amount: Decimal,
        new_balance: Decimal,
        metadata: dict | None = None,
    ) -> RecordResult:
        """Always succeeds once delivery happened; storage_mode tells where it went."""
        ...

    async def list_records(self) -> dict:
        """All records keyed by purchase id."""
        ...

    async def find_delivery(self, source_signature: str) -> dict | None:
        """Record for a payment signature that carries a delivery signature."""
        ...
