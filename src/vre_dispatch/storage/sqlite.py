"""SQLite state store: processed signatures and locally kept delivery records."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import aiosqlite

from vre_dispatch.models.records import DeliveryRecord

SCHEMA = """
-- Payment signatures already delivered
CREATE TABLE IF NOT EXISTS processed_signatures (
    signature TEXT PRIMARY KEY,
    processed_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Delivery records that could not reach the remote store
CREATE TABLE IF NOT EXISTS local_deliveries (
    purchase_id TEXT PRIMARY KEY,
    source_signature TEXT NOT NULL,
    transfer_signature TEXT NOT NULL,
    amount_delivered TEXT NOT NULL,
    new_balance TEXT NOT NULL,
    delivered_at TEXT NOT NULL,
    status TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    error TEXT,
    synced INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_local_deliveries_source ON local_deliveries(source_signature);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStateStore:
    """aiosqlite-backed persistence shared by the ledger and the sink fallback."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Processed signatures ───────────────────────────────

    async def is_processed(self, signature: str) -> bool:
        async with self.db.execute(
            "SELECT 1 FROM processed_signatures WHERE signature=?", (signature,)
        ) as cur:
            return await cur.fetchone() is not None

    async def mark_processed(self, signature: str) -> None:
        await self.db.execute(
            "INSERT OR IGNORE INTO processed_signatures (signature, processed_at)"
            " VALUES (?, ?)",
            (signature, _now()),
        )
        await self.db.commit()

    async def processed_count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) AS c FROM processed_signatures") as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    # ── Local delivery records ─────────────────────────────

    async def save_local_delivery(self, record: DeliveryRecord, error: str | None) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO local_deliveries"
            " (purchase_id, source_signature, transfer_signature, amount_delivered,"
            "  new_balance, delivered_at, status, metadata, error)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.purchase_id, record.source_signature, record.transfer_signature,
                str(record.amount_delivered), str(record.new_balance),
                record.delivered_at, record.status,
                json.dumps(record.metadata, default=str), error,
            ),
        )
        await self.db.commit()

    async def get_local_deliveries(self, unsynced_only: bool = False) -> list[DeliveryRecord]:
        query = "SELECT * FROM local_deliveries"
        if unsynced_only:
            query += " WHERE synced=0"
        query += " ORDER BY delivered_at"
        async with self.db.execute(query) as cur:
            return [
                DeliveryRecord(
                    purchase_id=row["purchase_id"],
                    source_signature=row["source_signature"],
                    transfer_signature=row["transfer_signature"],
                    amount_delivered=Decimal(row["amount_delivered"]),
                    new_balance=Decimal(row["new_balance"]),
                    delivered_at=row["delivered_at"],
                    status=row["status"],
                    metadata=json.loads(row["metadata"] or "{}"),
                )
                async for row in cur
            ]

    async def mark_synced(self, purchase_id: str) -> None:
        await self.db.execute(
            "UPDATE local_deliveries SET synced=1 WHERE purchase_id=?", (purchase_id,)
        )
        await self.db.commit()


class SQLiteDedupLedger:
    """Dedup ledger persisted in SQLite; survives restarts."""

    def __init__(self, store: SQLiteStateStore) -> None:
        self._store = store

    async def has_seen(self, signature: str) -> bool:
        return await self._store.is_processed(signature)

    async def mark_seen(self, signature: str) -> None:
        await self._store.mark_processed(signature)

    async def count(self) -> int:
        return await self._store.processed_count()
