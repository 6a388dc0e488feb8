"""Firebase Realtime Database record sink - delivery bookkeeping over REST.

Writes are path-addressed by a generated purchase id
(`PUT /purchases/{id}.json`); the purchase page reads `/purchases.json` and
matches on `solana_tx_id` to confirm delivery. A failed write never turns a
completed on-chain delivery into a failure: the record is logged, kept in the
local SQLite store when one is configured, and reported as local-fallback.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal

import httpx

from vre_dispatch.models.records import DeliveryRecord, RecordResult
from vre_dispatch.storage.sqlite import SQLiteStateStore

log = logging.getLogger(__name__)

REMOTE = "remote"
LOCAL_FALLBACK = "local-fallback"


def new_purchase_id() -> str:
    return f"purchase_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class FirebaseRecordSink:
    """Appends delivery records to the `purchases` collection."""

    def __init__(
        self,
        database_url: str,
        timeout: float = 10.0,
        retries: int = 3,
        local_store: SQLiteStateStore | None = None,
    ) -> None:
        self._base_url = database_url.rstrip("/")
        self._timeout = timeout
        self._retries = max(1, retries)
        self._local_store = local_store

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path}.json"

    async def _request(self, method: str, path: str, body: dict | None = None) -> httpx.Response:
        """Send with bounded retries on transport errors and 5xx responses."""
        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.request(method, self._url(path), json=body)
                    resp.raise_for_status()
                    return resp
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                last_exc = exc
                retryable = isinstance(exc, httpx.TransportError) or (
                    exc.response.status_code >= 500
                )
                if not retryable or attempt == self._retries:
                    break
                log.warning(
                    "Firebase %s %s failed (attempt %d/%d): %s",
                    method, path, attempt, self._retries, exc,
                )
        assert last_exc is not None
        raise last_exc

    async def record(
        self,
        source_signature: str,
        transfer_signature: str,
        amount: Decimal,
        new_balance: Decimal,
        metadata: dict | None = None,
    ) -> RecordResult:
        record = DeliveryRecord(
            purchase_id=new_purchase_id(),
            source_signature=source_signature,
            transfer_signature=transfer_signature,
            amount_delivered=Decimal(amount),
            new_balance=Decimal(new_balance),
            delivered_at=datetime.now(timezone.utc).isoformat(),
            metadata=dict(metadata or {}),
        )
        try:
            await self._request("PUT", f"purchases/{record.purchase_id}", record.to_document())
        except Exception as exc:
            error = _describe(exc)
            log.error("Firebase update failed for %s: %s", source_signature[:8], error)
            await self._keep_locally(record, error)
            return RecordResult(
                success=True,
                storage_mode=LOCAL_FALLBACK,
                purchase_id=record.purchase_id,
                error=error,
            )

        log.info(
            "Recorded delivery %s: payment %s -> transfer %s (%s VRE)",
            record.purchase_id, source_signature[:8], transfer_signature[:8], amount,
        )
        return RecordResult(success=True, storage_mode=REMOTE, purchase_id=record.purchase_id)

    async def _keep_locally(self, record: DeliveryRecord, error: str) -> None:
        log.warning(
            "Local fallback record: %s",
            json.dumps({"purchase_id": record.purchase_id, **record.to_document(), "error": error}),
        )
        if self._local_store is None:
            return
        try:
            await self._local_store.save_local_delivery(record, error)
        except Exception as exc:
            log.error("Local fallback store write failed for %s: %s", record.purchase_id, exc)

    async def list_records(self) -> dict:
        resp = await self._request("GET", "purchases")
        data = resp.json()
        return data if isinstance(data, dict) else {}

    async def find_delivery(self, source_signature: str) -> dict | None:
        records = await self.list_records()
        for purchase_id, doc in records.items():
            if (
                isinstance(doc, dict)
                and doc.get("solana_tx_id") == source_signature
                and doc.get("vre_delivery_signature")
            ):
                return {"purchase_id": purchase_id, **doc}
        return None

    async def sync_pending(self) -> int:
        """Push locally kept records to the remote store. Returns how many synced."""
        if self._local_store is None:
            return 0
        synced = 0
        for record in await self._local_store.get_local_deliveries(unsynced_only=True):
            try:
                await self._request(
                    "PUT", f"purchases/{record.purchase_id}", record.to_document(),
                )
            except Exception as exc:
                log.warning("Sync of %s failed: %s", record.purchase_id, _describe(exc))
                continue
            await self._local_store.mark_synced(record.purchase_id)
            synced += 1
        return synced


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__
