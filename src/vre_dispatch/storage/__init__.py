"""Persistence: dedup ledgers, local state and the delivery record sink."""

from vre_dispatch.storage.firebase import FirebaseRecordSink
from vre_dispatch.storage.ledger import MemoryDedupLedger
from vre_dispatch.storage.sqlite import SQLiteDedupLedger, SQLiteStateStore

__all__ = ["FirebaseRecordSink", "MemoryDedupLedger", "SQLiteDedupLedger", "SQLiteStateStore"]
