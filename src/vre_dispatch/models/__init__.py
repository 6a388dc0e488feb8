"""Data models for the vre_dispatch service."""

from vre_dispatch.models.events import FiatPurchaseRequest, PaymentEvent
from vre_dispatch.models.records import (
    AccountState,
    DeliveryRecord,
    DeliveryResult,
    ProcessResult,
    RateQuote,
    RecordResult,
    SequenceKind,
)
from vre_dispatch.models.config import (
    DispatchConfig,
    ExecutorKind,
    FirebaseConfig,
    LedgerBackend,
    PriceConfig,
)

__all__ = [
    "FiatPurchaseRequest", "PaymentEvent",
    "AccountState", "DeliveryRecord", "DeliveryResult", "ProcessResult",
    "RateQuote", "RecordResult", "SequenceKind",
    "DispatchConfig", "ExecutorKind", "FirebaseConfig", "LedgerBackend", "PriceConfig",
]
