"""Protocol interfaces for all vre_dispatch components."""

from vre_dispatch.interfaces.ledger import DedupLedger
from vre_dispatch.interfaces.oracle import PriceOracle
from vre_dispatch.interfaces.resolver import AccountResolver
from vre_dispatch.interfaces.executor import TransferExecutor
from vre_dispatch.interfaces.sink import RecordSink

__all__ = [
    "DedupLedger",
    "PriceOracle",
    "AccountResolver",
    "TransferExecutor",
    "RecordSink",
]
