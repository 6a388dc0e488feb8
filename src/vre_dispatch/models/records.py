"""Internal record types for account state, delivery results and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class SequenceKind(str, Enum):
    """Which ordered operation path completed a delivery."""

    TRANSFER_FREEZE = "transfer_freeze"
    UNFREEZE_TRANSFER_FREEZE = "unfreeze_transfer_freeze"


@dataclass
class AccountState:
    """Token account state for a wallet, read fresh from chain."""

    exists: bool
    frozen: bool = False
    balance: Decimal = Decimal("0")  # VRE
    account_address: str | None = None

    @classmethod
    def absent(cls) -> AccountState:
        return cls(exists=False)


@dataclass
class DeliveryResult:
    """Result of one delivery sequence against a destination wallet."""

    success: bool
    amount_delivered: Decimal = Decimal("0")
    transfer_signature: str = ""
    new_balance: Decimal = Decimal("0")
    sequence_kind: SequenceKind | None = None
    error: str | None = None
    base_units: int = 0
    token_account: str | None = None
    freeze_signature: str | None = None
    executor: str = ""
    executor_unavailable: bool = False  # tool or library missing, not a chain failure


@dataclass
class DeliveryRecord:
    """A completed delivery as written to the document store."""

    purchase_id: str
    source_signature: str
    transfer_signature: str
    amount_delivered: Decimal
    new_balance: Decimal
    delivered_at: str  # ISO 8601
    status: str = "completed"
    metadata: dict = field(default_factory=dict)

    def to_document(self) -> dict:
        """Field names read by the purchase page's delivery poller."""
        doc = {
            "solana_tx_id": self.source_signature,
            "vre_delivery_signature": self.transfer_signature,
            "vre_delivered_amount": float(self.amount_delivered),
            "vre_total_balance": float(self.new_balance),
            "delivery_timestamp": self.delivered_at,
            "status": self.status,
        }
        for key, value in self.metadata.items():
            if value is not None and key not in doc:
                doc[key] = value
        return doc


@dataclass
class RecordResult:
    """Outcome of persisting a delivery record."""

    success: bool
    storage_mode: str  # "remote" or "local-fallback"
    purchase_id: str
    error: str | None = None


@dataclass
class RateQuote:
    """A SOL/USD rate and whether it came from the static fallback."""

    rate: Decimal
    fallback: bool = False
    source: str = "coingecko"


@dataclass
class ProcessResult:
    """Per-payment outcome reported back to the webhook caller."""

    success: bool
    kind: str  # "delivered", "duplicate", "not_payment", "below_minimum", "failed"
    signature: str = ""
    duplicate: bool = False
    not_payment: bool = False
    buyer: str | None = None
    sol_paid: Decimal | None = None
    vre_delivered: Decimal | None = None
    new_balance: Decimal | None = None
    vre_transfer_signature: str | None = None
    sequence_kind: str | None = None
    storage_mode: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"success": self.success, "signature": self.signature}
        if self.duplicate:
            data["duplicate"] = True
        if self.not_payment:
            data["notPayment"] = True
        if self.kind == "below_minimum":
            data.update(
                belowMinimum=True,
                buyer=self.buyer,
                solPaid=float(self.sol_paid) if self.sol_paid is not None else None,
            )
        if self.kind == "delivered":
            data.update(
                buyer=self.buyer,
                solPaid=float(self.sol_paid) if self.sol_paid is not None else None,
                vreDelivered=float(self.vre_delivered or 0),
                newBalance=float(self.new_balance or 0),
                vreTransferSignature=self.vre_transfer_signature,
                process=self.sequence_kind,
                storage=self.storage_mode,
            )
        if self.error:
            data["error"] = self.error
        return data
