"""Inbound payment event models normalized from webhook payloads."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PaymentEvent:
    """A SOL payment to the treasury extracted from one transaction."""

    source_signature: str
    payer_address: str | None
    amount_native: Decimal  # SOL
    destination_address: str  # treasury


@dataclass(frozen=True)
class FiatPurchaseRequest:
    """A MoonPay delivery request: tokens already priced by the fiat flow."""

    purchase_id: str
    user_wallet: str
    vre_amount: Decimal
    moonpay_transaction_id: str | None = None
    sol_received: str | None = None
    usd_amount: str | None = None
    firebase_path: str | None = None

    def metadata(self) -> dict:
        return {
            "source": "moonpay",
            "moonpay_transaction_id": self.moonpay_transaction_id,
            "sol_received": self.sol_received,
            "usd_amount": self.usd_amount,
            "firebase_path": self.firebase_path,
        }
