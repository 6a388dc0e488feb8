"""Payment event normalizer - extracts (payer, amount) from webhook payloads.

Helius enhanced-transaction webhooks arrive in several envelope shapes and
carry the SOL movement in two independent places. Extraction never raises:
anything that cannot be matched to a buyer is "not a payment".
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from vre_dispatch.errors import ValidationError
from vre_dispatch.models.events import FiatPurchaseRequest, PaymentEvent
from vre_dispatch.pricing.oracle import round2

log = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(1_000_000_000)

FIAT_SOURCE = "moonpay"
FIAT_TYPE = "vre_delivery_request"


def _to_decimal(value: object) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return d


def split_envelope(body: object) -> list[dict]:
    """Flatten the accepted envelope shapes into individual transactions.

    {"transaction": {...}} -> one, {"transactions": [...]} -> many,
    [...] -> many, bare object -> one. Non-object entries are dropped.
    """
    if isinstance(body, dict):
        if isinstance(body.get("transaction"), dict):
            items: list = [body["transaction"]]
        elif isinstance(body.get("transactions"), list):
            items = body["transactions"]
        else:
            items = [body]
    elif isinstance(body, list):
        items = body
    else:
        return []
    return [tx for tx in items if isinstance(tx, dict)]


def _from_native_transfers(tx: dict, treasury: str) -> tuple[Decimal, str | None]:
    transfers = tx.get("nativeTransfers")
    if not isinstance(transfers, list):
        return Decimal(0), None
    for transfer in transfers:
        if not isinstance(transfer, dict):
            continue
        if transfer.get("toUserAccount") != treasury:
            continue
        lamports = _to_decimal(transfer.get("amount"))
        if lamports is None:
            continue
        payer = transfer.get("fromUserAccount")
        return lamports / LAMPORTS_PER_SOL, payer if isinstance(payer, str) and payer else None
    return Decimal(0), None


def _from_account_data(tx: dict, treasury: str) -> tuple[Decimal, str | None]:
    accounts = tx.get("accountData")
    if not isinstance(accounts, list):
        return Decimal(0), None
    entries = [a for a in accounts if isinstance(a, dict)]

    received = Decimal(0)
    for account in entries:
        if account.get("account") != treasury:
            continue
        delta = _to_decimal(account.get("nativeBalanceChange"))
        if delta is not None and delta > 0:
            received = delta / LAMPORTS_PER_SOL
            break
    if received <= 0:
        return Decimal(0), None

    senders = []
    for account in entries:
        address = account.get("account")
        delta = _to_decimal(account.get("nativeBalanceChange"))
        if (
            isinstance(address, str)
            and address
            and address != treasury
            and delta is not None
            and delta < 0
            and address not in senders
        ):
            senders.append(address)
    if len(senders) != 1:
        log.debug("accountData payer ambiguous: %d debited accounts", len(senders))
        return received, None
    return received, senders[0]


_STRATEGIES = (
    ("nativeTransfers", _from_native_transfers),
    ("accountData", _from_account_data),
)


def normalize_transaction(tx: object, treasury: str) -> PaymentEvent | None:
    """Extract a treasury payment from one transaction, or None if not a payment."""
    if not isinstance(tx, dict):
        return None
    signature = tx.get("signature")
    signature = signature if isinstance(signature, str) else ""

    for name, strategy in _STRATEGIES:
        amount, payer = strategy(tx, treasury)
        if amount > 0 and payer:
            log.debug("Payment %s matched via %s", signature[:8], name)
            return PaymentEvent(
                source_signature=signature,
                payer_address=payer,
                amount_native=amount,
                destination_address=treasury,
            )
        if amount > 0:
            log.info(
                "Transaction %s credits treasury via %s but payer is unresolved",
                signature[:8], name,
            )
    return None


def is_fiat_request(body: object) -> bool:
    return (
        isinstance(body, dict)
        and body.get("source") == FIAT_SOURCE
        and body.get("type") == FIAT_TYPE
    )


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


def parse_fiat_request(body: dict) -> FiatPurchaseRequest:
    """Validate a MoonPay delivery request. Raises ValidationError."""
    user_wallet = body.get("user_wallet")
    purchase_id = body.get("purchase_id")
    vre_amount = _to_decimal(body.get("vre_amount"))
    if not user_wallet or not purchase_id or not body.get("vre_amount"):
        raise ValidationError(
            "Missing required fields: user_wallet, vre_amount, purchase_id"
        )
    if vre_amount is None or round2(vre_amount) <= 0:
        raise ValidationError(f"Invalid vre_amount: {body.get('vre_amount')!r}")
    return FiatPurchaseRequest(
        purchase_id=str(purchase_id),
        user_wallet=str(user_wallet),
        vre_amount=vre_amount,
        moonpay_transaction_id=_optional_str(body.get("moonpay_transaction_id")),
        sol_received=_optional_str(body.get("sol_received")),
        usd_amount=_optional_str(body.get("usd_amount")),
        firebase_path=_optional_str(body.get("firebase_path")),
    )
