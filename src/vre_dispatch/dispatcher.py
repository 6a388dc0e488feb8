"""Payment dispatcher - wires all components together.

Flow per transaction: dedup check -> normalize -> price -> per-address lock
-> resolve + sequence -> record -> mark seen.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal

from vre_dispatch.delivery.sequencer import DeliverySequencer, FallbackSequencer
from vre_dispatch.ingest.normalizer import normalize_transaction
from vre_dispatch.interfaces.ledger import DedupLedger
from vre_dispatch.interfaces.oracle import PriceOracle
from vre_dispatch.interfaces.sink import RecordSink
from vre_dispatch.models.config import DispatchConfig, ExecutorKind, LedgerBackend
from vre_dispatch.models.events import FiatPurchaseRequest
from vre_dispatch.models.records import DeliveryResult, ProcessResult
from vre_dispatch.pricing.oracle import CoinGeckoPriceOracle, amount_owed, round2
from vre_dispatch.solana.cli import SplTokenCli
from vre_dispatch.solana.sdk import SolanaSdkExecutor
from vre_dispatch.storage.firebase import FirebaseRecordSink
from vre_dispatch.storage.ledger import MemoryDedupLedger
from vre_dispatch.storage.sqlite import SQLiteDedupLedger, SQLiteStateStore

log = logging.getLogger(__name__)


class PaymentDispatcher:
    """Turns payment notifications into locked token deliveries.

    Components are public attributes so tests and tools can swap them.
    """

    def __init__(self, cfg: DispatchConfig) -> None:
        self._cfg = cfg
        self._start_time = time.monotonic()

        # Core components
        self.store: SQLiteStateStore | None = None
        if cfg.ledger_backend == LedgerBackend.SQLITE:
            self.store = SQLiteStateStore(cfg.db_path)
            self.ledger: DedupLedger = SQLiteDedupLedger(self.store)
        else:
            self.ledger = MemoryDedupLedger()

        self.oracle: PriceOracle = CoinGeckoPriceOracle(
            cfg.price.url, cfg.price.fallback_rate, cfg.price.timeout, cfg.price.retries,
        )
        self.cli = SplTokenCli(
            cfg.mint, cfg.rpc_url, cfg.cli_path, cfg.cli_keypair_path,
            cfg.decimals, cfg.command_timeout,
        )
        self.sdk = SolanaSdkExecutor(cfg.mint, cfg.rpc_url, cfg.authority_key, cfg.decimals)
        self.sink: RecordSink = FirebaseRecordSink(
            cfg.firebase.database_url, cfg.firebase.timeout, cfg.firebase.retries,
            local_store=self.store,
        )
        self.sequencer = self._build_sequencer()

        self._address_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._in_flight: set[str] = set()

    def _build_sequencer(self) -> FallbackSequencer:
        cli_seq = DeliverySequencer(self.cli, self.cli, self._cfg.decimals)
        sdk_seq = DeliverySequencer(self.sdk, self.sdk, self._cfg.decimals)
        if self._cfg.executor == ExecutorKind.SDK:
            primary, secondary = sdk_seq, cli_seq
        else:
            primary, secondary = cli_seq, sdk_seq
        return FallbackSequencer(primary, secondary if self._cfg.fallback else None)

    @property
    def treasury(self) -> str:
        return self._cfg.treasury

    async def start(self) -> None:
        if self.store is not None:
            await self.store.initialize()
        log.info("Dispatcher ready")
        log.info("  Treasury: %s", self._cfg.treasury)
        log.info("  Mint: %s", self._cfg.mint)
        log.info("  Unit price: $%s", self._cfg.unit_price_usd)
        log.info("  Executor: %s (fallback %s)", self._cfg.executor.value,
                 "on" if self._cfg.fallback else "off")
        log.info("  Ledger: %s", self._cfg.ledger_backend.value)
        log.info("  spl-token: %s", await self.cli.version() or "not found")

    async def close(self) -> None:
        await self.sdk.close()
        if self.store is not None:
            await self.store.close()

    async def processed_count(self) -> int:
        return await self.ledger.count()

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self._start_time)

    # ── Delivery core ──────────────────────────────────────

    async def _deliver_locked(self, owner: str, amount: Decimal) -> DeliveryResult:
        # Resolve + sequence run as one unit per destination address
        lock = self._address_locks.setdefault(owner, asyncio.Lock())
        self._lock_users[owner] = self._lock_users.get(owner, 0) + 1
        try:
            async with lock:
                return await self.sequencer.deliver(owner, amount)
        finally:
            # Drop the lock once no delivery holds or awaits it
            self._lock_users[owner] -= 1
            if not self._lock_users[owner]:
                del self._lock_users[owner]
                del self._address_locks[owner]

    async def _deliver(self, owner: str, amount: Decimal) -> DeliveryResult:
        # A sequence must not be abandoned between transfer and freeze
        return await asyncio.shield(self._deliver_locked(owner, amount))

    async def deliver_manual(self, owner: str, amount: Decimal) -> DeliveryResult:
        """Operator-initiated delivery, bypassing payment matching."""
        return await self._deliver(owner, round2(Decimal(amount)))

    # ── Dedup ──────────────────────────────────────────────

    async def _claim(self, key: str) -> bool:
        """Reserve a dedup key for processing. False if seen or in flight."""
        if key in self._in_flight:
            return False
        # Reserve before awaiting the ledger so a concurrent replay sees it
        self._in_flight.add(key)
        if await self.ledger.has_seen(key):
            self._in_flight.discard(key)
            return False
        return True

    # ── Helius payments ────────────────────────────────────

    async def process_transaction(self, tx: dict) -> ProcessResult:
        """Process one webhook transaction end to end."""
        signature = tx.get("signature") if isinstance(tx, dict) else None
        signature = signature if isinstance(signature, str) else ""

        event = normalize_transaction(tx, self._cfg.treasury)
        if event is None:
            log.info("Transaction %s... not a payment to treasury", signature[:8])
            return ProcessResult(
                success=True, kind="not_payment", signature=signature, not_payment=True,
            )
        if not signature:
            return ProcessResult(
                success=False, kind="failed",
                error="payment transaction has no signature",
            )
        if not await self._claim(signature):
            log.info("Transaction %s... already processed", signature[:8])
            return ProcessResult(success=True, kind="duplicate", signature=signature, duplicate=True)

        try:
            log.info(
                "Payment detected: %s SOL from %s (%s)",
                event.amount_native, event.payer_address, signature,
            )
            quote = await self.oracle.get_rate()
            vre_amount = amount_owed(event.amount_native, quote.rate, self._cfg.unit_price_usd)
            log.info(
                "SOL price $%s%s -> %s VRE owed",
                quote.rate, " (fallback)" if quote.fallback else "", vre_amount,
            )
            if vre_amount <= 0:
                log.warning(
                    "Payment %s... too small to buy any VRE; recorded without delivery",
                    signature[:8],
                )
                await self.ledger.mark_seen(signature)
                return ProcessResult(
                    success=True, kind="below_minimum", signature=signature,
                    buyer=event.payer_address, sol_paid=event.amount_native,
                )

            result = await self._deliver(event.payer_address or "", vre_amount)
            if not result.success:
                log.error("Delivery failed for %s: %s", signature, result.error)
                return ProcessResult(
                    success=False, kind="failed", signature=signature,
                    buyer=event.payer_address, sol_paid=event.amount_native,
                    error=result.error,
                )

            record = await self.sink.record(
                signature, result.transfer_signature,
                result.amount_delivered, result.new_balance,
                {
                    "source": "helius",
                    "buyer": event.payer_address,
                    "sol_paid": str(event.amount_native),
                    "sol_price": str(quote.rate),
                    "process": result.sequence_kind.value if result.sequence_kind else None,
                },
            )
            await self.ledger.mark_seen(signature)
        finally:
            self._in_flight.discard(signature)

        return ProcessResult(
            success=True,
            kind="delivered",
            signature=signature,
            buyer=event.payer_address,
            sol_paid=event.amount_native,
            vre_delivered=result.amount_delivered,
            new_balance=result.new_balance,
            vre_transfer_signature=result.transfer_signature,
            sequence_kind=result.sequence_kind.value if result.sequence_kind else None,
            storage_mode=record.storage_mode,
        )

    # ── MoonPay fiat purchases ─────────────────────────────

    async def process_fiat_request(self, req: FiatPurchaseRequest) -> ProcessResult:
        """Deliver an already-priced fiat purchase. Dedup key is the purchase id."""
        key = req.purchase_id
        if not await self._claim(key):
            log.info("Purchase %s already delivered", key)
            return ProcessResult(success=True, kind="duplicate", signature=key, duplicate=True)

        try:
            log.info(
                "MoonPay delivery request %s: %s VRE to %s (tx %s)",
                key, req.vre_amount, req.user_wallet, req.moonpay_transaction_id,
            )
            result = await self._deliver(req.user_wallet, round2(req.vre_amount))
            if not result.success:
                log.error("MoonPay delivery failed for %s: %s", key, result.error)
                return ProcessResult(
                    success=False, kind="failed", signature=key,
                    buyer=req.user_wallet, error=result.error,
                )
            record = await self.sink.record(
                key, result.transfer_signature,
                result.amount_delivered, result.new_balance,
                req.metadata(),
            )
            await self.ledger.mark_seen(key)
        finally:
            self._in_flight.discard(key)

        return ProcessResult(
            success=True,
            kind="delivered",
            signature=key,
            buyer=req.user_wallet,
            vre_delivered=result.amount_delivered,
            new_balance=result.new_balance,
            vre_transfer_signature=result.transfer_signature,
            sequence_kind=result.sequence_kind.value if result.sequence_kind else None,
            storage_mode=record.storage_mode,
        )
