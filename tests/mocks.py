"""Mock implementations of all external-facing components."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from vre_dispatch.errors import ExecutorError, ExecutorUnavailable
from vre_dispatch.models.records import AccountState, DeliveryRecord, RateQuote, RecordResult
from vre_dispatch.solana.units import from_base_units


class MockChain:
    """Implements AccountResolver and TransferExecutor over an in-memory token ledger.

    Accounts are keyed by owner; the token account address is "ata_<owner>".
    Every executor step is appended to `calls` as (step, target).
    """

    def __init__(
        self,
        name: str = "mock",
        fail_at: str | None = None,
        unavailable: bool = False,
        freeze_sticks: bool = True,
        step_delay: float = 0.0,
        decimals: int = 9,
        hide_address: bool = False,
    ) -> None:
        self.name = name
        self.fail_at = fail_at
        self.unavailable = unavailable
        self.freeze_sticks = freeze_sticks
        self.step_delay = step_delay
        self.decimals = decimals
        self.hide_address = hide_address
        self.accounts: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.transfers: list[tuple[str, int]] = []
        self.resolve_calls: list[str] = []

    @property
    def steps(self) -> list[str]:
        return [step for step, _ in self.calls]

    def seed(self, owner: str, frozen: bool = False, base_units: int = 0) -> None:
        """Test helper: pre-create a token account."""
        self.accounts[owner] = {"frozen": frozen, "base_units": base_units}

    def _owner_of(self, token_account: str) -> str:
        owner = token_account.removeprefix("ata_")
        if owner not in self.accounts:
            raise ExecutorError("lookup", f"unknown token account {token_account}")
        return owner

    async def _step(self, step: str, target: str) -> str:
        self.calls.append((step, target))
        if self.step_delay:
            await asyncio.sleep(self.step_delay)
        if self.unavailable:
            raise ExecutorUnavailable(step, "mock mechanism not installed")
        if self.fail_at == step:
            raise ExecutorError(step, f"mock {step} failure")
        return f"{self.name}_{step}_{len(self.calls)}"

    # ── AccountResolver ────────────────────────────────────

    async def resolve(self, owner: str) -> AccountState:
        self.resolve_calls.append(owner)
        acct = self.accounts.get(owner)
        if acct is None:
            return AccountState.absent()
        return AccountState(
            exists=True,
            frozen=acct["frozen"],
            balance=from_base_units(acct["base_units"], self.decimals),
            account_address=None if self.hide_address else f"ata_{owner}",
        )

    # ── TransferExecutor ───────────────────────────────────

    async def create_account(self, owner: str) -> str:
        sig = await self._step("create", owner)
        self.accounts[owner] = {"frozen": False, "base_units": 0}
        return sig

    async def thaw(self, token_account: str) -> str:
        sig = await self._step("thaw", token_account)
        self.accounts[self._owner_of(token_account)]["frozen"] = False
        return sig

    async def transfer(self, owner: str, base_units: int) -> str:
        sig = await self._step("transfer", owner)
        acct = self.accounts.get(owner)
        if acct is None:
            raise ExecutorError("transfer", "recipient token account not found")
        if acct["frozen"]:
            raise ExecutorError("transfer", "Account is frozen")
        acct["base_units"] += base_units
        self.transfers.append((owner, base_units))
        return sig

    async def freeze(self, token_account: str) -> str:
        sig = await self._step("freeze", token_account)
        if self.freeze_sticks:
            self.accounts[self._owner_of(token_account)]["frozen"] = True
        return sig


class MockOracle:
    """Implements PriceOracle protocol with a fixed rate."""

    def __init__(self, rate: Decimal = Decimal("220"), fallback: bool = False) -> None:
        self.rate = rate
        self.fallback = fallback
        self.calls = 0

    async def get_rate(self) -> RateQuote:
        self.calls += 1
        if self.fallback:
            return RateQuote(rate=self.rate, fallback=True, source="fallback")
        return RateQuote(rate=self.rate)


class MockSink:
    """Implements RecordSink protocol, keeping documents in a dict."""

    def __init__(self, storage_mode: str = "remote") -> None:
        self.storage_mode = storage_mode
        self.records: dict[str, dict] = {}
        self.record_calls: list[tuple[str, str, Decimal, Decimal, dict]] = []
        self.find_calls = 0
        self.find_errors = 0

    async def record(
        self,
        source_signature: str,
        transfer_signature: str,
        amount: Decimal,
        new_balance: Decimal,
        metadata: dict | None = None,
    ) -> RecordResult:
        purchase_id = f"purchase_{len(self.records) + 1}"
        self.record_calls.append(
            (source_signature, transfer_signature, amount, new_balance, dict(metadata or {}))
        )
        self.records[purchase_id] = DeliveryRecord(
            purchase_id=purchase_id,
            source_signature=source_signature,
            transfer_signature=transfer_signature,
            amount_delivered=Decimal(amount),
            new_balance=Decimal(new_balance),
            delivered_at=datetime.now(timezone.utc).isoformat(),
            metadata=dict(metadata or {}),
        ).to_document()
        return RecordResult(success=True, storage_mode=self.storage_mode, purchase_id=purchase_id)

    async def list_records(self) -> dict:
        return dict(self.records)

    async def find_delivery(self, source_signature: str) -> dict | None:
        self.find_calls += 1
        if self.find_errors:
            self.find_errors -= 1
            raise ConnectionError("mock sink unreachable")
        for purchase_id, doc in self.records.items():
            if doc.get("solana_tx_id") == source_signature and doc.get("vre_delivery_signature"):
                return {"purchase_id": purchase_id, **doc}
        return None
