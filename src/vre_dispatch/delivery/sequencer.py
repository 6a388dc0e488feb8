"""Delivery sequencer - picks and runs the create/thaw, transfer, freeze sequence.

Entry state (read fresh) decides the path:

    absent               create-account -> transfer -> freeze   transfer_freeze
    frozen               thaw -> transfer -> freeze             unfreeze_transfer_freeze
    existing, unfrozen   transfer -> freeze                     transfer_freeze

Every path ends with a freeze, and a final resolve must confirm the account
is frozen. A failed step aborts the sequence without rollback; the next
delivery attempt re-reads state from chain and picks up from there.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from vre_dispatch.errors import ExecutorError, ExecutorUnavailable
from vre_dispatch.interfaces.executor import TransferExecutor
from vre_dispatch.interfaces.resolver import AccountResolver
from vre_dispatch.models.records import DeliveryResult, SequenceKind
from vre_dispatch.solana.units import VRE_DECIMALS, to_base_units

log = logging.getLogger(__name__)


class DeliverySequencer:
    """Runs one delivery through a single executor."""

    def __init__(
        self,
        resolver: AccountResolver,
        executor: TransferExecutor,
        decimals: int = VRE_DECIMALS,
    ) -> None:
        self._resolver = resolver
        self._executor = executor
        self._decimals = decimals

    @property
    def name(self) -> str:
        return self._executor.name

    def _failed(self, amount: Decimal, base_units: int, error: str, **kw) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            amount_delivered=amount,
            base_units=base_units,
            error=error,
            executor=self._executor.name,
            **kw,
        )

    async def deliver(self, owner: str, amount: Decimal) -> DeliveryResult:
        amount = Decimal(amount)
        base_units = to_base_units(amount, self._decimals)
        if amount <= 0 or base_units <= 0:
            return self._failed(amount, base_units, f"invalid delivery amount: {amount}")

        log.info(
            "Delivering %s VRE (%d base units) to %s via %s",
            amount, base_units, owner, self._executor.name,
        )
        try:
            state = await self._resolver.resolve(owner)

            if not state.exists:
                kind = SequenceKind.TRANSFER_FREEZE
                log.info("No token account for %s, creating", owner[:8])
                await self._executor.create_account(owner)
            elif state.frozen:
                kind = SequenceKind.UNFREEZE_TRANSFER_FREEZE
                if not state.account_address:
                    raise ExecutorError("thaw", "frozen account has no address")
                log.info("Account %s frozen, thawing", state.account_address)
                await self._executor.thaw(state.account_address)
            else:
                kind = SequenceKind.TRANSFER_FREEZE

            transfer_sig = await self._executor.transfer(owner, base_units)
            log.info("Transfer complete: %s", transfer_sig)

            # Re-read: a freshly created account only has an address now
            post = await self._resolver.resolve(owner)
            if not post.exists or not post.account_address:
                return self._failed(
                    amount, base_units,
                    "freeze: token account not found after transfer",
                    transfer_signature=transfer_sig, sequence_kind=kind,
                )
            freeze_sig = await self._executor.freeze(post.account_address)
            log.info("Freeze complete: %s", freeze_sig)

            final = await self._resolver.resolve(owner)

        except ExecutorUnavailable as exc:
            log.error("Delivery mechanism %s unavailable: %s", self._executor.name, exc)
            return self._failed(amount, base_units, str(exc), executor_unavailable=True)
        except ExecutorError as exc:
            log.error("Delivery to %s failed at %s: %s", owner, exc.step, exc)
            return self._failed(amount, base_units, str(exc))
        except Exception as exc:
            log.error("Delivery to %s failed: %s", owner, exc, exc_info=True)
            return self._failed(amount, base_units, str(exc))

        if not final.frozen:
            return self._failed(
                amount, base_units,
                "freeze: account not frozen after delivery",
                transfer_signature=transfer_sig,
                freeze_signature=freeze_sig,
                sequence_kind=kind,
                token_account=final.account_address,
                new_balance=final.balance,
            )

        log.info(
            "Delivered %s VRE to %s (%s), balance now %s, locked",
            amount, owner, kind.value, final.balance,
        )
        return DeliveryResult(
            success=True,
            amount_delivered=amount,
            transfer_signature=transfer_sig,
            new_balance=final.balance,
            sequence_kind=kind,
            base_units=base_units,
            token_account=final.account_address,
            freeze_signature=freeze_sig,
            executor=self._executor.name,
        )


class FallbackSequencer:
    """Tries the primary mechanism, then the secondary once if the primary is unavailable.

    Only infrastructure failures (missing tool, missing signer) trigger the
    retry; a failed on-chain step is reported as-is.
    """

    def __init__(
        self,
        primary: DeliverySequencer,
        secondary: DeliverySequencer | None = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary

    async def deliver(self, owner: str, amount: Decimal) -> DeliveryResult:
        result = await self._primary.deliver(owner, amount)
        if result.success or not result.executor_unavailable or self._secondary is None:
            return result
        log.warning(
            "%s delivery unavailable (%s), retrying via %s",
            self._primary.name, result.error, self._secondary.name,
        )
        return await self._secondary.deliver(owner, amount)
