"""Solana SDK executor - runs delivery steps as signed transactions via solana-py."""

from __future__ import annotations

import logging
from decimal import Decimal

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    FreezeAccountParams,
    ThawAccountParams,
    TransferCheckedParams,
    create_associated_token_account,
    freeze_account,
    get_associated_token_address,
    thaw_account,
    transfer_checked,
)

from vre_dispatch.errors import ExecutorError, ExecutorUnavailable
from vre_dispatch.models.records import AccountState
from vre_dispatch.solana.keys import load_authority_keypair
from vre_dispatch.solana.units import VRE_DECIMALS

log = logging.getLogger(__name__)


class SolanaSdkExecutor:
    """Builds, signs and submits one transaction per delivery step.

    The configured authority is fee payer, treasury token owner and the
    mint's freeze authority. Account state is read as jsonParsed data.
    Implements both AccountResolver and TransferExecutor.
    """

    name = "sdk"

    def __init__(
        self,
        mint: str,
        rpc_url: str,
        authority_key: str,
        decimals: int = VRE_DECIMALS,
    ) -> None:
        self._mint = Pubkey.from_string(mint)
        self._decimals = decimals
        self._client = AsyncClient(rpc_url, commitment=Confirmed)
        self._authority: Keypair | None = None
        self._authority_error: str | None = None
        try:
            self._authority = load_authority_keypair(authority_key)
        except ValueError as exc:
            self._authority_error = str(exc)

    async def close(self) -> None:
        await self._client.close()

    def _signer(self, step: str) -> Keypair:
        if self._authority is None:
            raise ExecutorUnavailable(step, self._authority_error or "no authority key")
        return self._authority

    def token_account_for(self, owner: str) -> Pubkey:
        return get_associated_token_address(Pubkey.from_string(owner), self._mint)

    async def _send(self, step: str, instructions: list[Instruction]) -> str:
        payer = self._signer(step)
        try:
            blockhash = (await self._client.get_latest_blockhash()).value.blockhash
            message = Message.new_with_blockhash(instructions, payer.pubkey(), blockhash)
            tx = Transaction([payer], message, blockhash)
            resp = await self._client.send_transaction(
                tx,
                opts=TxOpts(preflight_commitment=Confirmed, max_retries=3),
            )
        except Exception as exc:
            raise ExecutorError(step, str(exc)) from exc
        signature = str(resp.value)
        log.debug("%s submitted: %s", step, signature[:16])

        try:
            confirmation = await self._client.confirm_transaction(resp.value, Confirmed)
        except Exception as exc:
            raise ExecutorError(step, f"confirmation failed for {signature}: {exc}") from exc
        statuses = confirmation.value or []
        status = statuses[0] if statuses else None
        if status is None:
            raise ExecutorError(step, f"no confirmation status for {signature}")
        if status.err is not None:
            raise ExecutorError(step, f"transaction {signature} failed: {status.err}")

        log.info("%s confirmed: %s", step, signature[:16])
        return signature

    # ── AccountResolver ────────────────────────────────────

    async def resolve(self, owner: str) -> AccountState:
        try:
            token_account = self.token_account_for(owner)
            resp = await self._client.get_account_info_json_parsed(token_account)
        except Exception as exc:
            log.warning("Account lookup for %s treated as absent: %s", owner[:8], exc)
            return AccountState.absent()

        account = resp.value
        if account is None:
            return AccountState.absent()
        parsed = getattr(account.data, "parsed", None)
        if not isinstance(parsed, dict):
            log.warning("Token account %s has no parsed data", token_account)
            return AccountState.absent()

        info = parsed.get("info", {})
        amount = info.get("tokenAmount", {})
        decimals = int(amount.get("decimals", self._decimals))
        return AccountState(
            exists=True,
            frozen=info.get("state") == "frozen",
            balance=Decimal(int(amount.get("amount", 0))).scaleb(-decimals),
            account_address=str(token_account),
        )

    # ── TransferExecutor ───────────────────────────────────

    async def create_account(self, owner: str) -> str:
        payer = self._signer("create-account")
        ix = create_associated_token_account(
            payer.pubkey(), Pubkey.from_string(owner), self._mint,
        )
        return await self._send("create-account", [ix])

    async def thaw(self, token_account: str) -> str:
        authority = self._signer("thaw")
        ix = thaw_account(ThawAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=Pubkey.from_string(token_account),
            mint=self._mint,
            authority=authority.pubkey(),
        ))
        return await self._send("thaw", [ix])

    async def transfer(self, owner: str, base_units: int) -> str:
        authority = self._signer("transfer")
        source = get_associated_token_address(authority.pubkey(), self._mint)
        ix = transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source,
            mint=self._mint,
            dest=self.token_account_for(owner),
            owner=authority.pubkey(),
            amount=base_units,
            decimals=self._decimals,
        ))
        return await self._send("transfer", [ix])

    async def freeze(self, token_account: str) -> str:
        authority = self._signer("freeze")
        ix = freeze_account(FreezeAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=Pubkey.from_string(token_account),
            mint=self._mint,
            authority=authority.pubkey(),
        ))
        return await self._send("freeze", [ix])
