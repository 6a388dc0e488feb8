"""spl-token CLI executor - runs delivery steps as subprocesses.

Commands are invoked with `--output json` and parsed as structured data.
Free-text scraping of `Signature:` / `State:` / `Balance:` lines is kept only
as a legacy adapter for CLI builds that ignore the output flag.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from decimal import Decimal, InvalidOperation
from pathlib import Path

from vre_dispatch.errors import ExecutorError, ExecutorUnavailable
from vre_dispatch.models.records import AccountState
from vre_dispatch.solana.units import VRE_DECIMALS, format_ui_amount

log = logging.getLogger(__name__)

# Install locations seen on hosted deployments, tried after PATH
CANDIDATE_PATHS = (
    "/usr/local/bin/spl-token",
    "/root/.local/share/solana/install/active_release/bin/spl-token",
)

_SIGNATURE_RE = re.compile(r"Signature:\s*([1-9A-HJ-NP-Za-km-z]{32,})")
_STATE_RE = re.compile(r"State:\s*(\w+)")
_BALANCE_RE = re.compile(r"Balance:\s*([\d.]+)")
_ADDRESS_RE = re.compile(r"Address:\s*([1-9A-HJ-NP-Za-km-z]{32,})")


def find_spl_token(configured: str = "") -> str | None:
    """Locate the spl-token binary: configured path, PATH, then known locations."""
    if configured:
        return configured if Path(configured).exists() or shutil.which(configured) else None
    found = shutil.which("spl-token")
    if found:
        return found
    for candidate in CANDIDATE_PATHS:
        if Path(candidate).exists():
            return candidate
    return None


def _load_json(output: str) -> dict | None:
    text = output.strip()
    if not text.startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_signature(output: str) -> str:
    """Transaction signature from command output, JSON first then text."""
    data = _load_json(output)
    if data is not None:
        sig = data.get("signature") or (data.get("transactionData") or {}).get("signature")
        if isinstance(sig, str) and sig:
            return sig
    match = _SIGNATURE_RE.search(output)
    if match:
        return match.group(1)
    return "unknown"


def _state_from_json(data: dict, decimals: int) -> AccountState:
    # CliTokenAccount flattens UiTokenAccount; older builds nest it
    account = data.get("account") if isinstance(data.get("account"), dict) else data
    token_amount = account.get("tokenAmount") or {}
    balance = Decimal(0)
    if "uiAmountString" in token_amount:
        balance = Decimal(str(token_amount["uiAmountString"]))
    elif "amount" in token_amount:
        dec = int(token_amount.get("decimals", decimals))
        balance = Decimal(int(token_amount["amount"])).scaleb(-dec)
    state = str(account.get("state", "")).lower()
    frozen = state == "frozen" or bool(account.get("isFrozen"))
    return AccountState(
        exists=True,
        frozen=frozen,
        balance=balance,
        account_address=data.get("address"),
    )


def parse_account_info(output: str, decimals: int = VRE_DECIMALS) -> AccountState:
    """AccountState from `spl-token account-info` output."""
    data = _load_json(output)
    if data is not None:
        try:
            return _state_from_json(data, decimals)
        except (InvalidOperation, TypeError, ValueError) as exc:
            log.warning("Unreadable account-info JSON: %s", exc)
            return AccountState.absent()

    # Legacy text output
    state = _STATE_RE.search(output)
    balance = _BALANCE_RE.search(output)
    address = _ADDRESS_RE.search(output)
    if not (state and balance and address):
        return AccountState.absent()
    return AccountState(
        exists=True,
        frozen=state.group(1).lower() == "frozen",
        balance=Decimal(balance.group(1)),
        account_address=address.group(1),
    )


class SplTokenCli:
    """Runs account queries and delivery steps through the spl-token CLI.

    Implements both AccountResolver and TransferExecutor.
    """

    name = "cli"

    def __init__(
        self,
        mint: str,
        rpc_url: str,
        cli_path: str = "",
        keypair_path: str = "",
        decimals: int = VRE_DECIMALS,
        timeout: float = 120.0,
    ) -> None:
        self._mint = mint
        self._rpc_url = rpc_url
        self._cli_path = cli_path
        self._keypair_path = keypair_path
        self._decimals = decimals
        self._timeout = timeout
        self._binary: str | None = None

    def _resolve_binary(self, step: str) -> str:
        if self._binary is None:
            self._binary = find_spl_token(self._cli_path)
            if self._binary is None:
                raise ExecutorUnavailable(step, "spl-token command not found")
            log.info("Using spl-token at %s", self._binary)
        return self._binary

    async def _run(self, step: str, *args: str) -> str:
        binary = self._resolve_binary(step)
        cmd = [binary, *args, "--url", self._rpc_url, "--output", "json"]
        log.debug("Running %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            self._binary = None
            raise ExecutorUnavailable(step, f"spl-token command not found: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ExecutorError(step, f"timed out after {self._timeout}s") from exc

        out = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip() or out.strip()
            raise ExecutorError(step, err or f"exit status {proc.returncode}")
        return out

    def _authority_args(self, flag: str) -> list[str]:
        if not self._keypair_path:
            return []
        return [flag, self._keypair_path, "--fee-payer", self._keypair_path]

    # ── AccountResolver ────────────────────────────────────

    async def resolve(self, owner: str) -> AccountState:
        try:
            output = await self._run("account-info", "account-info", self._mint, owner)
        except ExecutorError as exc:
            # Missing account and failed query look the same from here
            log.warning("account-info for %s treated as absent: %s", owner[:8], exc)
            return AccountState.absent()
        return parse_account_info(output, self._decimals)

    # ── TransferExecutor ───────────────────────────────────

    async def create_account(self, owner: str) -> str:
        args = ["create-account", self._mint, "--owner", owner]
        if self._keypair_path:
            args += ["--fee-payer", self._keypair_path]
        return parse_signature(await self._run("create-account", *args))

    async def thaw(self, token_account: str) -> str:
        args = ["thaw", token_account, *self._authority_args("--freeze-authority")]
        return parse_signature(await self._run("thaw", *args))

    async def transfer(self, owner: str, base_units: int) -> str:
        amount = format_ui_amount(base_units, self._decimals)
        args = [
            "transfer", self._mint, amount, owner,
            "--allow-unfunded-recipient",
            *self._authority_args("--owner"),
        ]
        return parse_signature(await self._run("transfer", *args))

    async def freeze(self, token_account: str) -> str:
        args = ["freeze", token_account, *self._authority_args("--freeze-authority")]
        return parse_signature(await self._run("freeze", *args))

    async def version(self) -> str | None:
        """Installed spl-token version, or None if the tool is missing."""
        try:
            binary = self._resolve_binary("version")
        except ExecutorUnavailable:
            return None
        proc = await asyncio.create_subprocess_exec(
            binary, "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await proc.communicate()
        return stdout.decode("utf-8", errors="replace").strip() or None
