"""TransferExecutor protocol - the individual on-chain delivery steps."""

from __future__ import annotations

from typing import Protocol


class TransferExecutor(Protocol):
    """Runs create/thaw/transfer/freeze steps against the token mint.

    Every method returns the transaction signature and raises ExecutorError
    on failure (ExecutorUnavailable when the mechanism itself is missing).
    """

    name: str

    async def create_account(self, owner: str) -> str:
        """Create the owner's associated token account."""
        ...

    async def thaw(self, token_account: str) -> str:
        ...

    async def transfer(self, owner: str, base_units: int) -> str:
        """Transfer base units from the treasury token account to the owner."""
        ...

    async def freeze(self, token_account: str) -> str:
        ...
