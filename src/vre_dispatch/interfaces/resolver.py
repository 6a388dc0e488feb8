"""AccountResolver protocol - reads a wallet's token account state."""

from __future__ import annotations

from typing import Protocol

from vre_dispatch.models.records import AccountState


class AccountResolver(Protocol):
    """Resolves existence, frozen flag and balance of a wallet's token account."""

    async def resolve(self, owner: str) -> AccountState:
        """Query failures are reported as an absent account."""
        ...
