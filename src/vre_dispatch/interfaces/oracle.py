"""PriceOracle protocol - current SOL/USD exchange rate."""

from __future__ import annotations

from typing import Protocol

from vre_dispatch.models.records import RateQuote


class PriceOracle(Protocol):
    """Fetches an exchange rate, falling back to a static value on failure."""

    async def get_rate(self) -> RateQuote:
        """Never raises. RateQuote.fallback is set when the static rate was used."""
        ...
