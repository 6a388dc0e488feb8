"""Exchange rate lookup and token amount math."""

from vre_dispatch.pricing.oracle import CoinGeckoPriceOracle, amount_owed, round2

__all__ = ["CoinGeckoPriceOracle", "amount_owed", "round2"]
