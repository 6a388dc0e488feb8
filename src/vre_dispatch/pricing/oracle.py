"""CoinGecko price oracle and token amount conversion."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

import httpx

from vre_dispatch.models.records import RateQuote

log = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def amount_owed(native_amount: Decimal, rate: Decimal, unit_price_usd: Decimal) -> Decimal:
    """Tokens owed for a native payment: round2(native * rate / unit price)."""
    if unit_price_usd <= 0:
        raise ValueError(f"unit price must be positive, got {unit_price_usd}")
    return round2(Decimal(native_amount) * Decimal(rate) / Decimal(unit_price_usd))


class CoinGeckoPriceOracle:
    """Fetches SOL/USD from the CoinGecko simple price API.

    Any failure (timeout, HTTP error, unexpected body) yields the configured
    fallback rate with RateQuote.fallback set; callers never see an exception.
    """

    def __init__(
        self,
        url: str,
        fallback_rate: Decimal,
        timeout: float = 5.0,
        retries: int = 3,
    ) -> None:
        self._url = url
        self._fallback_rate = fallback_rate
        self._timeout = timeout
        self._retries = max(1, retries)

    async def get_rate(self) -> RateQuote:
        for attempt in range(1, self._retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 5.0)),
                ) as client:
                    resp = await client.get(self._url)
                    resp.raise_for_status()
                    data = resp.json()
                rate = Decimal(str(data["solana"]["usd"]))
                if rate <= 0:
                    raise ValueError(f"non-positive rate {rate}")
                log.debug("SOL price: $%s (attempt %d)", rate, attempt)
                return RateQuote(rate=rate)

            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                retryable = isinstance(exc, httpx.TransportError) or (
                    exc.response.status_code >= 500 or exc.response.status_code == 429
                )
                if retryable and attempt < self._retries:
                    log.warning(
                        "Price fetch failed (attempt %d/%d): %s",
                        attempt, self._retries, exc,
                    )
                    continue
                log.warning("Price fetch failed after %d attempts: %s", attempt, exc)
                break

            except Exception as exc:
                # Malformed body, not retried
                log.warning("Price fetch error: %s", exc)
                break

        log.warning("Using fallback SOL price: $%s", self._fallback_rate)
        return RateQuote(rate=self._fallback_rate, fallback=True, source="fallback")
