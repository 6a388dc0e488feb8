"""Client-side delivery reconciliation.

After a buyer's own payment confirms, the purchase page shows a pending
message and polls the record sink until a delivery signature appears for
that payment. Polling is bounded and gives up silently: delivery may still
complete later.
"""

from __future__ import annotations

import asyncio
import logging

from vre_dispatch.interfaces.sink import RecordSink

log = logging.getLogger(__name__)


async def wait_for_delivery(
    sink: RecordSink,
    source_signature: str,
    attempts: int = 20,
    interval: float = 3.0,
    initial_delay: float = 2.0,
) -> dict | None:
    """Poll `sink` for a delivery record matching `source_signature`.

    Returns the record (with its purchase id) or None once attempts run out.
    Read errors count as an attempt and are logged, never raised.
    """
    if initial_delay > 0:
        await asyncio.sleep(initial_delay)

    for attempt in range(1, attempts + 1):
        try:
            record = await sink.find_delivery(source_signature)
        except Exception as exc:
            log.warning(
                "Delivery lookup for %s... failed (attempt %d/%d): %s",
                source_signature[:8], attempt, attempts, exc,
            )
            record = None
        if record is not None and record.get("vre_delivery_signature"):
            log.info(
                "Delivery found for %s...: %s",
                source_signature[:8], record["vre_delivery_signature"],
            )
            return record
        if attempt < attempts:
            await asyncio.sleep(interval)

    log.debug("No delivery seen for %s... after %d checks", source_signature[:8], attempts)
    return None
