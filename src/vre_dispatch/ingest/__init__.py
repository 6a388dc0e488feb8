"""Inbound payload parsing."""

from vre_dispatch.ingest.normalizer import (
    is_fiat_request,
    normalize_transaction,
    parse_fiat_request,
    split_envelope,
)

__all__ = ["is_fiat_request", "normalize_transaction", "parse_fiat_request", "split_envelope"]
