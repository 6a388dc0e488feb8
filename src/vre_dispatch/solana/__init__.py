"""Solana integration components."""

from vre_dispatch.solana.cli import SplTokenCli
from vre_dispatch.solana.sdk import SolanaSdkExecutor
from vre_dispatch.solana.keys import load_authority_keypair
from vre_dispatch.solana.units import format_ui_amount, from_base_units, to_base_units

__all__ = [
    "SplTokenCli",
    "SolanaSdkExecutor",
    "load_authority_keypair",
    "format_ui_amount",
    "from_base_units",
    "to_base_units",
]
