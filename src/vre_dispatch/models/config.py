"""Configuration models for the dispatch service."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class ExecutorKind(str, Enum):
    """Mechanism used to run delivery steps against the mint."""

    CLI = "cli"  # spl-token subprocess
    SDK = "sdk"  # solana-py transactions


class LedgerBackend(str, Enum):
    """Where processed payment signatures are remembered."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass
class PriceConfig:
    """SOL/USD price oracle settings."""

    url: str = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"
    fallback_rate: Decimal = Decimal("220")
    timeout: float = 5.0  # seconds
    retries: int = 3


@dataclass
class FirebaseConfig:
    """Realtime Database record sink settings."""

    database_url: str = "https://vrecoin-default-rtdb.firebaseio.com"
    timeout: float = 10.0  # seconds
    retries: int = 3


@dataclass
class DispatchConfig:
    """Complete service configuration."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3002
    webhook_secret: str = ""
    debug: bool = False  # log-and-continue on auth mismatch
    log_level: str = "info"

    # Token
    mint: str = "FJHQH4WTDukwyeFov2H7U9GZSiy4PPYLeuMGpbCujZd9"
    treasury: str = "77tdiYmGhXX5Kt1dRFCGN1wNKfTJm8SBAdY8GLBGLjvU"
    unit_price_usd: Decimal = Decimal("0.20")
    decimals: int = 9

    # Solana
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    authority_key: str = ""  # JSON byte array or base58, env VRE_DISPATCH_AUTHORITY_KEY
    cli_path: str = ""  # empty: search PATH and known install locations
    cli_keypair_path: str = ""

    # Delivery
    executor: ExecutorKind = ExecutorKind.CLI
    fallback: bool = True  # retry once with the other executor if unavailable
    command_timeout: float = 120.0  # seconds per spl-token invocation

    # Ledger
    ledger_backend: LedgerBackend = LedgerBackend.MEMORY
    db_path: str = "~/.vre_dispatch/state.db"

    price: PriceConfig = field(default_factory=PriceConfig)
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
