"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from vre_dispatch.models.config import DispatchConfig, ExecutorKind, LedgerBackend

_TRUE = {"1", "true", "yes", "on"}


def _decimal(value: object) -> Decimal:
    # str() first so TOML floats like 0.2 stay exact
    return Decimal(str(value))


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "VRE_DISPATCH_",
) -> DispatchConfig:
    """Load service configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (VRE_DISPATCH_WEBHOOK_SECRET, etc.)
        2. TOML config file
        3. Defaults from DispatchConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = DispatchConfig()

    # ── Server section ─────────────────────────────────────
    server = raw.get("server", {})
    if v := server.get("host"):
        cfg.host = str(v)
    if v := server.get("port"):
        cfg.port = int(v)
    if v := server.get("webhook_secret"):
        cfg.webhook_secret = str(v)
    if "debug" in server:
        cfg.debug = bool(server["debug"])
    if v := server.get("log_level"):
        cfg.log_level = str(v)

    # ── Token section ──────────────────────────────────────
    token = raw.get("token", {})
    if v := token.get("mint"):
        cfg.mint = str(v)
    if v := token.get("treasury"):
        cfg.treasury = str(v)
    if v := token.get("unit_price_usd"):
        cfg.unit_price_usd = _decimal(v)
    if v := token.get("decimals"):
        cfg.decimals = int(v)

    # ── Price section ──────────────────────────────────────
    price = raw.get("price", {})
    if v := price.get("url"):
        cfg.price.url = str(v)
    if v := price.get("fallback_rate"):
        cfg.price.fallback_rate = _decimal(v)
    if v := price.get("timeout"):
        cfg.price.timeout = float(v)
    if v := price.get("retries"):
        cfg.price.retries = int(v)

    # ── Solana section ─────────────────────────────────────
    solana = raw.get("solana", {})
    if v := solana.get("rpc_url"):
        cfg.rpc_url = str(v)
    if v := solana.get("authority_key"):
        cfg.authority_key = str(v)
    if v := solana.get("cli_path"):
        cfg.cli_path = str(v)
    if v := solana.get("cli_keypair_path"):
        cfg.cli_keypair_path = str(v)

    # ── Delivery section ───────────────────────────────────
    delivery = raw.get("delivery", {})
    if v := delivery.get("executor"):
        cfg.executor = ExecutorKind(v)
    if "fallback" in delivery:
        cfg.fallback = bool(delivery["fallback"])
    if v := delivery.get("command_timeout"):
        cfg.command_timeout = float(v)

    # ── Firebase section ───────────────────────────────────
    firebase = raw.get("firebase", {})
    if v := firebase.get("database_url"):
        cfg.firebase.database_url = str(v)
    if v := firebase.get("timeout"):
        cfg.firebase.timeout = float(v)
    if v := firebase.get("retries"):
        cfg.firebase.retries = int(v)

    # ── Ledger section ─────────────────────────────────────
    ledger = raw.get("ledger", {})
    if v := ledger.get("backend"):
        cfg.ledger_backend = LedgerBackend(v)
    if v := ledger.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    # Hosting platforms inject a bare PORT; the prefixed one still wins.
    if port := os.environ.get("PORT"):
        cfg.port = int(port)
    if port := os.environ.get(f"{env_prefix}PORT"):
        cfg.port = int(port)
    if secret := os.environ.get(f"{env_prefix}WEBHOOK_SECRET"):
        cfg.webhook_secret = secret
    if key := os.environ.get(f"{env_prefix}AUTHORITY_KEY"):
        cfg.authority_key = key
    if mint := os.environ.get(f"{env_prefix}MINT"):
        cfg.mint = mint
    if treasury := os.environ.get(f"{env_prefix}TREASURY"):
        cfg.treasury = treasury
    if unit_price := os.environ.get(f"{env_prefix}UNIT_PRICE_USD"):
        cfg.unit_price_usd = _decimal(unit_price)
    if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
        cfg.rpc_url = rpc
    if fb := os.environ.get(f"{env_prefix}FIREBASE_URL"):
        cfg.firebase.database_url = fb
    if executor := os.environ.get(f"{env_prefix}EXECUTOR"):
        cfg.executor = ExecutorKind(executor)
    if debug := os.environ.get(f"{env_prefix}DEBUG"):
        cfg.debug = debug.strip().lower() in _TRUE

    # Expand ~ in paths
    cfg.db_path = str(Path(cfg.db_path).expanduser())
    if cfg.cli_keypair_path:
        cfg.cli_keypair_path = str(Path(cfg.cli_keypair_path).expanduser())

    return cfg
