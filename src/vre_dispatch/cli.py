"""CLI entry point for the vre_dispatch webhook service."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from decimal import Decimal, InvalidOperation

import click

from vre_dispatch.api.server import run_server
from vre_dispatch.api.watcher import wait_for_delivery
from vre_dispatch.config import load_config
from vre_dispatch.dispatcher import PaymentDispatcher
from vre_dispatch.models.config import ExecutorKind
from vre_dispatch.pricing.oracle import CoinGeckoPriceOracle, amount_owed
from vre_dispatch.solana.cli import find_spl_token
from vre_dispatch.storage.firebase import FirebaseRecordSink
from vre_dispatch.storage.sqlite import SQLiteStateStore


def _mask(value: str) -> str:
    return "***configured***" if value else "(not set)"


def _decimal_arg(value: str, name: str) -> Decimal:
    try:
        d = Decimal(value)
    except InvalidOperation:
        click.echo(f"Error: {name} must be a number, got {value!r}.", err=True)
        sys.exit(1)
    if not d.is_finite() or d <= 0:
        click.echo(f"Error: {name} must be positive.", err=True)
        sys.exit(1)
    return d


def _require_signer(cfg):
    """Exit with error if neither delivery mechanism can sign."""
    if not cfg.authority_key and not find_spl_token(cfg.cli_path):
        click.echo("Error: No signing authority configured.", err=True)
        click.echo(
            "Set VRE_DISPATCH_AUTHORITY_KEY or install spl-token (solana.cli_path).", err=True
        )
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """vre_dispatch - VRE token sale payment webhook and delivery service."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Server ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the webhook server."""
    cfg = load_config(ctx.obj["config_path"])
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())

    click.echo(f"Starting vre_dispatch on {cfg.host}:{cfg.port} (executor: {cfg.executor.value})")
    asyncio.run(run_server(cfg))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show service configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"Listen:      {cfg.host}:{cfg.port}")
    click.echo(f"Debug:       {cfg.debug}")
    click.echo(f"Mint:        {cfg.mint}")
    click.echo(f"Treasury:    {cfg.treasury}")
    click.echo(f"Unit price:  ${cfg.unit_price_usd}")
    click.echo(f"RPC URL:     {cfg.rpc_url}")
    click.echo(f"Executor:    {cfg.executor.value} (fallback {'on' if cfg.fallback else 'off'})")
    click.echo(f"CLI path:    {cfg.cli_path or '(auto-detect)'}")
    click.echo(f"Firebase:    {cfg.firebase.database_url}")
    click.echo(f"Ledger:      {cfg.ledger_backend.value}")
    click.echo(f"DB path:     {cfg.db_path}")
    click.echo(f"Secret:      {_mask(cfg.webhook_secret)}")
    click.echo(f"Authority:   {_mask(cfg.authority_key)}")


@cli.command()
@click.argument("sol_amount")
@click.pass_context
def quote(ctx: click.Context, sol_amount: str) -> None:
    """Show the SOL/USD rate and VRE owed for SOL_AMOUNT."""
    cfg = load_config(ctx.obj["config_path"])
    native = _decimal_arg(sol_amount, "SOL_AMOUNT")

    async def _quote():
        oracle = CoinGeckoPriceOracle(
            cfg.price.url, cfg.price.fallback_rate, cfg.price.timeout, cfg.price.retries,
        )
        rate = await oracle.get_rate()
        owed = amount_owed(native, rate.rate, cfg.unit_price_usd)
        click.echo(f"SOL price:   ${rate.rate}{' (fallback)' if rate.fallback else ''}")
        click.echo(f"Unit price:  ${cfg.unit_price_usd}")
        click.echo(f"{native} SOL = {owed} VRE")

    asyncio.run(_quote())


@cli.command()
@click.argument("wallet")
@click.pass_context
def account(ctx: click.Context, wallet: str) -> None:
    """Show the VRE token account state for WALLET."""
    cfg = load_config(ctx.obj["config_path"])

    async def _account():
        dispatcher = PaymentDispatcher(cfg)
        resolver = dispatcher.sdk if cfg.executor == ExecutorKind.SDK else dispatcher.cli
        try:
            state = await resolver.resolve(wallet)
        finally:
            await dispatcher.close()

        if not state.exists:
            click.echo("Account:     NOT FOUND")
            return
        click.echo(f"Account:     {state.account_address or '(unknown)'}")
        click.echo(f"Balance:     {state.balance} VRE")
        click.echo(f"State:       {'FROZEN' if state.frozen else 'UNFROZEN'}")

    asyncio.run(_account())


# ── Delivery ───────────────────────────────────────────


@cli.command()
@click.argument("wallet")
@click.argument("amount")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def deliver(ctx: click.Context, wallet: str, amount: str, yes: bool) -> None:
    """Deliver AMOUNT VRE to WALLET and lock it (manual repair).

    Runs the same resolve -> create/thaw -> transfer -> freeze sequence as
    webhook deliveries and writes a delivery record.
    """
    cfg = load_config(ctx.obj["config_path"])
    _require_signer(cfg)
    vre_amount = _decimal_arg(amount, "AMOUNT")

    click.echo(f"Delivering {vre_amount} VRE to {wallet}")
    click.echo(f"  Mint:      {cfg.mint}")
    click.echo(f"  Executor:  {cfg.executor.value}")
    if not yes:
        click.confirm("\nProceed with delivery?", abort=True)

    async def _deliver():
        dispatcher = PaymentDispatcher(cfg)
        await dispatcher.start()
        try:
            result = await dispatcher.deliver_manual(wallet, vre_amount)
            if not result.success:
                click.echo(f"Delivery failed: {result.error}", err=True)
                sys.exit(1)

            record = await dispatcher.sink.record(
                f"manual_{int(time.time() * 1000)}",
                result.transfer_signature,
                result.amount_delivered,
                result.new_balance,
                {"source": "manual", "buyer": wallet, "executor": result.executor},
            )
            click.echo(f"Delivered:   {result.amount_delivered} VRE")
            click.echo(f"Process:     {result.sequence_kind.value if result.sequence_kind else '-'}")
            click.echo(f"Signature:   {result.transfer_signature}")
            click.echo(f"New balance: {result.new_balance} VRE (frozen)")
            click.echo(f"Record:      {record.purchase_id} ({record.storage_mode})")
        finally:
            await dispatcher.close()

    asyncio.run(_deliver())


@cli.command()
@click.argument("signature")
@click.option("--attempts", type=int, default=20, help="Number of checks before giving up")
@click.option("--interval", type=float, default=3.0, help="Seconds between checks")
@click.pass_context
def watch(ctx: click.Context, signature: str, attempts: int, interval: float) -> None:
    """Wait for the delivery record of payment SIGNATURE."""
    cfg = load_config(ctx.obj["config_path"])

    async def _watch():
        sink = FirebaseRecordSink(
            cfg.firebase.database_url, cfg.firebase.timeout, cfg.firebase.retries,
        )
        click.echo(f"Waiting for delivery of {signature[:16]}...")
        record = await wait_for_delivery(
            sink, signature, attempts=attempts, interval=interval,
        )
        if record is None:
            click.echo("No delivery recorded yet. It may still complete later.")
            return
        click.echo(f"Delivered:   {record.get('vre_delivered_amount')} VRE")
        click.echo(f"Signature:   {record.get('vre_delivery_signature')}")
        click.echo(f"Balance:     {record.get('vre_total_balance')} VRE")
        click.echo(f"Record:      {record.get('purchase_id')}")

    asyncio.run(_watch())


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Push locally kept delivery records to Firebase."""
    cfg = load_config(ctx.obj["config_path"])

    async def _sync():
        store = SQLiteStateStore(cfg.db_path)
        await store.initialize()
        try:
            pending = await store.get_local_deliveries(unsynced_only=True)
            if not pending:
                click.echo("No pending local records.")
                return
            sink = FirebaseRecordSink(
                cfg.firebase.database_url, cfg.firebase.timeout, cfg.firebase.retries,
                local_store=store,
            )
            synced = await sink.sync_pending()
            click.echo(f"Synced {synced}/{len(pending)} local records.")
        finally:
            await store.close()

    asyncio.run(_sync())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
