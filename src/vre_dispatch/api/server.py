"""Webhook HTTP surface - aiohttp application and server runner.

Routes:
    POST /webhook/payment   Helius enhanced transactions (or a fiat request)
    POST /webhook           MoonPay delivery requests
    GET  /health            liveness and processed count
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from datetime import datetime, timezone

from aiohttp import web

from vre_dispatch.api.auth import verify_request
from vre_dispatch.dispatcher import PaymentDispatcher
from vre_dispatch.errors import AuthenticationError, ValidationError
from vre_dispatch.ingest.normalizer import is_fiat_request, parse_fiat_request, split_envelope
from vre_dispatch.models.config import DispatchConfig
from vre_dispatch.models.records import ProcessResult

log = logging.getLogger(__name__)

WEBHOOK_PATHS = frozenset({"/webhook", "/webhook/payment"})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status: int, error: str, **extra) -> web.Response:
    return web.json_response({"success": False, "error": error, **extra}, status=status)


class WebhookServer:
    """Request handlers bound to one dispatcher."""

    def __init__(self, dispatcher: PaymentDispatcher, cfg: DispatchConfig) -> None:
        self.dispatcher = dispatcher
        self._cfg = cfg

    def create_app(self) -> web.Application:
        @web.middleware
        async def error_middleware(request: web.Request, handler):
            try:
                return await handler(request)
            except web.HTTPException:
                raise
            except Exception as exc:
                log.exception("Unhandled error on %s %s", request.method, request.path)
                return _error(500, "Internal server error", details=str(exc))

        @web.middleware
        async def auth_middleware(request: web.Request, handler):
            if request.path in WEBHOOK_PATHS and self._cfg.webhook_secret:
                body = await request.read()
                try:
                    method = verify_request(self._cfg.webhook_secret, request.headers, body)
                    log.debug("Webhook authenticated via %s", method)
                except AuthenticationError as exc:
                    if not self._cfg.debug:
                        log.warning("Rejected webhook from %s: %s", request.remote, exc)
                        return _error(401, str(exc))
                    log.warning("Webhook auth failed (%s), continuing in debug mode", exc)
            return await handler(request)

        if not self._cfg.webhook_secret:
            log.warning("No webhook secret configured - webhook authentication is DISABLED")
        elif self._cfg.debug:
            log.warning("Debug mode: webhook authentication failures are logged, not rejected")

        app = web.Application(middlewares=[error_middleware, auth_middleware])
        app.router.add_post("/webhook/payment", self.payment_handler)
        app.router.add_post("/webhook", self.fiat_handler)
        app.router.add_get("/health", self.health_handler)
        return app

    # ── Handlers ───────────────────────────────────────────

    async def health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "timestamp": _now_iso(),
                "processedCount": await self.dispatcher.processed_count(),
                "uptimeSeconds": self.dispatcher.uptime_seconds(),
            }
        )

    async def payment_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid JSON body")

        if isinstance(body, dict) and body.get("test"):
            log.info("Test webhook received")
            return web.json_response({"success": True, "message": "Test webhook received"})
        if is_fiat_request(body):
            return await self._handle_fiat(body)
        if not isinstance(body, (dict, list)):
            return _error(400, "No transaction data")

        results: list[ProcessResult] = []
        for tx in split_envelope(body):
            results.append(await self._process_one(tx))

        delivered = sum(1 for r in results if r.kind == "delivered")
        failed = [r for r in results if not r.success]
        log.info(
            "Webhook processed: %d transactions, %d deliveries, %d failed",
            len(results), delivered, len(failed),
        )
        payload = {
            "success": not failed,
            "processed": len(results),
            "delivered": delivered,
            "results": [r.to_dict() for r in results],
        }
        if failed:
            payload["error"] = "; ".join(r.error or "delivery failed" for r in failed)
            return web.json_response(payload, status=500)
        return web.json_response(payload)

    async def _process_one(self, tx: dict) -> ProcessResult:
        # One bad transaction must not abort the rest of a batch
        try:
            return await self.dispatcher.process_transaction(tx)
        except Exception as exc:
            signature = tx.get("signature")
            log.exception("Transaction processing error for %s", signature)
            return ProcessResult(
                success=False,
                kind="failed",
                signature=signature if isinstance(signature, str) else "",
                error=str(exc) or type(exc).__name__,
            )

    async def fiat_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid JSON body")

        if not is_fiat_request(body):
            source = body.get("source") if isinstance(body, dict) else None
            kind = body.get("type") if isinstance(body, dict) else None
            log.info("Received webhook (not MoonPay): source=%s type=%s", source, kind)
            return web.json_response(
                {
                    "success": True,
                    "message": "Webhook received but not processed",
                    "source": source,
                    "type": kind,
                }
            )
        return await self._handle_fiat(body)

    async def _handle_fiat(self, body: dict) -> web.Response:
        try:
            req = parse_fiat_request(body)
        except ValidationError as exc:
            log.error("Rejected MoonPay request: %s", exc)
            return _error(400, str(exc))

        result = await self.dispatcher.process_fiat_request(req)
        if result.duplicate:
            return web.json_response(
                {
                    "success": True,
                    "duplicate": True,
                    "message": "Purchase already delivered",
                    "purchaseId": req.purchase_id,
                }
            )
        if not result.success:
            return _error(
                500,
                "VRE delivery failed",
                details=result.error,
                userWallet=req.user_wallet,
                moonpayTransactionId=req.moonpay_transaction_id,
            )
        return web.json_response(
            {
                "success": True,
                "message": "MoonPay VRE delivery successful",
                "signature": result.vre_transfer_signature,
                "amount": float(result.vre_delivered or 0),
                "newBalance": float(result.new_balance or 0),
                "process": result.sequence_kind,
                "userWallet": req.user_wallet,
                "moonpayTransactionId": req.moonpay_transaction_id,
                "storage": result.storage_mode,
            }
        )


async def run_server(cfg: DispatchConfig) -> None:
    """Entry point: serve webhooks until SIGINT/SIGTERM."""
    dispatcher = PaymentDispatcher(cfg)
    await dispatcher.start()

    runner = web.AppRunner(WebhookServer(dispatcher, cfg).create_app())
    await runner.setup()
    site = web.TCPSite(runner, cfg.host, cfg.port)
    await site.start()
    log.info("Webhook server listening on http://%s:%d", cfg.host, cfg.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await stop.wait()
    finally:
        log.info("Shutting down webhook server")
        await runner.cleanup()
        await dispatcher.close()
