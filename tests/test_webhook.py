"""Webhook HTTP surface served by aiohttp and called with httpx."""

from __future__ import annotations

import json

import httpx
import pytest
from aiohttp import web

from vre_dispatch.api.auth import sign_body, verify_request
from vre_dispatch.api.server import WebhookServer
from vre_dispatch.errors import AuthenticationError

from tests.conftest import WEBHOOK_PORT, WEBHOOK_SECRET, make_test_config
from tests.factories import BUYER, OTHER, make_fiat_request, make_native_transfer_tx

BASE_URL = f"http://127.0.0.1:{WEBHOOK_PORT}"


@pytest.fixture
async def serve_webhook(dispatcher):
    """Start the webhook app for `dispatcher` with config overrides.

    Returns an async callable; servers are cleaned up after the test.
    """
    runners: list[web.AppRunner] = []

    async def _serve(**overrides) -> str:
        cfg = make_test_config(**overrides)
        runner = web.AppRunner(WebhookServer(dispatcher, cfg).create_app())
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", WEBHOOK_PORT)
        await site.start()
        runners.append(runner)
        return BASE_URL

    yield _serve
    for runner in runners:
        await runner.cleanup()


async def _post(path: str, payload=None, content: bytes | None = None, headers=None):
    async with httpx.AsyncClient(base_url=BASE_URL, timeout=10.0) as client:
        if content is not None:
            return await client.post(
                path, content=content,
                headers={"Content-Type": "application/json", **(headers or {})},
            )
        return await client.post(path, json=payload, headers=headers)


# ── Test 1: health and test pings ────────────────────────────────


async def test_health_reports_processed_count(serve_webhook):
    url = await serve_webhook()

    async with httpx.AsyncClient() as client:
        before = (await client.get(f"{url}/health")).json()
        await _post("/webhook/payment", make_native_transfer_tx())
        after = (await client.get(f"{url}/health")).json()

    assert before["status"] == "healthy"
    assert before["processedCount"] == 0
    assert "timestamp" in before
    assert after["processedCount"] == 1


async def test_test_ping_is_acknowledged(serve_webhook, chain):
    await serve_webhook()

    resp = await _post("/webhook/payment", {"test": True})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Test webhook received"}
    assert chain.calls == []


# ── Test 2: Helius payment webhooks ──────────────────────────────


async def test_single_transaction_delivered(serve_webhook):
    """Bare transaction object → 200 with one delivered result."""
    await serve_webhook()

    resp = await _post("/webhook/payment", make_native_transfer_tx(signature="sigHttp"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["processed"] == 1
    assert body["delivered"] == 1
    result = body["results"][0]
    assert result["signature"] == "sigHttp"
    assert result["buyer"] == BUYER
    assert result["vreDelivered"] == 1100.0
    assert result["process"] == "transfer_freeze"


async def test_batch_envelope_mixed_outcomes(serve_webhook, chain):
    """{transactions:[payment, non-payment, replay]} → one delivery."""
    await serve_webhook()
    payment = make_native_transfer_tx(signature="sigBatch")

    resp = await _post(
        "/webhook/payment",
        {"transactions": [payment, make_native_transfer_tx(recipient=OTHER), payment]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] == 3
    assert body["delivered"] == 1
    assert body["results"][1]["notPayment"] is True
    assert body["results"][2]["duplicate"] is True
    assert len(chain.transfers) == 1


async def test_dust_payment_in_batch_does_not_fail_request(serve_webhook, chain):
    """A payment worth 0.00 VRE beside a real one → 200, one delivery."""
    await serve_webhook()

    resp = await _post(
        "/webhook/payment",
        [
            make_native_transfer_tx(signature="sigTiny", lamports=1000),
            make_native_transfer_tx(signature="sigFull"),
        ],
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["delivered"] == 1
    assert body["results"][0]["belowMinimum"] is True
    assert body["results"][0]["success"] is True
    assert len(chain.transfers) == 1

    replay = await _post(
        "/webhook/payment", make_native_transfer_tx(signature="sigTiny", lamports=1000),
    )
    assert replay.json()["results"][0]["duplicate"] is True


async def test_wrapped_single_transaction(serve_webhook):
    await serve_webhook()

    resp = await _post("/webhook/payment", {"transaction": make_native_transfer_tx()})

    assert resp.status_code == 200
    assert resp.json()["delivered"] == 1


async def test_array_envelope(serve_webhook):
    await serve_webhook()

    resp = await _post(
        "/webhook/payment",
        [make_native_transfer_tx(), make_native_transfer_tx(recipient=OTHER)],
    )

    assert resp.json()["processed"] == 2
    assert resp.json()["delivered"] == 1


async def test_delivery_failure_is_500(serve_webhook, chain):
    await serve_webhook()
    chain.fail_at = "freeze"

    resp = await _post("/webhook/payment", make_native_transfer_tx())

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"].startswith("freeze:")
    assert body["delivered"] == 0


async def test_unexpected_error_is_isolated_per_transaction(serve_webhook, dispatcher):
    class BrokenOracle:
        async def get_rate(self):
            raise RuntimeError("price feed exploded")

    dispatcher.oracle = BrokenOracle()
    await serve_webhook()

    resp = await _post(
        "/webhook/payment",
        [make_native_transfer_tx(), make_native_transfer_tx(recipient=OTHER)],
    )

    assert resp.status_code == 500
    body = resp.json()
    assert body["processed"] == 2
    assert "price feed exploded" in body["error"]
    assert body["results"][1]["notPayment"] is True


async def test_invalid_json_is_400(serve_webhook):
    await serve_webhook()

    resp = await _post("/webhook/payment", content=b"{not json")

    assert resp.status_code == 400
    assert resp.json()["success"] is False


async def test_non_object_body_is_400(serve_webhook):
    await serve_webhook()

    resp = await _post("/webhook/payment", content=b'"hello"')

    assert resp.status_code == 400
    assert resp.json()["error"] == "No transaction data"


# ── Test 3: MoonPay delivery requests ────────────────────────────


async def test_moonpay_delivery(serve_webhook, mock_sink):
    await serve_webhook()

    resp = await _post("/webhook", make_fiat_request(purchase_id="p-http", vre_amount=250))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "MoonPay VRE delivery successful"
    assert body["amount"] == 250.0
    assert body["newBalance"] == 250.0
    assert body["process"] == "transfer_freeze"
    assert body["userWallet"] == BUYER
    assert body["moonpayTransactionId"] == "mp_tx_123"
    assert body["signature"]
    assert mock_sink.record_calls[0][0] == "p-http"


async def test_moonpay_missing_fields_is_400(serve_webhook, chain):
    await serve_webhook()
    body = make_fiat_request()
    del body["user_wallet"]

    resp = await _post("/webhook", body)

    assert resp.status_code == 400
    assert "Missing required fields" in resp.json()["error"]
    assert chain.calls == []


async def test_moonpay_delivery_failure_is_500(serve_webhook, chain):
    await serve_webhook()
    chain.fail_at = "create"

    resp = await _post("/webhook", make_fiat_request())

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "VRE delivery failed"
    assert body["details"].startswith("create:")


async def test_moonpay_duplicate(serve_webhook, chain):
    await serve_webhook()
    body = make_fiat_request(purchase_id="p-twice")

    await _post("/webhook", body)
    resp = await _post("/webhook", body)

    assert resp.status_code == 200
    assert resp.json()["duplicate"] is True
    assert len(chain.transfers) == 1


async def test_other_webhook_sources_not_processed(serve_webhook, chain):
    await serve_webhook()

    resp = await _post("/webhook", {"source": "stripe", "type": "charge"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Webhook received but not processed"
    assert body["source"] == "stripe"
    assert chain.calls == []


async def test_fiat_request_on_payment_route(serve_webhook):
    await serve_webhook()

    resp = await _post("/webhook/payment", make_fiat_request(vre_amount="12.5"))

    assert resp.status_code == 200
    assert resp.json()["amount"] == 12.5


# ── Test 4: authentication ───────────────────────────────────────


async def test_missing_credentials_rejected(serve_webhook, chain):
    """Secret configured, no credentials → 401 and nothing processed."""
    await serve_webhook(webhook_secret=WEBHOOK_SECRET)

    resp = await _post("/webhook/payment", make_native_transfer_tx())

    assert resp.status_code == 401
    assert resp.json()["success"] is False
    assert chain.calls == []


async def test_wrong_bearer_rejected(serve_webhook, chain):
    await serve_webhook(webhook_secret=WEBHOOK_SECRET)

    resp = await _post(
        "/webhook", make_fiat_request(), headers={"Authorization": "Bearer wrong"},
    )

    assert resp.status_code == 401
    assert chain.calls == []


async def test_bearer_accepted(serve_webhook):
    await serve_webhook(webhook_secret=WEBHOOK_SECRET)

    resp = await _post(
        "/webhook/payment", make_native_transfer_tx(),
        headers={"Authorization": f"Bearer {WEBHOOK_SECRET}"},
    )

    assert resp.status_code == 200
    assert resp.json()["delivered"] == 1


@pytest.mark.parametrize("header", ["X-Signature", "X-Webhook-Signature"])
async def test_hmac_signature_accepted(serve_webhook, header):
    await serve_webhook(webhook_secret=WEBHOOK_SECRET)
    raw = json.dumps(make_native_transfer_tx()).encode()

    resp = await _post(
        "/webhook/payment", content=raw, headers={header: sign_body(WEBHOOK_SECRET, raw)},
    )

    assert resp.status_code == 200
    assert resp.json()["delivered"] == 1


async def test_hmac_over_different_body_rejected(serve_webhook):
    await serve_webhook(webhook_secret=WEBHOOK_SECRET)
    signed = json.dumps({"test": True}).encode()
    sent = json.dumps(make_native_transfer_tx()).encode()

    resp = await _post(
        "/webhook/payment", content=sent,
        headers={"X-Signature": sign_body(WEBHOOK_SECRET, signed)},
    )

    assert resp.status_code == 401


async def test_debug_mode_logs_and_continues(serve_webhook):
    """debug=True → bad credentials are logged, request still processed."""
    await serve_webhook(webhook_secret=WEBHOOK_SECRET, debug=True)

    resp = await _post(
        "/webhook/payment", make_native_transfer_tx(),
        headers={"Authorization": "Bearer wrong"},
    )

    assert resp.status_code == 200
    assert resp.json()["delivered"] == 1


async def test_health_is_not_authenticated(serve_webhook):
    url = await serve_webhook(webhook_secret=WEBHOOK_SECRET)

    async with httpx.AsyncClient() as client:
        resp = await client.get(f"{url}/health")

    assert resp.status_code == 200


def test_verify_request_methods():
    body = b'{"a":1}'
    sig = sign_body("s3cret", body)

    assert verify_request("s3cret", {"Authorization": "Bearer s3cret"}, body) == "bearer"
    assert verify_request("s3cret", {"X-Signature": sig}, body) == "hmac"
    assert verify_request("s3cret", {"X-Webhook-Signature": f"sha256={sig}"}, body) == "hmac"

    with pytest.raises(AuthenticationError, match="Missing"):
        verify_request("s3cret", {}, body)
    with pytest.raises(AuthenticationError, match="Invalid"):
        verify_request("s3cret", {"Authorization": "Basic s3cret"}, body)
    with pytest.raises(AuthenticationError, match="Invalid"):
        verify_request("s3cret", {"X-Signature": sig}, b'{"a":2}')

