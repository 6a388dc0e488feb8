"""Shared fixtures for vre_dispatch tests."""

from __future__ import annotations

from decimal import Decimal

import pytest
from aiohttp import web
from pytest_metadata.plugin import metadata_key

from vre_dispatch.delivery.sequencer import DeliverySequencer, FallbackSequencer
from vre_dispatch.dispatcher import PaymentDispatcher
from vre_dispatch.models.config import DispatchConfig, FirebaseConfig, PriceConfig
from vre_dispatch.storage.sqlite import SQLiteStateStore

from tests.factories import TREASURY
from tests.mocks import MockChain, MockOracle, MockSink

MINT = "FJHQH4WTDukwyeFov2H7U9GZSiy4PPYLeuMGpbCujZd9"
WEBHOOK_SECRET = "test-webhook-secret"

# Fixed local ports for fake HTTP collaborators
FIREBASE_PORT = 9281
PRICE_PORT = 9282
WEBHOOK_PORT = 9283
CLOSED_PORT = 9289  # nothing listens here


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add token info to the report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Mint"] = MINT
    meta["Treasury"] = TREASURY
    meta["Unit Price"] = "$0.20"


def make_test_config(**overrides) -> DispatchConfig:
    """Build a DispatchConfig suitable for testing."""
    defaults = dict(
        host="127.0.0.1",
        port=WEBHOOK_PORT,
        webhook_secret="",
        mint=MINT,
        treasury=TREASURY,
        unit_price_usd=Decimal("0.20"),
        rpc_url="http://127.0.0.1:8899",
        cli_path="/nonexistent/spl-token",
        db_path=":memory:",
        price=PriceConfig(
            url=f"http://127.0.0.1:{CLOSED_PORT}/simple/price",
            fallback_rate=Decimal("220"),
            timeout=1.0,
            retries=1,
        ),
        firebase=FirebaseConfig(
            database_url=f"http://127.0.0.1:{CLOSED_PORT}",
            timeout=1.0,
            retries=1,
        ),
    )
    defaults.update(overrides)
    return DispatchConfig(**defaults)


@pytest.fixture
def test_config():
    """Default DispatchConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStateStore."""
    s = SQLiteStateStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def chain():
    return MockChain()


@pytest.fixture
def mock_oracle():
    return MockOracle(rate=Decimal("220"))


@pytest.fixture
def mock_sink():
    return MockSink()


@pytest.fixture
async def dispatcher(test_config, chain, mock_oracle, mock_sink):
    """PaymentDispatcher with mocked chain, oracle and sink."""
    d = PaymentDispatcher(test_config)
    d.oracle = mock_oracle
    d.sink = mock_sink
    d.sequencer = FallbackSequencer(DeliverySequencer(chain, chain, test_config.decimals))
    await d.start()
    yield d
    await d.close()


# ── Fake HTTP collaborators ──────────────────────────────────────


class FakeFirebase:
    """State behind the fake Realtime Database server."""

    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.fail_status: int | None = None
        self.requests: list[tuple[str, str]] = []


@pytest.fixture
async def firebase_server():
    """Local HTTP server speaking the Realtime Database REST subset we use.

    Returns (base_url, FakeFirebase).
    """
    state = FakeFirebase()

    async def handle_put(request):
        state.requests.append(("PUT", request.path))
        if state.fail_status:
            return web.json_response({"error": "unavailable"}, status=state.fail_status)
        doc = await request.json()
        state.documents[request.match_info["purchase_id"]] = doc
        return web.json_response(doc)

    async def handle_list(request):
        state.requests.append(("GET", request.path))
        if state.fail_status:
            return web.json_response({"error": "unavailable"}, status=state.fail_status)
        # An empty collection reads back as null
        return web.json_response(state.documents or None)

    app = web.Application()
    app.router.add_put("/purchases/{purchase_id}.json", handle_put)
    app.router.add_get("/purchases.json", handle_list)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", FIREBASE_PORT)
    await site.start()
    yield f"http://127.0.0.1:{FIREBASE_PORT}", state
    await runner.cleanup()


class FakePriceFeed:
    def __init__(self) -> None:
        self.body: object = {"solana": {"usd": 220}}
        self.status = 200
        self.hits = 0


@pytest.fixture
async def price_server():
    """Local HTTP server standing in for the CoinGecko simple price API.

    Returns (url, FakePriceFeed).
    """
    feed = FakePriceFeed()

    async def handle_price(request):
        feed.hits += 1
        return web.json_response(feed.body, status=feed.status)

    app = web.Application()
    app.router.add_get("/api/v3/simple/price", handle_price)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", PRICE_PORT)
    await site.start()
    yield f"http://127.0.0.1:{PRICE_PORT}/api/v3/simple/price", feed
    await runner.cleanup()
