"""Shared fixtures and canned vendor responses for feed sync tests."""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tracker.feeds.adapters import EcbClient, FearGreedClient, GeckoClient, YahooClient
from tracker.feeds.clock import ManualClock
from tracker.feeds.config_loader import SyncConfig, load_sync_config
from tracker.feeds.fetch import RetryingFetcher
from tracker.feeds.register import InMemoryRegister

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# 2024-01-05T12:00:00Z
TEST_NOW = 1_704_456_000_000


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled sync config for tests."""
    return load_sync_config()


@pytest.fixture
def now() -> int:
    return TEST_NOW


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(TEST_NOW)


@pytest.fixture
def register(clock: ManualClock) -> InMemoryRegister:
    return InMemoryRegister(clock)


@pytest.fixture
def mock_fetcher(clock: ManualClock) -> MagicMock:
    """Stand-in RetryingFetcher whose ``fetch`` is an AsyncMock."""
    fetcher = MagicMock(spec=RetryingFetcher)
    fetcher.clock = clock
    fetcher.fetch = AsyncMock(return_value=None)
    return fetcher


@pytest.fixture
def make_fetcher(clock: ManualClock) -> Callable[..., RetryingFetcher]:
    """Build a real RetryingFetcher over an httpx.MockTransport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], seed: int = 42) -> RetryingFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RetryingFetcher(clock, http_client=client, rng=random.Random(seed))

    return _make


# ---------------------------------------------------------------------------
# Vendor client doubles for job tests
# ---------------------------------------------------------------------------


@pytest.fixture
def ecb() -> MagicMock:
    client = MagicMock(spec=EcbClient)
    client.fetch_rates = AsyncMock(return_value={})
    client.fetch_supported_currencies = AsyncMock(return_value=[])
    return client


@pytest.fixture
def gecko() -> MagicMock:
    client = MagicMock(spec=GeckoClient)
    client.supported_coins = AsyncMock(return_value={})
    client.supported_fiat = AsyncMock(return_value=None)
    client.top_coins_with_changes = AsyncMock(return_value=[])
    client.coins_with_sparkline = AsyncMock(return_value=[])
    client.history = AsyncMock(return_value=[])
    return client


@pytest.fixture
def fear_greed() -> MagicMock:
    client = MagicMock(spec=FearGreedClient)
    client.index = AsyncMock(return_value=[])
    return client


@pytest.fixture
def yahoo() -> MagicMock:
    client = MagicMock(spec=YahooClient)
    client.history = AsyncMock(return_value=[])
    return client


# ---------------------------------------------------------------------------
# Canned vendor payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def ecb_daily_xml() -> str:
    return (FIXTURES_DIR / "ecb_daily.xml").read_text()


@pytest.fixture
def ecb_hist_xml() -> str:
    return (FIXTURES_DIR / "ecb_hist.xml").read_text()


@pytest.fixture
def fear_and_greed_raw() -> dict:
    return json.loads((FIXTURES_DIR / "fear_and_greed.json").read_text())


@pytest.fixture
def yahoo_chart_raw() -> dict:
    return json.loads((FIXTURES_DIR / "yahoo_chart.json").read_text())


@pytest.fixture
def gecko_markets_raw() -> list:
    return json.loads((FIXTURES_DIR / "gecko_markets.json").read_text())
