"""CoinGecko API v3 adapter.

The public API is aggressively rate limited, so every call uses the
'coingecko' retry profile (one-minute backoff unit) and paged or chunked
requests are separated by the configured cooldown.

Environment variables:
    TRACKER_COINGECKO_API_KEY   Optional demo API key, sent as a header

API base: https://api.coingecko.com/api/v3

Endpoints used:
    /coins/markets                    Coins ordered by market cap (paged)
    /coins/{id}/market_chart          Price history for one coin
    /simple/supported_vs_currencies   Quote currencies CoinGecko prices in
"""

from __future__ import annotations

import logging
import re
from typing import Any

from tracker.feeds.base import Sample, VendorClient, safe_float, safe_int
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.fetch import RetryingFetcher

logger = logging.getLogger("tracker.feeds.gecko")

_GECKO_API_BASE = "https://api.coingecko.com/api/v3"
_MARKETS_URL = f"{_GECKO_API_BASE}/coins/markets"
_SUPPORTED_FIAT_URL = f"{_GECKO_API_BASE}/simple/supported_vs_currencies"

_API_KEY_HEADER = "x-cg-demo-api-key"

CHANGE_PERIODS = ("24h", "7d", "14d", "30d", "200d", "1y")

_IMAGE_VERSION_RE = re.compile(r"\?\d+$")


class GeckoClient(VendorClient):
    """CoinGecko market data: coin lists, latest prices and price history."""

    SOURCE_ID = "coingecko"
    DISPLAY_NAME = "CoinGecko"
    RETRY_PROFILE = "coingecko"

    def __init__(
        self,
        fetcher: RetryingFetcher,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
        api_key: str | None = None,
    ) -> None:
        super().__init__(fetcher, config=config, clock=clock)
        self._api_key = api_key

    async def _get(self, url: str, **options: Any) -> Any:
        if self._api_key:
            headers = {_API_KEY_HEADER: self._api_key, **(options.pop("headers", None) or {})}
            options["headers"] = headers
        return await super()._get(url, **options)

    # ------------------------------------------------------------------
    # Coin lists
    # ------------------------------------------------------------------

    async def supported_coins(self) -> dict[str, dict]:
        """Fetch the top coins by market cap, keyed by coin id.

        Pages through /coins/markets (``gecko_markets_pages`` pages of
        ``gecko_markets_page_size``).  A short or empty page means the list
        is exhausted; a short page's coins are still included.

        Returns:
            ``{coin_id: coin}`` where each coin carries its position in
            market-cap order as ``index``.
        """
        pages = self._config.batching.gecko_markets_pages
        per_page = self._config.batching.gecko_markets_page_size
        coins: list[dict] = []

        for page in range(1, pages + 1):
            logger.info("CoinGecko: fetching supported coins, page %d/%d", page, pages)
            data = await self._get(
                _MARKETS_URL,
                params={
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": per_page,
                    "page": page,
                    "sparkline": "false",
                    "locale": "en",
                },
            )
            rows = _expect_list(data, _MARKETS_URL)
            coins.extend(to_coin(raw) for raw in rows)

            if len(rows) < per_page:
                break
            if page < pages:
                await self.cooldown()

        return to_coin_dictionary(coins)

    async def supported_fiat(self) -> list[str] | None:
        """Quote currencies CoinGecko can price in (lower-case codes)."""
        data = await self._get(_SUPPORTED_FIAT_URL)
        if data is None:
            return None
        return [str(c) for c in _expect_list(data, _SUPPORTED_FIAT_URL)]

    # ------------------------------------------------------------------
    # Latest prices
    # ------------------------------------------------------------------

    async def top_coins_with_changes(self, n: int = 500) -> list[dict]:
        """Top ``n`` coins with current price and price-change percentages."""
        per_page = self._config.batching.gecko_markets_page_size
        pages = -(-n // per_page)
        coins: list[dict] = []

        for page in range(1, pages + 1):
            data = await self._get(
                _MARKETS_URL,
                params={
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": per_page,
                    "page": page,
                    "sparkline": "false",
                    "price_change_percentage": ",".join(CHANGE_PERIODS),
                },
            )
            ts = self._clock.now()
            for raw in _expect_list(data, _MARKETS_URL):
                coin = to_coin(raw)
                coin["current_price"] = safe_float(raw.get("current_price"))
                for period in CHANGE_PERIODS:
                    field_name = f"price_change_percentage_{period}_in_currency"
                    coin[field_name] = safe_float(raw.get(field_name))
                coin["ts"] = ts
                coins.append(coin)
            if page < pages:
                await self.cooldown()

        return coins[:n]

    async def coins_with_sparkline(self, coin_ids: list[str]) -> list[dict]:
        """Current price plus the 7-day sparkline for each coin id.

        Ids are requested in chunks of ``gecko_sparkline_chunk_size`` with a
        cooldown between chunks.
        """
        chunk_size = self._config.batching.gecko_sparkline_chunk_size
        chunks = [coin_ids[i:i + chunk_size] for i in range(0, len(coin_ids), chunk_size)]
        logger.info(
            "CoinGecko: fetching %d coins with sparkline in %d chunk(s) of %d",
            len(coin_ids), len(chunks), chunk_size,
        )

        coins: list[dict] = []
        for index, chunk in enumerate(chunks, start=1):
            logger.debug("CoinGecko: sparkline chunk %d/%d", index, len(chunks))
            data = await self._get(
                _MARKETS_URL,
                params={
                    "vs_currency": "usd",
                    "ids": ",".join(chunk),
                    "order": "market_cap_desc",
                    "per_page": chunk_size,
                    "page": 1,
                    "sparkline": "true",
                    "price_change_percentage": "24h",
                },
            )
            ts = self._clock.now()
            for raw in _expect_list(data, _MARKETS_URL):
                coin = to_coin(raw)
                coin["current_price"] = safe_float(raw.get("current_price"))
                coin["sparkline_in_7d"] = list((raw.get("sparkline_in_7d") or {}).get("price") or [])
                coin["ts"] = ts
                coins.append(coin)
            if index < len(chunks):
                await self.cooldown()

        return coins

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def history(self, coin_id: str, days: int) -> list[Sample]:
        """USD price history of one coin for the last ``days`` days.

        CoinGecko picks the granularity from the window (5-minutely up to a
        day, hourly up to 90 days, daily beyond).
        """
        url = f"{_GECKO_API_BASE}/coins/{coin_id}/market_chart"
        data = await self._get(url, params={"vs_currency": "usd", "days": days})
        if data is None:
            logger.warning("CoinGecko: no history for %s", coin_id)
            return []
        if not isinstance(data, dict):
            raise VendorShapeError(f"Expected an object from {url}, got {type(data).__name__}")

        samples: list[Sample] = []
        for point in data.get("prices") or []:
            if not isinstance(point, (list, tuple)) or len(point) < 2:
                raise VendorShapeError(f"Unexpected price point {point!r} from {url}")
            ts = safe_int(point[0])
            if ts is None:
                continue
            samples.append(Sample(ts, safe_float(point[1])))
        return samples


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _expect_list(data: Any, url: str) -> list:
    if data is None:
        return []
    if not isinstance(data, list):
        raise VendorShapeError(f"Expected a list from {url}, got {type(data).__name__}")
    return data


def _image_url(image: str | None) -> str | None:
    return _IMAGE_VERSION_RE.sub("", image) if image else image


def _small_image_url(image: str | None) -> str | None:
    large = _image_url(image)
    return large.replace("/large/", "/small/") if large else large


def to_coin(raw: dict) -> dict:
    """Reduce a /coins/markets row to the fields the register keeps."""
    if not isinstance(raw, dict) or "id" not in raw:
        raise VendorShapeError(f"Unexpected coin entry: {raw!r}")
    return {
        "id": raw["id"],
        "symbol": raw.get("symbol"),
        "name": raw.get("name"),
        "image_large_url": _image_url(raw.get("image")),
        "image_small_url": _small_image_url(raw.get("image")),
        "market_cap_rank": safe_int(raw.get("market_cap_rank")),
        "market_cap": safe_float(raw.get("market_cap")),
    }


def to_coin_dictionary(coins: list[dict]) -> dict[str, dict]:
    result: dict[str, dict] = {}
    for index, coin in enumerate(coins):
        result[coin["id"]] = {**coin, "index": index}
    return result
