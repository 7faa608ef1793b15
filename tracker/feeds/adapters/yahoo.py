"""Yahoo Finance chart adapter.

Used to backfill price history for coins outside CoinGecko's top ranks.
Coins are quoted as ``<SYMBOL>-USD``.

API: https://query1.finance.yahoo.com/v8/finance/chart/{symbol}
    ?period1=<epoch s>&period2=<epoch s>&interval=<1d|1h|...>

Yahoo answers 404 ("No data found") for unknown symbols and 422 when the
requested interval is not available for the window; both are treated as
"no data" and never retried.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from tracker.feeds.base import Sample, VendorClient, safe_float, safe_int
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.timeutil import SECOND_MS, START_OF_CRYPTO, date_to_ms, to_date_iso

logger = logging.getLogger("tracker.feeds.yahoo")

_YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart"

YAHOO_NOT_FOUND_STATUSES = (404, 422)


class YahooClient(VendorClient):
    SOURCE_ID = "yahoo"
    DISPLAY_NAME = "Yahoo Finance"
    RETRY_PROFILE = "yahoo"

    async def history(self, symbol: str, interval: str, days_ago: int | None = None) -> list[Sample]:
        """Price history for a coin symbol.

        Args:
            symbol:   Coin ticker, e.g. 'btc'.  Queried as 'BTC-USD'.
            interval: Yahoo interval string ('1d', '1h', ...).
            days_ago: Window start as whole days back from now.  None fetches
                      everything since 2009-01-01.

        Returns:
            One Sample per quote (close, else adjusted close, else open).
            Empty when Yahoo has no data for the symbol or interval.
        """
        ticker = f"{symbol.upper()}-USD"
        now = self._clock.now()
        if days_ago:
            start = date_to_ms(date.fromisoformat(to_date_iso(now, days_ago)))
        else:
            start = date_to_ms(START_OF_CRYPTO)

        url = f"{_YAHOO_CHART_URL}/{ticker}"
        data = await self._get(
            url,
            params={
                "period1": start // SECOND_MS,
                "period2": now // SECOND_MS,
                "interval": interval,
            },
            not_found_statuses=YAHOO_NOT_FOUND_STATUSES,
        )
        if data is None:
            logger.warning("Yahoo: no %s data for %s", interval, ticker)
            return []
        return parse_chart(data, url)


def parse_chart(data: Any, url: str = _YAHOO_CHART_URL) -> list[Sample]:
    """Flatten a v8 chart response into Samples.

    Raises:
        VendorShapeError: If the payload is not a chart response.
    """
    chart = data.get("chart") if isinstance(data, dict) else None
    if not isinstance(chart, dict):
        raise VendorShapeError(f"Unexpected Yahoo payload from {url}")

    if chart.get("error"):
        logger.warning("Yahoo: %s reported %s", url, chart["error"])
        return []

    results = chart.get("result") or []
    if not isinstance(results, list):
        raise VendorShapeError(f"Unexpected Yahoo result list from {url}")
    if not results:
        return []
    result = results[0]
    if not isinstance(result, dict):
        raise VendorShapeError(f"Unexpected Yahoo result from {url}: {result!r}")

    timestamps = result.get("timestamp") or []
    indicators = result.get("indicators") or {}
    if not isinstance(timestamps, list) or not isinstance(indicators, dict):
        raise VendorShapeError(f"Unexpected Yahoo indicators from {url}")
    quote = _first_series(indicators, "quote", url)
    adjclose = _first_series(indicators, "adjclose", url).get("adjclose") or []
    closes = quote.get("close") or []
    opens = quote.get("open") or []
    if not all(isinstance(v, list) for v in (closes, adjclose, opens)):
        raise VendorShapeError(f"Unexpected Yahoo price arrays from {url}")

    samples: list[Sample] = []
    for i, seconds in enumerate(timestamps):
        ts = safe_int(seconds)
        if ts is None:
            continue
        value = _first_present(_at(closes, i), _at(adjclose, i), _at(opens, i))
        samples.append(Sample(ts * SECOND_MS, value))
    return samples


def _at(values: list, index: int) -> float | None:
    return safe_float(values[index]) if index < len(values) else None


def _first_series(indicators: dict, name: str, url: str) -> dict:
    """First entry of an indicator list, ``{}`` when the list is absent."""
    entries = indicators.get(name) or [{}]
    if not isinstance(entries, list) or not isinstance(entries[0], dict):
        raise VendorShapeError(f"Unexpected Yahoo {name} indicator from {url}")
    return entries[0]


def _first_present(*values: float | None) -> float | None:
    for value in values:
        if value is not None:
            return value
    return None
