"""European Central Bank reference-rate adapter.

The ECB publishes EUR-based daily reference rates as XML.  This adapter
rebases them onto USD (``rate / usd``, 4 decimals, EUR included as
``1 / usd``), drops anything before 2009 and projects the latest published
day forward so weekends and holidays always have a rate.

API base: https://www.ecb.europa.eu/stats/eurofxref

Files used:
    /eurofxref-hist.xml      Full history since 1999
    /eurofxref-hist-90d.xml  Last 90 days
    /eurofxref-daily.xml     Latest business day
"""

from __future__ import annotations

import logging
from datetime import date
from xml.etree import ElementTree as ET

from tracker.feeds.base import VendorClient, safe_float
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.fetch import text_body
from tracker.feeds.staleness import FetchDepth
from tracker.feeds.timeutil import START_OF_CRYPTO, next_day

logger = logging.getLogger("tracker.feeds.ecb")

_ECB_BASE = "https://www.ecb.europa.eu/stats/eurofxref"

ECB_URLS: dict[FetchDepth, str] = {
    FetchDepth.DEEP: f"{_ECB_BASE}/eurofxref-hist.xml",
    FetchDepth.MEDIUM: f"{_ECB_BASE}/eurofxref-hist-90d.xml",
    FetchDepth.SHALLOW: f"{_ECB_BASE}/eurofxref-daily.xml",
}

# {ISO date: {currency: USD-based rate}}
DailyRates = dict[str, dict[str, float]]


class EcbClient(VendorClient):
    """ECB euro foreign exchange reference rates, rebased onto USD."""

    SOURCE_ID = "ecb"
    DISPLAY_NAME = "European Central Bank"
    RETRY_PROFILE = "ecb"

    async def fetch_rates(self, depth: FetchDepth) -> DailyRates:
        """Fetch USD-based rates for the window implied by ``depth``.

        DEEP is the full history, MEDIUM the last 90 days and SHALLOW the
        latest business day.  The latest day is projected forward by the
        configured number of days.

        Returns:
            ``{date: {currency: rate}}``; empty when the file was not found.

        Raises:
            ValueError:       If ``depth`` is SKIP.
            VendorShapeError: If the XML cannot be parsed.
        """
        if depth not in ECB_URLS:
            raise ValueError(f"No ECB file for fetch depth {depth.name}")

        url = ECB_URLS[depth]
        logger.info("ECB: fetching %s rates from %s", depth.name.lower(), url)
        raw_xml = await self._get(url, headers={"Accept": "application/xml"}, transform=text_body)
        if not raw_xml:
            logger.warning("ECB: no data returned from %s", url)
            return {}

        return parse_rates(raw_xml, projection_days=self._config.batching.projection_days)

    async def fetch_supported_currencies(self) -> list[str]:
        """Currency codes present in the latest daily file (EUR first)."""
        rates = await self.fetch_rates(FetchDepth.SHALLOW)
        if not rates:
            return []
        latest = max(rates)
        return list(rates[latest])


# ---------------------------------------------------------------------------
# XML parsing
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_rates(raw_xml: str, projection_days: int = 7) -> DailyRates:
    """Parse an ECB eurofxref document into USD-based daily rates.

    Raises:
        VendorShapeError: On malformed XML or a day without a USD rate.
    """
    try:
        root = ET.fromstring(raw_xml)
    except ET.ParseError as exc:
        raise VendorShapeError(f"ECB XML is malformed: {exc}") from exc

    result: DailyRates = {}
    for cube in root.iter():
        if _local_name(cube.tag) != "Cube" or "time" not in cube.attrib:
            continue
        day = cube.attrib["time"]
        try:
            if date.fromisoformat(day) < START_OF_CRYPTO:
                continue
        except ValueError as exc:
            raise VendorShapeError(f"ECB cube has an invalid date {day!r}") from exc
        result[day] = _rebase_to_usd(day, cube)

    if not result:
        logger.warning("ECB: document contained no usable daily cubes")
        return result

    latest = max(result)
    follow_up = latest
    for _ in range(projection_days):
        follow_up = next_day(follow_up)
        result[follow_up] = dict(result[latest])
    return result


def _rebase_to_usd(day: str, cube: ET.Element) -> dict[str, float]:
    eur_rates: dict[str, float] = {}
    for child in cube:
        currency = child.attrib.get("currency")
        rate = safe_float(child.attrib.get("rate"))
        if currency and rate:
            eur_rates[currency] = rate

    usd = eur_rates.get("USD")
    if not usd:
        raise VendorShapeError(f"ECB cube for {day} has no USD rate")

    rates = {"EUR": round(1 / usd, 4)}
    for currency, rate in eur_rates.items():
        rates[currency] = round(rate / usd, 4)
    return rates
