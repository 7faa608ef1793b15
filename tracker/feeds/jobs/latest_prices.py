"""Latest prices for the coins that need them most.

A coin is eligible when its ``history/<id>`` is stale for its market-cap
rank (tiered policy: top 100 every 5 minutes, top 200 hourly, top 500 daily,
everyone weekly).  Eligible coins are fetched with their 7-day sparkline;
the current price plus every sparkline point newer than the newest stored
point is merged into the history.  TopCoinsJob runs first and already stores
the current price of the top coins, so for them the gap fill usually adds
nothing new.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.base import Sample, latest_timestamp
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob, history_key, naming_dataset
from tracker.feeds.jobs.supported_assets import SUPPORTED_ASSETS_KEY
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth
from tracker.feeds.timeutil import WEEK_MS

logger = logging.getLogger("tracker.feeds.jobs.latest_prices")


def sparkline_samples(prices: list, ts: int, newer_than: int) -> list[Sample]:
    """Spread a 7-day sparkline evenly over the week ending at ``ts``.

    Only points strictly between ``newer_than`` and ``ts`` are returned.
    """
    if not prices:
        return []
    step = WEEK_MS / len(prices)
    week_start = ts - WEEK_MS
    samples = []
    for i, price in enumerate(prices):
        spark_ts = int(week_start + i * step)
        if newer_than < spark_ts < ts:
            samples.append(Sample(spark_ts, price))
    return samples


class LatestPricesJob(SyncJob):
    name = "latest_prices"
    policy_name = "asset_prices"

    def __init__(
        self,
        register: Register,
        clock: Clock,
        gecko: GeckoClient,
        config: SyncConfig | None = None,
    ) -> None:
        super().__init__(register, clock, config=config)
        self._gecko = gecko

    async def sync(self, result: JobResult) -> None:
        coins: dict[str, dict] = self._register.get_item(SUPPORTED_ASSETS_KEY) or {}
        if not coins:
            logger.warning("No supported assets at '%s'; no prices to update", SUPPORTED_ASSETS_KEY)
            return

        now = self._clock.now()
        eligible: list[str] = []
        for coin in coins.values():
            key = history_key(coin["id"])
            last_updated = self._register.get_item_last_updated(key)
            if self.policy.decide(last_updated, now, coin.get("market_cap_rank")) is FetchDepth.SKIP:
                result.skipped.append(key)
            else:
                eligible.append(coin["id"])

        if not eligible:
            logger.info("Latest prices are up to date for all %d coins", len(coins))
            return

        logger.info("Updating latest prices for %d/%d coins", len(eligible), len(coins))
        with naming_dataset("latest-prices"):
            priced = await self._gecko.coins_with_sparkline(eligible)

        await self._run_datasets(
            result,
            priced,
            self._merge_latest,
            name_of=lambda coin: history_key(coin["id"]),
        )

    async def _merge_latest(self, coin: dict) -> bool:
        key = history_key(coin["id"])
        ts = coin["ts"]
        newest_stored = latest_timestamp(self._register.get_item(key)) or 0

        samples = [Sample(ts, coin.get("current_price"))]
        samples.extend(sparkline_samples(coin.get("sparkline_in_7d") or [], ts, newest_stored))
        self._merge_into(key, samples)
        return True
