"""Top coins with price-change percentages.

Stores the top ``top_coins_count`` coins under ``top-assets-with-delta`` and,
since the current price of each is already at hand, merges it into the
coin's ``history/<id>`` series.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.base import Sample
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob, history_key, naming_dataset
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.top_coins")

TOP_COINS_KEY = "top-assets-with-delta"


class TopCoinsJob(SyncJob):
    name = "top_coins"
    policy_name = "top_coins"

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
        entry = self._register.get_item_and_timestamp(TOP_COINS_KEY)
        if self._decide(entry) is FetchDepth.SKIP:
            logger.info("Top coins with deltas are up to date")
            result.skipped.append(TOP_COINS_KEY)
            return

        with naming_dataset(TOP_COINS_KEY):
            coins = await self._gecko.top_coins_with_changes(self._config.batching.top_coins_count)
        if not coins:
            logger.warning("CoinGecko returned no top coins; keeping stored list")
            result.skipped.append(TOP_COINS_KEY)
            return

        logger.info("Fetched %d top coins with price changes", len(coins))
        self._register.set_item(TOP_COINS_KEY, coins)
        result.synced.append(TOP_COINS_KEY)

        await self._run_datasets(
            result,
            coins,
            self._append_latest_price,
            name_of=lambda coin: history_key(coin["id"]),
        )

    async def _append_latest_price(self, coin: dict) -> bool:
        if coin.get("current_price") is None:
            return False
        size = self._merge_into(history_key(coin["id"]), [Sample(coin["ts"], coin["current_price"])])
        logger.debug("Appended latest price of %s (%d points)", coin["id"], size)
        return True
