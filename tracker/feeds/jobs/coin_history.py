"""CoinGecko price history for every supported coin.

Per coin (``history/<id>``):
    updated < 5 days ago    skip
    updated < 89 days ago   90-day window (hourly)
    otherwise / never       365 days (daily), cooldown, then 90 days (hourly)

Coins are processed in market-cap order with a cooldown after each fetched
coin.  The run stops after 15 minutes; remaining coins wait for the next run.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.base import Sample
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob, history_key
from tracker.feeds.jobs.supported_assets import SUPPORTED_ASSETS_KEY
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.coin_history")

# Chained CoinGecko windows (days) per fetch depth
HISTORY_WINDOWS: dict[FetchDepth, tuple[int, ...]] = {
    FetchDepth.SHALLOW: (1,),
    FetchDepth.MEDIUM: (90,),
    FetchDepth.DEEP: (365, 90),
}


class CoinHistoryJob(SyncJob):
    name = "coin_history"
    policy_name = "coin_history"

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
            logger.warning("No supported assets at '%s'; nothing to fetch history for", SUPPORTED_ASSETS_KEY)
            return

        await self._run_datasets(
            result,
            coins.values(),
            self._sync_coin,
            name_of=lambda coin: history_key(coin["id"]),
            budget_ms=self._config.time_budget(self.name),
        )

    async def _sync_coin(self, coin: dict) -> bool:
        coin_id = coin["id"]
        key = history_key(coin_id)
        depth = self._decide(self._register.get_item_and_timestamp(key))
        if depth is FetchDepth.SKIP:
            logger.debug("History for %s is up to date", coin_id)
            return False

        windows = HISTORY_WINDOWS[depth]
        logger.info("Fetching %s history for %s (%s days)", depth.name.lower(), coin_id, "+".join(map(str, windows)))

        samples: list[Sample] = []
        for i, days in enumerate(windows):
            if i > 0:
                await self._cooldown()
            samples.extend(await self._gecko.history(coin_id, days))

        if not samples:
            logger.warning("CoinGecko returned no history for %s; keeping stored series", coin_id)
            await self._cooldown()
            return False

        size = self._merge_into(key, samples)
        logger.debug("History for %s now has %d points", coin_id, size)
        await self._cooldown()
        return True
