"""Coin universe from CoinGecko.

``supported-assets`` holds ``{coin_id: coin}`` for the top coins by market
cap.  New fetches are merged into the stored dict so coins that drop out of
the top ranks keep their metadata.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.supported_assets")

SUPPORTED_ASSETS_KEY = "supported-assets"


class SupportedAssetsJob(SyncJob):
    name = "supported_assets"
    policy_name = "supported_assets"

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
        await self._run_datasets(result, [SUPPORTED_ASSETS_KEY], self._sync_assets, name_of=str)

    async def _sync_assets(self, key: str) -> bool:
        entry = self._register.get_item_and_timestamp(key)
        if self._decide(entry) is FetchDepth.SKIP:
            logger.info("Supported assets are up to date")
            return False

        coins = await self._gecko.supported_coins()
        if not coins:
            logger.warning("CoinGecko returned no coins; keeping stored supported assets")
            return False

        logger.info("Fetched %d supported assets from CoinGecko", len(coins))
        self._register.set_item(key, {**(entry.value or {}), **coins})
        return True
