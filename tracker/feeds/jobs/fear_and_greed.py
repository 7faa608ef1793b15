"""Crypto Fear & Greed Index history.

Stored under ``fear-and-greed`` as labelled rows
``[ts, value, classification, iso]``, refreshed at most every 6 hours.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.fear_greed import FearGreedClient
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.fear_and_greed")

FEAR_AND_GREED_KEY = "fear-and-greed"


class FearAndGreedJob(SyncJob):
    name = "fear_and_greed"
    policy_name = "fear_and_greed"

    def __init__(
        self,
        register: Register,
        clock: Clock,
        fear_greed: FearGreedClient,
        config: SyncConfig | None = None,
    ) -> None:
        super().__init__(register, clock, config=config)
        self._fear_greed = fear_greed

    async def sync(self, result: JobResult) -> None:
        await self._run_datasets(result, [FEAR_AND_GREED_KEY], self._sync_index, name_of=str)

    async def _sync_index(self, key: str) -> bool:
        if self._decide(self._register.get_item_and_timestamp(key)) is FetchDepth.SKIP:
            logger.info("Fear and Greed Index was updated recently; skipping fetch")
            return False

        logger.info("Fetching Fear and Greed Index data")
        samples = await self._fear_greed.index()
        if not samples:
            logger.warning("Fear and Greed Index returned no data; keeping stored series")
            return False

        size = self._merge_into(key, samples)
        logger.info("Fear and Greed Index stored, %d records", size)
        return True
