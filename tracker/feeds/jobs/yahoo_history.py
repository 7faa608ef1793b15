"""Yahoo Finance backfill for coins outside the top market-cap ranks.

CoinGecko's free tier only serves a year of history, so coins ranked below
``yahoo_min_rank`` get their long history from Yahoo instead.  Each coin has
a marker key ``history/yahoo/<id>`` recording when Yahoo was last asked,
whether or not it had data:

    never asked             full daily history + 30 days hourly
    asked < 8 days ago      skip
    otherwise               30 days hourly

A coin whose stored history already has a point from the last 5 days is
skipped once it has been asked at least once.  The run stops after 10
minutes.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.yahoo import YahooClient
from tracker.feeds.base import Sample, latest_timestamp
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import HISTORY_KEY_PREFIX, JobResult, SyncJob, history_key
from tracker.feeds.jobs.supported_assets import SUPPORTED_ASSETS_KEY
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.yahoo_history")


def yahoo_marker_key(coin_id: str) -> str:
    return f"{HISTORY_KEY_PREFIX}/yahoo/{coin_id}"


class YahooHistoryJob(SyncJob):
    name = "yahoo_history"
    policy_name = "yahoo_history"

    def __init__(
        self,
        register: Register,
        clock: Clock,
        yahoo: YahooClient,
        config: SyncConfig | None = None,
    ) -> None:
        super().__init__(register, clock, config=config)
        self._yahoo = yahoo

    def _is_long_tail(self, coin: dict) -> bool:
        rank = coin.get("market_cap_rank")
        return rank is None or rank > self._config.batching.yahoo_min_rank

    async def sync(self, result: JobResult) -> None:
        coins: dict[str, dict] = self._register.get_item(SUPPORTED_ASSETS_KEY) or {}
        long_tail = [coin for coin in coins.values() if self._is_long_tail(coin)]
        if not long_tail:
            logger.info("No coins ranked beyond %d; nothing to backfill", self._config.batching.yahoo_min_rank)
            return

        await self._run_datasets(
            result,
            long_tail,
            self._sync_coin,
            name_of=lambda coin: history_key(coin["id"]),
            budget_ms=self._config.time_budget(self.name),
        )

    async def _sync_coin(self, coin: dict) -> bool:
        coin_id = coin["id"]
        key = history_key(coin_id)
        marker = yahoo_marker_key(coin_id)
        now = self._clock.now()
        batching = self._config.batching

        asked_at = self._register.get_item_last_updated(marker)
        if asked_at is not None:
            newest = latest_timestamp(self._register.get_item(key))
            if newest is not None and now - newest < batching.yahoo_fresh_data_ms:
                logger.debug("History for %s has recent data; skipping Yahoo", coin_id)
                return False

        depth = self.policy.decide(asked_at, now)
        if depth is FetchDepth.SKIP:
            logger.debug("Yahoo history for %s was checked recently", coin_id)
            return False

        symbol = coin.get("symbol") or coin_id
        samples: list[Sample] = []
        if depth is FetchDepth.DEEP:
            logger.info("Fetching full Yahoo history for %s", coin_id)
            samples.extend(await self._yahoo.history(symbol, "1d"))
        samples.extend(await self._yahoo.history(symbol, "1h", days_ago=batching.yahoo_recent_days))

        # Record the check even when Yahoo had nothing
        self._register.set_item(marker)
        if not samples:
            logger.warning("Yahoo has no data for %s", symbol)
            return True

        self._merge_into(key, samples)
        return True
