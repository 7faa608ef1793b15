"""Fiat currencies both CoinGecko and the ECB can price.

Depends on ``usd-exchange-rates/supported_currencies`` written by the
exchange-rates job; until that exists the job skips with a warning.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob
from tracker.feeds.jobs.exchange_rates import SUPPORTED_CURRENCIES_KEY
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.supported_fiat")

SUPPORTED_FIAT_KEY = "supported-fiat"


class SupportedFiatJob(SyncJob):
    name = "supported_fiat"
    policy_name = "supported_fiat"

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
        await self._run_datasets(result, [SUPPORTED_FIAT_KEY], self._sync_fiat, name_of=str)

    async def _sync_fiat(self, key: str) -> bool:
        if self._decide(self._register.get_item_and_timestamp(key)) is FetchDepth.SKIP:
            logger.info("Supported fiat currencies are up to date")
            return False

        ecb_currencies = self._register.get_item(SUPPORTED_CURRENCIES_KEY)
        if not ecb_currencies:
            logger.warning(
                "No ECB currency list at '%s' yet; run the exchange_rates job first",
                SUPPORTED_CURRENCIES_KEY,
            )
            return False

        currencies = await self._gecko.supported_fiat()
        if not currencies:
            logger.warning("CoinGecko returned no quote currencies; keeping stored list")
            return False

        ecb = {c.upper() for c in ecb_currencies}
        common = [c.upper() for c in currencies if c.upper() in ecb]
        logger.info("Common supported fiat currencies: %s", ", ".join(common))
        self._register.set_item(key, common)
        return True
