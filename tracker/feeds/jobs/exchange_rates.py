"""USD exchange rates from the ECB.

Register layout:
    usd-exchange-rates                        marker, touched after a full update
    usd-exchange-rates/supported_currencies   ["EUR", "USD", "JPY", ...]
    usd-exchange-rates/<CUR>                  {"2024-01-05": 0.9157, ...}

The marker's age drives the fetch depth: under an hour skip, under a day the
daily file, under 30 days the 90-day file, otherwise the full history.
"""

from __future__ import annotations

import logging

from tracker.feeds.adapters.ecb import DailyRates, EcbClient
from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.jobs.base import JobResult, SyncJob, naming_dataset
from tracker.feeds.register import Register
from tracker.feeds.staleness import FetchDepth

logger = logging.getLogger("tracker.feeds.jobs.exchange_rates")

RATES_KEY = "usd-exchange-rates"
SUPPORTED_CURRENCIES_KEY = f"{RATES_KEY}/supported_currencies"


def currency_key(currency: str) -> str:
    return f"{RATES_KEY}/{currency}"


class ExchangeRatesJob(SyncJob):
    name = "exchange_rates"
    policy_name = "exchange_rates"

    def __init__(
        self,
        register: Register,
        clock: Clock,
        ecb: EcbClient,
        config: SyncConfig | None = None,
    ) -> None:
        super().__init__(register, clock, config=config)
        self._ecb = ecb

    async def sync(self, result: JobResult) -> None:
        last_updated = self._register.get_item_last_updated(RATES_KEY)
        depth = self.policy.decide(last_updated, self._clock.now())
        if depth is FetchDepth.SKIP:
            logger.info("USD exchange rates are up to date")
            result.skipped.append(RATES_KEY)
            return

        with naming_dataset(RATES_KEY):
            currencies = await self._ecb.fetch_supported_currencies()
            update = await self._ecb.fetch_rates(depth)
        if not currencies or not update:
            logger.warning("ECB returned no %s data; keeping stored exchange rates", depth.name.lower())
            result.skipped.append(RATES_KEY)
            return

        logger.info(
            "Updating %d USD exchange rates with %s data (%d days)",
            len(currencies), depth.name.lower(), len(update),
        )
        self._register.set_item(SUPPORTED_CURRENCIES_KEY, currencies)

        async def sync_currency(currency: str) -> bool:
            return self._store_currency(currency, update)

        await self._run_datasets(result, currencies, sync_currency, name_of=currency_key)

        if not result.failures:
            self._register.set_item(RATES_KEY)

    def _store_currency(self, currency: str, update: DailyRates) -> bool:
        key = currency_key(currency)
        existing = self._register.get_item(key) or {}
        fresh = {day: rates[currency] for day, rates in update.items() if currency in rates}
        if not fresh:
            logger.warning("ECB update has no %s rates", currency)
            return False
        self._register.set_item(key, {**existing, **fresh})
        return True
