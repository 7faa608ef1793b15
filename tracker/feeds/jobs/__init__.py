"""Sync jobs: one per dataset family.

Each job subclasses SyncJob and is constructed with the shared Register,
Clock and the vendor client(s) it needs.
"""

from tracker.feeds.jobs.base import DatasetFailure, JobResult, SyncJob, history_key
from tracker.feeds.jobs.coin_history import CoinHistoryJob
from tracker.feeds.jobs.exchange_rates import (
    RATES_KEY,
    SUPPORTED_CURRENCIES_KEY,
    ExchangeRatesJob,
)
from tracker.feeds.jobs.fear_and_greed import FEAR_AND_GREED_KEY, FearAndGreedJob
from tracker.feeds.jobs.latest_prices import LatestPricesJob
from tracker.feeds.jobs.supported_assets import SUPPORTED_ASSETS_KEY, SupportedAssetsJob
from tracker.feeds.jobs.supported_fiat import SUPPORTED_FIAT_KEY, SupportedFiatJob
from tracker.feeds.jobs.top_coins import TOP_COINS_KEY, TopCoinsJob
from tracker.feeds.jobs.yahoo_history import YahooHistoryJob, yahoo_marker_key

__all__ = [
    "CoinHistoryJob",
    "DatasetFailure",
    "ExchangeRatesJob",
    "FEAR_AND_GREED_KEY",
    "FearAndGreedJob",
    "JobResult",
    "LatestPricesJob",
    "RATES_KEY",
    "SUPPORTED_ASSETS_KEY",
    "SUPPORTED_CURRENCIES_KEY",
    "SUPPORTED_FIAT_KEY",
    "SupportedAssetsJob",
    "SupportedFiatJob",
    "SyncJob",
    "TOP_COINS_KEY",
    "TopCoinsJob",
    "YahooHistoryJob",
    "history_key",
    "yahoo_marker_key",
]
