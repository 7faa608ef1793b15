"""Incremental time-series sync engine.

This package pulls exchange rates, crypto-asset prices and sentiment indices
from external vendors and keeps a compact, deduplicated history per dataset.

Subpackages:
    adapters/  Vendor clients (ECB, CoinGecko, alternative.me, Yahoo Finance)
    jobs/      SyncJob base and the concrete jobs

Core modules:
    clock          Injectable time source (SystemClock, ManualClock)
    fetch          Retry-with-jitter HTTP GET
    register       Timestamped key-value store
    staleness      Fetch-depth policies
    normalizer     Age-bucketed merge of new samples into history
    config_loader  Load/validate/hot-reload sync_config.yaml
"""

from tracker.feeds.base import Sample, SeriesPoint, VendorClient
from tracker.feeds.clock import Clock, ManualClock, SystemClock
from tracker.feeds.config_loader import SyncConfig, get_sync_config
from tracker.feeds.fetch import RetryingFetcher
from tracker.feeds.normalizer import TimeSeriesNormalizer, merge
from tracker.feeds.register import FileRegister, InMemoryRegister, Register
from tracker.feeds.staleness import FetchDepth

__all__ = [
    "Clock",
    "FetchDepth",
    "FileRegister",
    "InMemoryRegister",
    "ManualClock",
    "Register",
    "RetryingFetcher",
    "Sample",
    "SeriesPoint",
    "SyncConfig",
    "SystemClock",
    "TimeSeriesNormalizer",
    "VendorClient",
    "get_sync_config",
    "merge",
]
