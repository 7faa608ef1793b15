"""Vendor adapters for the feed sync engine.

Each adapter subclasses VendorClient and handles:
- Building the vendor's URLs and query parameters
- Fetching through the shared RetryingFetcher with its own retry profile
- Parsing the vendor's wire format into Samples or plain dicts

Available adapters:
    EcbClient        ECB euro reference rates (XML), rebased onto USD
    GeckoClient      CoinGecko coin lists, prices and history
    FearGreedClient  alternative.me Crypto Fear & Greed Index
    YahooClient      Yahoo Finance chart history
"""

from tracker.feeds.adapters.ecb import EcbClient
from tracker.feeds.adapters.fear_greed import FearGreedClient
from tracker.feeds.adapters.gecko import GeckoClient
from tracker.feeds.adapters.yahoo import YahooClient
from tracker.feeds.base import VendorClient

__all__ = [
    "EcbClient",
    "GeckoClient",
    "FearGreedClient",
    "YahooClient",
]

# Registry: source_id → adapter class
ADAPTER_REGISTRY: dict[str, type[VendorClient]] = {
    "ecb": EcbClient,
    "coingecko": GeckoClient,
    "alternative_me": FearGreedClient,
    "yahoo": YahooClient,
}


def get_adapter(source_id: str) -> type[VendorClient]:
    """Return the adapter class for a given source slug.

    Args:
        source_id: e.g. 'ecb', 'coingecko', 'alternative_me', 'yahoo'

    Returns:
        The adapter class (not an instance).

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for source '{source_id}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[source_id]
