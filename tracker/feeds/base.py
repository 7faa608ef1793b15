"""Base classes and canonical data models for the feed sync engine.

Every vendor adapter must subclass VendorClient and hand samples (or plain
JSON-like structures that a job flattens into samples) to the job layer.
``Sample`` and ``SeriesPoint`` are the only shapes the normalizer and the
register ever see; vendor wire formats never leave the adapters.
"""

from __future__ import annotations

import logging
from abc import ABC
from dataclasses import dataclass
from typing import Any, NamedTuple

from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig, get_sync_config
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.fetch import RetryingFetcher

logger = logging.getLogger("tracker.feeds")


# ---------------------------------------------------------------------------
# Samples and series
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """One observation produced by a vendor.

    Attributes:
        timestamp: Observation instant in epoch milliseconds.
        value:     Observed value (price, rate, index).  ``None`` marks a
                   missing reading and is dropped by the normalizer.
        label:     Optional classification, e.g. "Extreme Fear".
    """

    timestamp: int
    value: float | None
    label: str | None = None


class SeriesPoint(NamedTuple):
    """A normalized series entry, as returned by ``normalizer.merge``."""

    timestamp: int
    value: float
    iso: str
    label: str | None = None

    def to_row(self) -> list:
        """JSON row persisted in the register.

        Unlabelled points become ``[ts, value, iso]``; labelled ones
        ``[ts, value, label, iso]``.
        """
        if self.label is None:
            return [self.timestamp, self.value, self.iso]
        return [self.timestamp, self.value, self.label, self.iso]


def as_sample(item: Any) -> Sample:
    """Coerce any accepted series element into a Sample.

    Accepts Samples, SeriesPoints, persisted rows (``[ts, value, iso]`` or
    ``[ts, value, label, iso]``) and raw vendor tuples (``[ts, value]`` or
    ``(ts, value, label)``).

    Raises:
        VendorShapeError: If the element cannot be interpreted.
    """
    if isinstance(item, Sample):
        return item
    if isinstance(item, SeriesPoint):
        return Sample(item.timestamp, item.value, item.label)
    if not isinstance(item, (list, tuple)) or len(item) < 2:
        raise VendorShapeError(f"Cannot interpret series element {item!r}")

    ts = safe_int(item[0])
    if ts is None:
        raise VendorShapeError(f"Series element has no usable timestamp: {item!r}")
    value = safe_float(item[1])

    label: str | None = None
    if len(item) == 3 and not _looks_like_iso(item[2]):
        label = item[2]
    elif len(item) >= 4:
        label = item[2]
    return Sample(ts, value, label)


def _looks_like_iso(value: Any) -> bool:
    return isinstance(value, str) and len(value) >= 20 and value[4] == "-" and value.endswith("Z")


def latest_timestamp(rows: Any) -> int | None:
    """Return the newest timestamp in a stored series, or None if empty."""
    best: int | None = None
    for row in rows or []:
        ts = as_sample(row).timestamp
        if best is None or ts > best:
            best = ts
    return best


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def safe_int(value: object) -> int | None:
    """Safely coerce a value to int, returning None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def safe_float(value: object) -> float | None:
    """Safely coerce a value to float, returning None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Abstract vendor client
# ---------------------------------------------------------------------------


class VendorClient(ABC):
    """Abstract base class for all vendor adapters.

    A vendor client owns one data source's URLs and payload parsing.  It
    performs every request through the shared RetryingFetcher (so retries,
    jitter and not-found handling behave identically across vendors) and
    returns Samples or plain dicts/lists, never raw responses.

    Class attributes:
        SOURCE_ID:    Machine-readable slug (e.g. 'ecb', 'coingecko').
        DISPLAY_NAME: Human-readable vendor name.
        RETRY_PROFILE: Key of the retry profile in sync_config.yaml.
    """

    SOURCE_ID: str = ""
    DISPLAY_NAME: str = ""
    RETRY_PROFILE: str = "default"

    def __init__(
        self,
        fetcher: RetryingFetcher,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            fetcher: Shared RetryingFetcher used for every request.
            config:  Sync configuration (retry profile, cooldown, batch sizes).
                     Defaults to the global sync_config.yaml singleton.
            clock:   Clock for cooldowns and "now".  Defaults to the fetcher's.
        """
        self._fetcher = fetcher
        self._config = config or get_sync_config()
        self._clock = clock or fetcher.clock

    async def cooldown(self) -> None:
        """Courtesy pause between chained calls to this vendor."""
        await self._clock.sleep(self._config.cooldown_ms)

    async def _get(self, url: str, **options: Any) -> Any:
        """GET ``url`` with this vendor's retry profile.

        Keyword options override the profile (e.g. ``transform``,
        ``headers``, ``params``).  Returns None when the resource is not
        found.
        """
        profile = self._config.retry_profile(self.RETRY_PROFILE)
        kwargs: dict[str, Any] = {
            "retries": profile.retries,
            "base_delay_ms": profile.base_delay_ms,
            "jitter_ms": profile.jitter_ms,
        }
        kwargs.update(options)
        return await self._fetcher.fetch(url, **kwargs)
