"""alternative.me Crypto Fear & Greed Index adapter.

API: https://api.alternative.me/fng/?limit=0 (full daily history)

Each entry carries the index value (0-100), its classification
("Extreme Fear" ... "Extreme Greed") and a timestamp in epoch seconds.
"""

from __future__ import annotations

import logging

from tracker.feeds.base import Sample, VendorClient, safe_float, safe_int
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.timeutil import DAY_MS, SECOND_MS

logger = logging.getLogger("tracker.feeds.fear_greed")

_FNG_URL = "https://api.alternative.me/fng/"


class FearGreedClient(VendorClient):
    SOURCE_ID = "alternative_me"
    DISPLAY_NAME = "alternative.me Fear & Greed Index"
    RETRY_PROFILE = "alternative_me"

    async def index(self) -> list[Sample]:
        """Full index history as labelled samples.

        The latest reading is repeated for each of the next
        ``projection_days`` days.

        Raises:
            VendorShapeError: If the API reports an error or the payload is
                              not the documented shape.
        """
        data = await self._get(_FNG_URL, params={"limit": 0})
        if data is None:
            logger.warning("Fear & Greed: index not available")
            return []
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise VendorShapeError(f"Unexpected Fear & Greed payload from {_FNG_URL}")

        error = (data.get("metadata") or {}).get("error")
        if error:
            raise VendorShapeError(f"Fear & Greed API error: {error}")

        samples: list[Sample] = []
        for item in data["data"]:
            if not isinstance(item, dict):
                raise VendorShapeError(f"Unexpected Fear & Greed entry: {item!r}")
            seconds = safe_int(item.get("timestamp"))
            if seconds is None:
                raise VendorShapeError(f"Fear & Greed entry without timestamp: {item!r}")
            samples.append(
                Sample(seconds * SECOND_MS, safe_float(item.get("value")), item.get("value_classification"))
            )

        if samples:
            latest = max(samples, key=lambda s: s.timestamp)
            for day in range(1, self._config.batching.projection_days + 1):
                samples.append(Sample(latest.timestamp + day * DAY_MS, latest.value, latest.label))
        return samples
