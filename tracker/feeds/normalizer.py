"""Time-series normalizer: merge new samples into an existing history.

Without coarsening, an append-only price history grows without bound.  The
normalizer keeps recent data fine-grained and old data coarse by assigning
each sample to an age-dependent bucket and keeping only the most recent
sample per bucket.

Bucket width by age (``now - timestamp``)::

    > 90 days   7 days
    > 30 days   1 day
    >  7 days   1 hour
    >  2 days   30 minutes
    otherwise   10 minutes

Bucket key = ``floor(timestamp / width) * width`` (left edge).  Buckets are
recomputed from ``now`` on every call, including for previously stored
samples, so the merge stays correct as data ages into coarser tiers.

``merge`` is pure: same inputs, same output; no I/O.
"""

from __future__ import annotations

from typing import Any, Iterable

from tracker.feeds.base import Sample, SeriesPoint, as_sample
from tracker.feeds.timeutil import DAY_MS, HOUR_MS, MINUTE_MS, floor_to, to_iso

# (minimum age exclusive, bucket width), oldest tier first
BUCKET_TIERS: tuple[tuple[int, int], ...] = (
    (90 * DAY_MS, 7 * DAY_MS),
    (30 * DAY_MS, DAY_MS),
    (7 * DAY_MS, HOUR_MS),
    (2 * DAY_MS, 30 * MINUTE_MS),
)
FINEST_BUCKET_MS = 10 * MINUTE_MS


def bucket_width(timestamp: int, now: int) -> int:
    """Return the bucket width (ms) for a sample of the given age."""
    age = now - timestamp
    for min_age, width in BUCKET_TIERS:
        if age > min_age:
            return width
    return FINEST_BUCKET_MS


def bucket_key(timestamp: int, now: int) -> int:
    """Left edge of the age-dependent bucket containing ``timestamp``."""
    return floor_to(timestamp, bucket_width(timestamp, now))


def is_valid(sample: Sample) -> bool:
    """A sample is kept only if it carries a strictly positive value."""
    return sample.value is not None and sample.value > 0


def merge(existing: Iterable[Any] | None, new_samples: Iterable[Any] | None, now: int) -> list[SeriesPoint]:
    """Merge ``new_samples`` into ``existing`` history.

    Args:
        existing:    Previously stored series: persisted rows, SeriesPoints or
                     Samples.  None is treated as empty.
        new_samples: Freshly fetched samples (any shape ``as_sample`` accepts).
        now:         Reference instant (epoch ms) for bucket assignment.

    Returns:
        SeriesPoints sorted by timestamp descending with at most one point
        per bucket (the most recent one).  When an existing and a new sample
        share the exact same timestamp, the new one wins.
    """
    # rank 0 sorts new samples ahead of existing ones at equal timestamps
    ranked: list[tuple[int, int, Sample]] = []
    for rank, items in ((0, new_samples), (1, existing)):
        for item in items or ():
            sample = as_sample(item)
            if is_valid(sample):
                ranked.append((sample.timestamp, rank, sample))

    ranked.sort(key=lambda entry: (-entry[0], entry[1]))

    seen: set[int] = set()
    result: list[SeriesPoint] = []
    for ts, _, sample in ranked:
        key = bucket_key(ts, now)
        if key in seen:
            continue
        seen.add(key)
        result.append(SeriesPoint(ts, sample.value, to_iso(ts), sample.label))
    return result


class TimeSeriesNormalizer:
    """Object wrapper around ``merge`` for injection into jobs."""

    def merge(self, existing: Iterable[Any] | None, new_samples: Iterable[Any] | None, now: int) -> list[SeriesPoint]:
        return merge(existing, new_samples, now)

    def merge_rows(self, existing: Iterable[Any] | None, new_samples: Iterable[Any] | None, now: int) -> list[list]:
        """Like ``merge`` but returns JSON rows ready for the register."""
        return [point.to_row() for point in merge(existing, new_samples, now)]
