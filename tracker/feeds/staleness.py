"""Staleness policies: how much history to (re)fetch for a dataset.

A policy is a pure function of the dataset's last update instant, the
current instant and, optionally, an importance tier (market-cap rank).  It
never performs I/O.  Every policy is monotonic in age: for a fixed tier an
older dataset never gets a less aggressive decision than a younger one.

Canonical policies (see sync_config.yaml):

    exchange rates   <1h skip · <1d shallow · <30d medium · else deep
    asset prices     rank≤100 >5min · rank≤200 >1h · rank≤500 >1d · any >1w
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Protocol, Sequence

if TYPE_CHECKING:
    from tracker.feeds.config_loader import PolicyConfig

logger = logging.getLogger("tracker.feeds.staleness")


class FetchDepth(IntEnum):
    """How much history a sync should fetch, least to most aggressive."""

    SKIP = 0
    SHALLOW = 1   # latest snapshot
    MEDIUM = 2    # recent window (~90 days)
    DEEP = 3      # full history

    @classmethod
    def parse(cls, name: str) -> "FetchDepth":
        try:
            return cls[str(name).upper()]
        except KeyError as exc:
            raise ValueError(
                f"Unknown fetch depth {name!r}; expected one of "
                f"{[d.name.lower() for d in cls]}"
            ) from exc


class StalenessPolicy(Protocol):
    def decide(self, last_updated: int | None, now: int, tier: int | None = None) -> FetchDepth:
        ...


@dataclass(frozen=True)
class AgeBand:
    """Datasets younger than ``max_age_ms`` get ``depth``."""

    max_age_ms: int
    depth: FetchDepth


class BandedPolicy:
    """Age bands evaluated youngest first; the tier is ignored.

    Usage::

        policy = BandedPolicy(
            [AgeBand(HOUR_MS, FetchDepth.SKIP), AgeBand(DAY_MS, FetchDepth.SHALLOW)],
            absent=FetchDepth.DEEP,
            beyond=FetchDepth.MEDIUM,
        )
        policy.decide(last_updated=None, now=now)   # DEEP
    """

    def __init__(
        self,
        bands: Sequence[AgeBand],
        absent: FetchDepth = FetchDepth.DEEP,
        beyond: FetchDepth = FetchDepth.DEEP,
    ) -> None:
        check_monotonic(bands, beyond)
        self.bands = tuple(bands)
        self.absent = absent
        self.beyond = beyond

    def decide(self, last_updated: int | None, now: int, tier: int | None = None) -> FetchDepth:
        if last_updated is None:
            return self.absent
        age = now - last_updated
        for band in self.bands:
            if age < band.max_age_ms:
                return band.depth
        return self.beyond


@dataclass(frozen=True)
class RankTier:
    """Datasets ranked ``max_rank`` or better refresh once older than ``min_age_ms``."""

    max_rank: int
    min_age_ms: int


class TieredPolicy:
    """Freshness requirement that tightens with importance (lower rank).

    The decision is binary: SHALLOW (fetch the latest snapshot) or SKIP.
    A dataset with no rank is only refreshed by the fallback age.
    """

    def __init__(self, tiers: Sequence[RankTier], fallback_age_ms: int) -> None:
        self.tiers = tuple(sorted(tiers, key=lambda t: t.max_rank))
        self.fallback_age_ms = fallback_age_ms

    def decide(self, last_updated: int | None, now: int, tier: int | None = None) -> FetchDepth:
        if last_updated is None:
            return FetchDepth.SHALLOW
        age = now - last_updated
        if tier is not None:
            for rank_tier in self.tiers:
                if tier <= rank_tier.max_rank and age > rank_tier.min_age_ms:
                    return FetchDepth.SHALLOW
        if age > self.fallback_age_ms:
            return FetchDepth.SHALLOW
        return FetchDepth.SKIP


def check_monotonic(bands: Sequence[AgeBand], beyond: FetchDepth) -> None:
    previous: AgeBand | None = None
    for band in bands:
        if previous is not None:
            if band.max_age_ms <= previous.max_age_ms:
                raise ValueError(
                    f"Band ages must strictly increase: {previous.max_age_ms} then {band.max_age_ms}"
                )
            if band.depth < previous.depth:
                raise ValueError(
                    f"Band depths must not decrease with age: "
                    f"{previous.depth.name} then {band.depth.name}"
                )
        previous = band
    if previous is not None and beyond < previous.depth:
        raise ValueError(
            f"Depth beyond the last band ({beyond.name}) is less aggressive "
            f"than the last band ({previous.depth.name})"
        )


def build_policy(cfg: "PolicyConfig") -> StalenessPolicy:
    """Instantiate the policy described by a validated PolicyConfig."""
    if cfg.kind == "tiered":
        return TieredPolicy(
            [RankTier(t.max_rank, t.min_age_ms) for t in cfg.tiers],
            fallback_age_ms=cfg.fallback_age_ms,
        )
    return BandedPolicy(
        [AgeBand(b.max_age_ms, b.depth) for b in cfg.bands],
        absent=cfg.absent,
        beyond=cfg.beyond,
    )
