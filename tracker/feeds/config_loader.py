"""Load, validate, and hot-reload the feed sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit; no restart required.

Usage::

    from tracker.feeds.config_loader import get_sync_config

    config = get_sync_config()
    profile = config.retry_profile("coingecko")   # retries=3, base_delay_ms=60000
    policy = config.policy("exchange_rates")      # BandedPolicy
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from tracker.feeds.staleness import (
    AgeBand,
    FetchDepth,
    StalenessPolicy,
    build_policy,
    check_monotonic,
)

logger = logging.getLogger("tracker.feeds.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class RetryProfile:
    """Retry settings for one vendor."""

    retries: int
    base_delay_ms: int
    jitter_ms: int


@dataclass
class BandConfig:
    max_age_ms: int
    depth: FetchDepth


@dataclass
class TierConfig:
    max_rank: int
    min_age_ms: int


@dataclass
class PolicyConfig:
    """One staleness policy definition.

    ``kind`` is 'banded' (age bands → depth) or 'tiered' (rank tiers →
    fetch/skip).
    """

    name: str
    kind: str
    bands: list[BandConfig] = field(default_factory=list)
    absent: FetchDepth = FetchDepth.DEEP
    beyond: FetchDepth = FetchDepth.DEEP
    tiers: list[TierConfig] = field(default_factory=list)
    fallback_age_ms: int = 0


@dataclass
class BatchingConfig:
    """Page, chunk and window sizes used by the jobs."""

    gecko_markets_pages: int = 4
    gecko_markets_page_size: int = 250
    gecko_sparkline_chunk_size: int = 50
    top_coins_count: int = 500
    projection_days: int = 7
    yahoo_min_rank: int = 500
    yahoo_recent_days: int = 30
    yahoo_fresh_data_ms: int = 5 * 24 * 3600 * 1000


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    This is the single in-memory representation of sync_config.yaml.
    Adapters read retry profiles from it; jobs read policies, cooldowns,
    time budgets and batch sizes.

    Attributes:
        version:         Config schema version string.
        retry_profiles:  Vendor slug → RetryProfile.
        cooldown_ms:     Pause between chained vendor calls / datasets.
        time_budgets_ms: Job name → wall-clock budget.
        batching:        Page/chunk sizes.
        policies:        Policy name → PolicyConfig.
    """

    version: str
    retry_profiles: dict[str, RetryProfile]
    cooldown_ms: int
    time_budgets_ms: dict[str, int]
    batching: BatchingConfig
    policies: dict[str, PolicyConfig]
    _raw: dict = field(default_factory=dict, repr=False)

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def retry_profile(self, vendor: str) -> RetryProfile:
        """Return the retry profile for a vendor, falling back to 'default'."""
        if vendor in self.retry_profiles:
            return self.retry_profiles[vendor]
        return self.retry_profiles.get("default", RetryProfile(3, 2000, 100))

    def policy(self, name: str) -> StalenessPolicy:
        """Build the named staleness policy.

        Raises:
            KeyError: If no policy with that name is configured.
        """
        if name not in self.policies:
            raise KeyError(
                f"No staleness policy named '{name}'. Available: {sorted(self.policies)}"
            )
        return build_policy(self.policies[name])

    def time_budget(self, job: str) -> int | None:
        return self.time_budgets_ms.get(job)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml  # pyyaml

    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _int(value: Any, where: str, minimum: int = 0) -> int:
        try:
            result = int(value)
        except (TypeError, ValueError):
            errors.append(f"{where} must be an integer, got {value!r}")
            return minimum
        if result < minimum:
            errors.append(f"{where} = {result} is below the minimum {minimum}")
        return result

    def _depth(value: Any, where: str) -> FetchDepth:
        try:
            return FetchDepth.parse(value)
        except ValueError as exc:
            errors.append(f"{where}: {exc}")
            return FetchDepth.DEEP

    version = str(raw.get("version", "1.0"))

    # ── Retry profiles ──
    retry_raw = raw.get("retry") or {}
    retry_profiles: dict[str, RetryProfile] = {}
    for vendor, cfg in retry_raw.items():
        if not isinstance(cfg, dict):
            errors.append(f"retry.{vendor} must be a mapping")
            continue
        retry_profiles[vendor] = RetryProfile(
            retries=_int(cfg.get("retries", 3), f"retry.{vendor}.retries", minimum=1),
            base_delay_ms=_int(cfg.get("base_delay_ms", 2000), f"retry.{vendor}.base_delay_ms"),
            jitter_ms=_int(cfg.get("jitter_ms", 100), f"retry.{vendor}.jitter_ms"),
        )
    if "default" not in retry_profiles:
        retry_profiles["default"] = RetryProfile(retries=3, base_delay_ms=2000, jitter_ms=100)

    cooldown_ms = _int(raw.get("cooldown_ms", 18000), "cooldown_ms")

    # ── Time budgets ──
    time_budgets_ms = {
        job: _int(ms, f"time_budgets_ms.{job}", minimum=1)
        for job, ms in (raw.get("time_budgets_ms") or {}).items()
    }

    # ── Batching ──
    b_raw = raw.get("batching") or {}
    defaults = BatchingConfig()
    batching = BatchingConfig(
        **{
            f.name: _int(
                b_raw.get(f.name, getattr(defaults, f.name)), f"batching.{f.name}", minimum=1
            )
            for f in fields(BatchingConfig)
        }
    )

    # ── Policies ──
    policies: dict[str, PolicyConfig] = {}
    for name, p_raw in (raw.get("policies") or {}).items():
        if not isinstance(p_raw, dict):
            errors.append(f"policies.{name} must be a mapping")
            continue
        kind = p_raw.get("kind", "banded")
        if kind == "tiered":
            tiers = [
                TierConfig(
                    max_rank=_int(t.get("max_rank"), f"policies.{name}.tiers[{i}].max_rank", 1),
                    min_age_ms=_int(t.get("min_age_ms"), f"policies.{name}.tiers[{i}].min_age_ms"),
                )
                for i, t in enumerate(p_raw.get("tiers") or [])
            ]
            if "fallback_age_ms" not in p_raw:
                errors.append(f"Missing required key 'fallback_age_ms' in section 'policies.{name}'")
            policies[name] = PolicyConfig(
                name=name,
                kind=kind,
                tiers=tiers,
                fallback_age_ms=_int(p_raw.get("fallback_age_ms", 0), f"policies.{name}.fallback_age_ms"),
            )
        elif kind == "banded":
            bands = [
                BandConfig(
                    max_age_ms=_int(b.get("max_age_ms"), f"policies.{name}.bands[{i}].max_age_ms", 1),
                    depth=_depth(b.get("depth"), f"policies.{name}.bands[{i}].depth"),
                )
                for i, b in enumerate(p_raw.get("bands") or [])
            ]
            beyond = _depth(p_raw.get("beyond", "deep"), f"policies.{name}.beyond")
            try:
                check_monotonic([AgeBand(b.max_age_ms, b.depth) for b in bands], beyond)
            except ValueError as exc:
                errors.append(f"policies.{name}: {exc}")
            policies[name] = PolicyConfig(
                name=name,
                kind=kind,
                bands=bands,
                absent=_depth(p_raw.get("absent", "deep"), f"policies.{name}.absent"),
                beyond=beyond,
            )
        else:
            errors.append(f"policies.{name}.kind must be 'banded' or 'tiered', got {kind!r}")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        retry_profiles=retry_profiles,
        cooldown_ms=cooldown_ms,
        time_budgets_ms=time_budgets_ms,
        batching=batching,
        policies=policies,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is
    re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
