"""Sync job orchestration.

Every job follows the same pattern per dataset:

1. Read ``(value, last_updated)`` from the Register
2. Ask the job's StalenessPolicy how much to fetch
3. Skip, or fetch through a vendor client (chained calls separated by a
   cooldown)
4. Merge the returned samples into the stored series with the normalizer
5. ``set_item`` the result, optionally touching a marker key

Jobs that cover many datasets run them strictly one at a time through
``_run_datasets``, which isolates failures per dataset and stops early once
the job's wall-clock budget is spent.  Deferred datasets are picked up by the
next invocation because staleness is re-evaluated from the register every
time.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Iterator, TypeVar

from tracker.feeds.clock import Clock
from tracker.feeds.config_loader import SyncConfig, get_sync_config
from tracker.feeds.errors import PartialBatchFailure, RetriesExhausted
from tracker.feeds.normalizer import TimeSeriesNormalizer
from tracker.feeds.register import Register, RegisterEntry
from tracker.feeds.staleness import FetchDepth, StalenessPolicy

logger = logging.getLogger("tracker.feeds.jobs")

T = TypeVar("T")

HISTORY_KEY_PREFIX = "history"


def history_key(coin_id: str) -> str:
    return f"{HISTORY_KEY_PREFIX}/{coin_id}"


@contextmanager
def naming_dataset(dataset: str) -> Iterator[None]:
    """Attach ``dataset`` to any RetriesExhausted raised inside the block."""
    try:
        yield
    except RetriesExhausted as exc:
        if exc.dataset is None:
            exc.dataset = dataset
        raise


@dataclass
class DatasetFailure:
    """One dataset whose sync raised."""

    dataset: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.dataset}: {self.error}"


@dataclass
class JobResult:
    """Outcome of one job run.

    Attributes:
        job:         Job name.
        status:      'success', 'skipped', 'partial' or 'error'.
        synced:      Datasets written this run.
        skipped:     Datasets the staleness policy (or an empty vendor
                     response) left untouched.
        deferred:    Datasets not reached before the time budget ran out.
        failures:    Datasets whose sync raised.
        started_at:  Epoch ms when the run started.
        finished_at: Epoch ms when the run finished.
    """

    job: str
    status: str = "success"
    synced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failures: list[DatasetFailure] = field(default_factory=list)
    started_at: int = 0
    finished_at: int = 0

    @property
    def error(self) -> str | None:
        if not self.failures:
            return None
        return "; ".join(str(f) for f in self.failures[:3])

    def finish(self, now: int) -> "JobResult":
        self.finished_at = now
        if self.failures and not self.synced:
            self.status = "error"
        elif self.failures:
            self.status = "partial"
        elif not self.synced and not self.deferred:
            self.status = "skipped"
        else:
            self.status = "success"
        return self


class SyncJob(ABC):
    """Abstract base class for all sync jobs.

    Subclasses set ``name`` (also the key of the job's time budget in
    sync_config.yaml), optionally ``policy_name``, and implement ``sync``.

    ``run`` is the public entry point: it times the run, derives the status
    and raises PartialBatchFailure once the job has finished if any dataset
    failed.
    """

    name: str = ""
    policy_name: str | None = None

    def __init__(
        self,
        register: Register,
        clock: Clock,
        config: SyncConfig | None = None,
        normalizer: TimeSeriesNormalizer | None = None,
    ) -> None:
        self._register = register
        self._clock = clock
        self._config = config or get_sync_config()
        self._normalizer = normalizer or TimeSeriesNormalizer()
        self._policy: StalenessPolicy | None = (
            self._config.policy(self.policy_name) if self.policy_name else None
        )

    @property
    def policy(self) -> StalenessPolicy:
        if self._policy is None:
            raise RuntimeError(f"Job '{self.name}' has no staleness policy")
        return self._policy

    async def run(self) -> JobResult:
        """Run the job once.

        Raises:
            PartialBatchFailure: If one or more datasets failed.  The other
                                 datasets have been processed regardless.
        """
        result = JobResult(job=self.name, started_at=self._clock.now())
        logger.info("Job %s: starting", self.name)
        await self.sync(result)
        result.finish(self._clock.now())

        logger.info(
            "Job %s: %s (synced=%d skipped=%d deferred=%d failed=%d) in %d ms",
            self.name, result.status, len(result.synced), len(result.skipped),
            len(result.deferred), len(result.failures),
            result.finished_at - result.started_at,
        )
        if result.failures:
            raise PartialBatchFailure(result)
        return result

    @abstractmethod
    async def sync(self, result: JobResult) -> None:
        """Do the job's work, recording outcomes on ``result``."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _decide(
        self,
        entry: RegisterEntry,
        tier: int | None = None,
        policy: StalenessPolicy | None = None,
    ) -> FetchDepth:
        """Fetch depth for a register entry.

        An entry whose payload is missing counts as never updated, even if
        it was touched.
        """
        last_updated = entry.last_updated if entry.value is not None else None
        depth = (policy or self.policy).decide(last_updated, self._clock.now(), tier)
        logger.debug(
            "Job %s: last_updated=%s tier=%s -> %s",
            self.name, last_updated, tier, depth.name,
        )
        return depth

    def _merge_into(self, key: str, samples: Iterable[Any]) -> int:
        """Merge ``samples`` into the series stored at ``key`` and persist it.

        Returns:
            Length of the stored series.
        """
        rows = self._normalizer.merge_rows(self._register.get_item(key), samples, self._clock.now())
        self._register.set_item(key, rows)
        return len(rows)

    async def _cooldown(self) -> None:
        await self._clock.sleep(self._config.cooldown_ms)

    async def _run_datasets(
        self,
        result: JobResult,
        items: Iterable[T],
        sync_one: Callable[[T], Awaitable[bool]],
        name_of: Callable[[T], str],
        budget_ms: int | None = None,
    ) -> None:
        """Sync many datasets sequentially with per-dataset isolation.

        Args:
            result:    JobResult that collects the outcome of every dataset.
            items:     Datasets in processing order.
            sync_one:  Coroutine syncing one dataset; returns True if it
                       wrote, False if it skipped.
            name_of:   Dataset name for logs and failures.
            budget_ms: Wall-clock budget measured from the first dataset.
                       Once exceeded, the remaining datasets are deferred.
        """
        pending = list(items)
        start = self._clock.now()

        for position, item in enumerate(pending):
            name = name_of(item)
            if budget_ms is not None and self._clock.now() - start > budget_ms:
                deferred = [name_of(i) for i in pending[position:]]
                result.deferred.extend(deferred)
                logger.info(
                    "Job %s: time budget of %d ms spent; deferring %d dataset(s) to the next run",
                    self.name, budget_ms, len(deferred),
                )
                break

            try:
                wrote = await sync_one(item)
            except Exception as exc:
                if isinstance(exc, RetriesExhausted) and exc.dataset is None:
                    exc.dataset = name
                logger.warning("Job %s: dataset %s failed: %s", self.name, name, exc)
                result.failures.append(DatasetFailure(name, exc))
                continue

            (result.synced if wrote else result.skipped).append(name)
