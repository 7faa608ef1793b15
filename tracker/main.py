"""tracker-data entry point: run the job plan once.

Run locally:
    python -m tracker                       # every job, in plan order
    python -m tracker --only fear_and_greed --only top_coins

Jobs run strictly one after another.  A failing job is logged; the plan then
either moves on to the next job or stops, depending on the job's
``continue_on_error`` flag.

Exit codes:
    0  every job succeeded (or had nothing to do)
    1  at least one job failed but the plan ran to the end
    2  a job failed and aborted the plan
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Sequence

import httpx

from tracker.config import Settings, get_settings
from tracker.feeds.adapters import EcbClient, FearGreedClient, GeckoClient, YahooClient
from tracker.feeds.clock import Clock, SystemClock
from tracker.feeds.config_loader import SyncConfig, get_sync_config, load_sync_config
from tracker.feeds.errors import PartialBatchFailure
from tracker.feeds.fetch import RetryingFetcher
from tracker.feeds.jobs import (
    CoinHistoryJob,
    ExchangeRatesJob,
    FearAndGreedJob,
    JobResult,
    LatestPricesJob,
    SupportedAssetsJob,
    SupportedFiatJob,
    SyncJob,
    TopCoinsJob,
    YahooHistoryJob,
)
from tracker.feeds.register import FileRegister, Register

logger = logging.getLogger("tracker")

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_ABORTED = 2


# ---------- Logging ----------


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Wiring ----------


@dataclass
class JobContext:
    """Everything a job factory may need, built once per process."""

    register: Register
    clock: Clock
    config: SyncConfig
    ecb: EcbClient
    gecko: GeckoClient
    fear_greed: FearGreedClient
    yahoo: YahooClient


def build_context(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
    register: Register | None = None,
    config: SyncConfig | None = None,
) -> JobContext:
    clock = clock or SystemClock()
    if config is None:
        config = load_sync_config(settings.sync_config_path) if settings.sync_config_path else get_sync_config()
    fetcher = RetryingFetcher(
        clock,
        http_client=http_client,
        user_agent=settings.user_agent,
        timeout_s=settings.http_timeout_s,
    )
    return JobContext(
        register=register or FileRegister(settings.data_dir, clock),
        clock=clock,
        config=config,
        ecb=EcbClient(fetcher, config=config),
        gecko=GeckoClient(fetcher, config=config, api_key=settings.coingecko_api_key or None),
        fear_greed=FearGreedClient(fetcher, config=config),
        yahoo=YahooClient(fetcher, config=config),
    )


@dataclass(frozen=True)
class PlannedJob:
    name: str
    factory: Callable[[JobContext], SyncJob]
    continue_on_error: bool = True


JOB_PLAN: list[PlannedJob] = [
    PlannedJob("exchange_rates", lambda ctx: ExchangeRatesJob(ctx.register, ctx.clock, ctx.ecb, ctx.config)),
    PlannedJob("supported_assets", lambda ctx: SupportedAssetsJob(ctx.register, ctx.clock, ctx.gecko, ctx.config)),
    PlannedJob("supported_fiat", lambda ctx: SupportedFiatJob(ctx.register, ctx.clock, ctx.gecko, ctx.config)),
    PlannedJob("fear_and_greed", lambda ctx: FearAndGreedJob(ctx.register, ctx.clock, ctx.fear_greed, ctx.config)),
    PlannedJob("top_coins", lambda ctx: TopCoinsJob(ctx.register, ctx.clock, ctx.gecko, ctx.config)),
    PlannedJob("latest_prices", lambda ctx: LatestPricesJob(ctx.register, ctx.clock, ctx.gecko, ctx.config)),
    PlannedJob("coin_history", lambda ctx: CoinHistoryJob(ctx.register, ctx.clock, ctx.gecko, ctx.config)),
    PlannedJob("yahoo_history", lambda ctx: YahooHistoryJob(ctx.register, ctx.clock, ctx.yahoo, ctx.config)),
]


# ---------- Running ----------


@dataclass
class PlanOutcome:
    results: list[JobResult] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_JOB_FAILED if self.failed else EXIT_OK


class PlanAborted(Exception):
    """A job without ``continue_on_error`` failed."""

    def __init__(self, job: str, outcome: PlanOutcome) -> None:
        self.job = job
        self.outcome = outcome
        super().__init__(f"Job '{job}' failed; remaining jobs not run")


async def run_plan(
    ctx: JobContext,
    plan: Sequence[PlannedJob] = JOB_PLAN,
    only: Sequence[str] | None = None,
) -> PlanOutcome:
    """Run ``plan`` (optionally restricted to ``only``) sequentially.

    Raises:
        PlanAborted: If a job whose ``continue_on_error`` is False failed.
                     The original exception is chained as ``__cause__``.
    """
    outcome = PlanOutcome()
    selected = [p for p in plan if not only or p.name in only]
    logger.info("Running %d job(s): %s", len(selected), ", ".join(p.name for p in selected))

    for planned in selected:
        try:
            job = planned.factory(ctx)
            outcome.results.append(await job.run())
        except Exception as exc:
            if isinstance(exc, PartialBatchFailure):
                outcome.results.append(exc.result)
            outcome.failed.append(planned.name)
            if not planned.continue_on_error:
                logger.error("Job %s failed, aborting: %s", planned.name, exc)
                raise PlanAborted(planned.name, outcome) from exc
            logger.error("Job %s failed, continuing: %s", planned.name, exc)

    logger.info(
        "Plan complete: %d job(s) run, %d failed",
        len(selected), len(outcome.failed),
    )
    return outcome


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tracker", description="Sync tracker datasets once.")
    parser.add_argument(
        "--only",
        action="append",
        choices=[p.name for p in JOB_PLAN],
        metavar="JOB",
        help="Run only this job (repeatable). Choices: %(choices)s",
    )
    return parser.parse_args(argv)


async def amain(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting %s v%s (data dir %s)", settings.app_name, settings.app_version, settings.data_dir)

    async with httpx.AsyncClient(timeout=settings.http_timeout_s, follow_redirects=True) as client:
        ctx = build_context(settings, http_client=client)
        try:
            outcome = await run_plan(ctx, only=args.only)
        except PlanAborted:
            return EXIT_ABORTED
    return outcome.exit_code


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(amain(argv))


if __name__ == "__main__":
    sys.exit(main())
