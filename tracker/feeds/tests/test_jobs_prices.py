"""Tests for the price jobs: top coins, latest prices, CoinGecko and Yahoo history."""

from __future__ import annotations

from dataclasses import replace
from typing import Any
from unittest.mock import MagicMock, call

import pytest

from tracker.feeds.base import Sample
from tracker.feeds.clock import ManualClock
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.errors import PartialBatchFailure, RetriesExhausted
from tracker.feeds.jobs import (
    SUPPORTED_ASSETS_KEY,
    TOP_COINS_KEY,
    CoinHistoryJob,
    LatestPricesJob,
    TopCoinsJob,
    YahooHistoryJob,
    history_key,
    yahoo_marker_key,
)
from tracker.feeds.jobs.latest_prices import sparkline_samples
from tracker.feeds.register import InMemoryRegister
from tracker.feeds.timeutil import DAY_MS, HOUR_MS, MINUTE_MS, WEEK_MS, to_iso

COINS = {
    "bitcoin": {"id": "bitcoin", "symbol": "btc", "market_cap_rank": 1, "index": 0},
    "ethereum": {"id": "ethereum", "symbol": "eth", "market_cap_rank": 2, "index": 1},
    "obscure-token": {"id": "obscure-token", "symbol": "obs", "market_cap_rank": 812, "index": 2},
    "unranked": {"id": "unranked", "market_cap_rank": None, "index": 3},
}


def _written_at(register: InMemoryRegister, clock: ManualClock, key: str, when: int, value: Any = None) -> None:
    """Write (or touch) ``key`` with the clock set to ``when``."""
    now = clock.now()
    clock.set_now(when)
    register.set_item(key, value)
    clock.set_now(now)


def _row(ts: int, value: float) -> list:
    return [ts, value, to_iso(ts)]


# ---------------------------------------------------------------------------
# Top coins
# ---------------------------------------------------------------------------


class TestTopCoinsJob:
    @pytest.mark.asyncio
    async def test_stores_list_and_appends_prices(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        coins = [
            {"id": "bitcoin", "current_price": 43950.12, "ts": now},
            {"id": "ethereum", "current_price": None, "ts": now},
        ]
        gecko.top_coins_with_changes.return_value = coins

        result = await TopCoinsJob(register, clock, gecko, sync_config).run()

        gecko.top_coins_with_changes.assert_awaited_once_with(500)
        assert register.get_item(TOP_COINS_KEY) == coins
        assert register.get_item(history_key("bitcoin")) == [_row(now, 43950.12)]
        assert register.get_item(history_key("ethereum")) is None
        assert result.synced == [TOP_COINS_KEY, history_key("bitcoin")]
        assert result.skipped == [history_key("ethereum")]

    @pytest.mark.asyncio
    async def test_merges_with_existing_history(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(history_key("bitcoin"), [_row(now - 3 * HOUR_MS, 43000.0)])
        gecko.top_coins_with_changes.return_value = [{"id": "bitcoin", "current_price": 44000.0, "ts": now}]

        await TopCoinsJob(register, clock, gecko, sync_config).run()

        assert register.get_item(history_key("bitcoin")) == [
            _row(now, 44000.0),
            _row(now - 3 * HOUR_MS, 43000.0),
        ]

    @pytest.mark.asyncio
    async def test_recent_list_skips(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        _written_at(register, clock, TOP_COINS_KEY, now - 30 * MINUTE_MS, [{"id": "bitcoin"}])

        result = await TopCoinsJob(register, clock, gecko, sync_config).run()

        gecko.top_coins_with_changes.assert_not_awaited()
        assert result.status == "skipped"


# ---------------------------------------------------------------------------
# Latest prices
# ---------------------------------------------------------------------------


class TestSparklineSamples:
    def test_spread_over_week_and_filtered(self, now: int) -> None:
        samples = sparkline_samples([1.0, 2.0, 3.0, 4.0], now, newer_than=now - 4 * DAY_MS)
        step = WEEK_MS // 4
        assert samples == [
            Sample(now - WEEK_MS + 2 * step, 3.0),
            Sample(now - WEEK_MS + 3 * step, 4.0),
        ]

    def test_empty(self, now: int) -> None:
        assert sparkline_samples([], now, 0) == []

    def test_never_includes_ts_itself(self, now: int) -> None:
        assert all(s.timestamp < now for s in sparkline_samples([1.0] * 168, now, 0))


class TestLatestPricesJob:
    @pytest.mark.asyncio
    async def test_eligibility_by_rank(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {k: COINS[k] for k in ("bitcoin", "obscure-token")})
        # rank 1 after 10 minutes is stale; rank 812 after a day is not
        _written_at(register, clock, history_key("bitcoin"), now - 10 * MINUTE_MS, [_row(now - 10 * MINUTE_MS, 1.0)])
        _written_at(register, clock, history_key("obscure-token"), now - DAY_MS, [_row(now - DAY_MS, 1.0)])
        gecko.coins_with_sparkline.return_value = [
            {"id": "bitcoin", "current_price": 43950.12, "ts": now, "sparkline_in_7d": [1.0, 2.0]},
        ]

        result = await LatestPricesJob(register, clock, gecko, sync_config).run()

        gecko.coins_with_sparkline.assert_awaited_once_with(["bitcoin"])
        assert result.skipped == [history_key("obscure-token")]
        assert result.synced == [history_key("bitcoin")]
        # Sparkline points are all older than the stored point
        assert register.get_item(history_key("bitcoin")) == [
            _row(now, 43950.12),
            _row(now - 10 * MINUTE_MS, 1.0),
        ]

    @pytest.mark.asyncio
    async def test_sparkline_fills_gap(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        stored_ts = now - 4 * DAY_MS
        _written_at(register, clock, history_key("bitcoin"), stored_ts, [_row(stored_ts, 40000.0)])
        gecko.coins_with_sparkline.return_value = [
            {"id": "bitcoin", "current_price": 44000.0, "ts": now,
             "sparkline_in_7d": [41000.0, 42000.0, 43000.0, 43500.0]},
        ]

        await LatestPricesJob(register, clock, gecko, sync_config).run()

        step = WEEK_MS // 4
        assert [r[:2] for r in register.get_item(history_key("bitcoin"))] == [
            [now, 44000.0],
            [now - WEEK_MS + 3 * step, 43500.0],
            [now - WEEK_MS + 2 * step, 43000.0],
            [stored_ts, 40000.0],
        ]

    @pytest.mark.asyncio
    async def test_never_priced_coin_is_eligible(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"unranked": COINS["unranked"]})

        await LatestPricesJob(register, clock, gecko, sync_config).run()

        gecko.coins_with_sparkline.assert_awaited_once_with(["unranked"])

    @pytest.mark.asyncio
    async def test_all_fresh(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        register.set_item(history_key("bitcoin"), [_row(now, 1.0)])

        result = await LatestPricesJob(register, clock, gecko, sync_config).run()

        gecko.coins_with_sparkline.assert_not_awaited()
        assert result.status == "skipped"

    @pytest.mark.asyncio
    async def test_no_supported_assets(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock
    ) -> None:
        result = await LatestPricesJob(register, clock, gecko, sync_config).run()
        gecko.coins_with_sparkline.assert_not_awaited()
        assert result.status == "skipped"

    @pytest.mark.asyncio
    async def test_vendor_failure_names_batch(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        gecko.coins_with_sparkline.side_effect = RetriesExhausted("https://gecko.test/markets", 3)

        with pytest.raises(RetriesExhausted) as exc_info:
            await LatestPricesJob(register, clock, gecko, sync_config).run()
        assert exc_info.value.dataset == "latest-prices"


# ---------------------------------------------------------------------------
# CoinGecko history
# ---------------------------------------------------------------------------


class TestCoinHistoryJob:
    @pytest.mark.asyncio
    async def test_deep_then_skip(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {k: COINS[k] for k in ("bitcoin", "ethereum")})
        _written_at(register, clock, history_key("ethereum"), now - 2 * DAY_MS, [_row(now - 2 * DAY_MS, 2000.0)])
        gecko.history.side_effect = [
            [Sample(now - 200 * DAY_MS, 20000.0)],
            [Sample(now - HOUR_MS, 43000.0)],
        ]

        result = await CoinHistoryJob(register, clock, gecko, sync_config).run()

        assert gecko.history.await_args_list == [call("bitcoin", 365), call("bitcoin", 90)]
        # Between the two windows, then after the coin
        assert clock.sleep_calls == [18_000, 18_000]
        assert [r[:2] for r in register.get_item(history_key("bitcoin"))] == [
            [now - HOUR_MS, 43000.0],
            [now - 200 * DAY_MS, 20000.0],
        ]
        assert result.synced == [history_key("bitcoin")]
        assert result.skipped == [history_key("ethereum")]

    @pytest.mark.asyncio
    async def test_medium_window(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        _written_at(register, clock, history_key("bitcoin"), now - 10 * DAY_MS, [_row(now - 10 * DAY_MS, 1.0)])
        gecko.history.return_value = [Sample(now - HOUR_MS, 2.0)]

        await CoinHistoryJob(register, clock, gecko, sync_config).run()

        gecko.history.assert_awaited_once_with("bitcoin", 90)
        assert clock.sleep_calls == [18_000]

    @pytest.mark.asyncio
    async def test_touched_without_series_is_deep(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        register.set_item(history_key("bitcoin"))

        await CoinHistoryJob(register, clock, gecko, sync_config).run()

        assert gecko.history.await_args_list == [call("bitcoin", 365), call("bitcoin", 90)]

    @pytest.mark.asyncio
    async def test_empty_history_is_skipped(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})

        result = await CoinHistoryJob(register, clock, gecko, sync_config).run()

        assert result.skipped == [history_key("bitcoin")]
        assert register.get_item(history_key("bitcoin")) is None

    @pytest.mark.asyncio
    async def test_one_coin_failing_does_not_stop_the_rest(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, gecko: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {k: COINS[k] for k in ("bitcoin", "ethereum", "obscure-token")})

        async def history(coin_id: str, days: int) -> list[Sample]:
            if coin_id == "ethereum":
                raise RetriesExhausted(f"https://gecko.test/coins/{coin_id}", 3)
            return [Sample(now - HOUR_MS, 1.0)]

        gecko.history.side_effect = history

        with pytest.raises(PartialBatchFailure) as exc_info:
            await CoinHistoryJob(register, clock, gecko, sync_config).run()

        result = exc_info.value.result
        assert result.status == "partial"
        assert result.synced == [history_key("bitcoin"), history_key("obscure-token")]
        failure = result.failures[0]
        assert failure.dataset == history_key("ethereum")
        assert failure.error.dataset == history_key("ethereum")
        assert register.get_item(history_key("obscure-token")) is not None

    @pytest.mark.asyncio
    async def test_time_budget(self, sync_config: SyncConfig, gecko: MagicMock) -> None:
        clock = ManualClock(1_704_456_000_000, advance_on_sleep=True)
        register = InMemoryRegister(clock)
        register.set_item(SUPPORTED_ASSETS_KEY, COINS)
        gecko.history.return_value = [Sample(1_704_450_000_000, 1.0)]
        # Each deep coin costs two 18 s cooldowns
        config = replace(sync_config, time_budgets_ms={"coin_history": 50_000})

        result = await CoinHistoryJob(register, clock, gecko, config).run()

        assert result.synced == [history_key("bitcoin"), history_key("ethereum")]
        assert result.deferred == [history_key("obscure-token"), history_key("unranked")]
        assert result.status == "success"


# ---------------------------------------------------------------------------
# Yahoo history
# ---------------------------------------------------------------------------


class TestYahooHistoryJob:
    @pytest.mark.asyncio
    async def test_only_long_tail_first_run_is_deep(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {k: COINS[k] for k in ("bitcoin", "obscure-token")})
        yahoo.history.side_effect = [
            [Sample(now - 400 * DAY_MS, 0.5)],
            [Sample(now - 2 * HOUR_MS, 0.6)],
        ]

        result = await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        assert yahoo.history.await_args_list == [call("obs", "1d"), call("obs", "1h", days_ago=30)]
        assert register.get_item_last_updated(yahoo_marker_key("obscure-token")) == now
        assert [r[:2] for r in register.get_item(history_key("obscure-token"))] == [
            [now - 2 * HOUR_MS, 0.6],
            [now - 400 * DAY_MS, 0.5],
        ]
        assert result.synced == [history_key("obscure-token")]

    @pytest.mark.asyncio
    async def test_unranked_uses_id_when_no_symbol(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"unranked": COINS["unranked"]})

        result = await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        assert yahoo.history.await_args_list == [call("unranked", "1d"), call("unranked", "1h", days_ago=30)]
        # No data, but the check is still recorded
        assert register.get_item_last_updated(yahoo_marker_key("unranked")) is not None
        assert register.get_item(history_key("unranked")) is None
        assert result.synced == [history_key("unranked")]

    @pytest.mark.asyncio
    async def test_old_marker_fetches_recent_window_only(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"obscure-token": COINS["obscure-token"]})
        _written_at(register, clock, yahoo_marker_key("obscure-token"), now - 9 * DAY_MS)
        register.set_item(history_key("obscure-token"), [_row(now - 6 * DAY_MS, 0.4)])

        await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        yahoo.history.assert_awaited_once_with("obs", "1h", days_ago=30)

    @pytest.mark.asyncio
    async def test_recent_marker_skips(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"obscure-token": COINS["obscure-token"]})
        _written_at(register, clock, yahoo_marker_key("obscure-token"), now - 2 * DAY_MS)

        result = await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        yahoo.history.assert_not_awaited()
        assert result.skipped == [history_key("obscure-token")]

    @pytest.mark.asyncio
    async def test_fresh_series_skips_once_asked(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"obscure-token": COINS["obscure-token"]})
        _written_at(register, clock, yahoo_marker_key("obscure-token"), now - 30 * DAY_MS)
        register.set_item(history_key("obscure-token"), [_row(now - DAY_MS, 0.4)])

        result = await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        yahoo.history.assert_not_awaited()
        assert result.status == "skipped"

    @pytest.mark.asyncio
    async def test_fresh_series_never_asked_still_deep(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock, now: int
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"obscure-token": COINS["obscure-token"]})
        register.set_item(history_key("obscure-token"), [_row(now - DAY_MS, 0.4)])

        await YahooHistoryJob(register, clock, yahoo, sync_config).run()

        assert yahoo.history.await_count == 2

    @pytest.mark.asyncio
    async def test_no_long_tail(
        self, register: InMemoryRegister, clock: ManualClock, sync_config: SyncConfig, yahoo: MagicMock
    ) -> None:
        register.set_item(SUPPORTED_ASSETS_KEY, {"bitcoin": COINS["bitcoin"]})
        result = await YahooHistoryJob(register, clock, yahoo, sync_config).run()
        yahoo.history.assert_not_awaited()
        assert result.status == "skipped"
