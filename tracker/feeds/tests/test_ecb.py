"""Tests for the ECB adapter: XML parsing, USD rebasing and projection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tracker.feeds.adapters.ecb import ECB_URLS, EcbClient, parse_rates
from tracker.feeds.config_loader import SyncConfig
from tracker.feeds.errors import VendorShapeError
from tracker.feeds.fetch import text_body
from tracker.feeds.staleness import FetchDepth


class TestParseRates:
    def test_rebases_onto_usd(self, ecb_daily_xml: str) -> None:
        rates = parse_rates(ecb_daily_xml)
        day = rates["2024-01-05"]
        assert day["USD"] == 1.0
        assert day["EUR"] == pytest.approx(0.9157)
        assert day["JPY"] == pytest.approx(145.06)
        assert day["GBP"] == pytest.approx(0.7888)

    def test_rates_rounded_to_four_decimals(self, ecb_daily_xml: str) -> None:
        for rate in parse_rates(ecb_daily_xml)["2024-01-05"].values():
            assert round(rate, 4) == rate

    def test_latest_day_projected_forward(self, ecb_daily_xml: str) -> None:
        rates = parse_rates(ecb_daily_xml)
        assert sorted(rates) == [
            "2024-01-05", "2024-01-06", "2024-01-07", "2024-01-08",
            "2024-01-09", "2024-01-10", "2024-01-11", "2024-01-12",
        ]
        assert rates["2024-01-12"] == rates["2024-01-05"]

    def test_projection_days_configurable(self, ecb_daily_xml: str) -> None:
        assert sorted(parse_rates(ecb_daily_xml, projection_days=0)) == ["2024-01-05"]

    def test_history_drops_pre_2009(self, ecb_hist_xml: str) -> None:
        rates = parse_rates(ecb_hist_xml)
        assert "2008-12-31" not in rates
        assert "2024-01-04" in rates
        assert len(rates) == 2 + 7
        # Projection starts from the latest day, not the last one in the file
        assert rates["2024-01-06"] == rates["2024-01-05"]
        assert rates["2024-01-04"]["EUR"] == pytest.approx(round(1 / 1.0953, 4))

    def test_day_without_usd_raises(self) -> None:
        xml = "<Envelope><Cube><Cube time='2024-01-05'><Cube currency='JPY' rate='158'/></Cube></Cube></Envelope>"
        with pytest.raises(VendorShapeError, match="no USD rate"):
            parse_rates(xml)

    def test_malformed_xml_raises(self) -> None:
        with pytest.raises(VendorShapeError, match="malformed"):
            parse_rates("<Envelope><Cube>")

    def test_invalid_date_raises(self) -> None:
        xml = "<Envelope><Cube time='yesterday'><Cube currency='USD' rate='1.1'/></Cube></Envelope>"
        with pytest.raises(VendorShapeError, match="invalid date"):
            parse_rates(xml)

    def test_document_without_cubes_is_empty(self) -> None:
        assert parse_rates("<Envelope/>") == {}


class TestEcbClient:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("depth", [FetchDepth.DEEP, FetchDepth.MEDIUM, FetchDepth.SHALLOW])
    async def test_url_per_depth(
        self, mock_fetcher: MagicMock, sync_config: SyncConfig, ecb_daily_xml: str, depth: FetchDepth
    ) -> None:
        mock_fetcher.fetch.return_value = ecb_daily_xml
        client = EcbClient(mock_fetcher, sync_config)

        rates = await client.fetch_rates(depth)

        assert "2024-01-05" in rates
        args, kwargs = mock_fetcher.fetch.call_args
        assert args == (ECB_URLS[depth],)
        assert kwargs["headers"] == {"Accept": "application/xml"}
        assert kwargs["transform"] is text_body
        assert (kwargs["retries"], kwargs["base_delay_ms"], kwargs["jitter_ms"]) == (3, 5000, 200)

    @pytest.mark.asyncio
    async def test_skip_has_no_file(self, mock_fetcher: MagicMock, sync_config: SyncConfig) -> None:
        with pytest.raises(ValueError, match="SKIP"):
            await EcbClient(mock_fetcher, sync_config).fetch_rates(FetchDepth.SKIP)
        mock_fetcher.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_found_is_empty(self, mock_fetcher: MagicMock, sync_config: SyncConfig) -> None:
        assert await EcbClient(mock_fetcher, sync_config).fetch_rates(FetchDepth.DEEP) == {}

    @pytest.mark.asyncio
    async def test_supported_currencies(
        self, mock_fetcher: MagicMock, sync_config: SyncConfig, ecb_daily_xml: str
    ) -> None:
        mock_fetcher.fetch.return_value = ecb_daily_xml
        currencies = await EcbClient(mock_fetcher, sync_config).fetch_supported_currencies()
        assert currencies == ["EUR", "USD", "JPY", "GBP", "CHF"]
        assert mock_fetcher.fetch.call_args.args == (ECB_URLS[FetchDepth.SHALLOW],)

    @pytest.mark.asyncio
    async def test_supported_currencies_empty(self, mock_fetcher: MagicMock, sync_config: SyncConfig) -> None:
        assert await EcbClient(mock_fetcher, sync_config).fetch_supported_currencies() == []
