"""Tests for folio.data_sources.market_data -- yfinance, TwelveData fallback, offline."""

from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from folio.config import Keys
from folio.data_sources.market_data import MarketDataClient, StaticPriceProvider


def _ohlcv(n=5):
    idx = pd.bdate_range("2024-01-01", periods=n)
    return pd.DataFrame(
        {"Open": range(n), "High": range(n), "Low": range(n),
         "Close": [100.0 + i for i in range(n)], "Volume": [1000] * n},
        index=idx,
    )


class TestMarketDataClient:

    @patch("folio.data_sources.market_data.yf")
    def test_returns_close_only(self, mock_yf):
        mock_yf.Ticker.return_value.history.return_value = _ohlcv()
        df = MarketDataClient().get_price_history("AAPL", period="1y")
        assert list(df.columns) == ["Close"]
        assert len(df) == 5
        mock_yf.Ticker.assert_called_once_with("AAPL")

    @patch("folio.data_sources.market_data.yf")
    def test_cache_hit_skips_network(self, mock_yf):
        cache = MagicMock()
        cache.get_df.return_value = _ohlcv()[["Close"]]
        df = MarketDataClient(cache=cache).get_price_history("AAPL")
        assert len(df) == 5
        mock_yf.Ticker.assert_not_called()

    @patch("folio.data_sources.market_data.yf")
    def test_fetched_frame_is_cached(self, mock_yf):
        mock_yf.Ticker.return_value.history.return_value = _ohlcv()
        cache = MagicMock()
        cache.get_df.return_value = None
        MarketDataClient(cache=cache).get_price_history("AAPL", period="2y")
        key, frame = cache.set_df.call_args[0]
        assert key == "AAPL_2y_1d"
        assert list(frame.columns) == ["Close"]

    @patch("folio.data_sources.market_data.yf")
    def test_empty_without_fallback_key(self, mock_yf):
        mock_yf.Ticker.return_value.history.return_value = pd.DataFrame()
        with patch.object(Keys, "TWELVE_DATA", ""):
            df = MarketDataClient().get_price_history("NOPE")
        assert df.empty

    @patch("folio.data_sources.market_data.req_lib.get")
    @patch("folio.data_sources.market_data.yf")
    def test_twelvedata_fallback(self, mock_yf, mock_get):
        mock_yf.Ticker.return_value.history.side_effect = RuntimeError("429")
        mock_get.return_value.json.return_value = {
            "values": [
                {"datetime": "2024-01-03", "close": "101.5"},
                {"datetime": "2024-01-02", "close": "100.0"},
            ]
        }
        with patch.object(Keys, "TWELVE_DATA", "test-key"):
            df = MarketDataClient().get_price_history("AAPL")
        assert list(df["Close"]) == [100.0, 101.5]
        assert df.index.is_monotonic_increasing
        assert mock_get.call_args.kwargs["params"]["apikey"] == "test-key"

    @patch("folio.data_sources.market_data.req_lib.get")
    @patch("folio.data_sources.market_data.yf")
    def test_twelvedata_error_status(self, mock_yf, mock_get):
        mock_yf.Ticker.return_value.history.return_value = pd.DataFrame()
        mock_get.return_value.json.return_value = {"status": "error", "message": "bad symbol"}
        with patch.object(Keys, "TWELVE_DATA", "test-key"):
            df = MarketDataClient().get_price_history("XXXX")
        assert df.empty


class TestStaticPriceProvider:

    def test_from_csv(self, tmp_path):
        path = tmp_path / "closes.csv"
        path.write_text(
            "date,symbol,close\n"
            "2024-01-03,AAA,11\n"
            "2024-01-02,AAA,10\n"
            "2024-01-02,BBB,20\n"
            "2024-01-03,BBB,21\n"
        )
        provider = StaticPriceProvider.from_csv(path)
        aaa = provider.get_price_history("AAA")
        assert list(aaa["Close"]) == [10.0, 11.0]
        assert set(provider.frames) == {"AAA", "BBB"}

    def test_from_csv_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("date,ticker,price\n2024-01-02,AAA,10\n")
        with pytest.raises(ValueError, match="missing columns"):
            StaticPriceProvider.from_csv(path)

    def test_unknown_symbol_empty(self, provider):
        assert provider.get_price_history("ZZZ").empty

    def test_returns_copy(self, provider):
        df = provider.get_price_history("AAA")
        df["Close"] = 0.0
        assert provider.get_price_history("AAA")["Close"].iloc[0] == pytest.approx(100.0)
