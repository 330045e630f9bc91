"""Price-history providers for the optimizer.

Primary: yfinance | Fallback: TwelveData REST API | Offline: StaticPriceProvider

Every provider returns a DataFrame indexed by date with at least a ``Close``
column, oldest row first, and an empty DataFrame when nothing is available.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import pandas as pd
import requests as req_lib
import yfinance as yf

from folio.config import Keys
from folio.utils.cache import DataCache
from folio.utils.logger import setup_logger
from folio.utils.rate_limiter import RateLimiter

logger = setup_logger("market_data")

# TwelveData period → approximate calendar days for outputsize
_PERIOD_TO_DAYS = {
    "1mo": 30, "3mo": 90, "6mo": 180,
    "1y": 365, "2y": 730, "5y": 1825, "10y": 3650, "max": 5000,
}


class PriceHistoryProvider(Protocol):
    def get_price_history(self, symbol: str, period: str = "1y") -> pd.DataFrame:
        ...


def _fetch_twelvedata_history(
    symbol: str,
    period: str = "1y",
    interval: str = "1d",
    limiter: RateLimiter | None = None,
) -> pd.DataFrame:
    """Fetch closes from TwelveData (fallback when yfinance returns nothing).

    TwelveData free tier: 800 calls/day, 8 calls/min.
    """
    api_key = Keys.TWELVE_DATA
    if not api_key:
        logger.debug("No TwelveData API key, skipping fallback")
        return pd.DataFrame()

    interval_map = {"1d": "1day", "1wk": "1week", "1mo": "1month"}
    outputsize = min(_PERIOD_TO_DAYS.get(period, 365), 5000)

    if limiter is not None:
        limiter.wait()
    try:
        logger.info("TwelveData fallback: %s (period=%s, outputsize=%d)", symbol, period, outputsize)
        resp = req_lib.get(
            "https://api.twelvedata.com/time_series",
            params={
                "symbol": symbol,
                "interval": interval_map.get(interval, "1day"),
                "outputsize": outputsize,
                "apikey": api_key,
                "format": "JSON",
            },
            timeout=30,
        )
        data = resp.json()
    except (req_lib.RequestException, ValueError) as e:
        logger.warning("TwelveData fetch failed for %s: %s", symbol, e)
        return pd.DataFrame()

    if data.get("status") == "error":
        logger.warning("TwelveData error for %s: %s", symbol, data.get("message", "unknown"))
        return pd.DataFrame()

    values = data.get("values", [])
    if not values:
        return pd.DataFrame()

    df = pd.DataFrame(values)
    df["datetime"] = pd.to_datetime(df["datetime"])
    df = df.set_index("datetime").sort_index()
    df = df.rename(columns={"close": "Close"})
    df["Close"] = pd.to_numeric(df["Close"], errors="coerce")
    logger.info("TwelveData: got %d rows for %s", len(df), symbol)
    return df[["Close"]].dropna()


class MarketDataClient:
    """Fetch historical closes over the network.

    Args:
        cache: Optional DataCache; passed in explicitly so cached state is
            owned by whoever builds the client.
        interval: Bar interval for every request.
    """

    def __init__(self, cache: DataCache | None = None, interval: str = "1d") -> None:
        self.cache = cache
        self.interval = interval
        self.limiter = RateLimiter(calls_per_minute=8)

    def get_price_history(self, symbol: str, period: str = "1y") -> pd.DataFrame:
        """Get closing-price history for a symbol.

        Tries yfinance first, falls back to TwelveData if yfinance returns
        empty data (usually due to Yahoo Finance rate limiting / 429 errors).
        """
        cache_key = f"{symbol}_{period}_{self.interval}"
        if self.cache is not None:
            cached = self.cache.get_df(cache_key)
            if cached is not None:
                logger.info("Cache hit: %s", cache_key)
                return cached

        logger.info("Fetching price history: %s (period=%s)", symbol, period)
        try:
            df = yf.Ticker(symbol).history(period=period, interval=self.interval)
        except Exception as e:
            logger.warning("yfinance history failed for %s: %s", symbol, e)
            df = pd.DataFrame()

        if df.empty:
            df = _fetch_twelvedata_history(symbol, period, self.interval, self.limiter)

        if not df.empty:
            df = df[["Close"]].sort_index()
            if self.cache is not None:
                self.cache.set_df(cache_key, df)
        return df


class StaticPriceProvider:
    """In-memory provider over pre-loaded closes, keyed by symbol."""

    def __init__(self, frames: dict[str, pd.DataFrame | pd.Series] | None = None) -> None:
        self.frames: dict[str, pd.DataFrame] = {}
        for symbol, frame in (frames or {}).items():
            if isinstance(frame, pd.Series):
                frame = frame.to_frame("Close")
            self.frames[symbol] = frame.sort_index()

    @classmethod
    def from_csv(cls, path: str | Path) -> StaticPriceProvider:
        """Load a long-format CSV with ``date,symbol,close`` columns."""
        df = pd.read_csv(path)
        df.columns = [c.strip().lower() for c in df.columns]
        missing = {"date", "symbol", "close"} - set(df.columns)
        if missing:
            raise ValueError(f"Price CSV {path} is missing columns: {sorted(missing)}")
        df["date"] = pd.to_datetime(df["date"])
        frames = {
            str(symbol): group.set_index("date")["close"].astype(float).rename("Close")
            for symbol, group in df.groupby("symbol")
        }
        return cls(frames)

    def get_price_history(self, symbol: str, period: str = "1y") -> pd.DataFrame:
        frame = self.frames.get(symbol)
        if frame is None:
            return pd.DataFrame()
        return frame.copy()
