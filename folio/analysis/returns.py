"""Return calculator: closing prices -> periodic simple returns."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import pandas as pd

from folio.errors import ValidationError
from folio.models import PricePoint, ReturnSeries
from folio.utils.logger import setup_logger

logger = setup_logger("returns")

# Fewer closing prices than this still produce returns, but flagged low-confidence
MIN_CONFIDENT_POINTS = 30

PriceInput = Union[pd.Series, pd.DataFrame, Sequence[PricePoint]]


def to_close_series(prices: PriceInput, holding_id: str = "") -> pd.Series:
    """Normalise any supported price input to a chronologically sorted Series.

    Timestamps become naive calendar dates and repeated dates keep their
    last close, so series from different sources line up by day.
    """
    if isinstance(prices, pd.DataFrame):
        if prices.empty:
            return pd.Series(dtype=float)
        if "Close" not in prices.columns:
            raise ValidationError("Price frame has no 'Close' column")
        series = prices["Close"]
    elif isinstance(prices, pd.Series):
        series = prices
    else:
        points = list(prices)
        series = pd.Series(
            [float(p.close) for p in points],
            index=pd.to_datetime([p.date for p in points]),
            dtype=float,
        )

    series = pd.to_numeric(series, errors="coerce").dropna()
    if isinstance(series.index, pd.DatetimeIndex):
        # align on calendar dates whatever the source timezone
        index = series.index
        if index.tz is not None:
            index = index.tz_localize(None)
        series = series.set_axis(index.normalize())
    if not series.index.is_monotonic_increasing:
        series = series.sort_index(kind="stable")

    duplicated = series.index.duplicated(keep="last")
    if duplicated.any():
        logger.warning(
            "%s: dropped %d duplicate price dates", holding_id or "series", int(duplicated.sum()),
        )
        series = series[~duplicated]
    return series.astype(float)


def compute_returns(
    prices: PriceInput,
    holding_id: str = "",
    min_confident_points: int = MIN_CONFIDENT_POINTS,
) -> ReturnSeries:
    """Convert closing prices into simple returns r_i = (p_i - p_{i-1}) / p_{i-1}.

    Args:
        prices: Closing prices, oldest first (sorted here if not).
        holding_id: Identifier used for logging and on the result.
        min_confident_points: Below this many prices the series is kept but
            flagged ``low_confidence``.

    Returns:
        ReturnSeries with n_prices - 1 returns, minus any periods whose
        previous price was non-positive.

    Raises:
        ValidationError: fewer than 2 prices.
    """
    closes = to_close_series(prices, holding_id)
    n = len(closes)
    if n < 2:
        raise ValidationError(
            f"{holding_id or 'series'}: at least 2 prices are required, got {n}"
        )

    prev = closes.shift(1)
    returns = (closes - prev) / prev
    returns = returns.iloc[1:]
    invalid = ~np.isfinite(returns.values) | (prev.iloc[1:].values <= 0)
    if invalid.any():
        logger.warning(
            "%s: dropped %d undefined returns (non-positive previous price)",
            holding_id, int(invalid.sum()),
        )
        returns = returns[~invalid]

    returns.name = holding_id or None
    return ReturnSeries(
        holding_id=holding_id,
        returns=returns,
        n_prices=n,
        low_confidence=n < min_confident_points,
    )
