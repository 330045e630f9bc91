"""Shared pytest fixtures for the folio test suite.

Provides synthetic price data with fixed random seeds for reproducibility.
All fixtures are independent of external APIs.
"""

import numpy as np
import pandas as pd
import pytest

from folio.data_sources.market_data import StaticPriceProvider
from folio.models import Holding


def make_price_frames(
    symbols=("AAA", "BBB", "CCC"),
    n=252,
    means=(0.0006, 0.0004, 0.0003),
    stds=(0.015, 0.010, 0.020),
    corr=0.3,
    seed=42,
    start_date="2023-01-02",
):
    """Correlated geometric price paths, one Close frame per symbol."""
    rng = np.random.default_rng(seed)
    k = len(symbols)
    C = np.full((k, k), corr)
    np.fill_diagonal(C, 1.0)
    L = np.linalg.cholesky(C)
    raw = rng.standard_normal((n - 1, k)) @ L.T
    returns = raw * np.asarray(stds[:k]) + np.asarray(means[:k])

    dates = pd.bdate_range(start=start_date, periods=n)
    frames = {}
    for i, symbol in enumerate(symbols):
        closes = 100.0 * np.concatenate([[1.0], np.cumprod(1.0 + returns[:, i])])
        frames[symbol] = pd.DataFrame({"Close": closes}, index=dates)
    return frames


@pytest.fixture
def price_frames():
    """Three correlated 252-day price histories keyed by symbol."""
    return make_price_frames()


@pytest.fixture
def provider(price_frames):
    return StaticPriceProvider(price_frames)


@pytest.fixture
def holdings():
    """Three holdings worth 10k in total, skewed towards AAA."""
    return [
        Holding(id="h1", symbol="AAA", asset_class="equity", sector="Technology",
                quantity=50, market_value=6_000.0, total_cost=5_000.0),
        Holding(id="h2", symbol="BBB", asset_class="bond", sector="Government",
                quantity=30, market_value=3_000.0, total_cost=3_100.0),
        Holding(id="h3", symbol="CCC", asset_class="equity", sector="Energy",
                quantity=10, market_value=1_000.0, total_cost=1_200.0),
    ]


@pytest.fixture
def flat_prices():
    """252 identical closes (zero-variance returns)."""
    dates = pd.bdate_range(start="2023-01-02", periods=252)
    return pd.DataFrame({"Close": np.full(252, 50.0)}, index=dates)


@pytest.fixture
def frame_factory():
    """make_price_frames itself, for tests that need several seeds."""
    return make_price_frames
