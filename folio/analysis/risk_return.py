"""Risk/return estimator: annualised expected return and volatility per holding.

Sparse or missing histories never abort an optimization; they fall back to
conservative documented defaults and are flagged on the resulting profile.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from folio.config import section
from folio.models import ReturnSeries, RiskProfile
from folio.utils.logger import setup_logger

logger = setup_logger("risk_return")


@dataclass(frozen=True)
class EstimatorSettings:
    periods_per_year: int = 252
    min_history_points: int = 30
    insufficient_return: float = 0.08
    insufficient_volatility: float = 0.15
    insufficient_sharpe: float = 0.53
    unavailable_return: float = 0.06
    unavailable_volatility: float = 0.20
    unavailable_sharpe: float = 0.15
    volatility_floor: float = 0.01
    floor_expected_return: bool = True
    risk_free_rate: float = 0.03

    @classmethod
    def from_settings(cls, cfg: dict | None = None) -> EstimatorSettings:
        cfg = section("estimator") if cfg is None else cfg
        insufficient = cfg.get("insufficient_data", {})
        unavailable = cfg.get("unavailable_data", {})
        return cls(
            periods_per_year=int(cfg.get("periods_per_year", cls.periods_per_year)),
            min_history_points=int(cfg.get("min_history_points", cls.min_history_points)),
            insufficient_return=float(insufficient.get("expected_return", cls.insufficient_return)),
            insufficient_volatility=float(insufficient.get("volatility", cls.insufficient_volatility)),
            insufficient_sharpe=float(insufficient.get("sharpe_ratio", cls.insufficient_sharpe)),
            unavailable_return=float(unavailable.get("expected_return", cls.unavailable_return)),
            unavailable_volatility=float(unavailable.get("volatility", cls.unavailable_volatility)),
            unavailable_sharpe=float(unavailable.get("sharpe_ratio", cls.unavailable_sharpe)),
            volatility_floor=float(cfg.get("volatility_floor", cls.volatility_floor)),
            floor_expected_return=bool(cfg.get("floor_expected_return", cls.floor_expected_return)),
            risk_free_rate=float(cfg.get("risk_free_rate", cls.risk_free_rate)),
        )


class RiskReturnEstimator:
    """Derive a RiskProfile from a holding's return series."""

    def __init__(self, settings: EstimatorSettings | None = None) -> None:
        self.settings = settings or EstimatorSettings.from_settings()

    def _sharpe(self, expected_return: float, volatility: float) -> float:
        if volatility <= 0:
            return 0.0
        sharpe = (expected_return - self.settings.risk_free_rate) / volatility
        return sharpe if math.isfinite(sharpe) else 0.0

    def default_profile(self, holding_id: str, n_points: int = 0, unavailable: bool = True) -> RiskProfile:
        """Conservative defaults for holdings without a usable history."""
        s = self.settings
        if unavailable:
            mu, vol, sharpe = s.unavailable_return, s.unavailable_volatility, s.unavailable_sharpe
            source = "unavailable"
        else:
            mu, vol, sharpe = s.insufficient_return, s.insufficient_volatility, s.insufficient_sharpe
            source = "insufficient_data"
        return RiskProfile(
            holding_id=holding_id,
            expected_return=mu,
            volatility=vol,
            sharpe_ratio=sharpe,
            n_points=n_points,
            source=source,
        )

    def estimate(self, series: ReturnSeries | None, holding_id: str | None = None) -> RiskProfile:
        """Annualise mean and population std of the periodic returns.

        ``series=None`` means the price collaborator produced nothing for the
        holding; a series shorter than ``min_history_points`` prices gets the
        insufficient-data defaults.
        """
        s = self.settings
        hid = holding_id or (series.holding_id if series is not None else "")

        if series is None:
            logger.warning("%s: no price history available, using defaults", hid)
            return self.default_profile(hid, 0, unavailable=True)

        if series.n_prices < s.min_history_points or len(series) == 0:
            logger.warning(
                "%s: only %d price points (< %d), using defaults",
                hid, series.n_prices, s.min_history_points,
            )
            return self.default_profile(hid, series.n_prices, unavailable=False)

        values = series.returns.to_numpy(dtype=float)
        mean = float(np.mean(values))
        std = float(np.std(values))  # population, ddof=0

        raw_return = mean * s.periods_per_year
        raw_volatility = std * math.sqrt(s.periods_per_year)
        # Sharpe is taken on the unfloored estimates
        sharpe = self._sharpe(raw_return, raw_volatility)

        expected_return = max(raw_return, 0.0) if s.floor_expected_return else raw_return
        volatility = max(raw_volatility, s.volatility_floor)

        return RiskProfile(
            holding_id=hid,
            expected_return=expected_return,
            volatility=volatility,
            sharpe_ratio=sharpe,
            n_points=series.n_prices,
            source="historical",
        )
