"""Data model shared by the optimizer components.

Everything here is request-scoped: holdings are loaded fresh for every
optimization and derived objects (return series, risk profiles, the
correlation matrix) are recomputed per request and never persisted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

from folio.errors import ValidationError


def _to_float(val: Any) -> float:
    """Coerce numpy/pandas scalar to plain float for JSON serialization."""
    return round(float(val), 6)


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @classmethod
    def parse(cls, value: str | RiskTolerance | None) -> RiskTolerance:
        if value is None:
            return cls.MODERATE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(
                f"Unknown risk tolerance '{value}' (expected one of: {allowed})"
            ) from None


@dataclass
class Holding:
    """One position of a portfolio snapshot."""

    id: str
    symbol: str
    asset_class: str | None = None
    sector: str | None = None
    quantity: float = 0.0
    market_value: float = 0.0
    total_cost: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> Holding:
        """Build from a snake_case or camelCase mapping."""
        def pick(*keys, default=None):
            for k in keys:
                if data.get(k) is not None:
                    return data[k]
            return default

        symbol = pick("symbol", "ticker")
        if symbol is None:
            raise ValidationError(f"Holding is missing a symbol: {data}")
        return cls(
            id=str(pick("id", "holding_id", "holdingId", default=symbol)),
            symbol=str(symbol),
            asset_class=pick("asset_class", "assetClass"),
            sector=pick("sector"),
            quantity=float(pick("quantity", default=0.0)),
            market_value=float(pick("market_value", "marketValue", default=0.0)),
            total_cost=float(pick("total_cost", "totalCost", default=0.0)),
        )


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: float


@dataclass
class ReturnSeries:
    """Periodic simple returns derived from one holding's closing prices."""

    holding_id: str
    returns: pd.Series
    n_prices: int
    low_confidence: bool = False

    def __len__(self) -> int:
        return len(self.returns)


@dataclass
class RiskProfile:
    """Annualised return/volatility estimate for one holding."""

    holding_id: str
    expected_return: float
    volatility: float
    sharpe_ratio: float = 0.0
    n_points: int = 0
    source: str = "historical"  # historical | insufficient_data | unavailable

    @property
    def low_confidence(self) -> bool:
        return self.source != "historical"

    def to_dict(self) -> dict:
        return {
            "holding_id": self.holding_id,
            "expected_return": _to_float(self.expected_return),
            "volatility": _to_float(self.volatility),
            "sharpe_ratio": _to_float(self.sharpe_ratio),
            "n_points": self.n_points,
            "source": self.source,
        }


@dataclass
class CorrelationMatrix:
    """Square, symmetric correlation matrix indexed by holding id."""

    labels: list[str]
    values: np.ndarray
    fallback_pairs: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._index = {label: i for i, label in enumerate(self.labels)}

    def get(self, a: str, b: str) -> float:
        return float(self.values[self._index[a], self._index[b]])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, index=self.labels, columns=self.labels)

    def to_dict(self) -> dict:
        n = len(self.labels)
        return {
            self.labels[i]: {self.labels[j]: _to_float(self.values[i, j]) for j in range(n)}
            for i in range(n)
        }


@dataclass
class OptimizationRequest:
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    target_return: float | None = None
    constraints: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.risk_tolerance = RiskTolerance.parse(self.risk_tolerance)
        if self.target_return is not None:
            self.target_return = float(self.target_return)
            if not math.isfinite(self.target_return):
                raise ValidationError("target_return must be a finite number")
        self.constraints = dict(self.constraints or {})

    @classmethod
    def from_dict(cls, data: dict) -> OptimizationRequest:
        return cls(
            risk_tolerance=data.get("risk_tolerance", data.get("riskTolerance")),
            target_return=data.get("target_return", data.get("targetReturn")),
            constraints=data.get("constraints") or {},
        )


@dataclass
class OptimizationResult:
    """Optimal weights plus the portfolio statistics recomputed from them."""

    weights: dict[str, float]
    expected_return: float
    expected_volatility: float
    sharpe_ratio: float
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    risk_aversion: float = 2.0
    method: str = "gradient"
    objective: str = "sharpe"
    constraint_mode: str = "project"
    iterations_run: int = 0
    cancelled: bool = False
    target_return: float | None = None
    meets_target: bool | None = None
    constraints: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "weights": {k: float(v) for k, v in self.weights.items()},
            "expected_return": _to_float(self.expected_return),
            "expected_volatility": _to_float(self.expected_volatility),
            "sharpe_ratio": _to_float(self.sharpe_ratio),
            "risk_tolerance": self.risk_tolerance.value,
            "risk_aversion": self.risk_aversion,
            "method": self.method,
            "objective": self.objective,
            "constraint_mode": self.constraint_mode,
            "iterations_run": self.iterations_run,
            "cancelled": self.cancelled,
            "target_return": self.target_return,
            "meets_target": self.meets_target,
            "constraints": self.constraints,
        }


@dataclass
class RebalancingRecommendation:
    holding_id: str
    symbol: str
    action: str  # buy | sell
    current_weight: float
    optimal_weight: float
    difference: float
    amount: float
    priority: str  # high | medium

    def to_dict(self) -> dict:
        return {
            "holding_id": self.holding_id,
            "symbol": self.symbol,
            "action": self.action,
            "current_weight": _to_float(self.current_weight),
            "optimal_weight": _to_float(self.optimal_weight),
            "difference": _to_float(self.difference),
            "amount": round(float(self.amount), 2),
            "priority": self.priority,
        }


@dataclass
class DiversificationAnalysis:
    by_asset_class: dict[str, float]
    by_sector: dict[str, float]
    herfindahl_index: float
    concentration_ratio: float
    diversification_score: float
    effective_n: float

    def to_dict(self) -> dict:
        return {
            "by_asset_class": {k: _to_float(v) for k, v in self.by_asset_class.items()},
            "by_sector": {k: _to_float(v) for k, v in self.by_sector.items()},
            "herfindahl_index": _to_float(self.herfindahl_index),
            "concentration_ratio": _to_float(self.concentration_ratio),
            "diversification_score": _to_float(self.diversification_score),
            "effective_n": _to_float(self.effective_n),
        }
