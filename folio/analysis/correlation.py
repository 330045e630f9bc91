"""Pairwise Pearson correlation across holdings' return series."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import pandas as pd

from folio.config import section
from folio.models import CorrelationMatrix, ReturnSeries
from folio.utils.logger import setup_logger

logger = setup_logger("correlation")

# Sums of squared deviations at or below this are treated as zero variance
_ZERO_VARIANCE = 1e-20


@dataclass(frozen=True)
class CorrelationSettings:
    fallback: float = 0.5
    min_overlap: int = 2

    @classmethod
    def from_settings(cls, cfg: dict | None = None) -> CorrelationSettings:
        cfg = section("correlation") if cfg is None else cfg
        return cls(
            fallback=float(cfg.get("fallback", cls.fallback)),
            min_overlap=int(cfg.get("min_overlap", cls.min_overlap)),
        )


def align_returns(x: pd.Series, y: pd.Series) -> tuple[np.ndarray, np.ndarray]:
    """Keep only the periods present in both series."""
    joined = pd.concat([x, y], axis=1, join="inner").dropna()
    return joined.iloc[:, 0].to_numpy(dtype=float), joined.iloc[:, 1].to_numpy(dtype=float)


def pearson_correlation(x: np.ndarray, y: np.ndarray) -> float | None:
    """Pearson correlation of two equal-length arrays.

    rho = (n*Sxy - Sx*Sy) / sqrt((n*Sxx - Sx^2) * (n*Syy - Sy^2)),
    evaluated in the equivalent mean-centred form. Returns None when the
    series is shorter than 2 points or either side has zero variance.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) != len(y):
        raise ValueError("x and y must be the same length")
    if len(x) < 2:
        return None

    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(dx @ dx)
    syy = float(dy @ dy)
    if sxx <= _ZERO_VARIANCE or syy <= _ZERO_VARIANCE:
        return None

    rho = float(dx @ dy) / math.sqrt(sxx * syy)
    if not math.isfinite(rho):
        return None
    return min(1.0, max(-1.0, rho))


def build_correlation_matrix(
    series: list[ReturnSeries],
    settings: CorrelationSettings | None = None,
) -> CorrelationMatrix:
    """Correlation matrix over holdings, computed on the upper triangle and mirrored.

    Each holding's series is used as-is for every pair it takes part in;
    nothing is refetched. Pairs with too little overlap or a flat series get
    the neutral fallback correlation instead of NaN.
    """
    settings = settings or CorrelationSettings.from_settings()
    labels = [s.holding_id for s in series]
    n = len(series)
    values = np.eye(n)
    fallback_pairs: list[tuple[str, str]] = []

    for i in range(n):
        for j in range(i + 1, n):
            x, y = align_returns(series[i].returns, series[j].returns)
            rho = None
            if len(x) >= settings.min_overlap:
                rho = pearson_correlation(x, y)
            if rho is None:
                rho = settings.fallback
                fallback_pairs.append((labels[i], labels[j]))
                logger.warning(
                    "Correlation fallback %.2f for %s/%s (%d overlapping periods)",
                    settings.fallback, labels[i], labels[j], len(x),
                )
            values[i, j] = values[j, i] = rho

    return CorrelationMatrix(labels=labels, values=values, fallback_pairs=fallback_pairs)
