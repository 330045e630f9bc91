"""Diversification analysis over a weight vector."""

from __future__ import annotations

import numpy as np

from folio.models import DiversificationAnalysis, Holding


def herfindahl_index(weights) -> float:
    """H = sum(w_i^2); 1/n for an equally-weighted n-asset portfolio."""
    w = np.asarray(list(weights), dtype=float)
    return float(np.sum(w ** 2))


def analyze_diversification(
    holdings: list[Holding],
    weights: dict[str, float],
) -> DiversificationAnalysis:
    """Concentration metrics plus asset-class and sector breakdowns of *weights*."""
    by_asset_class: dict[str, float] = {}
    by_sector: dict[str, float] = {}
    for h in holdings:
        w = float(weights.get(h.id, 0.0))
        asset_class = h.asset_class or "other"
        sector = h.sector or "other"
        by_asset_class[asset_class] = by_asset_class.get(asset_class, 0.0) + w
        by_sector[sector] = by_sector.get(sector, 0.0) + w

    values = list(weights.values())
    hhi = herfindahl_index(values)
    return DiversificationAnalysis(
        by_asset_class=by_asset_class,
        by_sector=by_sector,
        herfindahl_index=hhi,
        concentration_ratio=float(max(values)) if values else 0.0,
        diversification_score=1.0 - hhi,
        effective_n=1.0 / hhi if hhi > 0 else float(len(values)),
    )
