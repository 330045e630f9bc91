"""Rebalancing recommendations: diff current weights against optimal ones."""

from __future__ import annotations

from dataclasses import dataclass

from folio.config import section
from folio.errors import ValidationError
from folio.models import Holding, RebalancingRecommendation
from folio.utils.logger import setup_logger

logger = setup_logger("rebalancing")


@dataclass(frozen=True)
class RebalancingSettings:
    threshold: float = 0.05
    high_priority_threshold: float = 0.10

    @classmethod
    def from_settings(cls, cfg: dict | None = None) -> RebalancingSettings:
        cfg = section("rebalancing") if cfg is None else cfg
        return cls(
            threshold=float(cfg.get("threshold", cls.threshold)),
            high_priority_threshold=float(
                cfg.get("high_priority_threshold", cls.high_priority_threshold)
            ),
        )


def current_weights(holdings: list[Holding]) -> tuple[dict[str, float], float]:
    """Return ({holding_id: market_value / total}, total_value)."""
    total = sum(h.market_value for h in holdings)
    if total <= 0:
        raise ValidationError("Total portfolio value must be positive")
    return {h.id: h.market_value / total for h in holdings}, total


def generate_recommendations(
    holdings: list[Holding],
    optimal_weights: dict[str, float],
    settings: RebalancingSettings | None = None,
) -> list[RebalancingRecommendation]:
    """Emit a buy/sell for every holding whose weight gap exceeds the threshold.

    amount = |optimal - current| * total value; priority is "high" beyond the
    high-priority threshold, otherwise "medium". Largest gap first.
    """
    settings = settings or RebalancingSettings.from_settings()
    weights, total = current_weights(holdings)

    recommendations: list[RebalancingRecommendation] = []
    for h in holdings:
        current = weights[h.id]
        optimal = float(optimal_weights.get(h.id, 0.0))
        diff = optimal - current
        if abs(diff) <= settings.threshold:
            continue
        recommendations.append(
            RebalancingRecommendation(
                holding_id=h.id,
                symbol=h.symbol,
                action="buy" if diff > 0 else "sell",
                current_weight=current,
                optimal_weight=optimal,
                difference=diff,
                amount=abs(diff) * total,
                priority="high" if abs(diff) > settings.high_priority_threshold else "medium",
            )
        )

    recommendations.sort(key=lambda r: abs(r.difference), reverse=True)
    logger.info(
        "%d of %d holdings need rebalancing (threshold %.2f)",
        len(recommendations), len(holdings), settings.threshold,
    )
    return recommendations
