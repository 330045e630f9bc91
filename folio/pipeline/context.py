"""OptimizationContext: request-scoped state passed through every pipeline step."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd

from folio.analysis.correlation import CorrelationSettings
from folio.analysis.optimizer import OptimizerSettings
from folio.analysis.rebalancing import RebalancingSettings
from folio.analysis.risk_return import EstimatorSettings
from folio.config import section
from folio.data_sources.market_data import PriceHistoryProvider
from folio.errors import InsufficientDataWarning
from folio.models import (
    CorrelationMatrix,
    DiversificationAnalysis,
    Holding,
    OptimizationRequest,
    OptimizationResult,
    RebalancingRecommendation,
    ReturnSeries,
    RiskProfile,
)


@dataclass
class PipelineConfig:
    """Component settings for one run, built from SETTINGS unless overridden."""

    estimator: EstimatorSettings = field(default_factory=EstimatorSettings.from_settings)
    correlation: CorrelationSettings = field(default_factory=CorrelationSettings.from_settings)
    optimizer: OptimizerSettings = field(default_factory=OptimizerSettings.from_settings)
    rebalancing: RebalancingSettings = field(default_factory=RebalancingSettings.from_settings)
    max_workers: int = field(default_factory=lambda: int(section("data").get("max_workers", 4)))


@dataclass
class OptimizationContext:
    """Accumulates data and results for one optimization request.

    Nothing here outlives the request, so concurrent optimizations for
    different users never share mutable state.
    """

    # Input
    holdings: list[Holding]
    request: OptimizationRequest = field(default_factory=OptimizationRequest)
    provider: PriceHistoryProvider | None = None
    config: PipelineConfig = field(default_factory=PipelineConfig)
    history_period: str = field(default_factory=lambda: section("data").get("history_period", "1y"))
    run_id: str = field(default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S_%f"))
    cancel_event: threading.Event = field(default_factory=threading.Event)

    # Fetched data: holding id -> close frame (fetched once, reused for every pair)
    price_data: dict[str, pd.DataFrame] = field(default_factory=dict)

    # Derived data
    return_series: dict[str, ReturnSeries] = field(default_factory=dict)
    risk_profiles: dict[str, RiskProfile] = field(default_factory=dict)
    correlation: CorrelationMatrix | None = None

    # Results
    result: OptimizationResult | None = None
    recommendations: list[RebalancingRecommendation] = field(default_factory=list)
    diversification: DiversificationAnalysis | None = None

    # Pipeline metadata
    warnings: list[InsufficientDataWarning] = field(default_factory=list)
    steps_completed: list[str] = field(default_factory=list)
    timing: dict[str, float] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def holding_ids(self) -> list[str]:
        return [h.id for h in self.holdings]

    def add_warning(self, warning: InsufficientDataWarning) -> None:
        self.warnings.append(warning)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "holdings": len(self.holdings),
            "steps_completed": list(self.steps_completed),
            "timing": dict(self.timing),
            "warnings": [str(w) for w in self.warnings],
        }
