"""OptimizationEngine: runs the pipeline steps for one optimization request."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from folio.data_sources.market_data import PriceHistoryProvider
from folio.errors import InsufficientDataWarning, OptimizationCancelled
from folio.models import (
    CorrelationMatrix,
    DiversificationAnalysis,
    Holding,
    OptimizationRequest,
    OptimizationResult,
    RebalancingRecommendation,
    RiskProfile,
)
from folio.pipeline.context import OptimizationContext, PipelineConfig
from folio.pipeline.steps import DEFAULT_STEPS
from folio.utils.logger import setup_logger

logger = setup_logger("pipeline")

PipelineStep = Callable[[OptimizationContext], None]


class OptimizationEngine:
    """Executes an ordered list of pipeline steps against a context.

    Steps run sequentially; any exception is logged and re-raised, so
    structural failures (ValidationError) reach the caller unchanged and no
    partial result is returned. Cancellation is honoured between steps and,
    inside the optimizer, between gradient iterations.
    """

    def __init__(self, steps: list[PipelineStep] | None = None) -> None:
        self.steps = list(steps) if steps is not None else list(DEFAULT_STEPS)

    @staticmethod
    def _step_name(step: PipelineStep) -> str:
        return getattr(step, "__name__", step.__class__.__name__)

    def run(self, ctx: OptimizationContext) -> OptimizationContext:
        logger.info(
            "Optimization started: run=%s holdings=%s steps=%d",
            ctx.run_id, ctx.holding_ids, len(self.steps),
        )
        pipeline_start = time.monotonic()

        for i, step in enumerate(self.steps, 1):
            name = self._step_name(step)
            if ctx.cancelled:
                logger.warning("Run %s cancelled before step %s", ctx.run_id, name)
                raise OptimizationCancelled(f"Optimization {ctx.run_id} cancelled before {name}")

            logger.debug("[%d/%d] Running: %s", i, len(self.steps), name)
            start = time.monotonic()
            try:
                step(ctx)
            except Exception as exc:
                logger.error(
                    "Step %s failed for holdings %s: %s", name, ctx.holding_ids, exc,
                )
                raise
            ctx.timing[name] = round(time.monotonic() - start, 4)
            ctx.steps_completed.append(name)

        if ctx.cancelled:
            raise OptimizationCancelled(f"Optimization {ctx.run_id} cancelled")

        ctx.timing["total"] = round(time.monotonic() - pipeline_start, 4)
        logger.info(
            "Optimization completed in %.2fs with %d warnings",
            ctx.timing["total"], len(ctx.warnings),
        )
        return ctx


@dataclass
class OptimizationReport:
    """Everything one optimization request produces."""

    result: OptimizationResult
    recommendations: list[RebalancingRecommendation]
    diversification: DiversificationAnalysis
    risk_profiles: dict[str, RiskProfile] = field(default_factory=dict)
    correlation: CorrelationMatrix | None = None
    warnings: list[InsufficientDataWarning] = field(default_factory=list)
    run: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_context(cls, ctx: OptimizationContext) -> OptimizationReport:
        return cls(
            result=ctx.result,
            recommendations=list(ctx.recommendations),
            diversification=ctx.diversification,
            risk_profiles=dict(ctx.risk_profiles),
            correlation=ctx.correlation,
            warnings=list(ctx.warnings),
            run=ctx.summary(),
        )

    def to_dict(self) -> dict:
        return {
            "optimization": self.result.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "diversification": self.diversification.to_dict(),
            "risk_profiles": {k: p.to_dict() for k, p in self.risk_profiles.items()},
            "correlation_matrix": self.correlation.to_dict() if self.correlation else {},
            "correlation_fallbacks": [
                list(pair) for pair in (self.correlation.fallback_pairs if self.correlation else [])
            ],
            "warnings": [str(w) for w in self.warnings],
            "run": self.run,
        }


def optimize_portfolio(
    holdings: Iterable[Holding | dict],
    request: OptimizationRequest | dict | None = None,
    provider: PriceHistoryProvider | None = None,
    config: PipelineConfig | None = None,
    cancel_event: threading.Event | None = None,
    history_period: str | None = None,
) -> OptimizationReport:
    """Optimize one portfolio snapshot end to end.

    Args:
        holdings: Holding objects or mappings (snake_case or camelCase keys).
        request: OptimizationRequest or mapping; defaults to moderate.
        provider: Price-history collaborator; fetched once per symbol.
        config: Component settings; built from SETTINGS when omitted.
        cancel_event: Set it from another thread to abort the run.
        history_period: Lookback passed to the provider (default from SETTINGS).

    Raises:
        ValidationError: fewer than 2 holdings, invalid request, or no usable
            return data for any holding.
        OptimizationCancelled: *cancel_event* was set during the run.
    """
    if isinstance(request, dict):
        request = OptimizationRequest.from_dict(request)
    ctx = OptimizationContext(
        holdings=[h if isinstance(h, Holding) else Holding.from_dict(h) for h in holdings],
        request=request or OptimizationRequest(),
        provider=provider,
        config=config or PipelineConfig(),
    )
    if history_period:
        ctx.history_period = history_period
    if cancel_event is not None:
        ctx.cancel_event = cancel_event

    OptimizationEngine().run(ctx)
    return OptimizationReport.from_context(ctx)
