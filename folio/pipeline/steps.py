"""Built-in pipeline steps: validate, fetch, estimate, optimize, report.

Each step is a function: (OptimizationContext) -> None
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed

import pandas as pd

from folio.analysis.correlation import build_correlation_matrix
from folio.analysis.diversification import analyze_diversification as _analyze_diversification
from folio.analysis.optimizer import PortfolioOptimizer
from folio.analysis.rebalancing import current_weights, generate_recommendations
from folio.analysis.returns import compute_returns
from folio.analysis.risk_return import RiskReturnEstimator
from folio.errors import InsufficientDataWarning, ValidationError
from folio.models import ReturnSeries
from folio.pipeline.context import OptimizationContext
from folio.utils.logger import setup_logger

logger = setup_logger("steps")


# ============================================================
# VALIDATE
# ============================================================

def validate_request(ctx: OptimizationContext) -> None:
    """Reject structurally invalid requests before any numerical work."""
    n = len(ctx.holdings)
    if n < 2:
        raise ValidationError(f"Optimization requires at least 2 holdings, got {n}")

    ids = ctx.holding_ids
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate holding ids: {duplicates}")

    negative = [h.id for h in ctx.holdings if h.market_value < 0]
    if negative:
        raise ValidationError(f"Negative market value for holdings {negative}")

    current_weights(ctx.holdings)
    PortfolioOptimizer.max_weight_constraint(ctx.request.constraints, n)


# ============================================================
# FETCH
# ============================================================

def fetch_price_histories(ctx: OptimizationContext) -> None:
    """Fetch each distinct symbol once, concurrently, and keep it for the whole run.

    Provider failures degrade to "no data" for the holdings involved.
    """
    if ctx.provider is None:
        logger.warning("No price provider configured; all holdings use default estimates")
        return

    symbols: dict[str, list[str]] = {}
    for h in ctx.holdings:
        symbols.setdefault(h.symbol, []).append(h.id)

    def _fetch(symbol: str) -> pd.DataFrame:
        return ctx.provider.get_price_history(symbol, period=ctx.history_period)

    workers = max(1, min(ctx.config.max_workers, len(symbols)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_symbol = {executor.submit(_fetch, s): s for s in symbols}
        for future in as_completed(future_to_symbol):
            symbol = future_to_symbol[future]
            holding_ids = symbols[symbol]
            try:
                frame = future.result()
            except Exception as exc:
                logger.warning("Price history failed for %s (%s): %s", symbol, holding_ids, exc)
                continue
            if frame is None or frame.empty:
                logger.warning("No price history for %s (%s)", symbol, holding_ids)
                continue
            for holding_id in holding_ids:
                ctx.price_data[holding_id] = frame


# ============================================================
# ESTIMATE
# ============================================================

def compute_return_series(ctx: OptimizationContext) -> None:
    """Turn every fetched close series into periodic returns."""
    min_points = ctx.config.estimator.min_history_points
    for h in ctx.holdings:
        frame = ctx.price_data.get(h.id)
        if frame is None:
            continue
        try:
            ctx.return_series[h.id] = compute_returns(frame, h.id, min_confident_points=min_points)
        except ValidationError as exc:
            logger.warning("Unusable price history for %s: %s", h.id, exc)

    usable = [s for s in ctx.return_series.values() if len(s) > 0]
    if not usable:
        raise ValidationError(
            f"No usable return data for any holding: {ctx.holding_ids}"
        )


def estimate_risk_profiles(ctx: OptimizationContext) -> None:
    """Annualised expected return / volatility per holding, with defaults for gaps."""
    estimator = RiskReturnEstimator(ctx.config.estimator)
    for h in ctx.holdings:
        profile = estimator.estimate(ctx.return_series.get(h.id), h.id)
        ctx.risk_profiles[h.id] = profile
        if profile.low_confidence:
            ctx.add_warning(InsufficientDataWarning(h.id, profile.n_points, profile.source))


def build_correlations(ctx: OptimizationContext) -> None:
    """Pairwise correlations from the series already held on the context."""
    series = [
        ctx.return_series.get(h.id, ReturnSeries(h.id, pd.Series(dtype=float), n_prices=0))
        for h in ctx.holdings
    ]
    ctx.correlation = build_correlation_matrix(series, ctx.config.correlation)


# ============================================================
# OPTIMIZE + REPORT
# ============================================================

def optimize_weights(ctx: OptimizationContext) -> None:
    optimizer = PortfolioOptimizer(ctx.config.optimizer)
    ctx.result = optimizer.optimize_profiles(
        [ctx.risk_profiles[i] for i in ctx.holding_ids],
        ctx.correlation,
        request=ctx.request,
        cancel_event=ctx.cancel_event,
    )


def recommend_rebalancing(ctx: OptimizationContext) -> None:
    ctx.recommendations = generate_recommendations(
        ctx.holdings, ctx.result.weights, ctx.config.rebalancing
    )


def analyze_diversification(ctx: OptimizationContext) -> None:
    ctx.diversification = _analyze_diversification(ctx.holdings, ctx.result.weights)


DEFAULT_STEPS = [
    validate_request,
    fetch_price_histories,
    compute_return_series,
    estimate_risk_profiles,
    build_correlations,
    optimize_weights,
    recommend_rebalancing,
    analyze_diversification,
]
