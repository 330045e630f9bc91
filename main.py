#!/usr/bin/env python3
"""folio: portfolio optimizer.

Usage:
    python main.py optimize holdings.yaml                          # yfinance prices
    python main.py optimize holdings.yaml --prices closes.csv      # offline prices
    python main.py optimize holdings.yaml --risk-tolerance conservative --max-weight 0.4
    python main.py optimize holdings.yaml --solver slsqp --target-return 0.08
    python main.py estimate holdings.yaml --prices closes.csv      # per-holding estimates

holdings.yaml is a list of {id, symbol, asset_class, sector, quantity,
market_value, total_cost}; closes.csv has date,symbol,close columns.
"""

import argparse
import json
import sys

import yaml

from folio.analysis.optimizer import OptimizerSettings
from folio.config import SETTINGS
from folio.data_sources.market_data import MarketDataClient, StaticPriceProvider
from folio.errors import ValidationError
from folio.models import Holding, OptimizationRequest
from folio.pipeline.context import OptimizationContext, PipelineConfig
from folio.pipeline.engine import OptimizationEngine, optimize_portfolio
from folio.pipeline import steps as S
from folio.utils.cache import DataCache
from folio.utils.logger import setup_logger

logger = setup_logger("main", SETTINGS.get("app", {}).get("log_level", "INFO"))


def _load_holdings(path: str) -> list[Holding]:
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("holdings", [])
    return [Holding.from_dict(item) for item in data]


def _build_provider(args):
    if args.prices:
        return StaticPriceProvider.from_csv(args.prices)
    return MarketDataClient(cache=None if args.no_cache else DataCache("price_historical"))


# ============================================================
# COMMANDS
# ============================================================

def cmd_optimize(args):
    """Run the full optimization pipeline and print the report."""
    holdings = _load_holdings(args.holdings)
    request = OptimizationRequest(
        risk_tolerance=args.risk_tolerance,
        target_return=args.target_return,
        constraints={"max_weight": args.max_weight} if args.max_weight else {},
    )
    config = PipelineConfig(
        optimizer=OptimizerSettings.from_settings(
            solver=args.solver,
            objective=args.objective,
            constraint_mode=args.constraint_mode,
            iterations=args.iterations,
        )
    )
    report = optimize_portfolio(
        holdings,
        request,
        provider=_build_provider(args),
        config=config,
        history_period=args.period,
    )
    print(json.dumps(report.to_dict(), indent=2, default=str))


def cmd_estimate(args):
    """Print per-holding risk/return estimates and the correlation matrix."""
    ctx = OptimizationContext(
        holdings=_load_holdings(args.holdings),
        provider=_build_provider(args),
    )
    if args.period:
        ctx.history_period = args.period
    engine = OptimizationEngine(steps=[
        S.fetch_price_histories,
        S.compute_return_series,
        S.estimate_risk_profiles,
        S.build_correlations,
    ])
    engine.run(ctx)
    print(json.dumps({
        "risk_profiles": {k: p.to_dict() for k, p in ctx.risk_profiles.items()},
        "correlation_matrix": ctx.correlation.to_dict(),
        "warnings": [str(w) for w in ctx.warnings],
    }, indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="folio: portfolio optimizer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", help="Commands")

    def add_data_args(p):
        p.add_argument("holdings", help="YAML file with the holdings snapshot")
        p.add_argument("--prices", default="", help="CSV of closes (date,symbol,close)")
        p.add_argument("--period", default="", help="History lookback, e.g. 1y, 2y")
        p.add_argument("--no-cache", action="store_true", help="Skip the parquet price cache")

    # optimize
    p = sub.add_parser("optimize", help="Optimize allocation and suggest rebalancing")
    add_data_args(p)
    p.add_argument("--risk-tolerance", default="moderate",
                   choices=["conservative", "moderate", "aggressive"])
    p.add_argument("--target-return", type=float, default=None)
    p.add_argument("--max-weight", type=float, default=None,
                   help="Cap on any single holding's weight (0-1)")
    p.add_argument("--solver", choices=["gradient", "slsqp"], default=None)
    p.add_argument("--objective", choices=["sharpe", "mean_variance"], default=None)
    p.add_argument("--constraint-mode", choices=["project", "renormalize"], default=None)
    p.add_argument("--iterations", type=int, default=None)
    p.set_defaults(func=cmd_optimize)

    # estimate
    p = sub.add_parser("estimate", help="Per-holding return/volatility and correlations")
    add_data_args(p)
    p.set_defaults(func=cmd_estimate)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(0)
    try:
        args.func(args)
    except ValidationError as exc:
        logger.error("%s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
