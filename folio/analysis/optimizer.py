"""Portfolio optimizer: risk-adjusted-optimal long-only weights.

Maximises the portfolio Sharpe ratio

    Sharpe(w) = (w'mu - rf) / sqrt(w'Sigma w),   Sigma_ij = rho_ij * sigma_i * sigma_j

over the simplex (sum(w) = 1, w >= 0) by minimising -Sharpe(w). Two solvers
are available:

* ``gradient`` -- fixed-iteration descent with an Adam-style momentum update
  and an analytic gradient. Constraints are either enforced after every step
  by Euclidean projection onto the simplex (``constraint_mode="project"``) or
  only restored once at the end by renormalising (``"renormalize"``).
* ``slsqp`` -- scipy's SLSQP with bounds and a sum-to-one equality
  constraint; honours ``target_return`` as an inequality constraint.

Both paths are deterministic for fixed inputs. All working state is local to
the call, so a cancelled run leaves nothing behind.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from scipy.optimize import minimize

from folio.config import section
from folio.errors import NumericInstabilityError, ValidationError
from folio.models import (
    CorrelationMatrix,
    OptimizationRequest,
    OptimizationResult,
    RiskProfile,
    RiskTolerance,
)
from folio.utils.logger import setup_logger

logger = setup_logger("optimizer")

_SOLVERS = ("gradient", "slsqp")
_OBJECTIVES = ("sharpe", "mean_variance")
_CONSTRAINT_MODES = ("project", "renormalize")

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizerSettings:
    solver: str = "gradient"
    objective: str = "sharpe"
    constraint_mode: str = "project"
    iterations: int = 1000
    learning_rate: float = 0.01
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8
    risk_free_rate: float = 0.0
    penalty: float = 1e6
    min_volatility: float = 1e-12
    max_condition_number: float = 1e10
    risk_aversion: dict[str, float] = field(
        default_factory=lambda: {"conservative": 4.0, "moderate": 2.0, "aggressive": 1.0}
    )

    def __post_init__(self) -> None:
        if self.solver not in _SOLVERS:
            raise ValidationError(f"Unknown solver '{self.solver}'")
        if self.objective not in _OBJECTIVES:
            raise ValidationError(f"Unknown objective '{self.objective}'")
        if self.constraint_mode not in _CONSTRAINT_MODES:
            raise ValidationError(f"Unknown constraint mode '{self.constraint_mode}'")
        if self.iterations < 0:
            raise ValidationError("iterations must be non-negative")

    @classmethod
    def from_settings(cls, cfg: dict | None = None, **overrides) -> OptimizerSettings:
        cfg = section("optimizer") if cfg is None else cfg
        defaults = cls()
        values = {
            "solver": str(cfg.get("solver", defaults.solver)),
            "objective": str(cfg.get("objective", defaults.objective)),
            "constraint_mode": str(cfg.get("constraint_mode", defaults.constraint_mode)),
            "iterations": int(cfg.get("iterations", defaults.iterations)),
            "learning_rate": float(cfg.get("learning_rate", defaults.learning_rate)),
            "beta1": float(cfg.get("beta1", defaults.beta1)),
            "beta2": float(cfg.get("beta2", defaults.beta2)),
            "epsilon": float(cfg.get("epsilon", defaults.epsilon)),
            "risk_free_rate": float(cfg.get("risk_free_rate", defaults.risk_free_rate)),
            "penalty": float(cfg.get("penalty", defaults.penalty)),
            "min_volatility": float(cfg.get("min_volatility", defaults.min_volatility)),
            "max_condition_number": float(
                cfg.get("max_condition_number", defaults.max_condition_number)
            ),
            "risk_aversion": {
                str(k): float(v)
                for k, v in (cfg.get("risk_aversion") or defaults.risk_aversion).items()
            },
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _regularize_cov(cov: np.ndarray, eps: float = 1e-8) -> np.ndarray:
    """Add small ridge to diagonal to avoid singular covariance matrices."""
    return cov + np.eye(cov.shape[0]) * eps


def build_covariance(volatilities: Sequence[float], correlation: np.ndarray) -> np.ndarray:
    """Sigma_ij = rho_ij * sigma_i * sigma_j."""
    vols = np.asarray(volatilities, dtype=float)
    corr = np.asarray(correlation, dtype=float)
    if corr.shape != (len(vols), len(vols)):
        raise ValidationError(
            f"Correlation matrix shape {corr.shape} does not match {len(vols)} holdings"
        )
    cov = corr * np.outer(vols, vols)
    return (cov + cov.T) / 2.0


def project_to_simplex(v: np.ndarray, upper: float = 1.0) -> np.ndarray:
    """Euclidean projection onto {w : sum(w) = 1, 0 <= w <= upper}.

    Uses the sort-based algorithm for the plain simplex and bisection on the
    shift for the capped one. ``upper * len(v)`` must be at least 1.
    """
    v = np.asarray(v, dtype=float)
    n = v.size
    if upper >= 1.0:
        u = np.sort(v)[::-1]
        css = np.cumsum(u) - 1.0
        ind = np.arange(1, n + 1)
        cond = u - css / ind > 0
        rho = ind[cond][-1]
        theta = css[cond][-1] / rho
        return np.maximum(v - theta, 0.0)

    lo, hi = float(v.min()) - upper, float(v.max())
    for _ in range(100):
        mid = (lo + hi) / 2.0
        if np.clip(v - mid, 0.0, upper).sum() > 1.0:
            lo = mid
        else:
            hi = mid
    return np.clip(v - (lo + hi) / 2.0, 0.0, upper)


def _normalise(w: np.ndarray) -> np.ndarray:
    """Clip negatives and rescale to sum to one; uniform if nothing is left."""
    w = np.clip(np.nan_to_num(w, nan=0.0, posinf=0.0, neginf=0.0), 0.0, None)
    total = w.sum()
    if total <= 0:
        logger.warning("Weights collapsed to zero, falling back to equal weights")
        return np.full(w.size, 1.0 / w.size)
    return w / total


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------


class PortfolioOptimizer:
    """Maximise the Sharpe ratio (or a mean-variance utility) over long-only weights."""

    def __init__(self, settings: OptimizerSettings | None = None) -> None:
        self.settings = settings or OptimizerSettings.from_settings()

    def risk_aversion_for(self, tolerance: RiskTolerance | str) -> float:
        tolerance = RiskTolerance.parse(tolerance)
        return float(self.settings.risk_aversion.get(tolerance.value, 2.0))

    # ----- covariance ----------------------------------------------------

    def _check_conditioning(self, cov: np.ndarray, labels: list[str]) -> None:
        eigvals = np.linalg.eigvalsh(cov)
        if not np.all(np.isfinite(eigvals)) or eigvals.min() <= 0:
            raise NumericInstabilityError(
                f"Covariance is not positive definite (min eigenvalue "
                f"{eigvals.min():.3g}) for holdings {labels}"
            )
        cond = float(eigvals.max() / eigvals.min())
        if cond > self.settings.max_condition_number:
            raise NumericInstabilityError(
                f"Ill-conditioned covariance (cond={cond:.3g}) for holdings {labels}"
            )

    def _covariance(self, vols: np.ndarray, corr: np.ndarray, labels: list[str]) -> np.ndarray:
        cov = _regularize_cov(build_covariance(vols, corr))
        try:
            self._check_conditioning(cov, labels)
        except NumericInstabilityError as exc:
            n = cov.shape[0]
            shift = max(0.0, -float(np.linalg.eigvalsh(cov).min()))
            shift += 1e-6 * float(np.trace(cov)) / n
            logger.warning("%s; adding ridge %.3g", exc, shift)
            cov = cov + np.eye(n) * shift
        return cov

    # ----- objective -----------------------------------------------------

    def _raw_objective(
        self, w: np.ndarray, mu: np.ndarray, cov: np.ndarray, risk_aversion: float
    ) -> tuple[float, np.ndarray]:
        """Objective value and gradient; raises on degenerate volatility."""
        cov_w = cov @ w
        variance = float(w @ cov_w)

        if self.settings.objective == "mean_variance":
            value = -float(w @ mu) + risk_aversion * variance
            grad = -mu + 2.0 * risk_aversion * cov_w
            return value, grad

        if not math.isfinite(variance) or variance <= self.settings.min_volatility ** 2:
            raise NumericInstabilityError(f"Portfolio variance {variance:.3g} is degenerate")
        vol = math.sqrt(variance)
        excess = float(w @ mu) - self.settings.risk_free_rate
        value = -excess / vol
        grad = -(mu / vol - excess * cov_w / vol ** 3)
        return value, grad

    def _objective(
        self, w: np.ndarray, mu: np.ndarray, cov: np.ndarray, risk_aversion: float
    ) -> tuple[float, np.ndarray]:
        try:
            value, grad = self._raw_objective(w, mu, cov, risk_aversion)
        except NumericInstabilityError as exc:
            logger.debug("Penalty substituted: %s", exc)
            return self.settings.penalty, np.zeros_like(w)
        if not math.isfinite(value) or not np.all(np.isfinite(grad)):
            logger.debug("Penalty substituted: non-finite objective")
            return self.settings.penalty, np.zeros_like(w)
        return value, grad

    # ----- solvers -------------------------------------------------------

    def _solve_gradient(
        self,
        mu: np.ndarray,
        cov: np.ndarray,
        risk_aversion: float,
        max_weight: float,
        cancel_event: threading.Event | None,
    ) -> tuple[np.ndarray, int, bool]:
        s = self.settings
        n = mu.size
        project = s.constraint_mode == "project"

        w = np.full(n, 1.0 / n)
        m = np.zeros(n)
        v = np.zeros(n)
        best_w, best_f = w.copy(), math.inf
        iterations_run = 0
        cancelled = False

        for t in range(1, s.iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                logger.info("Optimization cancelled after %d iterations", iterations_run)
                break

            f, g = self._objective(w, mu, cov, risk_aversion)
            if project:
                if f < best_f:
                    best_f, best_w = f, w.copy()
                # keep the step tangent to sum(w) = 1
                g = g - g.mean()

            m = s.beta1 * m + (1.0 - s.beta1) * g
            v = s.beta2 * v + (1.0 - s.beta2) * g * g
            m_hat = m / (1.0 - s.beta1 ** t)
            v_hat = v / (1.0 - s.beta2 ** t)
            w = w - s.learning_rate * m_hat / (np.sqrt(v_hat) + s.epsilon)
            if project:
                w = project_to_simplex(w, max_weight)
            iterations_run = t

        if project:
            f, _ = self._objective(w, mu, cov, risk_aversion)
            if f < best_f:
                best_w = w
            return _normalise(best_w), iterations_run, cancelled

        negatives = int((w < 0).sum())
        if negatives:
            logger.info("Clipping %d negative weights before renormalising", negatives)
        w = _normalise(w)
        if max_weight < 1.0:
            w = _normalise(project_to_simplex(w, max_weight))
        return w, iterations_run, cancelled

    def _solve_slsqp(
        self,
        mu: np.ndarray,
        cov: np.ndarray,
        risk_aversion: float,
        max_weight: float,
        target_return: float | None,
    ) -> tuple[np.ndarray, int]:
        n = mu.size
        bounds = tuple((0.0, max_weight) for _ in range(n))
        constraints = [{"type": "eq", "fun": lambda w: np.sum(w) - 1.0}]
        if target_return is not None:
            if target_return <= float(mu.max()):
                constraints.append({"type": "ineq", "fun": lambda w: w @ mu - target_return})
            else:
                logger.warning(
                    "Target return %.4f exceeds best single-holding return %.4f; ignoring",
                    target_return, float(mu.max()),
                )
        w0 = np.ones(n) / n

        res = minimize(
            lambda w: self._objective(w, mu, cov, risk_aversion)[0],
            w0,
            jac=lambda w: self._objective(w, mu, cov, risk_aversion)[1],
            method="SLSQP",
            bounds=bounds,
            constraints=constraints,
            options={"maxiter": max(self.settings.iterations, 1), "ftol": 1e-12},
        )
        if not res.success:
            logger.warning("SLSQP did not converge: %s", res.message)
        return _normalise(res.x), int(res.nit)

    # ----- public API ----------------------------------------------------

    def optimize(
        self,
        expected_returns: Sequence[float],
        volatilities: Sequence[float],
        correlation: CorrelationMatrix | np.ndarray,
        request: OptimizationRequest | None = None,
        labels: Sequence[str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizationResult:
        """Find optimal weights for the given per-holding estimates.

        Args:
            expected_returns: Annualised expected return per holding.
            volatilities: Annualised volatility per holding.
            correlation: Correlation matrix (CorrelationMatrix or ndarray)
                in the same holding order.
            request: Risk tolerance, optional target return and constraints.
            labels: Holding identifiers; defaults to the correlation labels
                or positional indices.
            cancel_event: Checked between gradient iterations.

        Raises:
            ValidationError: fewer than 2 holdings or inconsistent inputs.
        """
        request = request or OptimizationRequest()
        mu = np.asarray(expected_returns, dtype=float)
        vols = np.asarray(volatilities, dtype=float)
        n = mu.size

        if n < 2:
            raise ValidationError(f"Optimization requires at least 2 holdings, got {n}")
        if vols.size != n:
            raise ValidationError("expected_returns and volatilities must be the same length")
        if not (np.all(np.isfinite(mu)) and np.all(np.isfinite(vols))):
            raise ValidationError("Expected returns and volatilities must be finite")

        if isinstance(correlation, CorrelationMatrix):
            corr = correlation.values
            labels = list(labels) if labels is not None else list(correlation.labels)
        else:
            corr = np.asarray(correlation, dtype=float)
            labels = list(labels) if labels is not None else [str(i) for i in range(n)]
        if len(labels) != n:
            raise ValidationError("labels must match the number of holdings")

        max_weight = self.max_weight_constraint(request.constraints, n)
        risk_aversion = self.risk_aversion_for(request.risk_tolerance)
        cov = self._covariance(vols, corr, labels)

        s = self.settings
        logger.info(
            "Optimizing %d holdings: solver=%s objective=%s mode=%s tolerance=%s",
            n, s.solver, s.objective, s.constraint_mode, request.risk_tolerance.value,
        )

        cancelled = False
        if s.solver == "slsqp":
            w, iterations_run = self._solve_slsqp(
                mu, cov, risk_aversion, max_weight, request.target_return
            )
        else:
            w, iterations_run, cancelled = self._solve_gradient(
                mu, cov, risk_aversion, max_weight, cancel_event
            )

        exp_ret = float(w @ mu)
        exp_vol = float(math.sqrt(max(float(w @ cov @ w), 0.0)))
        sharpe = (exp_ret - s.risk_free_rate) / exp_vol if exp_vol > s.min_volatility else 0.0
        if not math.isfinite(sharpe):
            sharpe = 0.0

        meets_target = None
        if request.target_return is not None:
            meets_target = exp_ret >= request.target_return - 1e-6

        logger.info(
            "Optimization done: return=%.4f vol=%.4f sharpe=%.4f iterations=%d",
            exp_ret, exp_vol, sharpe, iterations_run,
        )
        return OptimizationResult(
            weights={labels[i]: float(w[i]) for i in range(n)},
            expected_return=exp_ret,
            expected_volatility=exp_vol,
            sharpe_ratio=float(sharpe),
            risk_tolerance=request.risk_tolerance,
            risk_aversion=risk_aversion,
            method=s.solver,
            objective=s.objective,
            constraint_mode=s.constraint_mode,
            iterations_run=iterations_run,
            cancelled=cancelled,
            target_return=request.target_return,
            meets_target=meets_target,
            constraints=dict(request.constraints),
        )

    def optimize_profiles(
        self,
        profiles: list[RiskProfile],
        correlation: CorrelationMatrix,
        request: OptimizationRequest | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizationResult:
        """Optimize from RiskProfiles ordered like the correlation labels."""
        by_id = {p.holding_id: p for p in profiles}
        missing = [label for label in correlation.labels if label not in by_id]
        if missing:
            raise ValidationError(f"No risk profile for holdings {missing}")
        ordered = [by_id[label] for label in correlation.labels]
        return self.optimize(
            [p.expected_return for p in ordered],
            [p.volatility for p in ordered],
            correlation,
            request=request,
            cancel_event=cancel_event,
        )

    @staticmethod
    def max_weight_constraint(constraints: dict, n: int) -> float:
        """Validated per-holding weight cap from the constraints map (1.0 if unset)."""
        for key in constraints:
            if key != "max_weight":
                logger.debug("Constraint '%s' accepted but not enforced", key)
        if constraints.get("max_weight") is None:
            return 1.0
        try:
            max_weight = float(constraints["max_weight"])
        except (TypeError, ValueError):
            raise ValidationError(
                f"max_weight must be a number, got {constraints['max_weight']!r}"
            ) from None
        if not 0.0 < max_weight <= 1.0:
            raise ValidationError(f"max_weight must be in (0, 1], got {max_weight}")
        if max_weight * n < 1.0 - 1e-12:
            raise ValidationError(
                f"max_weight {max_weight} cannot be satisfied by {n} holdings"
            )
        return max_weight
