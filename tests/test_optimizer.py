"""Tests for folio.analysis.optimizer -- Sharpe maximisation on the simplex."""

import threading

import numpy as np
import pytest

from folio.analysis.optimizer import (
    OptimizerSettings,
    PortfolioOptimizer,
    build_covariance,
    project_to_simplex,
)
from folio.errors import ValidationError
from folio.models import CorrelationMatrix, OptimizationRequest, RiskProfile

# Two-asset example: A (10%, 20%), B (6%, 10%), rho = 0.3.
# Tangency portfolio (rf = 0) is proportional to inv(Sigma) @ mu -> [0.262, 0.738].
MU_AB = [0.10, 0.06]
VOL_AB = [0.20, 0.10]
CORR_AB = np.array([[1.0, 0.3], [0.3, 1.0]])
TANGENCY_AB = np.array([0.2623, 0.7377])


def _optimizer(**overrides):
    return PortfolioOptimizer(OptimizerSettings.from_settings({}, **overrides))


def _assert_on_simplex(weights, tol=1e-6):
    w = np.array(list(weights.values()))
    assert w.sum() == pytest.approx(1.0, abs=tol)
    assert np.all(w >= -1e-12)


class TestTwoAssetScenario:

    def test_gradient_finds_tangency_portfolio(self):
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, labels=["A", "B"])
        _assert_on_simplex(result.weights)
        w = np.array([result.weights["A"], result.weights["B"]])
        np.testing.assert_allclose(w, TANGENCY_AB, atol=0.03)
        assert result.sharpe_ratio == pytest.approx(0.687, abs=0.01)

    def test_slsqp_finds_tangency_portfolio(self):
        result = _optimizer(solver="slsqp").optimize(MU_AB, VOL_AB, CORR_AB, labels=["A", "B"])
        _assert_on_simplex(result.weights)
        w = np.array([result.weights["A"], result.weights["B"]])
        np.testing.assert_allclose(w, TANGENCY_AB, atol=0.01)
        assert result.method == "slsqp"

    def test_diversification_lowers_volatility(self):
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, labels=["A", "B"])
        weighted_avg = result.weights["A"] * 0.20 + result.weights["B"] * 0.10
        assert result.expected_volatility < weighted_avg

    def test_reported_statistics_match_weights(self):
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, labels=["A", "B"])
        w = np.array([result.weights["A"], result.weights["B"]])
        cov = build_covariance(VOL_AB, CORR_AB)
        assert result.expected_return == pytest.approx(float(w @ np.array(MU_AB)))
        assert result.expected_volatility == pytest.approx(float(np.sqrt(w @ cov @ w)), rel=1e-4)
        assert result.sharpe_ratio == pytest.approx(
            result.expected_return / result.expected_volatility
        )


class TestWeightsInvariants:

    def test_identical_assets_both_held(self):
        result = _optimizer().optimize(
            [0.08, 0.08], [0.15, 0.15], np.array([[1.0, 0.5], [0.5, 1.0]]), labels=["X", "Y"]
        )
        assert result.weights["X"] == pytest.approx(0.5, abs=1e-6)
        assert result.weights["Y"] == pytest.approx(0.5, abs=1e-6)

    def test_renormalize_mode_on_simplex(self):
        result = _optimizer(constraint_mode="renormalize").optimize(
            [0.12, 0.02, 0.05], [0.25, 0.05, 0.12], np.eye(3), labels=["a", "b", "c"]
        )
        _assert_on_simplex(result.weights)
        assert result.constraint_mode == "renormalize"

    def test_non_psd_correlation_is_repaired(self):
        corr = np.array([
            [1.0, 0.9, -0.9],
            [0.9, 1.0, 0.9],
            [-0.9, 0.9, 1.0],
        ])
        result = _optimizer().optimize([0.08, 0.06, 0.07], [0.2, 0.1, 0.15], corr)
        _assert_on_simplex(result.weights)
        assert np.isfinite(result.expected_volatility)
        assert np.isfinite(result.sharpe_ratio)

    def test_deterministic(self):
        opt = _optimizer()
        a = opt.optimize([0.1, 0.05, 0.07], [0.2, 0.1, 0.15], np.eye(3))
        b = opt.optimize([0.1, 0.05, 0.07], [0.2, 0.1, 0.15], np.eye(3))
        assert a.weights == b.weights

    def test_labels_from_correlation_matrix(self):
        corr = CorrelationMatrix(labels=["A", "B"], values=CORR_AB)
        result = _optimizer().optimize(MU_AB, VOL_AB, corr)
        assert list(result.weights) == ["A", "B"]

    def test_iterations_reported(self):
        result = _optimizer(iterations=50).optimize(MU_AB, VOL_AB, CORR_AB)
        assert result.iterations_run == 50
        assert result.cancelled is False


class TestConstraints:

    def test_max_weight_cap(self):
        request = OptimizationRequest(constraints={"max_weight": 0.4})
        result = _optimizer().optimize(
            [0.20, 0.04, 0.05], [0.10, 0.20, 0.20], np.eye(3), request=request
        )
        _assert_on_simplex(result.weights)
        assert max(result.weights.values()) <= 0.4 + 1e-9

    def test_max_weight_cap_slsqp(self):
        request = OptimizationRequest(constraints={"max_weight": 0.4})
        result = _optimizer(solver="slsqp").optimize(
            [0.20, 0.04, 0.05], [0.10, 0.20, 0.20], np.eye(3), request=request
        )
        assert max(result.weights.values()) <= 0.4 + 1e-6

    def test_unsatisfiable_cap_rejected(self):
        request = OptimizationRequest(constraints={"max_weight": 0.3})
        with pytest.raises(ValidationError, match="cannot be satisfied"):
            _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, request=request)

    @pytest.mark.parametrize("cap", [0.0, -0.2, 1.5, "abc"])
    def test_invalid_cap_rejected(self, cap):
        with pytest.raises(ValidationError):
            PortfolioOptimizer.max_weight_constraint({"max_weight": cap}, 3)

    def test_unknown_constraints_echoed(self):
        request = OptimizationRequest(constraints={"min_bonds": 0.2})
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, request=request)
        assert result.constraints == {"min_bonds": 0.2}

    def test_target_return_enforced_by_slsqp(self):
        request = OptimizationRequest(target_return=0.09)
        result = _optimizer(solver="slsqp").optimize(MU_AB, VOL_AB, CORR_AB, request=request)
        assert result.expected_return >= 0.09 - 1e-6
        assert result.meets_target is True

    def test_target_return_reported_by_gradient(self):
        request = OptimizationRequest(target_return=0.09)
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, request=request)
        assert result.target_return == 0.09
        assert result.meets_target is False


class TestRiskTolerance:

    def test_risk_aversion_metadata(self):
        opt = _optimizer()
        conservative = opt.optimize(
            MU_AB, VOL_AB, CORR_AB, request=OptimizationRequest(risk_tolerance="conservative")
        )
        aggressive = opt.optimize(
            MU_AB, VOL_AB, CORR_AB, request=OptimizationRequest(risk_tolerance="aggressive")
        )
        assert conservative.risk_aversion == 4.0
        assert aggressive.risk_aversion == 1.0
        # Under the Sharpe objective the tolerance does not move the weights
        assert conservative.weights == aggressive.weights

    def test_mean_variance_objective_uses_tolerance(self):
        opt = _optimizer(objective="mean_variance")
        conservative = opt.optimize(
            MU_AB, VOL_AB, CORR_AB, labels=["A", "B"],
            request=OptimizationRequest(risk_tolerance="conservative"),
        )
        aggressive = opt.optimize(
            MU_AB, VOL_AB, CORR_AB, labels=["A", "B"],
            request=OptimizationRequest(risk_tolerance="aggressive"),
        )
        # Closed form for two assets: w_A = (0.04 / lambda + 0.008) / 0.076
        assert conservative.weights["A"] == pytest.approx(0.237, abs=0.03)
        assert aggressive.weights["A"] == pytest.approx(0.632, abs=0.03)
        assert aggressive.expected_volatility > conservative.expected_volatility

    def test_unknown_tolerance_rejected(self):
        with pytest.raises(ValidationError):
            OptimizationRequest(risk_tolerance="reckless")


class TestValidation:

    def test_single_holding_rejected(self):
        with pytest.raises(ValidationError, match="at least 2"):
            _optimizer().optimize([0.1], [0.2], np.eye(1))

    def test_non_finite_inputs_rejected(self):
        with pytest.raises(ValidationError):
            _optimizer().optimize([0.1, np.nan], [0.2, 0.1], CORR_AB)

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            _optimizer().optimize([0.1, 0.05, 0.07], [0.2, 0.1, 0.15], CORR_AB)

    def test_unknown_solver_rejected(self):
        with pytest.raises(ValidationError):
            OptimizerSettings(solver="newton")


class TestNumerics:

    def test_zero_weights_hit_penalty(self):
        opt = _optimizer()
        cov = build_covariance(VOL_AB, CORR_AB)
        value, grad = opt._objective(np.zeros(2), np.array(MU_AB), cov, 2.0)
        assert value == opt.settings.penalty
        assert np.all(grad == 0.0)

    def test_gradient_matches_finite_difference(self):
        opt = _optimizer()
        mu = np.array(MU_AB)
        cov = build_covariance(VOL_AB, CORR_AB)
        w = np.array([0.4, 0.6])
        _, grad = opt._objective(w, mu, cov, 2.0)
        h = 1e-6
        numeric = np.array([
            (opt._objective(w + h * e, mu, cov, 2.0)[0]
             - opt._objective(w - h * e, mu, cov, 2.0)[0]) / (2 * h)
            for e in np.eye(2)
        ])
        np.testing.assert_allclose(grad, numeric, atol=1e-6)


class TestCancellation:

    def test_cancel_before_start(self):
        event = threading.Event()
        event.set()
        result = _optimizer().optimize(MU_AB, VOL_AB, CORR_AB, cancel_event=event)
        assert result.cancelled is True
        assert result.iterations_run == 0
        _assert_on_simplex(result.weights)


class TestProjection:

    def test_point_on_simplex_unchanged(self):
        v = np.array([0.2, 0.3, 0.5])
        np.testing.assert_allclose(project_to_simplex(v), v)

    def test_negative_entries_zeroed(self):
        w = project_to_simplex(np.array([1.5, -0.5, 0.2]))
        assert w.sum() == pytest.approx(1.0)
        assert np.all(w >= 0)
        assert w[1] == 0.0

    def test_capped_projection(self):
        w = project_to_simplex(np.array([0.9, 0.05, 0.05]), upper=0.5)
        assert w.sum() == pytest.approx(1.0, abs=1e-9)
        assert w.max() <= 0.5 + 1e-9
        assert w[1] == pytest.approx(w[2])


class TestProfiles:

    def test_optimize_profiles_orders_by_correlation_labels(self):
        profiles = [
            RiskProfile("B", 0.06, 0.10),
            RiskProfile("A", 0.10, 0.20),
        ]
        corr = CorrelationMatrix(labels=["A", "B"], values=CORR_AB)
        result = _optimizer().optimize_profiles(profiles, corr)
        assert result.weights["B"] > result.weights["A"]

    def test_missing_profile_rejected(self):
        corr = CorrelationMatrix(labels=["A", "B"], values=CORR_AB)
        with pytest.raises(ValidationError):
            _optimizer().optimize_profiles([RiskProfile("A", 0.1, 0.2)], corr)
