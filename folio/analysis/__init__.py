from .returns import compute_returns
from .risk_return import RiskReturnEstimator, EstimatorSettings
from .correlation import build_correlation_matrix, pearson_correlation, CorrelationSettings
from .optimizer import PortfolioOptimizer, OptimizerSettings, project_to_simplex
from .rebalancing import generate_recommendations, RebalancingSettings
from .diversification import analyze_diversification, herfindahl_index
