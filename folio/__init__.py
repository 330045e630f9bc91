"""folio: portfolio optimization for a personal-finance backend."""

from folio.errors import (
    InsufficientDataWarning,
    NumericInstabilityError,
    OptimizationCancelled,
    ValidationError,
)
from folio.models import Holding, OptimizationRequest, RiskTolerance
from folio.pipeline.engine import OptimizationReport, optimize_portfolio

__version__ = "0.1.0"
