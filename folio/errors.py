"""Exception and warning types raised by the optimizer."""


class FolioError(Exception):
    """Base class for folio errors."""


class ValidationError(FolioError, ValueError):
    """Structural problem with the request; aborts before any numerical work."""


class NumericInstabilityError(FolioError, ArithmeticError):
    """Near-singular covariance or near-zero portfolio volatility.

    Always intercepted inside the optimizer (penalty value or ridge
    regularisation); it never reaches callers of ``optimize_portfolio``.
    """


class InsufficientDataWarning(UserWarning):
    """Short or missing return history; default estimates were used."""

    def __init__(self, holding_id: str, n_points: int, reason: str = "insufficient_data"):
        self.holding_id = holding_id
        self.n_points = n_points
        self.reason = reason
        super().__init__(
            f"{holding_id}: {reason} ({n_points} price points), using default estimates"
        )


class OptimizationCancelled(FolioError):
    """The request was cancelled between pipeline steps."""
