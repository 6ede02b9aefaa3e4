"""
Immutable value objects produced by the solvers.

Each object is created by exactly one solver call and never mutated after
it is returned: array fields are private read-only copies.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .config import NONZERO_TOL, INTERCEPT_NAME


def _readonly(values, dtype=np.float64):
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


def _freeze(obj, *names, dtype=np.float64):
    for name in names:
        object.__setattr__(obj, name, _readonly(getattr(obj, name), dtype))


def count_nonzero(coef, tol=NONZERO_TOL):
    """Number of coefficients whose magnitude exceeds ``tol``."""
    return int(np.sum(np.abs(np.asarray(coef)) > tol))


def adjusted_r2(r2, n_obs, n_params, fit_intercept=True):
    """
    Adjusted R² with ``n_params`` estimated parameters (intercept included).

    With an intercept this is 1 - (1 - R²)(n - 1)/(n - p - 1).  Returns NaN
    when no residual degrees of freedom remain.
    """
    df_resid = n_obs - n_params
    if df_resid <= 0 or not np.isfinite(r2):
        return float("nan")
    df_total = n_obs - 1 if fit_intercept else n_obs
    return float(1.0 - (1.0 - r2) * df_total / df_resid)


# ---------------------------------------------------------------------------
# Fit results
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Coefficients and in-sample fit of one estimator.

    ``coef`` holds the p slopes; the intercept is reported separately and
    ``coefficients`` concatenates the two (length p + 1).  ``nonzero_count``
    counts slopes with magnitude above ``config.NONZERO_TOL``.
    ``fit_intercept`` records whether R² is centred.
    """

    method: str
    columns: Tuple[str, ...]
    intercept: float
    coef: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray
    mse: float
    r2: float
    adj_r2: float
    nonzero_count: int
    fit_intercept: bool

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "intercept", float(self.intercept))
        _freeze(self, "coef", "fitted", "residuals")

    @property
    def coefficients(self):
        return np.r_[self.intercept, self.coef]

    @property
    def n_obs(self):
        return len(self.fitted)

    def coef_series(self):
        """Intercept and slopes as a named ``pd.Series``."""
        return pd.Series(self.coefficients,
                         index=[INTERCEPT_NAME, *self.columns],
                         name=self.method)


def make_fit_result(method, columns, intercept, coef, X, y, n_params=None,
                    fit_intercept=True, cls=FitResult, **extra):
    """
    Build a ``FitResult`` (or subclass) from coefficients and training data.

    Parameters
    ----------
    n_params : int, optional
        Parameters used for the adjusted R² (intercept included).  Defaults
        to ``nonzero_count`` plus the intercept.
    fit_intercept : bool
        Whether R² is centred (True) or uncentred (False).
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64).ravel()
    coef = np.asarray(coef, dtype=np.float64).ravel()

    fitted = intercept + X @ coef
    residuals = y - fitted
    n = len(y)
    rss = float(residuals @ residuals)
    if fit_intercept:
        tss = float(np.sum((y - y.mean()) ** 2))
    else:
        tss = float(y @ y)
    r2 = 1.0 - rss / tss if tss > 0 else float("nan")

    nonzero = count_nonzero(coef)
    if n_params is None:
        n_params = nonzero + int(fit_intercept)

    return cls(
        method=method,
        columns=columns,
        intercept=intercept,
        coef=coef,
        fitted=fitted,
        residuals=residuals,
        mse=rss / n,
        r2=r2,
        adj_r2=adjusted_r2(r2, n, n_params, fit_intercept),
        nonzero_count=nonzero,
        fit_intercept=fit_intercept,
        **extra,
    )


def predict(result, X):
    """Predictions of a ``FitResult`` (or anything with intercept/coef)."""
    from .design import as_matrix
    values, _ = as_matrix(X)
    return result.intercept + values @ np.asarray(result.coef)


# ---------------------------------------------------------------------------
# Penalized path
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class PenaltyPath:
    """
    Coefficient path of one penalized fit.

    ``lambdas`` is strictly decreasing: row 0 of ``coefs`` is the most
    regularized model.  ``complete`` is False when a time budget stopped
    the path before the end of the grid; only the computed prefix is kept.
    """

    penalty: object
    lambdas: np.ndarray
    intercepts: np.ndarray
    coefs: np.ndarray
    columns: Tuple[str, ...]
    complete: bool = True

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        _freeze(self, "lambdas", "intercepts", "coefs")

    @property
    def nonzero_counts(self):
        return np.sum(np.abs(self.coefs) > NONZERO_TOL, axis=1)

    @property
    def l2_norms(self):
        return np.sqrt(np.sum(self.coefs ** 2, axis=1))

    def __len__(self):
        return len(self.lambdas)

    def to_frame(self):
        """One row per lambda: lambda, intercept, nonzero count, slopes."""
        df = pd.DataFrame(self.coefs, columns=list(self.columns))
        df.insert(0, "nonzero", self.nonzero_counts)
        df.insert(0, INTERCEPT_NAME, self.intercepts)
        df.insert(0, "lambda", self.lambdas)
        return df


# ---------------------------------------------------------------------------
# Convergence trace
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ConvergenceTrace:
    """Full-data MSE after every gradient-descent iteration (1-based)."""

    iterations: np.ndarray
    mse: np.ndarray
    initial_mse: float

    def __post_init__(self):
        _freeze(self, "iterations", dtype=np.int64)
        _freeze(self, "mse")

    @property
    def final_mse(self):
        return float(self.mse[-1]) if len(self.mse) else self.initial_mse

    def __len__(self):
        return len(self.iterations)

    def to_frame(self):
        return pd.DataFrame({"iteration": self.iterations, "mse": self.mse})


# ---------------------------------------------------------------------------
# Comparison row
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComparisonRow:
    """
    One line of the model comparison table.

    Failed methods keep their slot in run order with ``error`` set to the
    error class name and NaN metrics.
    """

    method: str
    mse: float
    nonzero_count: Optional[int]
    adj_r2: float
    elapsed: float
    test_mse: Optional[float] = None
    error: Optional[str] = None
    message: Optional[str] = field(default=None, compare=False)

    @property
    def failed(self):
        return self.error is not None

    def as_dict(self):
        return asdict(self)
