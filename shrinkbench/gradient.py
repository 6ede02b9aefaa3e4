"""
Fixed-step gradient descent for the mean-squared-error objective.

    L(β) = (1/n)‖Xβ − y‖²,   update  β ← β − lr · (1/m) X_Bᵀ(X_Bβ − y_B)

B is every row (full batch) or ``batch_size`` rows drawn uniformly without
replacement, freshly at each iteration.  After every update the MSE over
the whole dataset is recorded, so traces of different batch sizes are
directly comparable.  There is no line search and no adaptive step.
"""

import logging
import time
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from scipy import linalg
from sklearn.base import BaseEstimator, RegressorMixin

from .config import (
    DIVERGENCE_FACTOR, DEFAULT_LEARNING_RATE, DEFAULT_N_ITER, INTERCEPT_NAME,
)
from .design import as_matrix, as_target
from .exceptions import ConfigurationError, DivergedError
from .results import ConvergenceTrace, make_fit_result, _freeze

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class GradientDescentResult:
    """Coefficients and convergence trace of one gradient-descent run."""

    coef: np.ndarray
    columns: Tuple[str, ...]
    learning_rate: float
    batch_size: int
    n_iter: int
    seed: object
    trace: ConvergenceTrace
    elapsed: float

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        _freeze(self, "coef")

    @property
    def final_mse(self):
        return self.trace.final_mse


@dataclass(frozen=True)
class HessianDiagnostics:
    """Spectrum of H = (1/n)XᵀX and the quantities derived from it."""

    lambda_max: float
    lambda_min: float
    condition_number: float
    max_stable_learning_rate: float
    max_row_norm_sq: float
    critical_batch_size: float


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def hessian_diagnostics(X):
    """
    Curvature of the least-squares objective.

    ``critical_batch_size`` = maxᵢ‖xᵢ‖² / λ_max(H): above it the step-size
    limit is set by the curvature rather than by the sampling noise of a
    single row.  ``max_stable_learning_rate`` = 2 / λ_max(H) bounds the
    full-batch step.  Both are diagnostics only; nothing enforces them.
    """
    values, _ = as_matrix(X)
    n = values.shape[0]
    eig = linalg.eigvalsh(values.T @ values / n)
    lam_max = float(eig[-1])
    if not lam_max > 0:
        raise ConfigurationError("X has no nonzero curvature (all zeros?)")
    lam_min = max(float(eig[0]), 0.0)
    row_norm_sq = float(np.max(np.einsum("ij,ij->i", values, values)))
    return HessianDiagnostics(
        lambda_max=lam_max,
        lambda_min=lam_min,
        condition_number=lam_max / lam_min if lam_min > 0 else np.inf,
        max_stable_learning_rate=2.0 / lam_max,
        max_row_norm_sq=row_norm_sq,
        critical_batch_size=row_norm_sq / lam_max,
    )


def critical_batch_size(X):
    """maxᵢ‖xᵢ‖² divided by the largest eigenvalue of (1/n)XᵀX."""
    return hessian_diagnostics(X).critical_batch_size


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _validate(n, learning_rate, n_iter, batch_size, divergence_factor):
    if not (np.isfinite(learning_rate) and learning_rate > 0):
        raise ConfigurationError(
            f"learning_rate must be positive and finite, got {learning_rate}")
    if int(n_iter) != n_iter or n_iter < 1:
        raise ConfigurationError(f"n_iter must be a positive integer, "
                                 f"got {n_iter}")
    if batch_size is not None:
        if int(batch_size) != batch_size or not 1 <= batch_size <= n:
            raise ConfigurationError(
                f"batch_size must be an integer in [1, {n}], "
                f"got {batch_size}")
    if not divergence_factor > 1:
        raise ConfigurationError(
            f"divergence_factor must exceed 1, got {divergence_factor}")


def gradient_descent(X, y, learning_rate=DEFAULT_LEARNING_RATE,
                     n_iter=DEFAULT_N_ITER, batch_size=None, seed=None,
                     divergence_factor=DIVERGENCE_FACTOR, verbose=False):
    """
    Minimize (1/n)‖Xβ − y‖² from β = 0 with a fixed step.

    Parameters
    ----------
    X : DesignMatrix, DataFrame or array-like of shape (n, p)
        Used as given: include a column of ones to fit an intercept.
    y : array-like of shape (n,)
    learning_rate : float
    n_iter : int
    batch_size : int, optional
        Rows per update.  None is full-batch gradient descent; 1 is pure
        stochastic gradient descent; n draws every row, which is the same
        update sequence as full batch.
    seed : int or np.random.Generator, optional
        Source of the mini-batch draws.
    divergence_factor : float, default=10
        Stop when the full-data MSE exceeds this multiple of the MSE at
        β = 0.

    Returns
    -------
    GradientDescentResult

    Raises
    ------
    ConfigurationError
        Invalid hyperparameters, before any iteration runs.
    DivergedError
        The MSE became non-finite or exceeded the divergence limit.
    """
    t0 = time.perf_counter()
    values, columns = as_matrix(X)
    n, p = values.shape
    y = as_target(y, n)
    _validate(n, learning_rate, n_iter, batch_size, divergence_factor)
    n_iter = int(n_iter)

    m = n if batch_size is None else int(batch_size)
    rng = np.random.default_rng(seed)

    beta = np.zeros(p)
    initial_mse = float(y @ y) / n
    limit = divergence_factor * max(initial_mse, np.finfo(float).tiny)
    history = np.empty(n_iter)

    with np.errstate(over="ignore", invalid="ignore"):
        for it in range(n_iter):
            if m == n:
                Xb, yb = values, y
            else:
                idx = np.sort(rng.choice(n, size=m, replace=False))
                Xb, yb = values[idx], y[idx]
            grad = Xb.T @ (Xb @ beta - yb) / m
            beta = beta - learning_rate * grad

            resid = values @ beta - y
            mse = float(resid @ resid) / n
            if not np.isfinite(mse) or mse > limit:
                last = it + 1 if np.isfinite(mse) else it
                if np.isfinite(mse):
                    history[it] = mse
                trace = ConvergenceTrace(np.arange(1, last + 1),
                                         history[:last], initial_mse)
                logger.warning("Gradient descent diverged at iteration %d "
                               "(lr=%g, batch_size=%d, mse=%g)",
                               it + 1, learning_rate, m, mse)
                raise DivergedError(last, learning_rate, m, mse, trace)
            history[it] = mse

    trace = ConvergenceTrace(np.arange(1, n_iter + 1), history, initial_mse)
    result = GradientDescentResult(
        coef=beta, columns=columns, learning_rate=learning_rate,
        batch_size=m, n_iter=n_iter, seed=seed, trace=trace,
        elapsed=time.perf_counter() - t0,
    )

    if verbose:
        kind = "FULL-BATCH" if m == n else f"MINI-BATCH (m={m})"
        print(f"GRADIENT DESCENT: {kind}")
        print("-" * 70)
        print(f"  lr={learning_rate:g}  iterations={n_iter}  "
              f"initial MSE={initial_mse:.6g}  final MSE={trace.final_mse:.6g}")
        print(f"  Runtime : {result.elapsed:.3f}s")
        print()

    return result


def benchmark_sgd(X, y, batch_sizes, learning_rates, n_iter=DEFAULT_N_ITER,
                  seed=0, divergence_factor=DIVERGENCE_FACTOR):
    """
    Run every (batch size, learning rate) pair on the same data.

    Diverged runs are recorded (``diverged=True``, ``iterations`` = last
    finite iteration) instead of raised.

    Returns
    -------
    table : pd.DataFrame
        batch_size, learning_rate, final_mse, iterations, elapsed, diverged.
    traces : dict
        ``(batch_size, learning_rate) -> ConvergenceTrace``.
    """
    values, _ = as_matrix(X)
    n = values.shape[0]
    rows, traces = [], {}
    for batch_size in batch_sizes:
        m = n if batch_size is None else batch_size
        for lr in learning_rates:
            t0 = time.perf_counter()
            try:
                res = gradient_descent(values, y, learning_rate=lr,
                                       n_iter=n_iter, batch_size=batch_size,
                                       seed=seed,
                                       divergence_factor=divergence_factor)
            except DivergedError as exc:
                traces[(m, lr)] = exc.trace
                rows.append({"batch_size": m, "learning_rate": lr,
                             "final_mse": np.nan, "iterations": exc.iteration,
                             "elapsed": time.perf_counter() - t0,
                             "diverged": True})
                continue
            traces[(m, lr)] = res.trace
            rows.append({"batch_size": m, "learning_rate": lr,
                         "final_mse": res.final_mse, "iterations": res.n_iter,
                         "elapsed": res.elapsed, "diverged": False})
    return pd.DataFrame(rows), traces


# ---------------------------------------------------------------------------
# Estimator wrapper
# ---------------------------------------------------------------------------

class GradientDescentRegressor(BaseEstimator, RegressorMixin):
    """
    Linear regression fitted by fixed-step (stochastic) gradient descent.

    Parameters
    ----------
    learning_rate : float, default=0.01
    n_iter : int, default=1000
    batch_size : int, optional
        None for full batch.
    seed : int, default=0
    fit_intercept : bool, default=True
        Prepend a column of ones.
    standardize : bool, default=True
        Run on unit-variance (and, with an intercept, centred) columns;
        coefficients are reported on the original scale.
    divergence_factor : float, default=10.0
    """

    def __init__(
        self,
        learning_rate=DEFAULT_LEARNING_RATE,
        n_iter=DEFAULT_N_ITER,
        batch_size=None,
        seed=0,
        fit_intercept=True,
        standardize=True,
        divergence_factor=DIVERGENCE_FACTOR,
    ):
        self.learning_rate = learning_rate
        self.n_iter = n_iter
        self.batch_size = batch_size
        self.seed = seed
        self.fit_intercept = fit_intercept
        self.standardize = standardize
        self.divergence_factor = divergence_factor

    def fit(self, X, y, verbose=False):
        values, columns = as_matrix(X)
        n, p = values.shape
        y = as_target(y, n)

        shift = np.zeros(p)
        scale = np.ones(p)
        if self.standardize:
            scale = values.std(axis=0)
            scale[scale == 0] = 1.0
            if self.fit_intercept:
                shift = values.mean(axis=0)
        Z = (values - shift) / scale
        names = columns
        if self.fit_intercept:
            Z = np.column_stack([np.ones(n), Z])
            names = (INTERCEPT_NAME,) + columns

        self.gd_result_ = gradient_descent(
            pd.DataFrame(Z, columns=list(names)), y,
            learning_rate=self.learning_rate, n_iter=self.n_iter,
            batch_size=self.batch_size, seed=self.seed,
            divergence_factor=self.divergence_factor, verbose=verbose,
        )
        w = np.array(self.gd_result_.coef)
        b0, wz = (w[0], w[1:]) if self.fit_intercept else (0.0, w)

        self.coef_ = wz / scale
        self.intercept_ = float(b0 - shift @ self.coef_)
        self.trace_ = self.gd_result_.trace

        if self.batch_size is None or self.batch_size == n:
            label = "Gradient descent"
        else:
            label = f"SGD (batch={self.batch_size})"
        self.fit_result_ = make_fit_result(label, columns, self.intercept_,
                                           self.coef_, values, y)
        return self

    def predict(self, X):
        self._check_fitted()
        values, _ = as_matrix(X)
        return self.intercept_ + values @ self.coef_

    def _check_fitted(self):
        if not hasattr(self, "fit_result_"):
            raise RuntimeError(
                "Model has not been fitted. Call .fit(X, y) first."
            )
