"""
Penalized least-squares paths and cross-validated strength selection.

Every family minimizes (1/2n)‖y − Xβ‖² + P_λ(β) on centred (and, by
default, standardized) columns; the intercept is never penalized and is
recovered as ȳ − x̄ᵀβ, so all families share one intercept convention.

    ridge        P = λ‖β‖₂²                        closed form (SVD)
    lasso        P = λ‖β‖₁                          sklearn ``enet_path``
    elasticnet   P = λ(α‖β‖₁ + (1 − α)/2 ‖β‖₂²)     sklearn ``enet_path``
    scad         Fan & Li (2001), parameter a        coordinate descent

Paths are ordered from the largest λ (most regularized) to the smallest.
"""

import logging
import time
from dataclasses import dataclass

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.linear_model import enet_path
from sklearn.model_selection import KFold

from .config import (
    DEFAULT_N_FOLDS, DEFAULT_N_LAMBDAS, LAMBDA_EPS_WIDE, LAMBDA_EPS_NARROW,
    RIDGE_ALPHA_FLOOR, PATH_TOL, PATH_MAX_ITER, SCAD_A, SCAD_MAX_ITER,
)
from .design import as_matrix, as_target
from .exceptions import ConfigurationError, DegenerateFitError
from .results import FitResult, PenaltyPath, make_fit_result, _freeze

logger = logging.getLogger(__name__)

PENALTY_FAMILIES = ("ridge", "lasso", "elasticnet", "scad")


# ---------------------------------------------------------------------------
# Penalty specification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Penalty:
    """
    Penalty family tag.

    Parameters
    ----------
    family : str
        One of 'ridge', 'lasso', 'elasticnet', 'scad'.
    alpha : float
        L1 share for elastic net, in [0, 1].  Fixed to 0 for ridge and to
        1 for lasso and scad.
    a : float
        SCAD concavity parameter (> 2).
    """

    family: str
    alpha: float = 1.0
    a: float = SCAD_A

    def __post_init__(self):
        if self.family not in PENALTY_FAMILIES:
            raise ConfigurationError(
                f"Unknown penalty {self.family!r}; "
                f"expected one of {PENALTY_FAMILIES}")
        if not 0.0 <= self.alpha <= 1.0:
            raise ConfigurationError(
                f"alpha must lie in [0, 1], got {self.alpha}")
        fixed = {"ridge": 0.0, "lasso": 1.0, "scad": 1.0}
        if self.family in fixed and self.alpha != fixed[self.family]:
            raise ConfigurationError(
                f"{self.family} has alpha={fixed[self.family]}, "
                f"got {self.alpha}")
        if self.a <= 2.0:
            raise ConfigurationError(f"SCAD needs a > 2, got {self.a}")

    @classmethod
    def ridge(cls):
        return cls("ridge", 0.0)

    @classmethod
    def lasso(cls):
        return cls("lasso", 1.0)

    @classmethod
    def elastic_net(cls, alpha=0.5):
        return cls("elasticnet", float(alpha))

    @classmethod
    def scad(cls, a=SCAD_A):
        return cls("scad", 1.0, float(a))

    @property
    def label(self):
        if self.family == "ridge":
            return "Ridge"
        if self.family == "lasso":
            return "LASSO"
        if self.family == "scad":
            return "SCAD"
        return f"Elastic net (alpha={self.alpha:g})"

    def __str__(self):
        return self.label


def make_penalty(family, alpha=None, a=SCAD_A):
    """Build a ``Penalty`` from a family name (or pass one through)."""
    if isinstance(family, Penalty):
        return family
    family = str(family).lower().replace("-", "").replace("_", "")
    if family == "ridge":
        return Penalty.ridge()
    if family == "lasso":
        return Penalty.lasso()
    if family == "scad":
        return Penalty.scad(a)
    if family == "elasticnet":
        return Penalty.elastic_net(0.5 if alpha is None else alpha)
    raise ConfigurationError(f"Unknown penalty {family!r}")


# ---------------------------------------------------------------------------
# Working matrices and grids
# ---------------------------------------------------------------------------

def _working(values, y, standardize):
    """Centre (and scale) X, centre y; return the pieces to undo it."""
    x_mean = values.mean(axis=0)
    Z = values - x_mean
    if standardize:
        x_scale = Z.std(axis=0)
        x_scale[x_scale == 0] = 1.0
        Z = Z / x_scale
    else:
        x_scale = np.ones(values.shape[1])
    y_mean = float(y.mean())
    return Z, y - y_mean, x_mean, x_scale, y_mean


def _grid_from_working(Z, yc, penalty, n_lambdas, eps):
    n, p = Z.shape
    if n_lambdas < 1:
        raise ConfigurationError(f"n_lambdas must be >= 1, got {n_lambdas}")
    if eps is None:
        eps = LAMBDA_EPS_WIDE if n > p else LAMBDA_EPS_NARROW
    if not 0.0 < eps < 1.0:
        raise ConfigurationError(f"eps must lie in (0, 1), got {eps}")
    lam_max = np.max(np.abs(Z.T @ yc)) / n
    lam_max /= max(penalty.alpha, RIDGE_ALPHA_FLOOR)
    if not lam_max > 0:
        raise DegenerateFitError(
            penalty, [], "Response is uncorrelated with every column; "
            "no penalty grid can be formed.")
    return np.geomspace(lam_max, lam_max * eps, n_lambdas)


def lambda_grid(X, y, penalty, n_lambdas=DEFAULT_N_LAMBDAS, eps=None,
                standardize=True):
    """
    Log-spaced decreasing grid from the null-model strength downwards.

    λ_max = max_j |x̃_jᵀ(y − ȳ)| / (n · max(α, 1e-3)) on the working matrix
    and the grid ends at ``eps · λ_max`` (1e-4 when n > p, else 1e-2).
    """
    values, _ = as_matrix(X)
    y = as_target(y, values.shape[0])
    penalty = make_penalty(penalty)
    Z, yc, *_ = _working(values, y, standardize)
    return _grid_from_working(Z, yc, penalty, n_lambdas, eps)


def _check_lambdas(lambdas):
    lambdas = np.asarray(lambdas, dtype=np.float64).ravel()
    if lambdas.size == 0:
        raise ConfigurationError("Empty penalty grid")
    if not np.all(np.isfinite(lambdas)) or np.any(lambdas < 0):
        raise ConfigurationError("Penalty strengths must be finite and >= 0")
    return np.unique(lambdas)[::-1]


# ---------------------------------------------------------------------------
# Path solvers on the working matrix (coefficients on the working scale)
# ---------------------------------------------------------------------------

def _ridge_path(Z, yc, lambdas, scale):
    """β(λ) = V diag(s / (s² + scale·n·λ)) Uᵀy for every λ at once."""
    n = Z.shape[0]
    U, s, Vt = np.linalg.svd(Z, full_matrices=False)
    s = np.where(s > s.max(initial=0.0) * max(Z.shape) * np.finfo(float).eps,
                 s, 0.0)
    uty = U.T @ yc
    denom = s[None, :] ** 2 + scale * n * lambdas[:, None]
    shrink = np.divide(s[None, :], denom, out=np.zeros_like(denom),
                       where=denom > 0)
    return (shrink * uty[None, :]) @ Vt


def _enet_path(Z, yc, lambdas, alpha, max_iter, tol):
    _, coefs, _ = enet_path(Z, yc, l1_ratio=alpha, alphas=lambdas,
                            max_iter=max_iter, tol=tol)
    return coefs.T


def _soft(z, g):
    if z > g:
        return z - g
    if z < -g:
        return z + g
    return 0.0


def _scad_threshold(z, lam, a, v):
    """Minimizer of (v/2)b² − zb + SCAD_λ(|b|) (needs v > 1/(a − 1))."""
    az = abs(z)
    if az <= lam * (1.0 + v):
        return _soft(z, lam) / v
    if az <= a * lam * v:
        return _soft(z, a * lam / (a - 1.0)) / (v - 1.0 / (a - 1.0))
    return z / v


def _scad_sweep(idx, Zt, v, beta, r, lam, a, n):
    """One coordinate pass over ``idx``; updates beta and r in place."""
    max_delta = 0.0
    for j in idx:
        z = Zt[j] @ r / n + v[j] * beta[j]
        new = _scad_threshold(z, lam, a, v[j])
        delta = new - beta[j]
        if delta != 0.0:
            r -= delta * Zt[j]
            beta[j] = new
            max_delta = max(max_delta, abs(delta) * np.sqrt(v[j]))
    return max_delta


def _scad_path(Z, yc, lambdas, a, max_iter, tol, time_budget):
    """
    Warm-started coordinate descent along the grid.

    Each λ alternates a full sweep with sweeps over the active set until a
    full sweep moves no coefficient by more than ``tol`` (in units of y).
    Returns the coefficients of every λ reached before the time budget ran
    out, and whether the whole grid was covered.
    """
    n, p = Z.shape
    Zt = np.ascontiguousarray(Z.T)
    v = np.einsum("ij,ij->i", Zt, Zt) / n
    cols = np.flatnonzero(v > 0)
    if np.any(v[cols] <= 1.0 / (a - 1.0)):
        raise ConfigurationError(
            "SCAD needs every column scale (1/n)‖x_j‖² above 1/(a − 1); "
            "fit with standardize=True")

    threshold = tol * max(np.sqrt(yc @ yc / n), np.finfo(float).tiny)
    deadline = None if time_budget is None else time.perf_counter() + time_budget

    beta = np.zeros(p)
    r = yc.copy()
    coefs = np.zeros((len(lambdas), p))
    reached = 0
    for k, lam in enumerate(lambdas):
        if deadline is not None and time.perf_counter() >= deadline:
            logger.warning("SCAD path stopped by time budget after %d of %d "
                           "penalty strengths", k, len(lambdas))
            break
        it, converged = 0, False
        while it < max_iter:
            it += 1
            if _scad_sweep(cols, Zt, v, beta, r, lam, a, n) < threshold:
                converged = True
                break
            active = cols[beta[cols] != 0.0]
            while it < max_iter:
                it += 1
                if _scad_sweep(active, Zt, v, beta, r, lam, a, n) < threshold:
                    break
        if not converged:
            logger.warning("SCAD did not converge in %d sweeps at lambda=%g",
                           max_iter, lam)
        coefs[k] = beta
        reached = k + 1
    return coefs[:reached], reached == len(lambdas)


def _solve_path(values, y, penalty, lambdas, standardize, max_iter, tol,
                time_budget, columns):
    Z, yc, x_mean, x_scale, y_mean = _working(values, y, standardize)
    complete = True
    if penalty.family == "ridge":
        coefs_z = _ridge_path(Z, yc, lambdas, scale=2.0)
    elif penalty.alpha == 0.0:
        # elastic net at alpha=0 is ridge with penalty (λ/2)‖β‖²
        coefs_z = _ridge_path(Z, yc, lambdas, scale=1.0)
    elif penalty.family in ("lasso", "elasticnet"):
        coefs_z = _enet_path(Z, yc, lambdas, penalty.alpha,
                             max_iter or PATH_MAX_ITER, tol)
    else:
        coefs_z, complete = _scad_path(Z, yc, lambdas, penalty.a,
                                       max_iter or SCAD_MAX_ITER, tol,
                                       time_budget)
    coefs = coefs_z / x_scale[None, :]
    intercepts = y_mean - coefs @ x_mean
    return PenaltyPath(penalty=penalty, lambdas=lambdas[:len(coefs)],
                       intercepts=intercepts, coefs=coefs, columns=columns,
                       complete=complete)


def _check_degenerate(path):
    if len(path) == 0:
        raise DegenerateFitError(
            path.penalty, path.lambdas,
            f"{path.penalty} path is empty: the time budget ran out "
            f"before the first penalty strength.")
    if np.all(path.nonzero_counts == 0):
        raise DegenerateFitError(path.penalty, path.lambdas)
    if len(path) > 1 and np.ptp(path.coefs, axis=0).max() == 0.0:
        raise DegenerateFitError(
            path.penalty, path.lambdas,
            f"{path.penalty} path gives identical coefficients at all "
            f"{len(path)} penalty strengths.")


def fit_path(X, y, penalty, lambdas=None, n_lambdas=DEFAULT_N_LAMBDAS,
             eps=None, standardize=True, max_iter=None, tol=PATH_TOL,
             time_budget=None):
    """
    Coefficient path of one penalty family over a strength grid.

    Parameters
    ----------
    X : DesignMatrix, DataFrame or array-like of shape (n, p)
    y : array-like of shape (n,)
    penalty : Penalty or str
    lambdas : array-like, optional
        Strength grid; sorted to decreasing order.  Generated by
        :func:`lambda_grid` when omitted.
    standardize : bool, default=True
        Penalize coefficients of unit-variance columns.
    max_iter : int, optional
        Coordinate-descent iterations (per λ for SCAD).
    time_budget : float, optional
        Seconds allowed for a SCAD path; the grid is truncated when it
        runs out.

    Returns
    -------
    PenaltyPath

    Raises
    ------
    DegenerateFitError
        Every strength gives the null (or the same) model.
    """
    values, columns = as_matrix(X)
    y = as_target(y, values.shape[0])
    penalty = make_penalty(penalty)
    if lambdas is None:
        Z, yc, *_ = _working(values, y, standardize)
        lambdas = _grid_from_working(Z, yc, penalty, n_lambdas, eps)
    lambdas = _check_lambdas(lambdas)

    path = _solve_path(values, y, penalty, lambdas, standardize, max_iter,
                       tol, time_budget, columns)
    _check_degenerate(path)
    return path


# ---------------------------------------------------------------------------
# Cross-validation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class CVResult:
    """
    K-fold cross-validation of one penalty family.

    ``cv_mse[i]`` is the fold-averaged held-out MSE at ``lambdas[i]``
    (NaN where a time budget stopped some fold earlier).  ``lambda_min``
    minimizes it; no one-standard-error rule is applied.  ``fit`` is the
    full-data model at ``lambda_min``.
    """

    penalty: Penalty
    lambdas: np.ndarray
    cv_mse: np.ndarray
    cv_se: np.ndarray
    fold_mse: np.ndarray
    lambda_min: float
    index_min: int
    n_folds: int
    seed: object
    path: PenaltyPath
    fit: FitResult

    def __post_init__(self):
        _freeze(self, "lambdas", "cv_mse", "cv_se", "fold_mse")

    def to_frame(self):
        nonzero = np.full(len(self.lambdas), -1)
        nonzero[:len(self.path)] = self.path.nonzero_counts
        return pd.DataFrame({
            "lambda": self.lambdas,
            "cv_mse": self.cv_mse,
            "cv_se": self.cv_se,
            "nonzero": nonzero,
        })


def _fold_mse(values, y, train, test, penalty, lambdas, standardize,
              max_iter, tol, time_budget, columns):
    path = _solve_path(values[train], y[train], penalty, lambdas,
                       standardize, max_iter, tol, time_budget, columns)
    preds = path.intercepts[None, :] + values[test] @ path.coefs.T
    out = np.full(len(lambdas), np.nan)
    out[:len(path)] = np.mean((y[test][:, None] - preds) ** 2, axis=0)
    return out


def cross_validate(X, y, penalty, lambdas=None, n_folds=DEFAULT_N_FOLDS,
                   seed=0, n_jobs=1, n_lambdas=DEFAULT_N_LAMBDAS, eps=None,
                   standardize=True, max_iter=None, tol=PATH_TOL,
                   time_budget=None, verbose=False):
    """
    Select the penalty strength minimizing k-fold CV mean squared error.

    The grid is fixed from the full data, every fold is fitted over the
    whole grid, and the full-data path is refit once.  Folds come from
    ``KFold(shuffle=True, random_state=seed)``; with ``n_jobs != 1`` they
    run on a joblib thread pool and the result does not depend on
    execution order.

    Returns
    -------
    CVResult
    """
    t0 = time.perf_counter()
    values, columns = as_matrix(X)
    n = values.shape[0]
    y = as_target(y, n)
    penalty = make_penalty(penalty)
    if not 2 <= n_folds <= n:
        raise ConfigurationError(
            f"n_folds must lie in [2, {n}], got {n_folds}")

    if lambdas is None:
        Z, yc, *_ = _working(values, y, standardize)
        grid = _grid_from_working(Z, yc, penalty, n_lambdas, eps)
    else:
        grid = _check_lambdas(lambdas)

    path = fit_path(X, y, penalty, lambdas=grid, standardize=standardize,
                    max_iter=max_iter, tol=tol, time_budget=time_budget)

    folds = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
    fold_mse = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_fold_mse)(values, y, train, test, penalty, grid,
                           standardize, max_iter, tol, time_budget, columns)
        for train, test in folds.split(values)
    )
    fold_mse = np.vstack(fold_mse)

    cv_mse = fold_mse.mean(axis=0)
    cv_se = fold_mse.std(axis=0, ddof=1) / np.sqrt(n_folds)
    valid = np.isfinite(cv_mse)
    valid[len(path):] = False
    if not valid.any():
        raise DegenerateFitError(
            penalty, grid, f"No penalty strength was reached by every fold "
            f"of the {penalty} cross-validation.")
    best = int(np.flatnonzero(valid)[np.argmin(cv_mse[valid])])

    fit = make_fit_result(penalty.label, columns, path.intercepts[best],
                          path.coefs[best], values, y)
    result = CVResult(
        penalty=penalty, lambdas=grid, cv_mse=cv_mse, cv_se=cv_se,
        fold_mse=fold_mse, lambda_min=float(grid[best]), index_min=best,
        n_folds=n_folds, seed=seed, path=path, fit=fit,
    )

    if verbose:
        print(f"CROSS-VALIDATION: {penalty.label} ({n_folds} folds, "
              f"{len(grid)} strengths)")
        print("-" * 70)
        print(f"  lambda.min : {result.lambda_min:.6g}  (index {best})")
        print(f"  CV MSE     : {cv_mse[best]:.6g} ± {cv_se[best]:.3g}")
        print(f"  Nonzero    : {fit.nonzero_count} of {len(columns)}")
        print(f"  Runtime    : {time.perf_counter() - t0:.2f}s")
        print()

    return result


def sweep_elastic_net(X, y, alphas=None, n_folds=DEFAULT_N_FOLDS, seed=0,
                      n_jobs=1, verbose=False, **cv_kwargs):
    """
    Cross-validate elastic net over a grid of α on identical folds.

    Returns
    -------
    table : pd.DataFrame
        One row per α: alpha, lambda_min, cv_mse, cv_se, nonzero, error.
    best : CVResult
        The α with the smallest CV MSE.
    """
    if alphas is None:
        alphas = np.round(np.linspace(0.0, 1.0, 11), 10)

    def _run(alpha):
        try:
            return cross_validate(X, y, Penalty.elastic_net(alpha),
                                  n_folds=n_folds, seed=seed, **cv_kwargs)
        except DegenerateFitError as exc:
            return exc

    outcomes = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_run)(alpha) for alpha in alphas)

    rows, best = [], None
    for alpha, outcome in zip(alphas, outcomes):
        if isinstance(outcome, DegenerateFitError):
            logger.warning("Elastic net alpha=%g failed: %s", alpha, outcome)
            rows.append({"alpha": alpha, "lambda_min": np.nan,
                         "cv_mse": np.nan, "cv_se": np.nan, "nonzero": -1,
                         "error": type(outcome).__name__})
            continue
        i = outcome.index_min
        rows.append({"alpha": alpha, "lambda_min": outcome.lambda_min,
                     "cv_mse": outcome.cv_mse[i], "cv_se": outcome.cv_se[i],
                     "nonzero": outcome.fit.nonzero_count, "error": None})
        if best is None or outcome.cv_mse[i] < best.cv_mse[best.index_min]:
            best = outcome

    if best is None:
        raise outcomes[-1]

    table = pd.DataFrame(rows)
    if verbose:
        print("ELASTIC NET ALPHA SWEEP")
        print("-" * 70)
        print(table.to_string(index=False))
        print(f"\n  Best alpha: {best.penalty.alpha:g}  "
              f"lambda.min={best.lambda_min:.6g}")
        print()
    return table, best


# ---------------------------------------------------------------------------
# Estimator wrapper
# ---------------------------------------------------------------------------

class PenalizedRegressor(BaseEstimator, RegressorMixin):
    """
    Cross-validated penalized regression.

    Parameters
    ----------
    penalty : str, default='lasso'
        'ridge', 'lasso', 'elasticnet' or 'scad'.
    alpha : float, optional
        Elastic-net L1 share (default 0.5 for 'elasticnet').
    a : float, default=3.7
        SCAD concavity.
    lambdas : array-like, optional
        Strength grid; generated from the data when omitted.
    n_lambdas : int, default=100
    n_folds : int, default=10
    seed : int, default=0
        Fold assignment seed.
    n_jobs : int, default=1
        joblib workers across folds.
    standardize : bool, default=True
    max_iter : int, optional
    tol : float, default=1e-6
    time_budget : float, optional
        Seconds per SCAD path.
    """

    def __init__(
        self,
        penalty="lasso",
        alpha=None,
        a=SCAD_A,
        lambdas=None,
        n_lambdas=DEFAULT_N_LAMBDAS,
        n_folds=DEFAULT_N_FOLDS,
        seed=0,
        n_jobs=1,
        standardize=True,
        max_iter=None,
        tol=PATH_TOL,
        time_budget=None,
    ):
        self.penalty = penalty
        self.alpha = alpha
        self.a = a
        self.lambdas = lambdas
        self.n_lambdas = n_lambdas
        self.n_folds = n_folds
        self.seed = seed
        self.n_jobs = n_jobs
        self.standardize = standardize
        self.max_iter = max_iter
        self.tol = tol
        self.time_budget = time_budget

    def fit(self, X, y, verbose=False):
        penalty = make_penalty(self.penalty, alpha=self.alpha, a=self.a)
        self.cv_result_ = cross_validate(
            X, y, penalty, lambdas=self.lambdas, n_folds=self.n_folds,
            seed=self.seed, n_jobs=self.n_jobs, n_lambdas=self.n_lambdas,
            standardize=self.standardize, max_iter=self.max_iter,
            tol=self.tol, time_budget=self.time_budget, verbose=verbose,
        )
        self.fit_result_ = self.cv_result_.fit
        self.path_ = self.cv_result_.path
        self.lambda_ = self.cv_result_.lambda_min
        self.coef_ = np.array(self.fit_result_.coef)
        self.intercept_ = self.fit_result_.intercept
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
