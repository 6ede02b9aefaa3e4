"""
Ordinary least squares via pivoted QR, with influence diagnostics.

The solve never forms (XᵀX)⁻¹.  Rank deficiency is detected from the
pivoted R factor and reported as ``RankDeficiencyError`` naming the
redundant columns and the columns they depend on.
"""

import logging
import time
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from scipy import linalg, stats
from sklearn.base import BaseEstimator, RegressorMixin

from .config import INTERCEPT_NAME
from .design import as_matrix, as_target
from .exceptions import InsufficientDataError, RankDeficiencyError
from .results import FitResult, make_fit_result, _freeze

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class OLSResult(FitResult):
    """
    OLS fit plus per-observation and per-coefficient diagnostics.

    Arrays over coefficients (``std_errors``, ``t_values``, ``p_values``)
    follow ``coefficients`` order: intercept first when one was fitted.
    """

    leverage: np.ndarray
    cooks_distance: np.ndarray
    cooks_threshold: float
    std_errors: np.ndarray
    t_values: np.ndarray
    p_values: np.ndarray
    f_statistic: float
    f_pvalue: float
    sigma: float
    df_resid: int
    rank: int
    dropped_columns: Tuple[str, ...]

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "dropped_columns",
                           tuple(self.dropped_columns))
        _freeze(self, "leverage", "cooks_distance", "std_errors",
                "t_values", "p_values")

    @property
    def influential(self):
        """
        Observations with Cook's D above the threshold.

        Rows with leverage 1 have NaN Cook's D and are never flagged.
        """
        return self.cooks_distance > self.cooks_threshold

    def summary(self):
        """Coefficient table in the layout of R's ``summary.lm``."""
        names = list(self.columns)
        coefs = self.coef
        if self.fit_intercept:
            names = [INTERCEPT_NAME] + names
            coefs = self.coefficients
        return pd.DataFrame({
            "Estimate": coefs,
            "Std. Error": self.std_errors,
            "t value": self.t_values,
            "Pr(>|t|)": self.p_values,
        }, index=names)


# ---------------------------------------------------------------------------
# Rank analysis
# ---------------------------------------------------------------------------

def _rank_revealing_qr(A):
    """Economic pivoted QR and numerical rank (numpy ``matrix_rank`` tol)."""
    Q, R, perm = linalg.qr(A, mode="economic", pivoting=True)
    diag = np.abs(np.diag(R))
    if diag.size == 0 or diag[0] == 0:
        return Q, R, perm, 0
    tol = diag[0] * max(A.shape) * np.finfo(np.float64).eps
    rank = int(np.sum(diag > tol))
    return Q, R, perm, rank


def _dependencies(R, perm, rank, names):
    """Map every redundant column to the independent columns spanning it."""
    R11 = R[:rank, :rank]
    redundant = {}
    for pos in range(rank, R.shape[1]):
        weights = linalg.solve_triangular(R11, R[:rank, pos])
        scale = max(np.max(np.abs(weights)), 1.0) if rank else 1.0
        partners = [names[perm[k]] for k in range(rank)
                    if abs(weights[k]) > 1e-8 * scale]
        redundant[names[perm[pos]]] = sorted(partners)
    return redundant


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------

def fit_ols(X, y, fit_intercept=True, drop_redundant=False, verbose=False):
    """
    Least-squares fit of y on X with leverage and Cook's distance.

    Parameters
    ----------
    X : DesignMatrix, DataFrame or array-like of shape (n, p)
        Must not contain an intercept column when ``fit_intercept``.
    y : array-like of shape (n,)
    fit_intercept : bool, default=True
    drop_redundant : bool, default=False
        If False a rank-deficient X raises ``RankDeficiencyError``.  If True
        the redundant columns get a zero coefficient, are listed in
        ``dropped_columns`` and a warning is logged.
    verbose : bool, default=False

    Returns
    -------
    OLSResult
    """
    t0 = time.perf_counter()
    values, columns = as_matrix(X)
    n, p = values.shape
    y = as_target(y, n)

    n_params = p + int(fit_intercept)
    if n < n_params + 1:
        raise InsufficientDataError(n, n_params)

    if fit_intercept:
        A = np.column_stack([np.ones(n), values])
        names = (INTERCEPT_NAME,) + columns
    else:
        A = values
        names = columns

    Q, R, perm, rank = _rank_revealing_qr(A)
    dropped = ()
    if rank < A.shape[1]:
        redundant = _dependencies(R, perm, rank, names)
        if not drop_redundant:
            raise RankDeficiencyError(redundant, rank)
        dropped = tuple(redundant)
        logger.warning("OLS dropped %d redundant column(s): %s",
                       len(dropped), list(dropped))

    # Solve R11 b = Q1ᵀ y on the independent pivoted columns
    Q1 = Q[:, :rank]
    R11 = R[:rank, :rank]
    b = linalg.solve_triangular(R11, Q1.T @ y)
    beta = np.zeros(A.shape[1])
    beta[perm[:rank]] = b

    fitted = A @ beta
    resid = y - fitted
    df_resid = n - rank
    rss = float(resid @ resid)
    sigma2 = rss / df_resid

    # Influence
    leverage = np.sum(Q1 ** 2, axis=1)
    # rows with leverage 1 are fitted exactly; their influence is undefined
    exact = leverage >= 1.0 - 1e-10
    with np.errstate(divide="ignore", invalid="ignore"):
        if sigma2 > 0:
            cooks = (resid ** 2 / (rank * sigma2)) * leverage / (1.0 - leverage) ** 2
        else:
            cooks = np.zeros(n)
    cooks = np.where(exact, np.nan, cooks)
    cooks_threshold = 4.0 / df_resid

    # Coefficient inference
    R11_inv = linalg.solve_triangular(R11, np.eye(rank))
    var_b = sigma2 * np.sum(R11_inv ** 2, axis=1)
    se = np.full(A.shape[1], np.nan)
    se[perm[:rank]] = np.sqrt(var_b)
    with np.errstate(divide="ignore", invalid="ignore"):
        t_values = beta / se
    p_values = 2.0 * stats.t.sf(np.abs(t_values), df_resid)

    df_model = rank - int(fit_intercept)
    if fit_intercept:
        tss = float(np.sum((y - y.mean()) ** 2))
    else:
        tss = float(y @ y)
    if df_model > 0 and sigma2 > 0:
        f_stat = ((tss - rss) / df_model) / sigma2
        f_pvalue = float(stats.f.sf(f_stat, df_model, df_resid))
    else:
        f_stat, f_pvalue = float("nan"), float("nan")

    intercept = beta[0] if fit_intercept else 0.0
    slopes = beta[1:] if fit_intercept else beta

    result = make_fit_result(
        "OLS", columns, intercept, slopes, values, y,
        n_params=rank, fit_intercept=fit_intercept, cls=OLSResult,
        leverage=leverage,
        cooks_distance=cooks,
        cooks_threshold=cooks_threshold,
        std_errors=se,
        t_values=t_values,
        p_values=p_values,
        f_statistic=f_stat,
        f_pvalue=f_pvalue,
        sigma=float(np.sqrt(sigma2)),
        df_resid=df_resid,
        rank=rank,
        dropped_columns=dropped,
    )

    if verbose:
        print("=" * 70)
        print("ORDINARY LEAST SQUARES")
        print("=" * 70)
        print(f"  Dataset : n={n}, p={p}, rank={rank}")
        print(f"  R²={result.r2:.4f}  adj. R²={result.adj_r2:.4f}  "
              f"sigma={result.sigma:.4g}  F={f_stat:.4g} on "
              f"{df_model} and {df_resid} DF")
        print(f"  Influential observations (Cook's D > "
              f"{cooks_threshold:.4f}): {int(result.influential.sum())}")
        if dropped:
            print(f"  Not defined because of singularities: {list(dropped)}")
        print(f"  Runtime : {time.perf_counter() - t0:.3f}s")
        print()

    return result


# ---------------------------------------------------------------------------
# Estimator wrapper
# ---------------------------------------------------------------------------

class OLSRegressor(BaseEstimator, RegressorMixin):
    """
    scikit-learn style wrapper around :func:`fit_ols`.

    Parameters
    ----------
    fit_intercept : bool, default=True
    drop_redundant : bool, default=False
    """

    def __init__(self, fit_intercept=True, drop_redundant=False):
        self.fit_intercept = fit_intercept
        self.drop_redundant = drop_redundant

    def fit(self, X, y, verbose=False):
        self.result_ = fit_ols(X, y, fit_intercept=self.fit_intercept,
                               drop_redundant=self.drop_redundant,
                               verbose=verbose)
        self.coef_ = np.array(self.result_.coef)
        self.intercept_ = self.result_.intercept
        return self

    def predict(self, X):
        self._check_fitted()
        values, _ = as_matrix(X)
        return self.intercept_ + values @ self.coef_

    def _check_fitted(self):
        if not hasattr(self, "result_"):
            raise RuntimeError(
                "Model has not been fitted. Call .fit(X, y) first."
            )
