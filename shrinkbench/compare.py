"""
Side-by-side comparison of estimators under one evaluation protocol.

Each method is a callable ``fit_fn(X, y) -> FitResult``.  The comparator
times it, collects MSE, nonzero count and adjusted R², and keeps going
when a method raises one of the package errors.  Metrics are raw: no
normalization or ranking is applied.
"""

import logging
import time

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .config import (
    DEFAULT_N_FOLDS, DEFAULT_LEARNING_RATE, DEFAULT_N_ITER,
)
from .design import as_matrix, as_target
from .exceptions import ConfigurationError, ShrinkbenchError
from .gradient import GradientDescentRegressor
from .ols import fit_ols
from .penalized import Penalty, cross_validate
from .results import ComparisonRow, predict

logger = logging.getLogger(__name__)


class ModelComparator:
    """
    Ordered registry of named fit callables.

    Parameters
    ----------
    verbose : bool, default=False
        Print one line per method as it finishes.
    """

    def __init__(self, verbose=False):
        self.verbose = verbose
        self._methods = []

    @property
    def methods(self):
        return [name for name, _ in self._methods]

    def add(self, name, fit_fn):
        """Register ``fit_fn(X, y) -> FitResult`` under ``name``."""
        if name in self.methods:
            raise ConfigurationError(f"Duplicate method name {name!r}")
        if not callable(fit_fn):
            raise ConfigurationError(f"Method {name!r} is not callable")
        self._methods.append((name, fit_fn))
        return self

    def run(self, X, y, X_test=None, y_test=None):
        """
        Fit every method in registration order.

        Parameters
        ----------
        X, y : training data passed unchanged to every method.
        X_test, y_test : optional held-out data for ``test_mse``.

        Returns
        -------
        list of ComparisonRow
        """
        if (X_test is None) != (y_test is None):
            raise ConfigurationError("Pass both X_test and y_test, or neither")
        if y_test is not None:
            y_test = as_target(y_test, as_matrix(X_test)[0].shape[0])

        if self.verbose:
            print("=" * 70)
            print("MODEL COMPARISON")
            print("=" * 70)

        rows = []
        for name, fit_fn in self._methods:
            t0 = time.perf_counter()
            try:
                result = fit_fn(X, y)
            except ShrinkbenchError as exc:
                elapsed = time.perf_counter() - t0
                logger.warning("Method %s failed: %s: %s",
                               name, type(exc).__name__, exc)
                row = ComparisonRow(
                    method=name, mse=float("nan"), nonzero_count=None,
                    adj_r2=float("nan"), elapsed=elapsed,
                    error=type(exc).__name__, message=str(exc),
                )
                rows.append(row)
                if self.verbose:
                    print(f"  {name:28s}  FAILED ({row.error})")
                continue
            elapsed = time.perf_counter() - t0

            test_mse = None
            if X_test is not None:
                resid = y_test - predict(result, X_test)
                test_mse = float(np.mean(resid ** 2))

            row = ComparisonRow(
                method=name, mse=float(result.mse),
                nonzero_count=int(result.nonzero_count),
                adj_r2=float(result.adj_r2), elapsed=elapsed,
                test_mse=test_mse,
            )
            rows.append(row)
            if self.verbose:
                print(f"  {name:28s}  MSE={row.mse:.6g}  "
                      f"nonzero={row.nonzero_count:4d}  "
                      f"adj.R²={row.adj_r2:.4f}  {elapsed:.2f}s")

        if self.verbose:
            print()
        return rows


def comparison_frame(rows):
    """Comparison rows as a DataFrame, in run order."""
    return pd.DataFrame([row.as_dict() for row in rows],
                        columns=["method", "mse", "test_mse", "nonzero_count",
                                 "adj_r2", "elapsed", "error", "message"])


def default_methods(n_folds=DEFAULT_N_FOLDS, seed=0, n_jobs=1,
                    learning_rate=DEFAULT_LEARNING_RATE,
                    n_iter=DEFAULT_N_ITER, batch_size=32,
                    enet_alpha=0.5, scad_time_budget=None):
    """
    The standard method set: OLS, ridge, LASSO, elastic net, SCAD,
    full-batch gradient descent and mini-batch SGD.

    Returns
    -------
    list of (name, fit_fn)
    """
    def _cv(penalty, **kwargs):
        def fit_fn(X, y):
            return cross_validate(X, y, penalty, n_folds=n_folds, seed=seed,
                                  n_jobs=n_jobs, **kwargs).fit
        return fit_fn

    def _gd(size):
        def fit_fn(X, y):
            model = GradientDescentRegressor(
                learning_rate=learning_rate, n_iter=n_iter,
                batch_size=size, seed=seed)
            return model.fit(X, y).fit_result_
        return fit_fn

    enet = Penalty.elastic_net(enet_alpha)
    return [
        ("OLS", lambda X, y: fit_ols(X, y)),
        ("Ridge", _cv(Penalty.ridge())),
        ("LASSO", _cv(Penalty.lasso())),
        (enet.label, _cv(enet)),
        ("SCAD", _cv(Penalty.scad(), time_budget=scad_time_budget)),
        ("Gradient descent", _gd(None)),
        (f"SGD (batch={batch_size})", _gd(batch_size)),
    ]


def compare_models(X, y, methods=None, test_size=None, seed=0, verbose=True,
                   **method_kwargs):
    """
    One-liner comparison of the standard (or given) methods.

    Parameters
    ----------
    X : DesignMatrix, DataFrame or array-like
    y : array-like
    methods : list of (name, fit_fn), optional
        Defaults to :func:`default_methods` built with ``seed`` and
        ``method_kwargs``.
    test_size : float, optional
        Hold out this fraction (seeded split) and report ``test_mse``.
    seed : int, default=0
    verbose : bool, default=True

    Returns
    -------
    pd.DataFrame
        One row per method in run order.
    """
    values, columns = as_matrix(X)
    y = as_target(y, values.shape[0])
    frame = pd.DataFrame(values, columns=list(columns))
    if methods is None:
        methods = default_methods(seed=seed, **method_kwargs)

    comparator = ModelComparator(verbose=verbose)
    for name, fit_fn in methods:
        comparator.add(name, fit_fn)

    if test_size:
        X_train, X_test, y_train, y_test = train_test_split(
            frame, y, test_size=test_size, random_state=seed)
        rows = comparator.run(X_train, y_train, X_test, y_test)
    else:
        rows = comparator.run(frame, y)

    table = comparison_frame(rows)
    if verbose:
        print(table.drop(columns=["message"]).to_string(index=False))
        print("=" * 70)
    return table
