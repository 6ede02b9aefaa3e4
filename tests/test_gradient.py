"""
Tests for the gradient-descent engine and its diagnostics.

Run with:  python -m pytest tests/ -v
Or:        python tests/test_gradient.py
"""

import numpy as np
import sys
import os

import pytest

# Allow running from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from shrinkbench import (
    GradientDescentRegressor, gradient_descent, hessian_diagnostics,
    critical_batch_size, benchmark_sgd, fit_ols, ConfigurationError,
    DivergedError,
)


def _linear_problem(n=200, seed=0, noise=0.1):
    rng = np.random.RandomState(seed)
    X = rng.randn(n, 3)
    beta = np.array([1.5, -2.0, 0.5])
    y = X @ beta + rng.randn(n) * noise
    return X, y, beta


def test_noiseless_line():
    """Full batch from β = 0 converges to slope 2, intercept 0."""
    X = np.array([[1, 1], [1, 2], [1, 3]], dtype=float)
    y = np.array([2, 4, 6], dtype=float)
    res = gradient_descent(X, y, learning_rate=0.1, n_iter=1000)
    np.testing.assert_allclose(res.coef, [0.0, 2.0], atol=1e-3)
    assert res.final_mse < 1e-6
    assert res.trace.initial_mse == pytest.approx(56 / 3)
    print(f"  PASS: noiseless line (coef={np.round(res.coef, 6)})")


def test_full_batch_trace_is_monotone():
    """lr = 1/λ_max(H) never increases the MSE."""
    X, y, _ = _linear_problem()
    diag = hessian_diagnostics(X)
    res = gradient_descent(X, y, learning_rate=1.0 / diag.lambda_max,
                           n_iter=200)
    mse = np.r_[res.trace.initial_mse, res.trace.mse]
    assert np.all(np.diff(mse) <= 1e-12)
    assert len(res.trace) == 200
    np.testing.assert_array_equal(res.trace.iterations, np.arange(1, 201))
    print(f"  PASS: monotone trace (final MSE={res.final_mse:.5f})")


def test_batch_of_n_equals_full_batch():
    """batch_size = n gives the full-batch run bit for bit."""
    X, y, _ = _linear_problem(n=50)
    full = gradient_descent(X, y, learning_rate=0.05, n_iter=300)
    batch = gradient_descent(X, y, learning_rate=0.05, n_iter=300,
                             batch_size=50, seed=123)
    np.testing.assert_array_equal(full.coef, batch.coef)
    np.testing.assert_array_equal(full.trace.mse, batch.trace.mse)
    assert batch.batch_size == full.batch_size == 50
    print("  PASS: batch_size=n is full batch")


def test_sgd_converges_near_optimum():
    X, y, beta = _linear_problem()
    res = gradient_descent(X, y, learning_rate=0.05, n_iter=2000,
                           batch_size=10, seed=0)
    np.testing.assert_allclose(res.coef, beta, atol=0.1)
    assert res.final_mse < 0.05
    print(f"  PASS: SGD (m=10) final MSE={res.final_mse:.4f}")


def test_seed_reproducibility():
    X, y, _ = _linear_problem()
    a = gradient_descent(X, y, learning_rate=0.05, n_iter=100,
                         batch_size=5, seed=7)
    b = gradient_descent(X, y, learning_rate=0.05, n_iter=100,
                         batch_size=5, seed=7)
    c = gradient_descent(X, y, learning_rate=0.05, n_iter=100,
                         batch_size=5, seed=8)
    np.testing.assert_array_equal(a.coef, b.coef)
    assert not np.array_equal(a.coef, c.coef)


def test_invalid_hyperparameters():
    """Rejected before any iteration runs."""
    X, y, _ = _linear_problem(n=20)
    with pytest.raises(ConfigurationError):
        gradient_descent(X, y, batch_size=0)
    with pytest.raises(ConfigurationError):
        gradient_descent(X, y, batch_size=21)
    with pytest.raises(ConfigurationError):
        gradient_descent(X, y, learning_rate=-0.1)
    with pytest.raises(ConfigurationError):
        gradient_descent(X, y, n_iter=0)
    with pytest.raises(ConfigurationError):
        gradient_descent(X, y, divergence_factor=1.0)


def test_divergence_is_reported():
    """Too large a step on ill-conditioned data stops early."""
    X, y, _ = _linear_problem(n=100)
    X = X * np.array([100.0, 1.0, 0.01])
    with pytest.raises(DivergedError) as info:
        gradient_descent(X, y, learning_rate=1.0, n_iter=1000)
    err = info.value
    assert err.iteration < 10
    assert err.learning_rate == 1.0 and err.batch_size == 100
    assert len(err.trace) == err.iteration
    assert np.all(np.isfinite(err.trace.mse))
    print(f"  PASS: diverged after {err.iteration} iteration(s)")


def test_hessian_diagnostics():
    X, y, _ = _linear_problem()
    diag = hessian_diagnostics(X)
    eig = np.linalg.eigvalsh(X.T @ X / len(X))
    assert diag.lambda_max == pytest.approx(eig[-1])
    assert diag.lambda_min == pytest.approx(eig[0])
    assert diag.condition_number == pytest.approx(eig[-1] / eig[0])
    assert diag.max_stable_learning_rate == pytest.approx(2 / eig[-1])

    row_norm = np.max(np.sum(X ** 2, axis=1))
    assert critical_batch_size(X) == pytest.approx(row_norm / eig[-1])

    with pytest.raises(ConfigurationError):
        hessian_diagnostics(np.zeros((5, 2)))


def test_benchmark_sgd_records_divergence():
    X, y, _ = _linear_problem(n=100)
    table, traces = benchmark_sgd(X, y, batch_sizes=[None, 10],
                                  learning_rates=[0.01, 5.0], n_iter=100)
    assert len(table) == 4
    assert set(traces) == {(100, 0.01), (100, 5.0), (10, 0.01), (10, 5.0)}

    full = table[table["batch_size"] == 100].set_index("learning_rate")
    assert not full.loc[0.01, "diverged"]
    assert full.loc[5.0, "diverged"]
    assert np.isnan(full.loc[5.0, "final_mse"])
    assert full.loc[0.01, "iterations"] == 100
    print(table.to_string(index=False))


def test_regressor_matches_ols():
    """Standardized GD with an intercept reaches the OLS solution."""
    rng = np.random.RandomState(4)
    X = rng.randn(150, 4) * [1.0, 10.0, 0.5, 3.0] + [0.0, 50.0, -2.0, 1.0]
    y = 3.0 + X @ [1.0, 0.2, -1.5, 0.4] + rng.randn(150) * 0.3

    model = GradientDescentRegressor(learning_rate=0.5, n_iter=2000)
    model.fit(X, y)
    ols = fit_ols(X, y)
    np.testing.assert_allclose(model.coef_, ols.coef, atol=1e-4)
    assert model.intercept_ == pytest.approx(ols.intercept, abs=1e-3)
    assert model.fit_result_.method == "Gradient descent"
    assert model.score(X, y) == pytest.approx(ols.r2, abs=1e-8)


def test_regressor_labels_and_unfitted():
    X, y, _ = _linear_problem()
    model = GradientDescentRegressor(learning_rate=0.05, n_iter=50,
                                     batch_size=16).fit(X, y)
    assert model.fit_result_.method == "SGD (batch=16)"
    assert len(model.trace_) == 50
    with pytest.raises(RuntimeError):
        GradientDescentRegressor().predict(X)


def test_trace_is_immutable():
    X, y, _ = _linear_problem()
    res = gradient_descent(X, y, n_iter=10)
    with pytest.raises(ValueError):
        res.trace.mse[0] = 0.0
    with pytest.raises(ValueError):
        res.coef[0] = 0.0


if __name__ == '__main__':
    print("=" * 60)
    print("Gradient descent — Test Suite")
    print("=" * 60)
    print()

    tests = [
        test_noiseless_line,
        test_full_batch_trace_is_monotone,
        test_batch_of_n_equals_full_batch,
        test_sgd_converges_near_optimum,
        test_divergence_is_reported,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except AssertionError as e:
            print(f"  FAIL: {test.__name__}: {e}")
            failed += 1

    print()
    print(f"Results: {passed} passed, {failed} failed "
          f"out of {len(tests)} tests")
    print("=" * 60)
