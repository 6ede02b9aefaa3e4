"""
Example: batch size vs. learning rate for least-squares SGD
============================================================
Uses the California housing data (scikit-learn) to show how the Hessian
spectrum bounds the full-batch step and how the critical batch size
separates the noise-dominated regime from the curvature-dominated one.
"""

import numpy as np
import pandas as pd
from sklearn.datasets import fetch_california_housing

# If running from the repo root (not pip-installed), uncomment:
# import sys; sys.path.insert(0, '..')

from shrinkbench import (
    GradientDescentRegressor, benchmark_sgd, fit_ols, hessian_diagnostics,
)

# ------------------------------------------------------------------
# 1.  Standardized predictors plus an intercept column
# ------------------------------------------------------------------
data = fetch_california_housing()
X = pd.DataFrame(data.data, columns=data.feature_names)
y = data.target

Z = (X - X.mean()) / X.std(ddof=0)
Z.insert(0, "(Intercept)", 1.0)

diag = hessian_diagnostics(Z)
print("=" * 70)
print("HESSIAN DIAGNOSTICS")
print("=" * 70)
print(f"  lambda_max          : {diag.lambda_max:.4f}")
print(f"  lambda_min          : {diag.lambda_min:.4f}")
print(f"  condition number    : {diag.condition_number:.1f}")
print(f"  max stable lr (2/L) : {diag.max_stable_learning_rate:.4f}")
print(f"  max row norm²       : {diag.max_row_norm_sq:.1f}")
print(f"  critical batch size : {diag.critical_batch_size:.1f}")
print()

# ------------------------------------------------------------------
# 2.  Grid of batch sizes and step sizes
# ------------------------------------------------------------------
lr_stable = diag.max_stable_learning_rate
table, traces = benchmark_sgd(
    Z, y,
    batch_sizes=[1, 8, 64, int(np.ceil(diag.critical_batch_size)), None],
    learning_rates=[0.01, 0.1, 0.9 * lr_stable, 1.1 * lr_stable],
    n_iter=500, seed=0,
)
print(table.to_string(index=False))
print()

# ------------------------------------------------------------------
# 3.  Gradient descent vs. the closed form
# ------------------------------------------------------------------
ols = fit_ols(X, y)
gd = GradientDescentRegressor(learning_rate=0.5 * lr_stable, n_iter=5000)
gd.fit(X, y, verbose=True)
print(f"OLS MSE: {ols.mse:.6f}   GD MSE: {gd.fit_result_.mse:.6f}")
print(f"max |coef difference|: {np.max(np.abs(gd.coef_ - ols.coef)):.2e}")
