"""
shrinkbench: fit and compare linear-model estimators

OLS, ridge, LASSO, elastic net and SCAD on a design matrix built from a
mixed categorical/numeric table, plus a fixed-step gradient-descent /
SGD engine with convergence and stability diagnostics.
"""

import logging

from .design import DesignMatrix, build_design_matrix
from .exceptions import (
    ShrinkbenchError, ConfigurationError, InsufficientDataError,
    RankDeficiencyError, DegenerateFitError, DivergedError,
)
from .results import FitResult, PenaltyPath, ConvergenceTrace, ComparisonRow
from .ols import OLSResult, OLSRegressor, fit_ols
from .penalized import (
    Penalty, CVResult, PenalizedRegressor, lambda_grid, fit_path,
    cross_validate, sweep_elastic_net,
)
from .gradient import (
    GradientDescentResult, GradientDescentRegressor, HessianDiagnostics,
    gradient_descent, hessian_diagnostics, critical_batch_size,
    benchmark_sgd,
)
from .compare import ModelComparator, default_methods, compare_models

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "DesignMatrix", "build_design_matrix",
    "ShrinkbenchError", "ConfigurationError", "InsufficientDataError",
    "RankDeficiencyError", "DegenerateFitError", "DivergedError",
    "FitResult", "PenaltyPath", "ConvergenceTrace", "ComparisonRow",
    "OLSResult", "OLSRegressor", "fit_ols",
    "Penalty", "CVResult", "PenalizedRegressor", "lambda_grid", "fit_path",
    "cross_validate", "sweep_elastic_net",
    "GradientDescentResult", "GradientDescentRegressor",
    "HessianDiagnostics", "gradient_descent", "hessian_diagnostics",
    "critical_batch_size", "benchmark_sgd",
    "ModelComparator", "default_methods", "compare_models",
]
