"""
Library-wide defaults.

Every value here is only a default: the functions and estimators that use
one take it as a keyword argument.
"""

# --------------------- SPARSITY / REPORTING ---------------------
NONZERO_TOL = 1e-8               # |coef| <= tol counts as zero
INTERCEPT_NAME = "(Intercept)"
MISSING_LEVEL = "None"           # reserved level for missing categoricals
COLLINEAR_TOL = 1e-12            # |r| >= 1 - tol is a perfect correlation

# --------------------- PENALIZED PATHS ---------------------
DEFAULT_N_FOLDS = 10
DEFAULT_N_LAMBDAS = 100
LAMBDA_EPS_WIDE = 1e-4           # lambda_min / lambda_max when n > p
LAMBDA_EPS_NARROW = 1e-2         # ... when n <= p
RIDGE_ALPHA_FLOOR = 1e-3         # alpha used to size the ridge grid
PATH_TOL = 1e-6
PATH_MAX_ITER = 10000            # sklearn coordinate descent
SCAD_A = 3.7
SCAD_MAX_ITER = 1000             # sweeps per lambda

# --------------------- GRADIENT DESCENT ---------------------
DIVERGENCE_FACTOR = 10.0         # stop when mse > factor * initial mse
DEFAULT_LEARNING_RATE = 0.01
DEFAULT_N_ITER = 1000
