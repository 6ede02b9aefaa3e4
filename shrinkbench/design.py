"""
Design matrix construction from a raw mixed-type table.

Cleaning steps (in order)
-------------------------
1.  Load the records into a DataFrame (absent fields, ``None`` and NaN
    are all "missing").
2.  Drop rows whose target is missing; optionally transform the target
    and drop rows where the transform is non-finite.
3.  Impute missing numeric values with the column median.
4.  Impute missing categorical values with the reserved level "None",
    then indicator-encode every categorical column (levels sorted as
    strings, first level is the reference and gets no column).
5.  Drop columns with fewer than two distinct values.
6.  Drop columns perfectly correlated with an earlier kept column.

Every action is logged and recorded on the returned ``DesignMatrix``.
"""

import logging
import numbers
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from .config import MISSING_LEVEL, COLLINEAR_TOL
from .exceptions import ConfigurationError, InsufficientDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """
    Numeric n x p predictor matrix with column provenance.

    ``columns[j]`` is either the original numeric column name or
    ``"column=level"`` for an indicator.  ``dropped`` lists the
    ``(name, reason)`` pairs removed while building, and ``row_index``
    the positions of the kept rows in the raw input.  The matrix never
    contains an intercept column.
    """

    values: np.ndarray
    columns: Tuple[str, ...]
    dropped: Tuple[Tuple[str, str], ...] = ()
    row_index: np.ndarray = None

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64, copy=True)
        if values.ndim != 2:
            raise ConfigurationError(
                f"Design matrix must be 2-D, got shape {values.shape}")
        if len(self.columns) != values.shape[1]:
            raise ConfigurationError(
                f"{len(self.columns)} column names for "
                f"{values.shape[1]} columns")
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "dropped", tuple(self.dropped))

        if self.row_index is None:
            row_index = np.arange(values.shape[0])
        else:
            row_index = np.array(self.row_index, dtype=np.int64, copy=True)
        row_index.setflags(write=False)
        object.__setattr__(self, "row_index", row_index)

    @property
    def shape(self):
        return self.values.shape

    @property
    def n_rows(self):
        return self.values.shape[0]

    @property
    def n_columns(self):
        return self.values.shape[1]

    def column(self, name):
        return self.values[:, self.columns.index(name)]

    def to_frame(self):
        return pd.DataFrame(self.values, columns=list(self.columns),
                            index=self.row_index)

    def check_ols(self, fit_intercept=True):
        """Raise ``InsufficientDataError`` when OLS is not identifiable."""
        n_params = self.n_columns + int(fit_intercept)
        if self.n_rows < n_params + 1:
            raise InsufficientDataError(self.n_rows, n_params)


# ---------------------------------------------------------------------------
# Coercion helpers used by every solver
# ---------------------------------------------------------------------------

def as_matrix(X):
    """Return ``(float ndarray, column names)`` for any supported X."""
    if isinstance(X, DesignMatrix):
        return X.values, X.columns
    if isinstance(X, pd.DataFrame):
        return (X.to_numpy(dtype=np.float64),
                tuple(str(c) for c in X.columns))
    values = np.asarray(X, dtype=np.float64)
    if values.ndim == 1:
        values = values.reshape(-1, 1)
    if values.ndim != 2:
        raise ConfigurationError(f"X must be 2-D, got shape {values.shape}")
    return values, tuple(f"X{i}" for i in range(values.shape[1]))


def as_target(y, n_rows):
    """Validate y as a finite float vector aligned with n_rows."""
    y = np.asarray(y, dtype=np.float64).ravel()
    if len(y) != n_rows:
        raise ConfigurationError(
            f"y has {len(y)} values but X has {n_rows} rows")
    if not np.all(np.isfinite(y)):
        raise ConfigurationError("y contains missing or non-finite values")
    return y


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _to_frame(records):
    if isinstance(records, pd.DataFrame):
        return records.reset_index(drop=True).copy()
    return pd.DataFrame.from_records(list(records))


def _is_numeric(series):
    if pd.api.types.is_bool_dtype(series):
        return False
    if pd.api.types.is_numeric_dtype(series):
        return True
    return all(
        isinstance(v, numbers.Real) and not isinstance(v, (bool, np.bool_))
        for v in series.dropna()
    )


def _level_label(value):
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _encode_categorical(name, series):
    """Indicator columns for every level except the first (sorted) one."""
    labels = np.array([
        MISSING_LEVEL if pd.isna(v) else _level_label(v) for v in series
    ], dtype=object)
    levels = sorted(set(labels))
    return [
        (f"{name}={level}", (labels == level).astype(np.float64))
        for level in levels[1:]
    ], levels


def _prune_collinear(blocks):
    """Split blocks into kept ones and (name, reason) drops."""
    if len(blocks) < 2:
        return blocks, []
    mat = np.column_stack([values for _, values in blocks])
    centered = mat - mat.mean(axis=0)
    units = centered / np.linalg.norm(centered, axis=0)
    corr = np.abs(units.T @ units)

    kept_idx, drops = [], []
    for j, (name, _) in enumerate(blocks):
        hits = [k for k in kept_idx if corr[j, k] >= 1.0 - COLLINEAR_TOL]
        if hits:
            drops.append((name, f"perfectly collinear with {blocks[hits[0]][0]}"))
        else:
            kept_idx.append(j)
    return [blocks[k] for k in kept_idx], drops


def build_design_matrix(records, target, categorical=None,
                        target_transform=None, drop_collinear=True,
                        for_ols=False, verbose=False):
    """
    Turn raw records into a ``DesignMatrix`` and an aligned target vector.

    Parameters
    ----------
    records : iterable of mappings or pd.DataFrame
        One mapping per row, column name -> value.  Absent keys, ``None``
        and NaN are treated as missing.
    target : str
        Name of the response column.
    categorical : iterable of str, optional
        Columns to encode as categorical even though their values are
        numeric codes.
    target_transform : callable, optional
        Applied to the target vector (e.g. ``np.log``).
    drop_collinear : bool, default=True
        Drop columns perfectly correlated with an earlier column.
    for_ols : bool, default=False
        Raise ``InsufficientDataError`` when n < p + 2.
    verbose : bool, default=False
        Print a summary of every cleaning action.

    Returns
    -------
    design : DesignMatrix
    y : np.ndarray of shape (n,)
    """
    frame = _to_frame(records)
    if target not in frame.columns:
        raise ConfigurationError(f"Target column {target!r} not found")
    forced = set(categorical or ())
    unknown = forced - set(frame.columns)
    if unknown:
        raise ConfigurationError(
            f"Unknown categorical column(s): {sorted(unknown)}")

    actions = []
    keep = np.ones(len(frame), dtype=bool)

    # --- Target -----------------------------------------------------------
    y_raw = frame[target]
    y_missing = y_raw.isna().to_numpy()
    if y_missing.any():
        actions.append(
            f"Dropped {int(y_missing.sum())} row(s) with missing {target}")
        keep &= ~y_missing
    y_num = pd.to_numeric(y_raw[keep], errors="coerce")
    if y_num.isna().any():
        raise ConfigurationError(f"Target column {target!r} is not numeric")
    y = y_num.to_numpy(dtype=np.float64)

    if target_transform is not None:
        with np.errstate(divide="ignore", invalid="ignore"):
            y = np.asarray(target_transform(y), dtype=np.float64)
        bad = ~np.isfinite(y)
        if bad.any():
            actions.append(
                f"Dropped {int(bad.sum())} row(s) where the transformed "
                f"{target} was non-finite")
            positions = np.flatnonzero(keep)
            keep[positions[bad]] = False
            y = y[~bad]

    row_index = np.flatnonzero(keep)
    if len(row_index) == 0:
        raise InsufficientDataError(0, 1, "No rows remain after cleaning.")
    predictors = frame.drop(columns=[target]).iloc[row_index]

    # --- Impute and encode ------------------------------------------------
    blocks, dropped = [], []
    for col in predictors.columns:
        series = predictors[col]
        name = str(col)
        n_missing = int(series.isna().sum())
        if n_missing == len(series):
            dropped.append((name, "all values missing"))
            continue

        if col in forced or not _is_numeric(series):
            indicators, levels = _encode_categorical(name, series)
            if n_missing:
                actions.append(
                    f"Imputed {n_missing} missing value(s) in {name} "
                    f"with level {MISSING_LEVEL!r}")
            if not indicators:
                dropped.append((name, f"single level {levels[0]!r}"))
            blocks.extend(indicators)
        else:
            values = pd.to_numeric(series).astype(np.float64)
            if n_missing:
                median = float(values.median())
                actions.append(
                    f"Imputed {n_missing} missing value(s) in {name} "
                    f"with median {median:g}")
                values = values.fillna(median)
            blocks.append((name, values.to_numpy()))

    # --- Degenerate columns -----------------------------------------------
    varying = []
    for name, values in blocks:
        if np.unique(values).size < 2:
            dropped.append((name, "fewer than two distinct values"))
        else:
            varying.append((name, values))
    if drop_collinear:
        varying, collinear = _prune_collinear(varying)
        dropped.extend(collinear)

    if not varying:
        raise ConfigurationError("No predictor columns remain after cleaning.")

    for name, reason in dropped:
        logger.info("Dropped column %s: %s", name, reason)
    for action in actions:
        logger.info(action)

    design = DesignMatrix(
        values=np.column_stack([values for _, values in varying]),
        columns=[name for name, _ in varying],
        dropped=dropped,
        row_index=row_index,
    )

    if verbose:
        print("DESIGN MATRIX")
        print("-" * 60)
        for action in actions:
            print(f"  * {action}")
        for name, reason in dropped:
            print(f"  * Dropped {name}: {reason}")
        print(f"  Final design: n={design.n_rows}, p={design.n_columns}")
        print()

    if for_ols:
        design.check_ols()
    return design, y
