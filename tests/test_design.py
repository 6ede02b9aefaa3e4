"""
Tests for design matrix construction.

Run with:  python -m pytest tests/ -v
"""

import numpy as np
import pandas as pd
import pytest

from shrinkbench import (
    DesignMatrix, build_design_matrix, ConfigurationError,
    InsufficientDataError,
)


RECORDS = [
    {"price": 100.0, "area": 50.0, "zone": "B", "pool": None},
    {"price": 150.0, "area": None, "zone": "A", "pool": "yes"},
    {"price": 120.0, "area": 70.0, "zone": None, "pool": "no"},
    {"price": 180.0, "area": 90.0, "zone": "B", "pool": "yes"},
    {"price": 130.0, "area": 60.0, "zone": "A", "pool": "no"},
]


def test_median_imputation_and_encoding():
    """Numeric NaN -> column median; categorical NaN -> level 'None'."""
    design, y = build_design_matrix(RECORDS, "price")

    assert design.columns == (
        "area", "zone=B", "zone=None", "pool=no", "pool=yes")
    np.testing.assert_array_equal(design.column("area"),
                                  [50.0, 65.0, 70.0, 90.0, 60.0])
    np.testing.assert_array_equal(design.column("zone=B"), [1, 0, 0, 1, 0])
    np.testing.assert_array_equal(design.column("zone=None"), [0, 0, 1, 0, 0])
    np.testing.assert_array_equal(design.column("pool=no"), [0, 0, 1, 0, 1])
    np.testing.assert_array_equal(y, [100, 150, 120, 180, 130])
    print("  PASS: median imputation and treatment-coded indicators")


def test_constant_and_empty_columns_dropped():
    """Columns with < 2 distinct values are dropped and recorded."""
    records = [dict(r, const=1.0, empty=None, site="X") for r in RECORDS]
    design, _ = build_design_matrix(records, "price")

    dropped = dict(design.dropped)
    assert "const" in dropped and "distinct" in dropped["const"]
    assert dropped["empty"] == "all values missing"
    assert "site" in dropped
    assert not {"const", "empty", "site"} & set(design.columns)
    assert np.all(design.values.std(axis=0) > 0)
    print(f"  PASS: degenerate columns dropped ({sorted(dropped)})")


def test_collinear_column_dropped():
    """A rescaled copy of an earlier column is removed."""
    records = [
        {"y": float(i % 3), "a": float(i), "b": 2.0 * i + 1, "c": float(i * i)}
        for i in range(8)
    ]
    design, _ = build_design_matrix(records, "y")
    assert design.columns == ("a", "c")
    assert "collinear with a" in dict(design.dropped)["b"]

    design, _ = build_design_matrix(records, "y", drop_collinear=False)
    assert design.columns == ("a", "b", "c")
    print("  PASS: perfectly collinear column dropped")


def test_forced_categorical_codes():
    """Numeric codes listed in `categorical` become indicators."""
    records = [dict(r, grade=g) for r, g in zip(RECORDS, [1, 2, 1, 3, 2])]
    design, _ = build_design_matrix(records, "price", categorical=["grade"])
    assert "grade=2" in design.columns and "grade=3" in design.columns
    assert "grade" not in design.columns
    print("  PASS: forced categorical")


def test_missing_target_rows_dropped_in_order():
    """Rows without a target are dropped; the rest keep input order."""
    records = [dict(r) for r in RECORDS]
    records[1]["price"] = None
    design, y = build_design_matrix(records, "price")

    np.testing.assert_array_equal(design.row_index, [0, 2, 3, 4])
    np.testing.assert_array_equal(y, [100, 120, 180, 130])
    # median of the kept rows only: 50, 70, 90, 60
    np.testing.assert_array_equal(design.column("area"), [50, 70, 90, 60])
    print("  PASS: missing target rows dropped")


def test_target_transform():
    """Transform applies to y; non-finite results drop the row."""
    records = [dict(r) for r in RECORDS]
    records[4]["price"] = 0.0
    design, y = build_design_matrix(records, "price", target_transform=np.log)
    assert design.n_rows == 4
    np.testing.assert_allclose(y, np.log([100, 150, 120, 180]))
    print("  PASS: log target transform")


def test_rebuild_is_bit_identical(housing_records):
    """Same input, same rules -> identical matrices."""
    d1, y1 = build_design_matrix(housing_records, "SalePrice",
                                 target_transform=np.log)
    d2, y2 = build_design_matrix(list(housing_records), "SalePrice",
                                 target_transform=np.log)
    assert d1.columns == d2.columns
    assert np.array_equal(d1.values, d2.values)
    assert np.array_equal(y1, y2)
    assert d1.values.tobytes() == d2.values.tobytes()
    print(f"  PASS: rebuild identical (p={d1.n_columns})")


def test_dataframe_input(housing_records):
    """A DataFrame gives the same result as the records."""
    d1, _ = build_design_matrix(housing_records, "SalePrice")
    d2, _ = build_design_matrix(pd.DataFrame(housing_records), "SalePrice")
    assert d1.columns == d2.columns
    np.testing.assert_array_equal(d1.values, d2.values)
    assert ("Utilities", "single level 'AllPub'") in d1.dropped


def test_insufficient_data_for_ols():
    """n < p + 2 fails only when OLS is requested."""
    records = RECORDS[:4]
    design, _ = build_design_matrix(records, "price")
    assert design.n_rows < design.n_columns + 2
    with pytest.raises(InsufficientDataError):
        build_design_matrix(records, "price", for_ols=True)


def test_design_matrix_is_read_only():
    design, _ = build_design_matrix(RECORDS, "price")
    with pytest.raises(ValueError):
        design.values[0, 0] = 1.0
    with pytest.raises(ValueError):
        design.row_index[0] = 3


def test_bad_inputs():
    with pytest.raises(ConfigurationError):
        build_design_matrix(RECORDS, "missing_target")
    with pytest.raises(ConfigurationError):
        build_design_matrix(RECORDS, "zone")
    with pytest.raises(ConfigurationError):
        build_design_matrix(RECORDS, "price", categorical=["nope"])
    with pytest.raises(ConfigurationError):
        DesignMatrix(values=np.zeros((3, 2)), columns=["a"])
