"""
Shared pytest fixtures: a small synthetic housing table with mixed
numeric / categorical columns and missing values.
"""

import os
import sys

import numpy as np
import pytest

# Allow running from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def make_housing_records(n=150, seed=0):
    """Raw records resembling a house-price table (log-linear response)."""
    rng = np.random.RandomState(seed)
    quality = rng.randint(1, 11, n)
    living_area = rng.normal(1500, 400, n).clip(400)
    year_built = rng.randint(1900, 2010, n)
    zone = rng.choice(["RL", "RM", "FV", "RH"], n, p=[0.5, 0.3, 0.15, 0.05])
    garage = rng.choice(["Attchd", "Detchd", "none"], n, p=[0.6, 0.3, 0.1])
    lot_frontage = rng.normal(70, 20, n).clip(20)
    zone_effect = {"RL": 0.1, "RM": 0.0, "FV": 0.15, "RH": -0.05}

    log_price = (
        10.5 + 0.08 * quality + 0.0003 * living_area
        + 0.002 * (year_built - 1900)
        + np.array([zone_effect[z] for z in zone])
        + rng.randn(n) * 0.1
    )

    records = []
    for i in range(n):
        records.append({
            "SalePrice": float(np.exp(log_price[i])),
            "OverallQual": int(quality[i]),
            "GrLivArea": float(living_area[i]),
            "YearBuilt": int(year_built[i]),
            "LotFrontage": None if i % 9 == 0 else float(lot_frontage[i]),
            "MSZoning": str(zone[i]),
            "GarageType": None if garage[i] == "none" else str(garage[i]),
            "Utilities": "AllPub",
        })
    return records


@pytest.fixture
def housing_records():
    return make_housing_records()
