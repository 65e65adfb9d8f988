"""
Shared fixtures: synthetic weekly store sales data.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

HOLIDAY_WEEKS = {6, 36, 47, 52}


def make_sales_frame(n_stores: int = 10, n_weeks: int = 100, seed: int = 42) -> pd.DataFrame:
    """Weekly sales per store, shaped like the raw CSV (dates as dd-mm-yyyy strings)."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2010-02-05", periods=n_weeks, freq="7D")

    rows = []
    for store in range(1, n_stores + 1):
        base = 500_000 + store * 100_000
        for date in dates:
            holiday = int(date.isocalendar()[1] in HOLIDAY_WEEKS)
            temperature = 60 + 25 * np.sin(2 * np.pi * date.dayofyear / 365) + rng.normal(0, 5)
            fuel_price = 2.7 + 0.002 * (date - dates[0]).days / 7 + rng.normal(0, 0.05)
            cpi = 210 + 0.05 * (date - dates[0]).days / 7 + store * 0.5
            unemployment = 8 + store * 0.1 + rng.normal(0, 0.2)
            sales = (
                base
                + 150_000 * holiday
                + 40_000 * (date.month == 12)
                - 2_000 * (temperature - 60)
                + rng.normal(0, 30_000)
            )
            rows.append({
                "Store": store,
                "Date": date.strftime("%d-%m-%Y"),
                "Weekly_Sales": round(max(sales, 1.0), 2),
                "Holiday_Flag": holiday,
                "Temperature": round(temperature, 2),
                "Fuel_Price": round(fuel_price, 3),
                "CPI": round(cpi, 4),
                "Unemployment": round(unemployment, 3),
            })

    return pd.DataFrame(rows)


@pytest.fixture
def raw_sales():
    """1000 raw rows: 10 stores x 100 weeks."""
    return make_sales_frame()


@pytest.fixture
def sales_csv(tmp_path, raw_sales):
    """Path to a CSV holding raw_sales."""
    path = tmp_path / "sales.csv"
    raw_sales.to_csv(path, index=False)
    return path


@pytest.fixture
def sales_data(sales_csv):
    """Loaded and typed sales data."""
    from sales_report.data_loader import load_data
    return load_data(sales_csv)
