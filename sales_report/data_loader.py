"""
Data Loader Module
==================

Handles CSV ingestion, schema validation, date parsing and basic data
quality checks for the weekly store sales dataset.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV data, coerce it to the sales schema, derive Year/Month
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import pandas as pd
import numpy as np
import yaml

from .exceptions import ParseError

logger = logging.getLogger(__name__)

STORE_COLUMN = "Store"
DATE_COLUMN = "Date"
TARGET_COLUMN = "Weekly_Sales"
HOLIDAY_COLUMN = "Holiday_Flag"

# Column name -> kind ("int", "float", "flag", "date")
SALES_SCHEMA: Dict[str, str] = {
    STORE_COLUMN: "int",
    DATE_COLUMN: "date",
    TARGET_COLUMN: "float",
    HOLIDAY_COLUMN: "flag",
    "Temperature": "float",
    "Fuel_Price": "float",
    "CPI": "float",
    "Unemployment": "float",
}

DEFAULT_DATE_FORMAT = "%d-%m-%Y"

_TRUE_VALUES = {"1", "1.0", "true", "t", "yes", "y"}
_FALSE_VALUES = {"0", "0.0", "false", "f", "no", "n"}


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _parse_flag(series: pd.Series) -> pd.Series:
    """Map boolean-like values (0/1, true/false, yes/no) to 0/1 integers."""
    text = series.astype(str).str.strip().str.lower()
    parsed = pd.Series(np.nan, index=series.index)
    parsed[text.isin(_TRUE_VALUES)] = 1
    parsed[text.isin(_FALSE_VALUES)] = 0

    bad = parsed.isna()
    if bad.any():
        examples = series[bad].unique()[:5].tolist()
        raise ParseError(f"Column '{series.name}' has non boolean values: {examples}")

    return parsed.astype(int)


def _coerce_column(series: pd.Series, kind: str, date_format: Optional[str]) -> pd.Series:
    if kind == "date":
        try:
            return pd.to_datetime(series, format=date_format)
        except (ValueError, TypeError) as e:
            raise ParseError(
                f"Column '{series.name}' does not match date format {date_format!r}: {e}"
            ) from e

    if kind == "flag":
        return _parse_flag(series)

    numeric = pd.to_numeric(series, errors="coerce")
    bad = numeric.isna() & series.notna()
    if bad.any():
        examples = series[bad].unique()[:5].tolist()
        raise ParseError(f"Column '{series.name}' has non numeric values: {examples}")

    if kind == "int":
        if not np.all(np.mod(numeric, 1) == 0):
            raise ParseError(f"Column '{series.name}' must hold integer identifiers")
        return numeric.astype(int)

    return numeric.astype(float)


def load_data(
    file_path: str,
    date_format: Optional[str] = DEFAULT_DATE_FORMAT,
    schema: Optional[Dict[str, str]] = None
) -> pd.DataFrame:
    """
    Load the sales CSV, validate it against the schema and derive Year/Month.

    Every schema column is required and coerced to its declared type. Extra
    columns are kept untouched. The date column is parsed and two integer
    columns, ``Year`` and ``Month``, are appended.

    Args:
        file_path: Path to the CSV file
        date_format: strptime format of the date column (None lets pandas infer)
        schema: Column name -> kind mapping (default: SALES_SCHEMA)

    Returns:
        DataFrame containing the typed data

    Raises:
        ParseError: If the file is absent or malformed, a column is missing,
            a value cannot be coerced, or a date does not match the format
    """
    schema = schema or SALES_SCHEMA
    file_path = Path(file_path)

    if not file_path.exists():
        raise ParseError(f"Data file not found: {file_path}")

    try:
        raw = pd.read_csv(file_path)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ParseError(f"Could not parse {file_path}: {e}") from e

    logger.info(f"Loaded data from {file_path}: {raw.shape[0]} rows × {raw.shape[1]} columns")

    raw.columns = [str(col).strip() for col in raw.columns]
    missing = [col for col in schema if col not in raw.columns]
    if missing:
        raise ParseError(
            f"Missing required columns: {missing}. Columns found: {list(raw.columns)}"
        )

    empty = [col for col in schema if raw[col].isna().any()]
    if empty:
        raise ParseError(f"Missing values in required columns: {empty}")

    df = raw.copy()
    for col, kind in schema.items():
        df[col] = _coerce_column(raw[col], kind, date_format)

    date_cols = [col for col, kind in schema.items() if kind == "date"]
    if date_cols:
        dates = df[date_cols[0]]
        df["Year"] = dates.dt.year.astype(int)
        df["Month"] = dates.dt.month.astype(int)

    return df


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints.

    Checks:
        - No missing values
        - No duplicate rows
        - No extreme values (> 4 std from the mean)
        - Non-negative target values

    Args:
        df: DataFrame to validate
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Missing values
    missing_counts = df.isnull().sum()
    total_missing = missing_counts.sum()
    if total_missing > 0:
        missing_pct = (total_missing / (df.shape[0] * df.shape[1])) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 2: Duplicate rows
    duplicates = df.duplicated().sum()
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 3: Data range (check for potential outliers)
    for col in df.select_dtypes(include=[np.number]).columns:
        col_std = df[col].std()
        col_mean = df[col].mean()
        outliers = ((df[col] - col_mean).abs() > 4 * col_std).sum()
        if outliers > 0:
            issue = f"Column '{col}' has {outliers} potential outliers (>4 std)"
            report["issues"].append(issue)
            logger.warning(issue)

    # Check 4: Negative sales
    if TARGET_COLUMN in df.columns:
        negative = int((df[TARGET_COLUMN] < 0).sum())
        if negative > 0:
            issue = f"Negative {TARGET_COLUMN} values: {negative}"
            report["issues"].append(issue)
            logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "statistics": {}
    }

    if STORE_COLUMN in df.columns:
        summary["n_stores"] = int(df[STORE_COLUMN].nunique())
    if DATE_COLUMN in df.columns:
        summary["date_range"] = (str(df[DATE_COLUMN].min().date()), str(df[DATE_COLUMN].max().date()))

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max()),
            "skew": float(df[col].skew())
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    if STORE_COLUMN in df.columns:
        print(f"Stores: {df[STORE_COLUMN].nunique()}")
    if DATE_COLUMN in df.columns:
        print(f"Dates: {df[DATE_COLUMN].min().date()} to {df[DATE_COLUMN].max().date()}")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.select_dtypes(include=[np.number]).describe().round(4).to_string())
    print("=" * 60 + "\n")
