"""
Data Preprocessing Module - Phase 2
====================================

Cleans the sales data and rescales numeric columns.

Functions:
    - drop_duplicates: Remove exact duplicate rows
    - remove_outliers: Drop rows above a quantile of the target
    - FeatureScaler: Standard (z-score) or min-max rescaling with inverse
    - clean_pipeline: Deduplicate, remove outliers and rescale in one call

Every function returns a new DataFrame; inputs are never modified.
"""

import logging
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.preprocessing import MinMaxScaler, StandardScaler
import joblib

from .data_loader import TARGET_COLUMN

logger = logging.getLogger(__name__)

SCALING_STRATEGIES = {
    'standard': StandardScaler,
    'minmax': MinMaxScaler,
}


def drop_duplicates(df: pd.DataFrame) -> pd.DataFrame:
    """
    Remove rows that are exact duplicates across all columns.

    Keeps the first occurrence and the original row order. Running it on
    already deduplicated data returns an equal frame.
    """
    deduplicated = df.drop_duplicates(keep='first')
    removed = len(df) - len(deduplicated)
    if removed:
        logger.info(f"Removed {removed} duplicate rows")
    return deduplicated.copy()


def remove_outliers(
    df: pd.DataFrame,
    column: str = TARGET_COLUMN,
    quantile: float = 0.99
) -> Tuple[pd.DataFrame, float]:
    """
    Drop rows whose value in `column` exceeds the given quantile.

    The threshold is computed from `df` on every call, so applying this
    after other filters yields a different threshold than applying it first.

    Args:
        df: Input data
        column: Column to test
        quantile: Quantile in (0, 1] used as the upper threshold

    Returns:
        Tuple of (filtered DataFrame, threshold)
    """
    if not 0 < quantile <= 1:
        raise ValueError(f"quantile must be in (0, 1], got {quantile}")

    threshold = float(df[column].quantile(quantile))
    kept = df[df[column] <= threshold].copy()

    logger.info(
        f"Outlier threshold for {column} at q={quantile}: {threshold:,.2f} "
        f"({len(df) - len(kept)} rows removed)"
    )
    return kept, threshold


class FeatureScaler:
    """
    Rescales a fixed set of numeric columns with a single strategy.

    'standard' maps each column to mean 0 and std 1, 'minmax' maps each
    column to [0, 1]. A scaler holds one strategy only; columns are never
    scaled by both within one model's data preparation.
    """

    def __init__(self, strategy: str = 'standard', columns: Optional[List[str]] = None):
        """
        Initialize the scaler.

        Args:
            strategy: 'standard' or 'minmax'
            columns: Columns to rescale (default: every numeric column at fit time)
        """
        if strategy not in SCALING_STRATEGIES:
            raise ValueError(
                f"Unknown scaling strategy: {strategy}. Choose from: {sorted(SCALING_STRATEGIES)}"
            )

        self.strategy = strategy
        self.columns = list(columns) if columns is not None else None

        self.scaler = None
        self._is_fitted = False

    def fit(self, df: pd.DataFrame) -> 'FeatureScaler':
        """Learn scaling parameters from df."""
        if self.columns is None:
            self.columns = df.select_dtypes(include=[np.number]).columns.tolist()

        missing = [col for col in self.columns if col not in df.columns]
        if missing:
            raise KeyError(f"Columns not found for scaling: {missing}")

        self.scaler = SCALING_STRATEGIES[self.strategy]()
        self.scaler.fit(df[self.columns].astype(float).values)
        self._is_fitted = True

        logger.info(f"Fitted {self.scaler.__class__.__name__} on {len(self.columns)} columns")
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Return a copy of df with the scaled columns replaced.

        Args:
            df: DataFrame containing every scaled column

        Returns:
            New DataFrame; other columns are untouched
        """
        if not self._is_fitted:
            raise ValueError("Scaler must be fitted before transform. Call fit() first.")

        scaled = df.copy()
        scaled[self.columns] = self.scaler.transform(df[self.columns].astype(float).values)
        return scaled

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        self.fit(df)
        return self.transform(df)

    def inverse_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Map the scaled columns of df back to their original units."""
        if not self._is_fitted:
            raise ValueError("Scaler must be fitted before inverse_transform.")

        restored = df.copy()
        restored[self.columns] = self.scaler.inverse_transform(df[self.columns].astype(float).values)
        return restored

    def inverse_transform_column(self, column: str, values: np.ndarray) -> np.ndarray:
        """
        Map values of a single scaled column back to original units.

        Used for predictions, which only exist for the target column.

        Args:
            column: Name of a scaled column
            values: 1D array in scaled units

        Returns:
            1D array in original units
        """
        if not self._is_fitted:
            raise ValueError("Scaler must be fitted before inverse_transform.")

        values = np.asarray(values, dtype=float)
        if column not in self.columns:
            return values

        idx = self.columns.index(column)
        if self.strategy == 'standard':
            return values * self.scaler.scale_[idx] + self.scaler.mean_[idx]
        return (values - self.scaler.min_[idx]) / self.scaler.scale_[idx]

    def is_scaled(self, column: str) -> bool:
        return self._is_fitted and column in self.columns

    def save(self, filepath: str) -> None:
        """
        Save the scaler state to disk.

        Args:
            filepath: Path to save the scaler
        """
        state = {
            'strategy': self.strategy,
            'columns': self.columns,
            'scaler': self.scaler,
            '_is_fitted': self._is_fitted
        }
        joblib.dump(state, filepath)
        logger.info(f"Scaler saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FeatureScaler':
        """
        Load a scaler from disk.

        Args:
            filepath: Path to the saved scaler

        Returns:
            Loaded FeatureScaler instance
        """
        state = joblib.load(filepath)

        scaler = cls(strategy=state['strategy'], columns=state['columns'])
        scaler.scaler = state['scaler']
        scaler._is_fitted = state['_is_fitted']

        logger.info(f"Scaler loaded from {filepath}")
        return scaler


def clean_pipeline(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    scaling: Optional[str] = 'standard',
    scale_columns: Optional[List[str]] = None,
    outlier_quantile: float = 0.99
) -> Dict[str, Any]:
    """
    Complete cleaning pipeline: deduplicate, remove outliers, rescale.

    Args:
        df: Loaded sales data
        target: Target column used for outlier removal
        scaling: 'standard', 'minmax', or None to skip rescaling
        scale_columns: Columns to rescale (default: every numeric column)
        outlier_quantile: Quantile of the target above which rows are dropped

    Returns:
        Dictionary containing:
            - data: Cleaned (and rescaled) DataFrame
            - unscaled: Cleaned DataFrame before rescaling
            - scaler: Fitted FeatureScaler, or None
            - outlier_threshold: Target threshold used for outlier removal
            - n_duplicates, n_outliers: Rows removed by each step
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA CLEANING (Phase 2)")
    logger.info("=" * 60)

    deduplicated = drop_duplicates(df)
    cleaned, threshold = remove_outliers(deduplicated, target, outlier_quantile)

    scaler = None
    data = cleaned
    if scaling:
        logger.info(f"Rescaling with strategy: {scaling}")
        scaler = FeatureScaler(strategy=scaling, columns=scale_columns)
        data = scaler.fit_transform(cleaned)

    result = {
        'data': data,
        'unscaled': cleaned,
        'scaler': scaler,
        'outlier_threshold': threshold,
        'n_input': len(df),
        'n_duplicates': len(df) - len(deduplicated),
        'n_outliers': len(deduplicated) - len(cleaned)
    }

    logger.info("=" * 60)
    logger.info("CLEANING COMPLETE")
    logger.info(f"  Rows in: {len(df)}")
    logger.info(f"  Rows out: {len(data)}")
    logger.info("=" * 60)

    return result


def print_cleaning_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the cleaning results.

    Args:
        result: Dictionary from clean_pipeline
    """
    scaler = result['scaler']

    print("\n" + "=" * 50)
    print("CLEANING SUMMARY")
    print("=" * 50)
    print(f"Input rows: {result['n_input']}")
    print(f"Duplicates removed: {result['n_duplicates']}")
    print(f"Outliers removed: {result['n_outliers']} (threshold {result['outlier_threshold']:,.2f})")
    print(f"Output rows: {len(result['data'])}")
    if scaler is not None:
        print(f"\nScaling: {scaler.strategy}")
        print(f"Scaled columns: {', '.join(scaler.columns)}")
    else:
        print("\nScaling: none")
    print("=" * 50 + "\n")
