"""
Partitioning Module - Phase 2
==============================

Splits a cleaned dataset into train / validation / test partitions.

Two sampling strategies are supported:
    - uniform: every row has the same chance of landing in each partition
    - stratified: rows are binned on quantiles of a column (the target) and
      each bin is split in the same proportions, so every partition keeps
      the column's distribution

Splits are deterministic for a given seed.
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .exceptions import InvalidRatioError

logger = logging.getLogger(__name__)

PARTITION_NAMES = ('train', 'validation', 'test')


def validate_ratios(ratios: Sequence[float]) -> Tuple[float, float, float]:
    """
    Check a (train, validation, test) ratio triple.

    Raises:
        InvalidRatioError: If there are not three ratios, any is negative,
            or they sum above 1
    """
    ratios = tuple(float(r) for r in ratios)

    if len(ratios) != len(PARTITION_NAMES):
        raise InvalidRatioError(f"Expected 3 ratios (train, validation, test), got {len(ratios)}")
    if any(np.isnan(r) or r < 0 for r in ratios):
        raise InvalidRatioError(f"Ratios must be non-negative: {ratios}")
    if sum(ratios) > 1 + 1e-9:
        raise InvalidRatioError(f"Ratios must sum to at most 1, got {sum(ratios):.4f}")

    return ratios


def partition_sizes(n_rows: int, ratios: Sequence[float]) -> Tuple[int, int, int]:
    """
    Number of rows per partition.

    Train and validation get round(n * ratio). When the ratios sum to 1 the
    test partition takes the remainder so the sizes add up to n_rows.
    """
    train_ratio, val_ratio, test_ratio = validate_ratios(ratios)

    n_train = int(round(n_rows * train_ratio))
    n_val = min(int(round(n_rows * val_ratio)), n_rows - n_train)

    if abs(train_ratio + val_ratio + test_ratio - 1) < 1e-9:
        n_test = n_rows - n_train - n_val
    else:
        n_test = min(int(round(n_rows * test_ratio)), n_rows - n_train - n_val)

    return n_train, n_val, n_test


def _stratify_labels(values: pd.Series, n_bins: int) -> Optional[np.ndarray]:
    """Quantile bin labels, or None when the column cannot be binned."""
    labels = pd.qcut(values, q=n_bins, labels=False, duplicates='drop')
    if labels.nunique() < 2:
        return None
    return labels.to_numpy()


def _take(
    df: pd.DataFrame,
    size: int,
    seed: int,
    stratify: Optional[np.ndarray]
) -> Tuple[pd.DataFrame, pd.DataFrame, Optional[np.ndarray], Optional[np.ndarray]]:
    """Draw `size` rows from df; return (taken, rest) and their strata."""
    if size == 0:
        return df.iloc[:0], df, None, stratify
    if size == len(df):
        return df, df.iloc[:0], stratify, None

    positions = np.arange(len(df))
    if stratify is not None:
        # sklearn needs every stratum to fit in both sides
        counts = pd.Series(stratify).value_counts()
        if counts.min() < 2 or min(size, len(df) - size) < counts.size:
            logger.warning("Too few rows per stratum, falling back to uniform sampling")
            stratify = None

    taken_pos, rest_pos = train_test_split(
        positions,
        train_size=size,
        random_state=seed,
        shuffle=True,
        stratify=stratify
    )

    taken_strata = stratify[taken_pos] if stratify is not None else None
    rest_strata = stratify[rest_pos] if stratify is not None else None
    return df.iloc[taken_pos], df.iloc[rest_pos], taken_strata, rest_strata


def split_dataset(
    df: pd.DataFrame,
    ratios: Sequence[float] = (0.6, 0.2, 0.2),
    seed: int = 42,
    stratify_column: Optional[str] = None,
    n_bins: int = 10
) -> Dict[str, pd.DataFrame]:
    """
    Split df into disjoint train, validation and test partitions.

    Args:
        df: Cleaned dataset
        ratios: (train, validation, test) fractions, each >= 0, sum <= 1
        seed: Random seed
        stratify_column: Column whose quantile bins are preserved across
            partitions (None for uniform sampling)
        n_bins: Number of quantile bins for stratified sampling

    Returns:
        Dictionary mapping 'train', 'validation', 'test' to DataFrames.
        Rows keep their original index labels.

    Raises:
        InvalidRatioError: If the ratios are invalid
    """
    n_train, n_val, n_test = partition_sizes(len(df), ratios)

    strata = None
    if stratify_column is not None:
        strata = _stratify_labels(df[stratify_column], n_bins)

    train, rest, _, rest_strata = _take(df, n_train, seed, strata)
    validation, rest, _, rest_strata = _take(rest, n_val, seed, rest_strata)
    test, _, _, _ = _take(rest, n_test, seed, rest_strata)

    partitions = {'train': train, 'validation': validation, 'test': test}

    logger.info(
        f"Partitioned {len(df)} rows ({'stratified on ' + stratify_column if stratify_column else 'uniform'}, "
        f"seed={seed}): " + ", ".join(f"{name}={len(part)}" for name, part in partitions.items())
    )
    return partitions


def print_partition_summary(partitions: Dict[str, pd.DataFrame], target: str) -> None:
    """
    Print partition sizes and target statistics.

    Args:
        partitions: Output of split_dataset
        target: Column whose mean/std is shown per partition
    """
    total = sum(len(part) for part in partitions.values())

    print("\n" + "=" * 50)
    print("PARTITION SUMMARY")
    print("=" * 50)
    print(f"{'Partition':<12} {'Rows':>8} {'Share':>8} {'Mean':>10} {'Std':>10}")
    print("-" * 50)
    for name, part in partitions.items():
        share = len(part) / total if total else 0.0
        mean = part[target].mean() if len(part) else float('nan')
        std = part[target].std() if len(part) > 1 else float('nan')
        print(f"{name:<12} {len(part):>8} {share:>8.1%} {mean:>10.4f} {std:>10.4f}")
    print("=" * 50 + "\n")
