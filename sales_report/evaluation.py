"""
Model Evaluation Module - Phase 4
==================================

Scores trained models on each partition and plots the results.

Features:
    - R², MAE, MAPE and RMSE per partition
    - Predictions mapped back to original units before scoring
    - Actual vs Predicted plots
    - Feature importance and residual plots
    - Side by side model comparison
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from sklearn.metrics import mean_squared_error, mean_absolute_error

from .data_loader import TARGET_COLUMN
from .preprocessing import FeatureScaler

logger = logging.getLogger(__name__)


def mean_absolute_percentage_error(
    y_true: np.ndarray,
    y_pred: np.ndarray
) -> Tuple[float, int]:
    """
    Mean absolute percentage error, in percent.

    Rows whose actual value is exactly zero have no defined percentage
    error and are excluded from the average. The number of excluded rows
    is returned alongside the score so callers can report it.

    Args:
        y_true: Actual values
        y_pred: Predicted values

    Returns:
        Tuple of (MAPE in percent, number of rows excluded). MAPE is NaN
        when every actual value is zero.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    nonzero = y_true != 0
    n_excluded = int((~nonzero).sum())

    if n_excluded:
        logger.warning(f"MAPE: excluded {n_excluded} rows with zero actual value")

    if not nonzero.any():
        return float('nan'), n_excluded

    errors = np.abs(y_true[nonzero] - y_pred[nonzero]) / np.abs(y_true[nonzero])
    return float(np.mean(errors) * 100), n_excluded


def r_squared(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    R² of a least-squares line fitted between actual and predicted values.

    Equal to the squared Pearson correlation, so it lies in [0, 1]. Returns
    0.0 when either side is constant.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    if len(y_true) < 2 or np.ptp(y_true) == 0 or np.ptp(y_pred) == 0:
        return 0.0

    fit = stats.linregress(y_true, y_pred)
    return float(min(fit.rvalue ** 2, 1.0))


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, Any]:
    """
    Calculate evaluation metrics for one partition.

    Args:
        y_true: Ground truth values in original units
        y_pred: Predicted values in original units

    Returns:
        Dictionary with r2, mae, mape, rmse, n_samples and n_mape_excluded
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    if len(y_true) == 0:
        raise ValueError("Cannot compute metrics on an empty partition")

    mape, n_excluded = mean_absolute_percentage_error(y_true, y_pred)

    return {
        'r2': r_squared(y_true, y_pred),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'mape': mape,
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'n_samples': int(len(y_true)),
        'n_mape_excluded': n_excluded
    }


def predict_partition(
    model,
    partition: pd.DataFrame,
    features: List[str],
    target: str = TARGET_COLUMN,
    scaler: Optional[FeatureScaler] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Predict one partition and return (actual, predicted) in original units.

    When the target column was rescaled by `scaler`, both actuals and
    predictions are inverse transformed before they are returned.
    """
    y_pred = model.predict(partition[features])
    y_true = partition[target].to_numpy(dtype=float)

    if scaler is not None and scaler.is_scaled(target):
        y_true = scaler.inverse_transform_column(target, y_true)
        y_pred = scaler.inverse_transform_column(target, y_pred)

    return y_true, y_pred


def evaluate_partitions(
    model,
    partitions: Dict[str, pd.DataFrame],
    features: List[str],
    target: str = TARGET_COLUMN,
    scaler: Optional[FeatureScaler] = None
) -> Dict[str, Any]:
    """
    Score a model on every non-empty partition.

    Args:
        model: Trained model with a predict(DataFrame) method
        partitions: Mapping of partition name to DataFrame
        features: Feature columns
        target: Target column
        scaler: Scaler applied upstream, used to restore original units

    Returns:
        Metric report: {'model': name, 'per_partition': {name: metrics},
        'predictions': {name: (y_true, y_pred)}}
    """
    report = {
        'model': getattr(model, 'model_type', model.__class__.__name__),
        'per_partition': {},
        'predictions': {}
    }

    for name, partition in partitions.items():
        if len(partition) == 0:
            logger.warning(f"Skipping empty partition: {name}")
            continue

        y_true, y_pred = predict_partition(model, partition, features, target, scaler)
        report['per_partition'][name] = calculate_metrics(y_true, y_pred)
        report['predictions'][name] = (y_true, y_pred)

    return report


def plot_actual_vs_predicted(
    predictions: Dict[str, Tuple[np.ndarray, np.ndarray]],
    model_name: str = "model",
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of actual vs predicted values, one panel per partition.

    Args:
        predictions: Mapping of partition name to (y_true, y_pred)
        model_name: Name shown in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(predictions.keys())
    fig, axes = plt.subplots(1, len(names), figsize=figsize)
    axes = np.atleast_1d(axes)

    for ax, name in zip(axes, names):
        true_col, pred_col = predictions[name]

        ax.scatter(true_col, pred_col, alpha=0.5, s=20)

        # Perfect prediction line
        min_val = min(true_col.min(), pred_col.min())
        max_val = max(true_col.max(), pred_col.max())
        ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

        ax.set_xlabel('Actual')
        ax.set_ylabel('Predicted')
        ax.set_title(f'{name}\nR²={r_squared(true_col, pred_col):.4f}', fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    plt.suptitle(f'Actual vs Predicted - {model_name}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_feature_importance(
    importances: pd.Series,
    model_name: str = "model",
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Horizontal bar chart of feature importances.

    Args:
        importances: Series indexed by feature name
        model_name: Name shown in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    ordered = importances.sort_values(ascending=True)

    fig, ax = plt.subplots(figsize=figsize)
    ax.barh(ordered.index, ordered.values, color='steelblue', alpha=0.8)
    ax.set_xlabel('Relative Importance')
    ax.set_title(f'Feature Importance - {model_name}', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Feature importance plot saved to {save_path}")

    return fig


def plot_residuals(
    predictions: Dict[str, Tuple[np.ndarray, np.ndarray]],
    model_name: str = "model",
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residual distribution per partition.

    Args:
        predictions: Mapping of partition name to (y_true, y_pred)
        model_name: Name shown in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(predictions.keys())
    fig, axes = plt.subplots(1, len(names), figsize=figsize)
    axes = np.atleast_1d(axes)

    for ax, name in zip(axes, names):
        true_col, pred_col = predictions[name]
        res_col = true_col - pred_col

        # near-constant residuals cannot fill 50 finite bins
        n_bins = min(50, len(np.unique(np.round(res_col, 6))))
        sns.histplot(res_col, kde=n_bins > 1, ax=ax, bins=max(n_bins, 1), alpha=0.7)

        ax.axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
        ax.axvline(np.mean(res_col), color='green', linestyle='--',
                   linewidth=2, label=f'Mean: {np.mean(res_col):,.2f}')

        ax.set_xlabel('Residual (Actual - Predicted)')
        ax.set_ylabel('Frequency')
        ax.set_title(f'{name} (Std: {np.std(res_col):,.2f})', fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    plt.suptitle(f'Residual Analysis - {model_name}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def compare_models(reports: List[Dict[str, Any]], partition: str = 'test') -> pd.DataFrame:
    """
    Tabulate the metrics of several reports on one partition.

    Returns:
        DataFrame indexed by model name with one column per metric
    """
    rows = {}
    for report in reports:
        metrics = report['per_partition'].get(partition)
        if metrics is None:
            continue
        rows[report['model']] = {key: metrics[key] for key in ('r2', 'mae', 'mape', 'rmse')}

    return pd.DataFrame.from_dict(rows, orient='index')


def plot_model_comparison(
    comparison: pd.DataFrame,
    partition: str = 'test',
    figsize: Tuple[int, int] = (12, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar charts of R², MAE and MAPE for each model.

    Args:
        comparison: Output of compare_models
        partition: Partition name shown in the title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, axes = plt.subplots(1, 3, figsize=figsize)

    x = np.arange(len(comparison.index))
    for ax, (metric, label, color) in zip(axes, [
        ('r2', 'R²', 'seagreen'),
        ('mae', 'MAE', 'coral'),
        ('mape', 'MAPE (%)', 'steelblue'),
    ]):
        ax.bar(x, comparison[metric], 0.6, color=color, alpha=0.8)
        ax.set_xticks(x)
        ax.set_xticklabels(comparison.index, rotation=15)
        ax.set_title(label, fontweight='bold')

    plt.suptitle(f'Model Comparison ({partition})', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def save_metrics(report: Dict[str, Any], filepath: str) -> None:
    """Write the per-partition metrics of a report to JSON."""
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    payload = {'model': report['model'], 'per_partition': report['per_partition']}
    with open(filepath, 'w') as f:
        json.dump(payload, f, indent=2)
    logger.info(f"Metrics saved to {filepath}")


def evaluate_model(
    model,
    partitions: Dict[str, pd.DataFrame],
    features: List[str],
    target: str = TARGET_COLUMN,
    scaler: Optional[FeatureScaler] = None,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Run complete model evaluation and generate all reports.

    Args:
        model: Trained model
        partitions: Mapping of partition name to DataFrame
        features: Feature columns
        target: Target column
        scaler: Scaler applied upstream (None if the target is unscaled)
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Metric report extended with 'figures' and 'metrics_file'
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION (Phase 4)")
    logger.info("=" * 60)

    report = evaluate_partitions(model, partitions, features, target, scaler)
    name = report['model']

    metrics_file = metrics_dir / f"{name}_metrics.json"
    save_metrics(report, str(metrics_file))

    figures = []

    logger.info("Generating Actual vs Predicted plots...")
    plot_actual_vs_predicted(
        report['predictions'], name,
        save_path=str(figures_dir / f"{name}_actual_vs_predicted.png")
    )
    figures.append(f"{name}_actual_vs_predicted.png")

    logger.info("Generating residual analysis...")
    plot_residuals(
        report['predictions'], name,
        save_path=str(figures_dir / f"{name}_residuals.png")
    )
    figures.append(f"{name}_residuals.png")

    logger.info("Generating feature importance chart...")
    plot_feature_importance(
        model.get_feature_importances(), name,
        save_path=str(figures_dir / f"{name}_feature_importance.png")
    )
    figures.append(f"{name}_feature_importance.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    report['figures'] = figures
    report['metrics_file'] = str(metrics_file)

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for partition, metrics in report['per_partition'].items():
        logger.info(
            f"  {partition}: R²={metrics['r2']:.4f} MAE={metrics['mae']:,.2f} MAPE={metrics['mape']:.2f}%"
        )
    logger.info("=" * 60)

    return report


def print_evaluation_report(report: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        report: Metric report from evaluate_model
    """
    print("\n" + "=" * 70)
    print(f"MODEL EVALUATION REPORT - {report['model']}")
    print("=" * 70)
    print(f"{'Partition':<12} {'R²':<10} {'MAE':<16} {'MAPE (%)':<10} {'RMSE':<16} {'Rows':<8}")
    print("-" * 70)

    for name, metrics in report['per_partition'].items():
        print(f"{name:<12} {metrics['r2']:<10.4f} {metrics['mae']:<16,.2f} "
              f"{metrics['mape']:<10.2f} {metrics['rmse']:<16,.2f} {metrics['n_samples']:<8}")

    excluded = {name: m['n_mape_excluded'] for name, m in report['per_partition'].items()
                if m['n_mape_excluded']}
    if excluded:
        print(f"\nRows with zero actual sales excluded from MAPE: {excluded}")

    test_metrics = report['per_partition'].get('test')
    if test_metrics is not None:
        r2 = test_metrics['r2']
        print("\nInterpretation:")
        if r2 > 0.9:
            print("  ✓ Excellent model performance (R² > 0.9)")
        elif r2 > 0.7:
            print("  ✓ Good model performance (R² > 0.7)")
        elif r2 > 0.5:
            print("  ⚠ Moderate model performance (R² > 0.5)")
        else:
            print("  ✗ Poor model performance (R² < 0.5)")

    print("=" * 70 + "\n")
