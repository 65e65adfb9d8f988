"""
Exploratory Data Analysis (EDA) Module - Phase 1
=================================================

Grouped summaries and visualizations of weekly store sales.

Functions:
    - summarize_by_group: Mean / std / sum of the target per group
    - holiday_uplift: Holiday vs non-holiday average sales
    - plot_correlation_matrix: Correlation heatmap plus correlations with the target
    - plot_distributions: Histograms for the numeric columns
    - plot_box_plots: Box plots for outlier detection
    - plot_group_totals: Bar chart of total sales per group
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple, Union

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .data_loader import TARGET_COLUMN, STORE_COLUMN, HOLIDAY_COLUMN

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

NUMERIC_FEATURES = ["Temperature", "Fuel_Price", "CPI", "Unemployment"]


def summarize_by_group(
    df: pd.DataFrame,
    keys: Union[str, List[str]],
    target: str = TARGET_COLUMN
) -> pd.DataFrame:
    """
    Aggregate the target per group.

    Groups with a single row have an undefined sample standard deviation;
    it is reported as 0.0 rather than NaN.

    Args:
        df: Sales data
        keys: Column name or list of column names to group by
        target: Column to aggregate

    Returns:
        DataFrame indexed by group key with columns mean, std, sum, count
    """
    if isinstance(keys, str):
        keys = [keys]

    missing = [key for key in keys + [target] if key not in df.columns]
    if missing:
        raise KeyError(f"Columns not found for grouping: {missing}")

    summary = df.groupby(keys)[target].agg(['mean', 'std', 'sum', 'count'])
    summary['std'] = summary['std'].fillna(0.0)

    return summary


def holiday_uplift(df: pd.DataFrame, target: str = TARGET_COLUMN) -> Dict[str, float]:
    """Compare average sales in holiday weeks against regular weeks."""
    summary = summarize_by_group(df, HOLIDAY_COLUMN, target)
    holiday_mean = float(summary['mean'].get(1, np.nan))
    regular_mean = float(summary['mean'].get(0, np.nan))

    if regular_mean and not np.isnan(regular_mean):
        uplift_pct = (holiday_mean - regular_mean) / regular_mean * 100
    else:
        uplift_pct = np.nan

    return {
        'holiday_mean': holiday_mean,
        'regular_mean': regular_mean,
        'uplift_pct': float(uplift_pct)
    }


def top_groups(summary: pd.DataFrame, n: int = 5, by: str = 'sum') -> pd.DataFrame:
    """Return the n groups with the largest value of `by`."""
    return summary.sort_values(by, ascending=False).head(n)


def plot_correlation_matrix(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    exclude: Sequence[str] = (STORE_COLUMN,),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Pearson correlations between the numeric columns, target first.

    Store identifiers are dropped since their numeric order means nothing.
    The left panel shows the lower triangle of the full matrix, the right
    panel ranks every column by its correlation with the target.

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    numeric = df.select_dtypes(include=[np.number]).drop(columns=list(exclude), errors='ignore')
    if target in numeric.columns:
        numeric = numeric[[target] + [col for col in numeric.columns if col != target]]
    corr_matrix = numeric.corr()

    fig, (ax_matrix, ax_target) = plt.subplots(
        1, 2, figsize=(16, 7), gridspec_kw={'width_ratios': [3, 1]}
    )

    sns.heatmap(
        corr_matrix,
        mask=np.triu(np.ones_like(corr_matrix, dtype=bool), k=1),
        annot=True,
        fmt='.2f',
        cmap='coolwarm',
        vmin=-1,
        vmax=1,
        square=True,
        cbar=False,
        ax=ax_matrix
    )
    ax_matrix.set_title('Correlation Matrix', fontsize=13, fontweight='bold')

    if target in corr_matrix.columns:
        with_target = corr_matrix[target].drop(target).sort_values()
        colors = ['#d62728' if value < 0 else '#1f77b4' for value in with_target]
        ax_target.barh(with_target.index, with_target.values, color=colors)
        ax_target.axvline(0, color='black', linewidth=0.8)
        ax_target.set_xlim(-1, 1)
        ax_target.set_title(f'Correlation with {target}', fontsize=13, fontweight='bold')
    else:
        ax_target.set_axis_off()

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for the given columns.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot (default: target and numeric features present)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = [col for col in [TARGET_COLUMN] + NUMERIC_FEATURES if col in df.columns]

    n_cols = len(columns)
    n_rows = (n_cols + 1) // 2

    fig, axes = plt.subplots(n_rows, 2, figsize=figsize)
    axes = np.atleast_1d(axes).flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]

        sns.histplot(df[col], kde=True, ax=ax, bins=50, alpha=0.7)

        mean_val = df[col].mean()
        median_val = df[col].median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        # Normality test needs at least 8 observations
        if df[col].count() >= 8:
            _, p_value = stats.normaltest(df[col].dropna())
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            ax.set_title(f'{col} ({normality}, p={p_value:.3f})', fontsize=10, fontweight='bold')
        else:
            ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_box_plots(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create one box plot per column for outlier detection.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot (default: target and numeric features present)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = [col for col in [TARGET_COLUMN] + NUMERIC_FEATURES if col in df.columns]

    fig, axes = plt.subplots(1, len(columns), figsize=figsize)
    axes = np.atleast_1d(axes)

    for ax, col in zip(axes, columns):
        sns.boxplot(y=df[col], ax=ax, color='steelblue')
        ax.set_title(col, fontsize=10, fontweight='bold')
        ax.set_ylabel('')

    plt.suptitle('Box Plots - Outlier Detection', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Box plots saved to {save_path}")

    return fig


def plot_group_totals(
    summary: pd.DataFrame,
    title: str,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Bar chart of total sales per group, with the mean as an overlay line."""
    fig, ax = plt.subplots(figsize=figsize)

    labels = [str(idx) for idx in summary.index]
    x = np.arange(len(labels))

    ax.bar(x, summary['sum'], color='steelblue', alpha=0.8)
    ax.axhline(summary['sum'].mean(), color='red', linestyle='--',
               label=f"Mean: {summary['sum'].mean():,.0f}")
    ax.set_xticks(x)
    ax.set_xticklabels(labels, rotation=90 if len(labels) > 15 else 0)
    ax.set_ylabel('Total Sales')
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend()

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Group totals plot saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    target: str = TARGET_COLUMN,
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with grouped summaries and figures.

    Args:
        df: DataFrame to analyze
        output_dir: Directory to save figures
        target: Column summarized per group
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing summaries, correlation matrix and file names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "summaries": {},
        "correlation_matrix": None
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS (Phase 1)")
    logger.info("=" * 60)

    logger.info("Computing grouped summaries...")
    for key in [STORE_COLUMN, "Year", "Month", HOLIDAY_COLUMN]:
        if key in df.columns:
            report["summaries"][key] = summarize_by_group(df, key, target)

    if HOLIDAY_COLUMN in df.columns:
        report["holiday_uplift"] = holiday_uplift(df, target)

    if STORE_COLUMN in report["summaries"]:
        logger.info("Plotting total sales per store...")
        plot_group_totals(
            report["summaries"][STORE_COLUMN],
            title='Total Sales by Store',
            save_path=str(output_dir / "01_sales_by_store.png")
        )
        report["figures"].append("01_sales_by_store.png")

    if "Month" in report["summaries"]:
        logger.info("Plotting total sales per month...")
        plot_group_totals(
            report["summaries"]["Month"],
            title='Total Sales by Month',
            save_path=str(output_dir / "02_sales_by_month.png")
        )
        report["figures"].append("02_sales_by_month.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df,
        target=target,
        save_path=str(output_dir / "03_correlation_matrix.png")
    )
    report["figures"].append("03_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    logger.info("Plotting distributions...")
    plot_distributions(
        df,
        save_path=str(output_dir / "04_distributions.png")
    )
    report["figures"].append("04_distributions.png")

    logger.info("Creating box plots for outlier detection...")
    plot_box_plots(
        df,
        save_path=str(output_dir / "05_box_plots.png")
    )
    report["figures"].append("05_box_plots.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_group_summary(summary: pd.DataFrame, title: str, n: int = 10) -> None:
    """
    Print the top groups of a grouped summary.

    Args:
        summary: Output of summarize_by_group
        title: Heading for the table
        n: Number of rows to show, ordered by total
    """
    print("\n" + "=" * 60)
    print(title.upper())
    print("=" * 60)
    print(f"{'Group':<12} {'Mean':>16} {'Std':>16} {'Sum':>18}")
    print("-" * 60)

    for key, row in top_groups(summary, n).iterrows():
        print(f"{str(key):<12} {row['mean']:>16,.2f} {row['std']:>16,.2f} {row['sum']:>18,.2f}")

    if len(summary) > n:
        print(f"... {len(summary) - n} more groups")
    print("=" * 60 + "\n")


def print_correlation_insights(
    corr_matrix: pd.DataFrame,
    target: str = TARGET_COLUMN,
    threshold: float = 0.5
) -> None:
    """
    Print correlations with the target and any strongly correlated feature pairs.

    Args:
        corr_matrix: Correlation matrix DataFrame
        target: Column whose correlations are listed first
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    if target in corr_matrix.columns:
        print(f"\nCorrelation with {target}:")
        target_corr = corr_matrix[target].drop(target).sort_values(key=np.abs, ascending=False)
        for col, value in target_corr.items():
            print(f"  • {col}: {value:.3f}")

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": corr_val
                })

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in sorted(strong_corr, key=lambda x: abs(x["correlation"]), reverse=True):
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    print("=" * 50 + "\n")
