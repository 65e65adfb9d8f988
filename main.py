#!/usr/bin/env python3
"""
Retail Sales Regression Report - Main Pipeline
===============================================

Orchestrates the sales analysis from raw CSV to model comparison.

Phases:
    1. EDA - Grouped summaries and exploratory plots
    2. Cleaning - Deduplication, outlier removal, rescaling, partitioning
    3. Training - RandomForestRegressor and XGBRegressor
    4. Evaluation - R², MAE, MAPE per partition and model comparison

The forest and boosting pipelines each clean and partition the data with
their own settings (rescaling strategy, stratification), configured in
the 'forest' and 'boosting' sections of the config file.

Usage:
    # Run complete pipeline
    python main.py --data data/raw/sales.csv

    # Run specific phase
    python main.py --data data/raw/sales.csv --phase eda

    # Run with custom config
    python main.py --data data/raw/sales.csv --config config/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

from sales_report.data_loader import (
    load_config, load_data, validate_data, print_data_summary,
    DEFAULT_DATE_FORMAT, TARGET_COLUMN, STORE_COLUMN
)
from sales_report.eda import generate_eda_report, print_group_summary, print_correlation_insights
from sales_report.preprocessing import clean_pipeline, print_cleaning_summary
from sales_report.partitioning import split_dataset, print_partition_summary
from sales_report.model import train_forest, train_boosting, print_model_summary, DEFAULT_FEATURES
from sales_report.evaluation import (
    evaluate_model, print_evaluation_report, compare_models, plot_model_comparison
)

PIPELINES = ('forest', 'boosting')


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def _output_dir(config: Dict[str, Any]) -> str:
    return config.get('output', {}).get('reports_path', 'reports/')


def _features(config: Dict[str, Any]) -> list:
    return config.get('data', {}).get('features', DEFAULT_FEATURES)


def _target(config: Dict[str, Any]) -> str:
    return config.get('data', {}).get('target', TARGET_COLUMN)


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        df: Loaded data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = str(Path(_output_dir(config)) / "figures" / "eda")

    report = generate_eda_report(df, output_dir=output_dir, target=_target(config))

    for key, summary in report['summaries'].items():
        print_group_summary(summary, f"{_target(config)} by {key}")

    if 'holiday_uplift' in report:
        uplift = report['holiday_uplift']
        print(f"Holiday weeks average {uplift['holiday_mean']:,.2f} vs "
              f"{uplift['regular_mean']:,.2f} ({uplift['uplift_pct']:+.2f}%)")

    print_correlation_insights(pd.DataFrame(report["correlation_matrix"]), target=_target(config))

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_cleaning(
    df: pd.DataFrame,
    config: Dict[str, Any],
    pipeline: str
) -> Dict[str, Any]:
    """
    Execute Phase 2 for one model pipeline: clean, rescale and partition.

    Args:
        df: Loaded data
        config: Configuration dictionary
        pipeline: 'forest' or 'boosting'

    Returns:
        Cleaning result dictionary with an added 'partitions' entry
    """
    print("\n" + "=" * 70)
    print(f"PHASE 2: DATA CLEANING ({pipeline})")
    print("=" * 70)

    cleaning_config = config.get('cleaning', {})
    pipeline_config = config.get(pipeline, {})
    split_config = config.get('partitioning', {})
    target = _target(config)

    result = clean_pipeline(
        df,
        target=target,
        scaling=pipeline_config.get('scaling', 'standard' if pipeline == 'forest' else 'minmax'),
        scale_columns=pipeline_config.get('scale_columns'),
        outlier_quantile=cleaning_config.get('outlier_quantile', 0.99)
    )
    print_cleaning_summary(result)

    stratify = pipeline_config.get('stratify', pipeline == 'boosting')
    result['partitions'] = split_dataset(
        result['data'],
        ratios=split_config.get('ratios', [0.6, 0.2, 0.2]),
        seed=split_config.get('seed', 42),
        stratify_column=target if stratify else None,
        n_bins=split_config.get('n_bins', 10)
    )
    print_partition_summary(result['partitions'], target)

    return result


def run_training(
    prep_result: Dict[str, Any],
    config: Dict[str, Any],
    pipeline: str
):
    """
    Execute Phase 3: Model Training.

    Args:
        prep_result: Result of run_cleaning for the same pipeline
        config: Configuration dictionary
        pipeline: 'forest' or 'boosting'

    Returns:
        Trained model
    """
    print("\n" + "=" * 70)
    print(f"PHASE 3: MODEL TRAINING ({pipeline})")
    print("=" * 70)

    features = _features(config)
    target = _target(config)
    partitions = prep_result['partitions']
    train, validation = partitions['train'], partitions['validation']

    models_path = Path(config.get('output', {}).get('models_path', 'models/'))
    save_path = str(models_path / f"{pipeline}.joblib") if config.get('output', {}).get('save_models') else None

    if pipeline == 'forest':
        model = train_forest(train[features], train[target], config, save_path=save_path)
    else:
        model = train_boosting(
            train[features], train[target],
            validation[features], validation[target],
            config, save_path=save_path
        )

    print_model_summary(model)

    return model


def run_evaluation(
    model,
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Evaluation.

    Args:
        model: Trained model
        prep_result: Result of run_cleaning for the model's pipeline
        config: Configuration dictionary

    Returns:
        Metric report
    """
    print("\n" + "=" * 70)
    print(f"PHASE 4: MODEL EVALUATION ({model.model_type})")
    print("=" * 70)

    report = evaluate_model(
        model,
        prep_result['partitions'],
        features=_features(config),
        target=_target(config),
        scaler=prep_result['scaler'],
        output_dir=_output_dir(config)
    )

    print_evaluation_report(report)

    return report


def run_model_pipeline(df: pd.DataFrame, config: Dict[str, Any], pipeline: str) -> Dict[str, Any]:
    """Clean, train and evaluate one model pipeline."""
    prep_result = run_cleaning(df, config, pipeline)
    model = run_training(prep_result, config, pipeline)
    report = run_evaluation(model, prep_result, config)
    return {'preprocessing': prep_result, 'model': model, 'evaluation': report}


def run_comparison(reports: list, config: Dict[str, Any]) -> pd.DataFrame:
    """Tabulate and plot test metrics of every evaluated model."""
    comparison = compare_models(reports, partition='test')
    if comparison.empty:
        return comparison

    figures_dir = Path(_output_dir(config)) / "figures"
    figures_dir.mkdir(parents=True, exist_ok=True)
    plot_model_comparison(comparison, save_path=str(figures_dir / "model_comparison.png"))

    print("\n" + "=" * 70)
    print("MODEL COMPARISON (test partition)")
    print("=" * 70)
    print(comparison.round(4).to_string())
    print("=" * 70 + "\n")

    return comparison


def _load(data_path: str, config: Dict[str, Any]) -> pd.DataFrame:
    data_config = config.get('data', {})
    df = load_data(data_path, date_format=data_config.get('date_format', DEFAULT_DATE_FORMAT))
    print_data_summary(df)

    is_valid, _ = validate_data(df, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    return df


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute every phase for both model pipelines.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    config = load_config(config_path)
    log_config = config.get('logging', {})
    setup_logging(log_level or log_config.get('level', 'INFO'), log_config.get('file'))

    print("\n" + "=" * 70)
    print("RETAIL SALES REGRESSION REPORT")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print("\n📊 Loading data...")
    df = _load(data_path, config)

    results = {
        'config': config,
        'data_shape': df.shape
    }

    results['eda'] = run_eda(df, config)

    for pipeline in PIPELINES:
        results[pipeline] = run_model_pipeline(df, config, pipeline)

    results['comparison'] = run_comparison(
        [results[pipeline]['evaluation'] for pipeline in PIPELINES], config
    )

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Stores: {df[STORE_COLUMN].nunique()}")
    for pipeline in PIPELINES:
        test_metrics = results[pipeline]['evaluation']['per_partition'].get('test')
        if test_metrics:
            print(f"  • {pipeline} test R²: {test_metrics['r2']:.4f}, MAPE: {test_metrics['mape']:.2f}%")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute a single phase of the pipeline.

    Args:
        phase: Phase to run ('eda', 'clean', 'forest', 'boosting')
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Phase result dictionary
    """
    config = load_config(config_path)
    log_config = config.get('logging', {})
    setup_logging(log_level or log_config.get('level', 'INFO'), log_config.get('file'))

    df = _load(data_path, config)

    if phase == 'eda':
        return run_eda(df, config)

    elif phase == 'clean':
        return {pipeline: run_cleaning(df, config, pipeline) for pipeline in PIPELINES}

    elif phase in PIPELINES:
        return run_model_pipeline(df, config, phase)

    else:
        raise ValueError(f"Unknown phase: {phase}. Choose from: eda, clean, forest, boosting")


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Weekly store sales analysis with random forest and XGBoost regressors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/sales.csv
  python main.py --data data/raw/sales.csv --phase eda
  python main.py --data data/raw/sales.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['eda', 'clean', 'forest', 'boosting', 'all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected format: CSV with columns Store, Date, Weekly_Sales, Holiday_Flag,")
        print("Temperature, Fuel_Price, CPI, Unemployment")
        return 1

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.data, args.config, log_level)
        else:
            run_single_phase(args.phase, args.data, args.config, log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
