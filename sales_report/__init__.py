"""
Retail Sales Regression Report
===============================

An analytical pipeline that predicts weekly store sales with tree ensembles.

Modules:
    - data_loader: CSV ingestion, schema validation and date parsing
    - eda: Grouped summaries and exploratory plots (Phase 1)
    - preprocessing: Deduplication, outlier removal and rescaling (Phase 2)
    - partitioning: Train/validation/test splits (Phase 2)
    - model: Random forest and XGBoost regressors (Phase 3)
    - evaluation: R², MAE, MAPE and comparison plots (Phase 4)
"""

__version__ = "1.0.0"
__author__ = "Sales Analytics Team"
