"""
Model Training Module - Phase 3
================================

Two regressors for weekly sales:

    - SalesForestModel: RandomForestRegressor with a fixed number of trees
    - SalesBoostingModel: XGBRegressor monitored on a validation partition,
      stopped early when the validation loss stops improving

Features:
    - Hyperparameter configuration via config file
    - Per-feature importance scores
    - Model persistence (save/load)
    - Training progress logging
"""

import logging
import warnings
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
import xgboost as xgb
from sklearn.ensemble import RandomForestRegressor

from .exceptions import ConvergenceWarning

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = [
    "Store", "Holiday_Flag", "Temperature", "Fuel_Price",
    "CPI", "Unemployment", "Year", "Month"
]


class EarlyStoppingMonitor:
    """
    Tracks a validation loss sequence and decides when to stop.

    Rounds are counted from 0 in the order losses are reported. Training
    stops at round ``best_round + patience`` when none of the `patience`
    rounds after the best one improved on it by more than `min_delta`.
    """

    def __init__(self, patience: Optional[int] = 10, min_delta: float = 0.0):
        if patience is not None and patience < 1:
            raise ValueError(f"patience must be >= 1, got {patience}")

        self.patience = patience
        self.min_delta = min_delta

        self.history: List[float] = []
        self.best_score: Optional[float] = None
        self.best_round: Optional[int] = None
        self.stopped_round: Optional[int] = None

    def update(self, loss: float) -> bool:
        """Record the loss of the next round; return True to stop training."""
        current_round = len(self.history)
        self.history.append(float(loss))

        if self.best_score is None or loss < self.best_score - self.min_delta:
            self.best_score = float(loss)
            self.best_round = current_round
            return False

        if self.patience is not None and current_round - self.best_round >= self.patience:
            self.stopped_round = current_round
            return True

        return False

    @property
    def stopped(self) -> bool:
        return self.stopped_round is not None


class EarlyStoppingCallback(xgb.callback.TrainingCallback):
    """
    Runs an EarlyStoppingMonitor inside XGBoost training.

    Reads the last metric of the last evaluation set every round. When
    training ends the booster is truncated to the best round, and the
    best/stopped rounds are written to the booster attributes.
    """

    def __init__(self, monitor: EarlyStoppingMonitor):
        super().__init__()
        self.monitor = monitor

    def after_iteration(self, model, epoch, evals_log) -> bool:
        if not evals_log:
            raise ValueError("Early stopping needs at least one evaluation set")

        data_name = list(evals_log.keys())[-1]
        metric_name = list(evals_log[data_name].keys())[-1]
        score = evals_log[data_name][metric_name][-1]

        return self.monitor.update(score)

    def after_training(self, model):
        best_round = self.monitor.best_round
        if best_round is None:
            return model

        model = model[: best_round + 1]
        attrs = {
            'best_iteration': str(best_round),
            'best_score': str(self.monitor.best_score),
        }
        if self.monitor.stopped:
            attrs['stopped_iteration'] = str(self.monitor.stopped_round)
        model.set_attr(**attrs)
        return model


class _SalesModel:
    """Shared fit bookkeeping, prediction, importances and persistence."""

    model_type = "base"

    def __init__(self):
        self.model = None
        self.feature_names_: Optional[List[str]] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def get_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _check_features(self, X: pd.DataFrame) -> pd.DataFrame:
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

        missing = [col for col in self.feature_names_ if col not in X.columns]
        if missing:
            raise ValueError(f"Missing feature columns: {missing}")

        return X[self.feature_names_]

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """
        Make predictions using the trained model.

        Args:
            X: DataFrame holding at least the training feature columns

        Returns:
            1D array of predictions
        """
        X = self._check_features(X)
        return np.asarray(self.model.predict(X), dtype=float)

    def get_feature_importances(self) -> pd.Series:
        """
        Relative contribution of each feature, largest first.

        Returns:
            Series indexed by feature name, summing to 1
        """
        if not self._is_fitted:
            raise ValueError("Model must be trained first.")

        importances = pd.Series(self.model.feature_importances_, index=self.feature_names_, dtype=float)
        total = importances.sum()
        if total > 0:
            importances = importances / total
        return importances.sort_values(ascending=False)

    def _record_training(self, X: pd.DataFrame, start_time: datetime) -> None:
        end_time = datetime.now()
        training_duration = (end_time - start_time).total_seconds()

        self.training_info.update({
            'training_duration_seconds': training_duration,
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'trained_at': end_time.isoformat(),
            'hyperparameters': self.get_params()
        })
        self._is_fitted = True

        logger.info("=" * 60)
        logger.info(f"{self.model_type.upper()} TRAINING COMPLETE in {training_duration:.2f} seconds")
        logger.info("=" * 60)

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        state = {
            'model': self.model,
            'hyperparameters': self.get_params(),
            'feature_names_': self.feature_names_,
            'training_info': self.training_info,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str):
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded model instance
        """
        state = joblib.load(filepath)

        model = cls(**state['hyperparameters'])
        model.model = state['model']
        model.feature_names_ = state['feature_names_']
        model.training_info = state['training_info']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


class SalesForestModel(_SalesModel):
    """
    Bagged decision trees (RandomForestRegressor).

    Trains a fixed number of trees; there is no early stopping.
    """

    model_type = "random_forest"

    def __init__(
        self,
        n_estimators: int = 100,
        max_features: Union[int, float, str, None] = 1.0,
        max_depth: Optional[int] = None,
        min_samples_leaf: int = 1,
        random_state: int = 42,
        n_jobs: int = -1
    ):
        """
        Initialize the model with hyperparameters.

        Args:
            n_estimators: Number of trees
            max_features: Features considered per split (int, fraction, 'sqrt', 'log2' or None)
            max_depth: Maximum depth of each tree (None for unlimited)
            min_samples_leaf: Minimum samples required in a leaf
            random_state: Random seed for reproducibility
            n_jobs: Number of parallel jobs (-1 for all cores)
        """
        super().__init__()
        self.n_estimators = n_estimators
        self.max_features = max_features
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state
        self.n_jobs = n_jobs

    def get_params(self) -> Dict[str, Any]:
        return {
            'n_estimators': self.n_estimators,
            'max_features': self.max_features,
            'max_depth': self.max_depth,
            'min_samples_leaf': self.min_samples_leaf,
            'random_state': self.random_state,
            'n_jobs': self.n_jobs
        }

    def fit(self, X: pd.DataFrame, y: pd.Series) -> 'SalesForestModel':
        """
        Train the forest.

        Args:
            X: Feature DataFrame
            y: Target values

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        logger.info("=" * 60)
        logger.info("STARTING RANDOM FOREST TRAINING (Phase 3)")
        logger.info("=" * 60)
        logger.info(f"Training data shape: X={X.shape}")
        logger.info(f"Hyperparameters: {self.get_params()}")

        self.feature_names_ = list(X.columns)
        self.model = RandomForestRegressor(**self.get_params())
        self.model.fit(X, np.asarray(y, dtype=float))

        self._record_training(X, start_time)
        return self


class SalesBoostingModel(_SalesModel):
    """
    Gradient-boosted trees (XGBRegressor) with early stopping.

    Every boosting round is scored on the validation partition. Training
    stops once `early_stopping_rounds` rounds pass without improvement, and
    the kept booster ends at the best round rather than the last one.
    """

    model_type = "xgboost"

    def __init__(
        self,
        n_estimators: int = 1000,
        learning_rate: float = 0.1,
        max_depth: int = 6,
        subsample: float = 0.8,
        colsample_bytree: float = 0.8,
        early_stopping_rounds: Optional[int] = 20,
        min_delta: float = 0.0,
        random_state: int = 42,
        n_jobs: int = -1
    ):
        """
        Initialize the model with hyperparameters.

        Args:
            n_estimators: Maximum number of boosting rounds
            learning_rate: Shrinkage applied to each tree
            max_depth: Maximum depth of each tree
            subsample: Fraction of rows sampled per tree
            colsample_bytree: Fraction of columns sampled per tree
            early_stopping_rounds: Rounds without improvement before stopping (None disables)
            min_delta: Minimum loss decrease counted as an improvement
            random_state: Random seed for reproducibility
            n_jobs: Number of parallel jobs (-1 for all cores)
        """
        super().__init__()
        self.n_estimators = n_estimators
        self.learning_rate = learning_rate
        self.max_depth = max_depth
        self.subsample = subsample
        self.colsample_bytree = colsample_bytree
        self.early_stopping_rounds = early_stopping_rounds
        self.min_delta = min_delta
        self.random_state = random_state
        self.n_jobs = n_jobs

        self.best_iteration_: Optional[int] = None
        self.stopped_iteration_: Optional[int] = None
        self.validation_history_: List[float] = []

    def get_params(self) -> Dict[str, Any]:
        return {
            'n_estimators': self.n_estimators,
            'learning_rate': self.learning_rate,
            'max_depth': self.max_depth,
            'subsample': self.subsample,
            'colsample_bytree': self.colsample_bytree,
            'early_stopping_rounds': self.early_stopping_rounds,
            'min_delta': self.min_delta,
            'random_state': self.random_state,
            'n_jobs': self.n_jobs
        }

    def _create_estimator(self, monitor: EarlyStoppingMonitor) -> xgb.XGBRegressor:
        return xgb.XGBRegressor(
            n_estimators=self.n_estimators,
            learning_rate=self.learning_rate,
            max_depth=self.max_depth,
            subsample=self.subsample,
            colsample_bytree=self.colsample_bytree,
            objective="reg:squarederror",
            eval_metric="rmse",
            tree_method="hist",
            random_state=self.random_state,
            n_jobs=self.n_jobs,
            callbacks=[EarlyStoppingCallback(monitor)],
            verbosity=0
        )

    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series,
        X_val: pd.DataFrame,
        y_val: pd.Series
    ) -> 'SalesBoostingModel':
        """
        Train with the validation partition monitoring every round.

        Args:
            X_train: Training features
            y_train: Training targets
            X_val: Validation features (same columns as X_train)
            y_val: Validation targets

        Returns:
            Self for method chaining
        """
        if len(X_val) == 0:
            raise ValueError("Boosted model needs a non-empty validation partition")

        start_time = datetime.now()

        logger.info("=" * 60)
        logger.info("STARTING XGBOOST TRAINING (Phase 3)")
        logger.info("=" * 60)
        logger.info(f"Training data shape: X={X_train.shape}, validation rows={len(X_val)}")
        logger.info(f"Hyperparameters: {self.get_params()}")

        self.feature_names_ = list(X_train.columns)
        monitor = EarlyStoppingMonitor(self.early_stopping_rounds, self.min_delta)
        self.model = self._create_estimator(monitor)
        self.model.fit(
            X_train,
            np.asarray(y_train, dtype=float),
            eval_set=[(X_val[self.feature_names_], np.asarray(y_val, dtype=float))],
            verbose=False
        )

        booster = self.model.get_booster()
        self.best_iteration_ = int(booster.attr('best_iteration'))
        stopped = booster.attr('stopped_iteration')
        self.stopped_iteration_ = int(stopped) if stopped is not None else None
        self.validation_history_ = list(self.model.evals_result()['validation_0']['rmse'])

        self.training_info.update({
            'best_iteration': self.best_iteration_,
            'stopped_iteration': self.stopped_iteration_,
            'best_validation_rmse': float(self.validation_history_[self.best_iteration_]),
            'rounds_trained': len(self.validation_history_),
            'stopped_early': self.stopped_iteration_ is not None
        })
        logger.info(
            f"Best round: {self.best_iteration_} "
            f"(validation RMSE {self.training_info['best_validation_rmse']:.6f}), "
            f"rounds trained: {len(self.validation_history_)}"
        )

        if self.stopped_iteration_ is not None:
            warnings.warn(
                f"Validation loss did not improve for {self.early_stopping_rounds} rounds; "
                f"stopped at round {self.stopped_iteration_}, keeping round {self.best_iteration_}",
                ConvergenceWarning
            )

        self._record_training(X_train, start_time)
        return self

    def save(self, filepath: str) -> None:
        self.training_info['validation_history'] = self.validation_history_
        super().save(filepath)

    @classmethod
    def load(cls, filepath: str) -> 'SalesBoostingModel':
        model = super().load(filepath)
        model.best_iteration_ = model.training_info.get('best_iteration')
        model.stopped_iteration_ = model.training_info.get('stopped_iteration')
        model.validation_history_ = model.training_info.get('validation_history', [])
        return model


def train_forest(
    X_train: pd.DataFrame,
    y_train: pd.Series,
    config: Dict[str, Any],
    save_path: Optional[str] = None
) -> SalesForestModel:
    """
    Train a random forest using configuration parameters.

    Args:
        X_train: Training features
        y_train: Training targets
        config: Full configuration dictionary (reads the 'forest' section)
        save_path: Path to save the trained model (optional)

    Returns:
        Trained SalesForestModel
    """
    model_config = config.get('forest', {})

    model = SalesForestModel(
        n_estimators=model_config.get('n_estimators', 100),
        max_features=model_config.get('max_features', 1.0),
        max_depth=model_config.get('max_depth'),
        min_samples_leaf=model_config.get('min_samples_leaf', 1),
        random_state=model_config.get('random_state', 42),
        n_jobs=model_config.get('n_jobs', -1)
    )

    model.fit(X_train, y_train)

    if save_path:
        model.save(save_path)

    return model


def train_boosting(
    X_train: pd.DataFrame,
    y_train: pd.Series,
    X_val: pd.DataFrame,
    y_val: pd.Series,
    config: Dict[str, Any],
    save_path: Optional[str] = None
) -> SalesBoostingModel:
    """
    Train an XGBoost model using configuration parameters.

    Args:
        X_train: Training features
        y_train: Training targets
        X_val: Validation features for early stopping
        y_val: Validation targets for early stopping
        config: Full configuration dictionary (reads the 'boosting' section)
        save_path: Path to save the trained model (optional)

    Returns:
        Trained SalesBoostingModel
    """
    model_config = config.get('boosting', {})

    model = SalesBoostingModel(
        n_estimators=model_config.get('n_estimators', 1000),
        learning_rate=model_config.get('learning_rate', 0.1),
        max_depth=model_config.get('max_depth', 6),
        subsample=model_config.get('subsample', 0.8),
        colsample_bytree=model_config.get('colsample_bytree', 0.8),
        early_stopping_rounds=model_config.get('early_stopping_rounds', 20),
        min_delta=model_config.get('min_delta', 0.0),
        random_state=model_config.get('random_state', 42),
        n_jobs=model_config.get('n_jobs', -1)
    )

    model.fit(X_train, y_train, X_val, y_val)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: _SalesModel) -> None:
    """
    Print a summary of a trained model.

    Args:
        model: Trained model instance
    """
    print("\n" + "=" * 50)
    print("MODEL SUMMARY")
    print("=" * 50)
    print(f"Model Type: {model.model.__class__.__name__}")
    print(f"Number of input features: {len(model.feature_names_)}")
    print(f"\nHyperparameters:")
    for name, value in model.get_params().items():
        print(f"  - {name}: {value}")

    if model.training_info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")
        if 'best_iteration' in model.training_info:
            print(f"  - Best round: {model.training_info['best_iteration']}")
            print(f"  - Rounds trained: {model.training_info['rounds_trained']}")
            print(f"  - Stopped early: {model.training_info['stopped_early']}")

    print("\nTop features:")
    for name, score in model.get_feature_importances().head(5).items():
        print(f"  - {name}: {score:.4f}")

    print("=" * 50 + "\n")
