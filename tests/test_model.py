"""
Test Suite for Model Module
============================

Tests for early stopping, the random forest and the XGBoost model.
"""

import warnings

import pytest
import numpy as np
import pandas as pd

from sales_report.model import (
    EarlyStoppingMonitor, SalesForestModel, SalesBoostingModel,
    train_forest, train_boosting, DEFAULT_FEATURES
)
from sales_report.exceptions import ConvergenceWarning


def _noise_data(n_rows: int, seed: int):
    rng = np.random.default_rng(seed)
    X = pd.DataFrame(rng.normal(size=(n_rows, 5)), columns=[f"f{i}" for i in range(5)])
    y = pd.Series(rng.normal(size=n_rows))
    return X, y


def _signal_data(n_rows: int, seed: int):
    rng = np.random.default_rng(seed)
    X = pd.DataFrame(rng.uniform(-1, 1, size=(n_rows, 3)), columns=['a', 'b', 'c'])
    y = 3 * X['a'] - 2 * X['b'] + rng.normal(0, 0.05, size=n_rows)
    return X, y


class TestEarlyStoppingMonitor:
    """Tests for EarlyStoppingMonitor."""

    def test_stops_at_best_plus_patience(self):
        """Test training halts at best_round + patience and keeps best_round."""
        monitor = EarlyStoppingMonitor(patience=3)
        losses = [5.0, 4.0, 3.0, 3.5, 3.6, 3.7, 1.0]

        decisions = []
        for loss in losses:
            decisions.append(monitor.update(loss))
            if decisions[-1]:
                break

        assert decisions == [False, False, False, False, False, True]
        assert monitor.best_round == 2
        assert monitor.best_score == 3.0
        assert monitor.stopped_round == monitor.best_round + 3

    def test_improvement_resets_patience(self):
        monitor = EarlyStoppingMonitor(patience=2)

        assert [monitor.update(x) for x in [3.0, 3.1, 2.0, 2.5]] == [False] * 4
        assert monitor.update(2.2) is True
        assert monitor.best_round == 2
        assert monitor.stopped_round == 4

    def test_equal_loss_is_not_improvement(self):
        monitor = EarlyStoppingMonitor(patience=1)
        monitor.update(1.0)
        assert monitor.update(1.0) is True
        assert monitor.best_round == 0

    def test_min_delta(self):
        monitor = EarlyStoppingMonitor(patience=2, min_delta=0.5)
        monitor.update(10.0)
        monitor.update(9.8)
        assert monitor.update(9.7) is True
        assert monitor.best_round == 0

    def test_no_patience_never_stops(self):
        monitor = EarlyStoppingMonitor(patience=None)
        assert not any(monitor.update(float(i)) for i in range(50))
        assert monitor.best_round == 0
        assert not monitor.stopped

    def test_invalid_patience(self):
        with pytest.raises(ValueError):
            EarlyStoppingMonitor(patience=0)


class TestSalesForestModel:
    """Tests for SalesForestModel."""

    def test_fit_predict(self):
        X, y = _signal_data(400, seed=1)
        model = SalesForestModel(n_estimators=50, random_state=0).fit(X, y)

        predictions = model.predict(X)

        assert predictions.shape == (400,)
        assert np.corrcoef(predictions, y)[0, 1] > 0.95
        assert len(model.model.estimators_) == 50

    def test_predict_before_fit(self):
        X, _ = _signal_data(10, seed=1)
        with pytest.raises(ValueError, match="must be trained"):
            SalesForestModel().predict(X)

    def test_missing_feature(self):
        X, y = _signal_data(50, seed=1)
        model = SalesForestModel(n_estimators=5).fit(X, y)

        with pytest.raises(ValueError, match="Missing feature"):
            model.predict(X.drop(columns=['c']))

    def test_feature_importances(self):
        """Test importances sum to 1 and rank the informative feature first."""
        X, y = _signal_data(400, seed=2)
        model = SalesForestModel(n_estimators=50, random_state=0).fit(X, y)

        importances = model.get_feature_importances()

        assert importances.sum() == pytest.approx(1.0)
        assert importances.index[0] == 'a'
        assert importances['c'] < importances['b']

    def test_deterministic(self):
        X, y = _signal_data(200, seed=3)
        a = SalesForestModel(n_estimators=20, max_features='sqrt', random_state=7).fit(X, y)
        b = SalesForestModel(n_estimators=20, max_features='sqrt', random_state=7).fit(X, y)

        np.testing.assert_array_equal(a.predict(X), b.predict(X))

    def test_save_load(self, tmp_path):
        X, y = _signal_data(100, seed=4)
        model = SalesForestModel(n_estimators=10, random_state=0).fit(X, y)

        path = tmp_path / "models" / "forest.joblib"
        model.save(str(path))
        loaded = SalesForestModel.load(str(path))

        np.testing.assert_array_equal(loaded.predict(X), model.predict(X))
        assert loaded.n_estimators == 10

    def test_train_forest_reads_config(self, sales_data):
        config = {'forest': {'n_estimators': 15, 'max_features': 0.5, 'random_state': 1}}

        model = train_forest(sales_data[DEFAULT_FEATURES], sales_data['Weekly_Sales'], config)

        assert model.n_estimators == 15
        assert model.max_features == 0.5
        assert model.training_info['n_samples'] == len(sales_data)


class TestSalesBoostingModel:
    """Tests for SalesBoostingModel."""

    def test_early_stopping_keeps_best_round(self):
        """Test training stops at best + patience and keeps the best booster."""
        X_train, y_train = _noise_data(300, seed=10)
        X_val, y_val = _noise_data(100, seed=11)
        model = SalesBoostingModel(
            n_estimators=500, learning_rate=0.3, max_depth=6,
            subsample=1.0, colsample_bytree=1.0, early_stopping_rounds=5
        )

        with pytest.warns(ConvergenceWarning):
            model.fit(X_train, y_train, X_val, y_val)

        best = model.best_iteration_
        history = model.validation_history_

        assert model.stopped_iteration_ == best + 5
        assert len(history) == best + 5 + 1
        assert history[best] == min(history)
        assert model.model.get_booster().num_boosted_rounds() == best + 1

        rmse = np.sqrt(np.mean((model.predict(X_val) - y_val.values) ** 2))
        assert rmse == pytest.approx(history[best], rel=1e-3)

    def test_runs_to_cap_without_stalling(self):
        """Test no warning when the validation loss keeps improving."""
        X_train, y_train = _signal_data(500, seed=20)
        X_val, y_val = _signal_data(200, seed=21)
        model = SalesBoostingModel(n_estimators=20, learning_rate=0.1, early_stopping_rounds=50)

        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            model.fit(X_train, y_train, X_val, y_val)

        assert model.stopped_iteration_ is None
        assert len(model.validation_history_) == 20
        assert model.model.get_booster().num_boosted_rounds() == model.best_iteration_ + 1
        assert model.training_info['stopped_early'] is False

    def test_predict_before_fit(self):
        X, _ = _signal_data(10, seed=1)
        with pytest.raises(ValueError, match="must be trained"):
            SalesBoostingModel().predict(X)

    def test_requires_validation_rows(self):
        X, y = _signal_data(50, seed=1)
        with pytest.raises(ValueError, match="validation"):
            SalesBoostingModel().fit(X, y, X.iloc[:0], y.iloc[:0])

    def test_feature_importances(self):
        X_train, y_train = _signal_data(500, seed=30)
        X_val, y_val = _signal_data(200, seed=31)
        model = SalesBoostingModel(n_estimators=50, early_stopping_rounds=None).fit(X_train, y_train, X_val, y_val)

        importances = model.get_feature_importances()

        assert importances.sum() == pytest.approx(1.0)
        assert set(importances.index) == {'a', 'b', 'c'}
        assert importances.index[-1] == 'c'

    def test_save_load(self, tmp_path):
        X_train, y_train = _signal_data(200, seed=40)
        X_val, y_val = _signal_data(100, seed=41)
        model = SalesBoostingModel(n_estimators=30, early_stopping_rounds=None).fit(X_train, y_train, X_val, y_val)

        path = tmp_path / "boosting.joblib"
        model.save(str(path))
        loaded = SalesBoostingModel.load(str(path))

        np.testing.assert_allclose(loaded.predict(X_val), model.predict(X_val))
        assert loaded.best_iteration_ == model.best_iteration_
        assert loaded.validation_history_ == model.validation_history_

    def test_train_boosting_reads_config(self, sales_data):
        features = DEFAULT_FEATURES
        train, val = sales_data.iloc[:700], sales_data.iloc[700:]
        config = {'boosting': {'n_estimators': 40, 'learning_rate': 0.2, 'early_stopping_rounds': 10}}

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            model = train_boosting(
                train[features], train['Weekly_Sales'],
                val[features], val['Weekly_Sales'], config
            )

        assert model.n_estimators == 40
        assert model.learning_rate == 0.2
        assert len(model.validation_history_) <= 40

    def test_save_load_keeps_stopping_round(self, tmp_path):
        X_train, y_train = _noise_data(300, seed=10)
        X_val, y_val = _noise_data(100, seed=11)
        model = SalesBoostingModel(n_estimators=500, learning_rate=0.3, early_stopping_rounds=5)
        with pytest.warns(ConvergenceWarning):
            model.fit(X_train, y_train, X_val, y_val)

        path = tmp_path / "boosting.joblib"
        model.save(str(path))
        loaded = SalesBoostingModel.load(str(path))

        assert loaded.stopped_iteration_ is not None
        assert loaded.stopped_iteration_ == model.stopped_iteration_
        assert loaded.best_iteration_ == model.best_iteration_
