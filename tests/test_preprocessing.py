"""
Test Suite for Preprocessing Module
=====================================

Tests for deduplication, outlier removal and the FeatureScaler class.
"""

import pytest
import numpy as np
import pandas as pd
import tempfile
import os

from sales_report.preprocessing import (
    FeatureScaler, drop_duplicates, remove_outliers, clean_pipeline
)

SCALED = ['Temperature', 'Fuel_Price', 'CPI', 'Unemployment']


class TestDropDuplicates:
    """Tests for drop_duplicates."""

    def test_removes_exact_duplicates(self, sales_data):
        """Test appended copies are removed."""
        df = pd.concat([sales_data, sales_data.head(25)], ignore_index=True)

        result = drop_duplicates(df)

        assert len(result) == len(sales_data)
        assert not result.duplicated().any()

    def test_idempotent(self, sales_data):
        """Test running twice gives the same result as once."""
        df = pd.concat([sales_data, sales_data.sample(50, random_state=1)], ignore_index=True)

        once = drop_duplicates(df)
        twice = drop_duplicates(once)

        pd.testing.assert_frame_equal(once, twice)

    def test_near_duplicates_kept(self, sales_data):
        """Test rows differing in one field are kept."""
        near = sales_data.head(1).copy()
        near['Weekly_Sales'] += 0.01
        df = pd.concat([sales_data, near], ignore_index=True)

        assert len(drop_duplicates(df)) == len(df)

    def test_input_unchanged(self, sales_data):
        df = pd.concat([sales_data, sales_data.head(5)], ignore_index=True)
        drop_duplicates(df)
        assert len(df) == len(sales_data) + 5


class TestRemoveOutliers:
    """Tests for remove_outliers."""

    def test_no_row_above_threshold(self, sales_data):
        """Test no remaining target value exceeds the pre-removal 99th percentile."""
        expected_threshold = sales_data['Weekly_Sales'].quantile(0.99)

        cleaned, threshold = remove_outliers(sales_data, 'Weekly_Sales', 0.99)

        assert threshold == pytest.approx(expected_threshold)
        assert (cleaned['Weekly_Sales'] <= threshold).all()
        assert len(cleaned) == (sales_data['Weekly_Sales'] <= expected_threshold).sum()

    def test_drops_top_percent(self, sales_data):
        cleaned, _ = remove_outliers(sales_data)
        assert len(sales_data) - len(cleaned) == 10

    def test_threshold_recomputed(self, sales_data):
        """Test a second pass uses the threshold of the already-filtered data."""
        first, t1 = remove_outliers(sales_data)
        second, t2 = remove_outliers(first)

        assert t2 < t1
        assert len(second) < len(first)

    def test_invalid_quantile(self, sales_data):
        with pytest.raises(ValueError):
            remove_outliers(sales_data, quantile=1.5)


class TestFeatureScaler:
    """Tests for FeatureScaler class."""

    @pytest.fixture(params=['standard', 'minmax'])
    def scaler(self, request):
        return FeatureScaler(strategy=request.param, columns=SCALED)

    def test_init(self):
        """Test scaler initialization."""
        scaler = FeatureScaler(strategy='minmax', columns=SCALED)
        assert scaler.strategy == 'minmax'
        assert scaler.columns == SCALED
        assert scaler._is_fitted == False

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown scaling strategy"):
            FeatureScaler(strategy='robust')

    def test_transform_before_fit(self, scaler, sales_data):
        """Test that transform raises error before fit."""
        with pytest.raises(ValueError, match="must be fitted"):
            scaler.transform(sales_data)

    def test_standard_moments(self, sales_data):
        """Test standard scaling gives mean 0 and std 1."""
        scaled = FeatureScaler('standard', SCALED).fit_transform(sales_data)

        np.testing.assert_allclose(scaled[SCALED].mean().values, 0.0, atol=1e-9)
        np.testing.assert_allclose(scaled[SCALED].std(ddof=0).values, 1.0, atol=1e-9)

    def test_minmax_range(self, sales_data):
        """Test min-max scaling gives range [0, 1]."""
        scaled = FeatureScaler('minmax', SCALED).fit_transform(sales_data)

        np.testing.assert_allclose(scaled[SCALED].min().values, 0.0, atol=1e-12)
        np.testing.assert_allclose(scaled[SCALED].max().values, 1.0, atol=1e-12)

    def test_other_columns_untouched(self, scaler, sales_data):
        scaled = scaler.fit_transform(sales_data)

        pd.testing.assert_series_equal(scaled['Weekly_Sales'], sales_data['Weekly_Sales'])
        assert scaled['Temperature'].iloc[0] != sales_data['Temperature'].iloc[0]

    def test_inverse_transform(self, scaler, sales_data):
        """Test inverse transform recovers original scale."""
        scaled = scaler.fit_transform(sales_data)
        recovered = scaler.inverse_transform(scaled)

        np.testing.assert_array_almost_equal(
            recovered[SCALED].values,
            sales_data[SCALED].values,
            decimal=8
        )

    def test_inverse_transform_column(self, sales_data):
        """Test a single column maps back, as used for predictions."""
        for strategy in ('standard', 'minmax'):
            scaler = FeatureScaler(strategy, ['Weekly_Sales', 'CPI'])
            scaled = scaler.fit_transform(sales_data)

            restored = scaler.inverse_transform_column('Weekly_Sales', scaled['Weekly_Sales'].values)

            np.testing.assert_allclose(restored, sales_data['Weekly_Sales'].values, rtol=1e-10)

    def test_unscaled_column_passthrough(self, scaler, sales_data):
        scaler.fit(sales_data)
        values = np.array([1.0, 2.0])
        np.testing.assert_array_equal(scaler.inverse_transform_column('Weekly_Sales', values), values)

    def test_save_load(self, scaler, sales_data):
        """Test saving and loading the scaler."""
        scaler.fit(sales_data)

        with tempfile.NamedTemporaryFile(suffix='.joblib', delete=False) as f:
            temp_path = f.name

        try:
            scaler.save(temp_path)
            loaded = FeatureScaler.load(temp_path)

            assert loaded.strategy == scaler.strategy
            assert loaded.columns == SCALED
            pd.testing.assert_frame_equal(loaded.transform(sales_data), scaler.transform(sales_data))
        finally:
            os.unlink(temp_path)


class TestCleanPipeline:
    """Tests for the clean_pipeline function."""

    def test_pipeline_returns_expected_keys(self, sales_data):
        result = clean_pipeline(sales_data, scaling='standard', scale_columns=SCALED)

        for key in ['data', 'unscaled', 'scaler', 'outlier_threshold', 'n_duplicates', 'n_outliers']:
            assert key in result, f"Missing key: {key}"

    def test_pipeline_counts(self, sales_data):
        df = pd.concat([sales_data, sales_data.head(20)], ignore_index=True)

        result = clean_pipeline(df, scaling='minmax', scale_columns=SCALED)

        assert result['n_duplicates'] == 20
        assert result['n_outliers'] == 10
        assert len(result['data']) == 990
        assert (result['unscaled']['Weekly_Sales'] <= result['outlier_threshold']).all()

    def test_no_scaling(self, sales_data):
        result = clean_pipeline(sales_data, scaling=None)

        assert result['scaler'] is None
        pd.testing.assert_frame_equal(result['data'], result['unscaled'])
