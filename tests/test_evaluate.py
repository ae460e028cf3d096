"""
Tests for regression metrics, comparison tables and metric records.
"""

import numpy as np
import pandas as pd
import pytest

from bikeshare.evaluate import (
    RECORD_COLUMNS, compare_models, compute_mae, compute_metrics, compute_rmse,
    compute_rsq, load_metric_records, make_metric_record, save_metric_records
)


def test_basic_metrics():
    y_true = np.array([1.0, 2.0, 3.0, 4.0])
    y_pred = np.array([1.0, 2.0, 3.0, 6.0])
    assert compute_mae(y_true, y_pred) == pytest.approx(0.5)
    assert compute_rmse(y_true, y_pred) == pytest.approx(1.0)


def test_rsq_is_squared_correlation():
    y_true = np.array([1.0, 2.0, 3.0, 4.0])
    # Perfectly correlated but biased predictions still give rsq 1
    assert compute_rsq(y_true, 2 * y_true + 10) == pytest.approx(1.0)


def test_rsq_constant_prediction_is_nan():
    assert np.isnan(compute_rsq(np.array([1.0, 2.0, 3.0]), np.array([2.0, 2.0, 2.0])))


def test_compute_metrics_validation():
    with pytest.raises(ValueError):
        compute_metrics(np.ones(3), np.ones(4))
    with pytest.raises(ValueError):
        compute_metrics(np.ones(3), np.ones(3), metrics=['mape'])


def test_compare_models_sorting():
    rows = [
        pd.DataFrame([{'model': 'Cubist', 'mae': 120.0, 'rmse': 190.0, 'rsq': 0.91}]),
        pd.DataFrame([{'model': 'Xgboost', 'mae': 110.0, 'rmse': 175.0, 'rsq': 0.93}]),
    ]
    assert compare_models(rows, sort_by='rmse')['model'].tolist() == ['Xgboost', 'Cubist']
    assert compare_models(rows, sort_by='rsq')['model'].tolist() == ['Xgboost', 'Cubist']


class TestMetricRecords:

    def test_make_record(self):
        record = make_metric_record('tune', 'Fold03', 'xgboost', 'rmse', 181.2, run_id='r1', config='Model07')
        assert record['split'] == 'Fold03'
        assert record['config'] == 'Model07'
        assert record['value'] == pytest.approx(181.2)

    def test_invalid_phase_and_split(self):
        with pytest.raises(ValueError):
            make_metric_record('predict', 'test', 'xgboost', 'rmse', 1.0)
        with pytest.raises(ValueError):
            make_metric_record('tune', 'FoldA', 'xgboost', 'rmse', 1.0)

    def test_inf_becomes_nan(self):
        record = make_metric_record('final', 'all', 'cubist', 'rmse', float('inf'))
        assert np.isnan(record['value'])

    def test_save_and_load(self, tmp_path):
        path = tmp_path / 'metrics.csv'
        records = [
            make_metric_record('last_fit', 'test', 'xgboost', m, v, run_id='r1', extra={'round': 2})
            for m, v in (('mae', 100.0), ('rmse', 150.0))
        ]
        save_metric_records(records, path, append=False)
        save_metric_records(records[:1], path, append=True)

        loaded = load_metric_records(path)
        assert list(loaded.columns) == RECORD_COLUMNS
        assert len(loaded) == 3
        assert loaded['extra'].iloc[0] == {'round': 2}

    def test_load_missing_file(self, tmp_path):
        loaded = load_metric_records(tmp_path / 'missing.csv')
        assert loaded.empty
        assert list(loaded.columns) == RECORD_COLUMNS
