"""
Tests for the train/test split and v-fold resampling.
"""

import numpy as np
import pandas as pd
import pytest

from bikeshare.validation import (
    Fold, create_train_test_split, create_vfold_cv, load_fold_indices,
    save_fold_indices, validate_folds
)


class TestTrainTestSplit:

    def test_sizes_and_disjoint(self, dataset):
        train, test = create_train_test_split(dataset, prop=0.8, seed=100)
        assert len(train) + len(test) == len(dataset)
        assert set(train.index).isdisjoint(test.index)
        assert abs(len(train) / len(dataset) - 0.8) < 0.01

    def test_reproducible(self, dataset):
        a, _ = create_train_test_split(dataset, seed=100)
        b, _ = create_train_test_split(dataset, seed=100)
        assert a.index.equals(b.index)

    def test_stratified_on_target_quartiles(self, dataset):
        train, test = create_train_test_split(dataset, prop=0.8, seed=100)
        edges = dataset['rented_count'].quantile([0.25, 0.5, 0.75]).to_numpy()
        share_train = np.mean(train['rented_count'].to_numpy() <= edges[1])
        share_test = np.mean(test['rented_count'].to_numpy() <= edges[1])
        assert abs(share_train - share_test) < 0.05

    def test_missing_strata_column(self, dataset):
        with pytest.raises(KeyError):
            create_train_test_split(dataset, strata='nope')

    def test_invalid_prop(self, dataset):
        with pytest.raises(ValueError):
            create_train_test_split(dataset, prop=1.5)


class TestVfoldCV:

    def test_folds_disjoint_and_cover(self, dataset):
        folds = create_vfold_cv(dataset, v=10, seed=101)
        assert len(folds) == 10
        val_sizes = [f.n_val for f in folds]
        assert sum(val_sizes) == len(dataset)

        all_val = np.concatenate([f.val_idx for f in folds])
        assert len(np.unique(all_val)) == len(dataset)
        for fold in folds:
            assert np.intersect1d(fold.train_idx, fold.val_idx).size == 0

    def test_fold_ids(self, dataset):
        folds = create_vfold_cv(dataset, v=10, seed=101)
        assert folds[0].fold_id == 'Fold01'
        assert folds[-1].fold_id == 'Fold10'

    def test_too_few_rows(self):
        with pytest.raises(ValueError):
            create_vfold_cv(pd.DataFrame({'x': [1, 2]}), v=3)

    def test_validate_folds_rejects_overlap(self):
        folds = [
            Fold('Fold1', np.array([2, 3]), np.array([0, 1])),
            Fold('Fold2', np.array([0, 3]), np.array([1, 2])),
        ]
        with pytest.raises(ValueError):
            validate_folds(folds, 4)

    def test_save_and_load(self, dataset, tmp_path):
        folds = create_vfold_cv(dataset, v=5, seed=101)
        path = tmp_path / 'folds.json'
        save_fold_indices(folds, path, seed=101)
        loaded = load_fold_indices(path, len(dataset))
        for a, b in zip(folds, loaded):
            assert a.fold_id == b.fold_id
            assert np.array_equal(np.sort(a.val_idx), np.sort(b.val_idx))
            assert np.array_equal(np.sort(a.train_idx), np.sort(b.train_idx))
