"""
Train/test splitting and k-fold resampling.

- create_train_test_split: stratified holdout split (numeric strata are binned)
- create_vfold_cv: k disjoint validation subsets over the full dataset
- validate_folds: disjointness / coverage checks
- save_fold_indices / load_fold_indices: JSON record of the fold partition

The fold partition is built once and reused by every model family and
every tuning round so that candidates are compared on identical folds.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, train_test_split

from .data import TARGET_COL

logger = logging.getLogger(__name__)


@dataclass
class Fold:
    """One train/validation partition (positional row indices)."""
    fold_id: str
    train_idx: np.ndarray
    val_idx: np.ndarray

    @property
    def n_train(self) -> int:
        return len(self.train_idx)

    @property
    def n_val(self) -> int:
        return len(self.val_idx)


def _make_strata(values: pd.Series, n_bins: int) -> pd.Series:
    """Bin a stratification column into quantile groups (categoricals pass through)."""
    if not pd.api.types.is_numeric_dtype(values):
        return values.astype(str)

    bins = pd.qcut(values, q=n_bins, labels=False, duplicates='drop')
    return bins


def create_train_test_split(
    df: pd.DataFrame,
    prop: float = 0.8,
    strata: Optional[str] = TARGET_COL,
    n_bins: int = 4,
    seed: int = 100
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split into training and testing sets, stratified on `strata`.

    A numeric stratification column is cut into `n_bins` quantile bins.
    When a stratum is too small to appear on both sides the split falls back
    to simple random sampling.

    Args:
        df: Full dataset
        prop: Proportion of rows in the training set
        strata: Column to stratify on (None for a simple random split)
        n_bins: Number of quantile bins for numeric strata
        seed: Random seed

    Returns:
        (train_df, test_df) with the original index preserved
    """
    if not 0 < prop < 1:
        raise ValueError(f"prop must be in (0, 1), got {prop}")

    stratify = None
    if strata is not None:
        if strata not in df.columns:
            raise KeyError(f"Stratification column '{strata}' not found in data")
        stratify = _make_strata(df[strata], n_bins)
        smallest = stratify.value_counts().min()
        if smallest < 2:
            logger.warning(
                f"Smallest stratum of '{strata}' has {smallest} rows; "
                f"falling back to unstratified split"
            )
            stratify = None

    train_df, test_df = train_test_split(
        df,
        train_size=prop,
        random_state=seed,
        shuffle=True,
        stratify=stratify
    )

    logger.info(
        f"Train/test split (prop={prop}, strata={strata if stratify is not None else None}): "
        f"train {len(train_df):,} rows, test {len(test_df):,} rows"
    )
    return train_df, test_df


def create_vfold_cv(
    df: pd.DataFrame,
    v: int = 10,
    seed: int = 101
) -> List[Fold]:
    """
    Partition the dataset into v folds for cross-validation.

    Every row appears in exactly one validation subset.

    Args:
        df: Dataset to resample
        v: Number of folds
        seed: Random seed

    Returns:
        List of Fold objects (positional indices into df)
    """
    if v < 2:
        raise ValueError(f"v must be at least 2, got {v}")
    if v > len(df):
        raise ValueError(f"Cannot create {v} folds from {len(df)} rows")

    kf = KFold(n_splits=v, shuffle=True, random_state=seed)
    width = len(str(v))

    folds = []
    for i, (train_idx, val_idx) in enumerate(kf.split(np.arange(len(df)))):
        fold = Fold(
            fold_id=f"Fold{str(i + 1).zfill(width)}",
            train_idx=np.asarray(train_idx),
            val_idx=np.asarray(val_idx)
        )
        logger.debug(f"{fold.fold_id}: train {fold.n_train:,} rows, val {fold.n_val:,} rows")
        folds.append(fold)

    validate_folds(folds, len(df))
    logger.info(f"Created {v}-fold CV over {len(df):,} rows")
    return folds


def validate_folds(folds: List[Fold], n_rows: int) -> None:
    """
    Check that validation subsets are disjoint and cover all rows.

    Raises:
        ValueError: If the partition is invalid
    """
    all_val = np.concatenate([f.val_idx for f in folds]) if folds else np.array([], dtype=int)

    if len(all_val) != n_rows:
        raise ValueError(
            f"Validation subset sizes sum to {len(all_val)}, expected {n_rows}"
        )
    if len(np.unique(all_val)) != len(all_val):
        raise ValueError("Validation subsets overlap")

    for fold in folds:
        if np.intersect1d(fold.train_idx, fold.val_idx).size > 0:
            raise ValueError(f"{fold.fold_id}: training and validation rows overlap")
        if fold.n_train + fold.n_val != n_rows:
            raise ValueError(f"{fold.fold_id}: train + val does not cover the dataset")


def save_fold_indices(
    folds: List[Fold],
    path: Union[str, Path],
    seed: Optional[int] = None
) -> None:
    """Save the fold partition as JSON for reproducibility."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump({
            'n_folds': len(folds),
            'random_state': seed,
            'folds': [
                {'fold_id': fold.fold_id, 'val_idx': fold.val_idx.tolist()}
                for fold in folds
            ]
        }, f, indent=2)
    logger.info(f"Fold indices saved to {path}")


def load_fold_indices(path: Union[str, Path], n_rows: int) -> List[Fold]:
    """Rebuild a saved fold partition for a dataset of n_rows."""
    with open(path, 'r') as f:
        payload = json.load(f)

    all_idx = np.arange(n_rows)
    folds = []
    for entry in payload['folds']:
        val_idx = np.asarray(entry['val_idx'], dtype=int)
        train_idx = np.setdiff1d(all_idx, val_idx)
        folds.append(Fold(fold_id=entry['fold_id'], train_idx=train_idx, val_idx=val_idx))

    validate_folds(folds, n_rows)
    return folds
