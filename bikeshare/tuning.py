"""
Hyperparameter search over cross-validation folds.

This module provides functionality to:
1. Describe a search space (ranges, log10 scale, integer parameters)
2. Sample space-filling candidate grids with Latin hypercube sampling
3. Evaluate every candidate on every fold (fold evaluations run in
   worker processes) and aggregate mae / rmse / rsq
4. Rank candidates and pick the best configuration

The second tuning round is a manual narrowing: the model config carries a
`round2` block with tighter ranges around the best region of round 1, which
update_search_space applies on top of the round-1 space.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from scipy.stats import qmc

from .evaluate import METRIC_NAMES, METRIC_MAXIMIZE, compute_metrics, check_metric
from .features import Recipe
from .models import create_model, get_default_search_space, get_model_class, normalize_family
from .validation import Fold

logger = logging.getLogger(__name__)

CONFIG_COL = '.config'


# =============================================================================
# SEARCH SPACE
# =============================================================================

@dataclass
class ParamRange:
    """Sampling range of one hyperparameter (bounds on the log10 scale if log10)."""
    name: str
    low: float
    high: float
    log10: bool = False
    integer: bool = False

    def __post_init__(self):
        if self.low > self.high:
            raise ValueError(f"Invalid range for '{self.name}': low {self.low} > high {self.high}")
        if self.integer and self.log10:
            raise ValueError(f"'{self.name}' cannot be both integer and log10-scaled")

    def scale(self, u: np.ndarray) -> np.ndarray:
        """Map unit-interval samples onto the parameter range."""
        u = np.asarray(u, dtype=float)
        if self.integer:
            low, high = int(np.ceil(self.low)), int(np.floor(self.high))
            values = np.floor(low + u * (high - low + 1)).astype(int)
            return np.clip(values, low, high)
        values = self.low + u * (self.high - self.low)
        if self.log10:
            values = np.power(10.0, values)
        return values

    def contains(self, value: float) -> bool:
        check = np.log10(value) if self.log10 else value
        return self.low - 1e-9 <= check <= self.high + 1e-9


def _parse_range(name: str, spec: Union[Dict[str, Any], Sequence[float]]) -> ParamRange:
    if isinstance(spec, dict):
        if 'range' not in spec:
            raise KeyError(f"Search space entry '{name}' has no 'range'")
        low, high = spec['range']
        return ParamRange(
            name=name,
            low=low,
            high=high,
            log10=bool(spec.get('log10', False)),
            integer=bool(spec.get('integer', False)),
        )
    low, high = spec
    # Plain [min, max] pairs of ints are integer ranges
    integer = isinstance(low, int) and isinstance(high, int)
    return ParamRange(name=name, low=low, high=high, integer=integer)


def parse_search_space(spec: Dict[str, Any]) -> List[ParamRange]:
    """
    Parse a search space dict into ParamRange objects.

    Entries are either {'range': [lo, hi], 'log10': bool, 'integer': bool}
    or a plain [lo, hi] pair.

    Examples:
        >>> parse_search_space({'neighbors': {'range': [0, 9], 'integer': True}})
        [ParamRange(name='neighbors', low=0, high=9, log10=False, integer=True)]
    """
    if not spec:
        raise ValueError("Search space is empty")
    return [_parse_range(name, entry) for name, entry in spec.items()]


def merge_search_space(
    user_search_space: Optional[Dict[str, Any]],
    family: str
) -> Dict[str, Any]:
    """
    Merge a user-provided search space with the family defaults.

    User entries override defaults; keys the family does not define are
    rejected since they cannot be passed to the model.
    """
    default_space = get_default_search_space(family)
    if user_search_space is None:
        return default_space

    unknown = set(user_search_space) - set(default_space)
    if unknown:
        raise ValueError(f"Unknown hyperparameters for {family}: {sorted(unknown)}")

    merged = dict(default_space)
    merged.update(user_search_space)
    return merged


def update_search_space(
    space: List[ParamRange],
    overrides: Dict[str, Any]
) -> List[ParamRange]:
    """
    Replace the ranges of selected parameters (e.g. round-2 narrowing).

    Raises:
        ValueError: If an override names a parameter not in the space
    """
    names = [p.name for p in space]
    unknown = set(overrides) - set(names)
    if unknown:
        raise ValueError(f"Cannot update unknown parameters: {sorted(unknown)}")

    replaced = {name: _parse_range(name, entry) for name, entry in overrides.items()}
    return [replaced.get(p.name, p) for p in space]


def get_search_space(family: str, model_config: Optional[dict] = None) -> List[ParamRange]:
    """Round-1 search space of a family from its model config (merged with defaults)."""
    user_space = (model_config or {}).get('search_space')
    return parse_search_space(merge_search_space(user_space, family))


def _round2_config(model_config: Optional[dict]) -> dict:
    round2 = (model_config or {}).get('round2') or {}
    unknown = set(round2) - {'size', 'ranges'}
    if unknown:
        raise ValueError(f"Unknown round2 keys: {sorted(unknown)}. Expected 'size' and 'ranges'")
    return round2


def get_round2_space(family: str, model_config: Optional[dict] = None) -> Optional[List[ParamRange]]:
    """
    Round-2 search space, or None when the family has no narrowed ranges configured.

    Parameters absent from round2.ranges keep their round-1 range.
    """
    ranges = _round2_config(model_config).get('ranges')
    if not ranges:
        return None
    return update_search_space(get_search_space(family, model_config), ranges)


def get_round2_size(model_config: Optional[dict], default: int) -> int:
    """Candidates in the round-2 grid: round2.size, else the round-1 size."""
    size = _round2_config(model_config).get('size')
    if size is None:
        return int(default)
    if int(size) < 1:
        raise ValueError(f"round2.size must be positive, got {size}")
    return int(size)


# =============================================================================
# GRIDS
# =============================================================================

def _config_ids(n: int) -> List[str]:
    width = max(2, len(str(n)))
    return [f"Model{str(i + 1).zfill(width)}" for i in range(n)]


def grid_latin_hypercube(
    space: List[ParamRange],
    size: int = 15,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Draw a space-filling candidate grid with Latin hypercube sampling.

    Duplicate candidates (possible with narrow integer ranges) are dropped,
    so the grid may hold fewer than `size` rows.

    Args:
        space: Parameter ranges
        size: Number of candidates to sample
        seed: Random seed

    Returns:
        DataFrame with one column per parameter plus '.config'
    """
    if size < 1:
        raise ValueError(f"Grid size must be positive, got {size}")

    sampler = qmc.LatinHypercube(d=len(space), seed=seed)
    unit = sampler.random(n=size)

    grid = pd.DataFrame({
        param.name: param.scale(unit[:, j]) for j, param in enumerate(space)
    })
    grid = grid.drop_duplicates().reset_index(drop=True)
    grid[CONFIG_COL] = _config_ids(len(grid))

    logger.debug(f"Latin hypercube grid: {len(grid)} candidates over {[p.name for p in space]}")
    return grid


def _row_params(row: Dict[str, Any], param_names: List[str]) -> Dict[str, Any]:
    params = {}
    for name in param_names:
        value = row[name]
        params[name] = value.item() if isinstance(value, np.generic) else value
    return params


# =============================================================================
# FOLD EVALUATION
# =============================================================================

def _seeded_params(family: str, params: Dict[str, Any], seed: Optional[int]) -> Dict[str, Any]:
    params = dict(params)
    if seed is not None:
        params.setdefault(get_model_class(family).seed_param, seed)
    return params


def evaluate_fold(
    family: str,
    recipe: Recipe,
    analysis: pd.DataFrame,
    assessment: pd.DataFrame,
    fold_id: str,
    candidates: List[Tuple[str, Dict[str, Any]]],
    model_config: Optional[dict] = None,
    metrics: Sequence[str] = METRIC_NAMES,
    save_pred: bool = False,
    seed: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], Optional[pd.DataFrame]]:
    """
    Fit the recipe on the analysis rows once, then fit and score every
    candidate on the assessment rows.

    Runs inside worker processes; holds no state between calls.

    Returns:
        (metric rows, predictions frame or None)
    """
    fold_recipe = recipe.clone().fit(analysis)
    X_train, y_train = fold_recipe.split_xy(analysis)
    X_val, y_val = fold_recipe.split_xy(assessment)

    rows = []
    preds = []
    for config_id, params in candidates:
        model = create_model(family, model_config, _seeded_params(family, params, seed))
        model.fit(X_train, y_train)
        y_pred = model.predict(X_val)

        for metric, estimate in compute_metrics(y_val.to_numpy(), y_pred, metrics).items():
            rows.append({
                CONFIG_COL: config_id,
                'fold_id': fold_id,
                'metric': metric,
                'estimate': estimate,
            })

        if save_pred:
            preds.append(pd.DataFrame({
                CONFIG_COL: config_id,
                'fold_id': fold_id,
                '.row': assessment.index.to_numpy(),
                'truth': y_val.to_numpy(),
                '.pred': y_pred,
            }))

    predictions = pd.concat(preds, ignore_index=True) if preds else None
    return rows, predictions


def tune_grid(
    family: str,
    recipe: Recipe,
    data: pd.DataFrame,
    folds: List[Fold],
    grid: pd.DataFrame,
    model_config: Optional[dict] = None,
    metrics: Sequence[str] = METRIC_NAMES,
    n_jobs: int = 1,
    save_pred: bool = False,
    seed: Optional[int] = None
) -> 'TuneResults':
    """
    Evaluate every grid candidate on every fold.

    Fold evaluations are independent and are distributed over `n_jobs`
    worker processes (n_jobs=1 runs inline). A failure in any fold aborts
    the whole search. Results do not depend on completion order.

    Args:
        family: Model family ('ranger', 'xgboost', 'cubist')
        recipe: Unfitted recipe; a fresh copy is fit on each fold
        data: Full resampled dataset (fold indices are positional)
        folds: Fold partition
        grid: Candidate grid from grid_latin_hypercube
        model_config: Model config (fixed params, prediction settings)
        metrics: Metrics to compute
        n_jobs: Number of worker processes
        save_pred: Keep held-out predictions
        seed: Seed applied to every candidate model

    Returns:
        TuneResults
    """
    family = normalize_family(family)
    for metric in metrics:
        check_metric(metric)
    if grid.empty:
        raise ValueError("Candidate grid is empty")

    param_names = [c for c in grid.columns if c != CONFIG_COL]
    # Records keep integer columns as int
    candidates = [
        (row[CONFIG_COL], _row_params(row, param_names))
        for row in grid.to_dict(orient='records')
    ]

    def _fold_args(fold: Fold):
        analysis = data.iloc[fold.train_idx]
        assessment = data.iloc[fold.val_idx]
        return (family, recipe, analysis, assessment, fold.fold_id, candidates,
                model_config, tuple(metrics), save_pred, seed)

    logger.info(
        f"Tuning {family}: {len(candidates)} candidates x {len(folds)} folds "
        f"(n_jobs={n_jobs})"
    )

    outputs = []
    if n_jobs <= 1:
        for fold in folds:
            outputs.append(evaluate_fold(*_fold_args(fold)))
            logger.debug(f"{fold.fold_id} done")
    else:
        with ProcessPoolExecutor(max_workers=min(n_jobs, len(folds))) as executor:
            futures = {executor.submit(evaluate_fold, *_fold_args(fold)): fold for fold in folds}
            try:
                for future in as_completed(futures):
                    outputs.append(future.result())
                    logger.debug(f"{futures[future].fold_id} done")
            except Exception:
                logger.error(f"Fold evaluation failed for {family}; aborting search")
                for future in futures:
                    future.cancel()
                raise

    metric_rows = [row for rows, _ in outputs for row in rows]
    metrics_df = (
        pd.DataFrame(metric_rows)
        .sort_values([CONFIG_COL, 'fold_id', 'metric'])
        .reset_index(drop=True)
    )

    predictions = None
    if save_pred:
        predictions = (
            pd.concat([p for _, p in outputs if p is not None], ignore_index=True)
            .sort_values([CONFIG_COL, 'fold_id', '.row'])
            .reset_index(drop=True)
        )

    return TuneResults(
        family=family,
        grid=grid.reset_index(drop=True),
        metrics=metrics_df,
        predictions=predictions,
    )


# =============================================================================
# RESULTS
# =============================================================================

class TuneResults:
    """Per-fold metrics of a grid search with ranking helpers."""

    def __init__(
        self,
        family: str,
        grid: pd.DataFrame,
        metrics: pd.DataFrame,
        predictions: Optional[pd.DataFrame] = None
    ):
        self.family = family
        self.grid = grid
        self.metrics = metrics
        self.predictions = predictions

    @property
    def param_names(self) -> List[str]:
        return [c for c in self.grid.columns if c != CONFIG_COL]

    @property
    def metric_names(self) -> List[str]:
        present = set(self.metrics['metric'])
        return [m for m in METRIC_NAMES if m in present]

    @property
    def n_folds(self) -> int:
        return self.metrics['fold_id'].nunique()

    def collect_metrics(self) -> pd.DataFrame:
        """
        Mean, count and standard error of each metric per candidate.

        Returns:
            DataFrame with parameter columns, 'metric', 'mean', 'n',
            'std_err' and '.config'
        """
        summary = (
            self.metrics
            .groupby([CONFIG_COL, 'metric'], sort=True)['estimate']
            .agg(mean='mean', n='count', std='std')
            .reset_index()
        )
        summary['std_err'] = summary['std'] / np.sqrt(summary['n'])
        summary = summary.drop(columns=['std'])

        merged = self.grid.merge(summary, on=CONFIG_COL, how='right')
        columns = self.param_names + ['metric', 'mean', 'n', 'std_err', CONFIG_COL]
        return merged[columns]

    def show_best(self, metric: str, n: int = 5) -> pd.DataFrame:
        """
        Top n candidates for a metric (smallest mae/rmse, largest rsq).

        Ties are broken by the lowest configuration id.
        """
        check_metric(metric)
        table = self.collect_metrics()
        table = table[table['metric'] == metric].dropna(subset=['mean'])
        if table.empty:
            raise ValueError(f"No results for metric '{metric}'")

        ascending = not METRIC_MAXIMIZE[metric]
        table = table.sort_values(['mean', CONFIG_COL], ascending=[ascending, True], kind='mergesort')
        return table.head(n).reset_index(drop=True)

    def select_best(self, metric: str) -> Dict[str, Any]:
        """Parameters of the best candidate for `metric` (plus its '.config')."""
        config_id = self.show_best(metric, n=1)[CONFIG_COL].iloc[0]
        row = self.grid[self.grid[CONFIG_COL] == config_id].to_dict(orient='records')[0]
        params = _row_params(row, self.param_names)
        params[CONFIG_COL] = config_id
        return params

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump({
            'family': self.family,
            'grid': self.grid,
            'metrics': self.metrics,
            'predictions': self.predictions,
        }, path)
        logger.info(f"Tune results saved to {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'TuneResults':
        data = joblib.load(path)
        return cls(
            family=data['family'],
            grid=data['grid'],
            metrics=data['metrics'],
            predictions=data.get('predictions'),
        )

    def __repr__(self) -> str:
        return (
            f"TuneResults(family={self.family!r}, candidates={len(self.grid)}, "
            f"folds={self.n_folds})"
        )
