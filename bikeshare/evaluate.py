"""
Evaluation module for the bike sharing models.

Provides the regression metrics used for tuning and model comparison
(mae, rmse, rsq), best-metric summaries per model family and a small
CSV-based metric log.

MAIN API SURFACE:
=================
Metrics:
  - compute_mae / compute_rmse / compute_rsq
  - compute_metrics(y_true, y_pred) - all configured metrics at once

Comparison tables:
  - get_best_metrics(tune_results, model_name) - best mean value per metric
  - compare_models(rows, sort_by) - stack and sort summaries

Metric logging:
  - make_metric_record(...) - Create standardized metric record
  - save_metric_records(...) - Save to CSV
  - load_metric_records(...) - Load from CSV
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, List, Any, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

METRIC_NAMES = ('mae', 'rmse', 'rsq')

# Whether a larger value is better
METRIC_MAXIMIZE = {
    'mae': False,
    'rmse': False,
    'rsq': True,
}

VALID_PHASES = {"tune", "last_fit", "final"}
VALID_SPLITS = {"train", "test", "all", "cv_agg"}
VALID_SPLIT_PREFIXES = {"Fold"}

RECORD_COLUMNS = [
    'run_id', 'timestamp', 'phase', 'split', 'model', 'config',
    'metric', 'value', 'extra'
]


def compute_rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Compute Root Mean Squared Error."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def compute_mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Compute Mean Absolute Error."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return float(np.mean(np.abs(y_true - y_pred)))


def compute_rsq(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Compute R squared as the squared Pearson correlation of truth and estimate.

    Returns NaN when either side is constant (correlation undefined).
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if len(y_true) < 2 or np.std(y_true) == 0 or np.std(y_pred) == 0:
        return np.nan
    r = np.corrcoef(y_true, y_pred)[0, 1]
    return float(r ** 2)


METRIC_FUNCTIONS = {
    'mae': compute_mae,
    'rmse': compute_rmse,
    'rsq': compute_rsq,
}


def compute_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    metrics: Sequence[str] = METRIC_NAMES
) -> Dict[str, float]:
    """
    Compute a set of regression metrics.

    Raises:
        ValueError: If an unknown metric is requested or lengths differ
    """
    if len(y_true) != len(y_pred):
        raise ValueError(f"Length mismatch: {len(y_true)} truths vs {len(y_pred)} predictions")
    unknown = [m for m in metrics if m not in METRIC_FUNCTIONS]
    if unknown:
        raise ValueError(f"Unknown metrics: {unknown}. Available: {sorted(METRIC_FUNCTIONS)}")
    return {m: METRIC_FUNCTIONS[m](y_true, y_pred) for m in metrics}


def check_metric(metric: str) -> str:
    if metric not in METRIC_MAXIMIZE:
        raise ValueError(f"Unknown metric: {metric}. Available: {sorted(METRIC_MAXIMIZE)}")
    return metric


def get_best_metrics(tune_results, model_name: str, decimals: int = 2) -> pd.DataFrame:
    """
    One-row summary with the best mean value of each metric across candidates.

    Args:
        tune_results: TuneResults from a grid search
        model_name: Display name for the 'model' column
        decimals: Rounding for the table

    Returns:
        DataFrame with columns ['model', 'mae', 'rmse', 'rsq']
    """
    row = {'model': model_name}
    for metric in tune_results.metric_names:
        best = tune_results.show_best(metric, n=1)
        row[metric] = round(float(best['mean'].iloc[0]), decimals)
    return pd.DataFrame([row])


def compare_models(rows: List[pd.DataFrame], sort_by: str = 'rmse') -> pd.DataFrame:
    """
    Stack per-model summaries and sort from best to worst by `sort_by`.
    """
    check_metric(sort_by)
    table = pd.concat(rows, ignore_index=True)
    return table.sort_values(
        sort_by, ascending=not METRIC_MAXIMIZE[sort_by]
    ).reset_index(drop=True)


def _is_valid_split(split: str) -> bool:
    if split in VALID_SPLITS:
        return True
    for prefix in VALID_SPLIT_PREFIXES:
        if split.startswith(prefix) and split[len(prefix):].isdigit():
            return True
    return False


def make_metric_record(
    phase: str,
    split: str,
    model_name: str,
    metric_name: str,
    value: float,
    run_id: Optional[str] = None,
    config: Optional[str] = None,
    extra: Optional[Dict] = None
) -> Dict[str, Any]:
    """
    Create a standardized metric record.

    Args:
        phase: One of "tune", "last_fit", "final"
        split: "train", "test", "all", "cv_agg" or a fold id like "Fold01"
        model_name: Model family, e.g. "xgboost"
        metric_name: "mae", "rmse" or "rsq"
        value: Metric value (inf is stored as NaN)
        run_id: Unique run identifier (auto-generated if None)
        config: Candidate configuration id (e.g. "Model07")
        extra: Optional JSON-serializable details

    Raises:
        ValueError: If phase or split are not valid
    """
    if phase not in VALID_PHASES:
        raise ValueError(f"Invalid phase: '{phase}'. Valid phases: {sorted(VALID_PHASES)}")

    if not _is_valid_split(split):
        raise ValueError(
            f"Invalid split: '{split}'. "
            f"Valid splits: {sorted(VALID_SPLITS)} or 'FoldNN' (e.g., Fold01)"
        )

    if value is None or np.isnan(value):
        final_value = np.nan
    elif np.isinf(value):
        logger.warning(f"make_metric_record: value is inf for metric={metric_name}, converting to NaN")
        final_value = np.nan
    else:
        final_value = float(value)

    if run_id is None:
        run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    return {
        'run_id': run_id,
        'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        'phase': phase,
        'split': split,
        'model': model_name,
        'config': config,
        'metric': metric_name,
        'value': final_value,
        'extra': extra,
    }


def save_metric_records(
    records: List[Dict],
    path: Path,
    append: bool = True
) -> None:
    """
    Save metric records to a CSV file.

    Creates parent directories if missing. Appends to an existing file if
    append=True, otherwise overwrites.
    """
    if not records:
        logger.warning("save_metric_records: No records to save")
        return

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame(records)
    if 'extra' in df.columns:
        df['extra'] = df['extra'].apply(lambda x: json.dumps(x) if x is not None else None)

    for col in RECORD_COLUMNS:
        if col not in df.columns:
            df[col] = None
    df = df[RECORD_COLUMNS]

    if append and path.exists():
        df.to_csv(path, mode='a', header=False, index=False)
        logger.debug(f"Appended {len(records)} records to {path}")
    else:
        df.to_csv(path, index=False)
        logger.info(f"Saved {len(records)} records to {path}")


def load_metric_records(path: Path) -> pd.DataFrame:
    """
    Load metric records from a CSV file.

    Returns an empty DataFrame with the record columns if the file is
    missing or empty.
    """
    path = Path(path)

    if not path.exists():
        logger.warning(f"load_metric_records: Metrics file not found: {path}, returning empty DataFrame")
        return pd.DataFrame(columns=RECORD_COLUMNS)

    try:
        df = pd.read_csv(path)
    except pd.errors.EmptyDataError:
        logger.warning(f"load_metric_records: Empty file: {path}, returning empty DataFrame")
        return pd.DataFrame(columns=RECORD_COLUMNS)

    if 'extra' in df.columns:
        def safe_json_loads(x):
            if pd.isna(x) or x == '':
                return None
            try:
                return json.loads(x)
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"load_metric_records: Failed to parse JSON in 'extra': {x}")
                return None

        df['extra'] = df['extra'].apply(safe_json_loads)

    logger.debug(f"load_metric_records: Loaded {len(df)} records from {path}")
    return df
