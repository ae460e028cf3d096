"""
Inference for the finalized bike rental model.

Handles:
- Persisting the finalized model together with its fitted recipe
- Building the documented sample record (or reading new observations)
- Scoring new observations with non-negative predictions
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import joblib
import numpy as np
import pandas as pd

from .data import DATE_COL, add_calendar_features, coerce_categoricals, make_observation, parse_dates
from .features import Recipe
from .models import BaseModel, FAMILY_LABELS
from .utils import load_config, setup_logging, timer

logger = logging.getLogger(__name__)

PREDICTION_COL = '.pred'

# Documented sample observation scored at the end of every run
DEFAULT_SAMPLE_RECORD = {
    'date': '2019-01-24',
    'hour': 6,
    'temp': 6.0,
    'humidity': 80,
    'windspeed': 1.8,
    'visibility': 1400,
    'dew_point': -6.0,
    'solar_rad': 0.0,
    'rainfall': 0.0,
    'snowfall': 0.0,
    'season': 'Autumn',
    'holiday': 'No Holiday',
    'functional_day': 'Yes',
}


class FinalizedModel:
    """Fitted recipe plus fitted model of the winning family."""

    def __init__(self, family: str, recipe: Recipe, model: BaseModel, params: Dict[str, Any]):
        if not recipe.fitted:
            raise ValueError("FinalizedModel requires a fitted recipe")
        self.family = family
        self.recipe = recipe
        self.model = model
        self.params = dict(params)

    @property
    def label(self) -> str:
        return FAMILY_LABELS.get(self.family, self.family)

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        """Apply the recipe and predict rental counts (never negative)."""
        X, _ = self.recipe.split_xy(frame)
        return self.model.predict(X)

    def get_feature_importance(self) -> pd.DataFrame:
        return self.model.get_feature_importance()

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump({
            'family': self.family,
            'recipe': self.recipe,
            'model': self.model,
            'params': self.params,
        }, path)
        logger.info(f"Finalized {self.family} model saved to {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'FinalizedModel':
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Finalized model not found: {path}")
        data = joblib.load(path)
        return cls(
            family=data['family'],
            recipe=data['recipe'],
            model=data['model'],
            params=data.get('params', {}),
        )

    def __repr__(self) -> str:
        return f"FinalizedModel(family={self.family!r}, params={self.params})"


def make_sample_record(run_config: Optional[dict] = None, **overrides) -> pd.DataFrame:
    """
    One-row frame of the sample observation.

    Values come from run_config['sample_record'] when present, then from
    keyword overrides.

    Example:
        >>> frame = make_sample_record(hour=18)
        >>> int(frame['hour'].iloc[0])
        18
    """
    record = dict(DEFAULT_SAMPLE_RECORD)
    if run_config:
        record.update(run_config.get('sample_record') or {})
    record.update(overrides)
    return make_observation(record)


def load_new_data(path: Union[str, Path], date_format: str = '%Y-%m-%d') -> pd.DataFrame:
    """
    Read observations to score from a CSV with the semantic column names.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    df = pd.read_csv(path)
    if DATE_COL not in df.columns:
        raise KeyError(f"Input file is missing required column '{DATE_COL}'")

    df[DATE_COL] = df[DATE_COL].astype(str)
    df = parse_dates(df, date_format=date_format)
    df = add_calendar_features(df)
    return coerce_categoricals(df)


def predict_new(finalized: FinalizedModel, frame: pd.DataFrame) -> pd.DataFrame:
    """
    Score new observations.

    Returns:
        Copy of `frame` with a '.pred' column appended
    """
    if frame.empty:
        raise ValueError("No observations to score")

    preds = finalized.predict(frame)
    if np.any(preds < 0):
        # clip_min should make this unreachable
        raise ValueError(f"Negative predictions from {finalized.family}: {preds.min():.3f}")

    result = frame.copy()
    result[PREDICTION_COL] = preds
    return result


def main():
    """CLI entry point for scoring a finalized model.

    Examples:
        # Score the sample record configured in run_defaults.yaml
        python -m bikeshare.inference --model artifacts/finalized_model_xgboost.joblib

        # Score a CSV of new observations
        python -m bikeshare.inference --model artifacts/finalized_model_xgboost.joblib \\
            --input new_hours.csv --output predictions.csv
    """
    parser = argparse.ArgumentParser(description="Score observations with a finalized bike rental model")
    parser.add_argument('--model', type=str, required=True,
                        help="Path to finalized_model_<family>.joblib")
    parser.add_argument('--input', type=str, default=None,
                        help="CSV of observations (default: the configured sample record)")
    parser.add_argument('--date-format', type=str, default='%Y-%m-%d',
                        help="Date format of the input CSV")
    parser.add_argument('--output', type=str, default=None,
                        help="Write predictions to this CSV")
    parser.add_argument('--run-config', type=str, default='configs/run_defaults.yaml',
                        help="Path to run config (sample record, logging)")

    args = parser.parse_args()

    run_config = load_config(args.run_config)
    log_config = run_config.get('logging', {})
    setup_logging(level=log_config.get('level', 'INFO'), log_file=log_config.get('file'))

    finalized = FinalizedModel.load(args.model)
    logger.info(f"Loaded {finalized}")

    with timer("Load observations"):
        if args.input:
            frame = load_new_data(args.input, date_format=args.date_format)
        else:
            frame = make_sample_record(run_config)

    with timer("Predict"):
        result = predict_new(finalized, frame)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        result.to_csv(output_path, index=False)
        logger.info(f"Predictions saved to {output_path}")
    else:
        preview = result[[DATE_COL, 'hour', PREDICTION_COL]].head(20)
        print(json.dumps(preview.astype({DATE_COL: str}).to_dict(orient='records'), indent=2))


if __name__ == "__main__":
    main()
