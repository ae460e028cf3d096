"""
Data loading and calendar feature derivation for the Seoul bike sharing dataset.

This module handles:
- Loading the raw fixed-schema CSV (14 ordered, untyped columns)
- Assigning semantic column names and coercing types
- Strict date parsing and calendar features (day of week, month)
- Dropping hours where the rental system was not operational

Every step returns a new frame; ingested observations are never mutated.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .utils import timer, get_project_root

logger = logging.getLogger(__name__)

# Canonical column order of the raw file
COLUMN_NAMES = [
    'date', 'rented_count', 'hour', 'temp', 'humidity', 'windspeed', 'visibility',
    'dew_point', 'solar_rad', 'rainfall', 'snowfall', 'season', 'holiday', 'functional_day'
]

TARGET_COL = 'rented_count'
DATE_COL = 'date'

NUMERIC_COLS = [
    'rented_count', 'hour', 'temp', 'humidity', 'windspeed', 'visibility',
    'dew_point', 'solar_rad', 'rainfall', 'snowfall'
]
CATEGORICAL_COLS = ['season', 'holiday', 'functional_day']

# Label order follows the calendar (week starts on Sunday)
DAY_LABELS = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']
MONTH_LABELS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
                'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']

DEFAULT_DATE_FORMAT = '%d/%m/%Y'


def _raw_path(config: dict) -> Path:
    raw_dir = Path(config['paths']['raw_dir'])
    if not raw_dir.is_absolute():
        raw_dir = get_project_root() / raw_dir
    return raw_dir / config['files']['raw']


def load_raw_data(config: dict, path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load the raw CSV and apply semantic column names.

    The header row is skipped and never used for names. Numeric columns are
    coerced strictly; text columns are kept as strings.

    Args:
        config: Loaded data.yaml config dict
        path: Optional explicit CSV path (overrides config paths)

    Returns:
        DataFrame with COLUMN_NAMES columns

    Raises:
        FileNotFoundError: If the CSV does not exist
        ValueError: If the file does not conform to the 14-column schema
    """
    file_path = Path(path) if path is not None else _raw_path(config)
    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    csv_cfg = config.get('csv', {})
    names = config.get('columns', {}).get('names', COLUMN_NAMES)

    with timer("Load raw data"):
        logger.info(f"Loading raw data from {file_path}")
        df = pd.read_csv(
            file_path,
            header=None,
            skiprows=csv_cfg.get('skip_rows', 1),
            encoding=csv_cfg.get('encoding', 'latin-1'),
            dtype=str,
            keep_default_na=False,
        )

        if df.shape[1] != len(names):
            raise ValueError(
                f"Expected {len(names)} columns in {file_path.name}, found {df.shape[1]}"
            )
        df.columns = names

        # Short rows come back padded with NaN, blank fields as empty strings
        stripped = df.apply(lambda col: col.str.strip())
        blank = df.isna().any(axis=1) | (stripped == '').any(axis=1)
        if blank.any():
            first_bad = int(np.flatnonzero(blank.values)[0])
            raise ValueError(
                f"{int(blank.sum())} malformed rows in {file_path.name} "
                f"(first at data row {first_bad + 1})"
            )

        expected_rows = csv_cfg.get('expected_rows')
        if expected_rows is not None and len(df) != expected_rows:
            raise ValueError(
                f"Expected {expected_rows} rows in {file_path.name}, found {len(df)}"
            )

        df = coerce_numeric(df)
        logger.info(f"  -> {len(df):,} rows loaded")

    return df


def coerce_numeric(df: pd.DataFrame) -> pd.DataFrame:
    """Convert numeric columns, failing on any value that is not a number."""
    df = df.copy()
    for col in NUMERIC_COLS:
        if col not in df.columns:
            continue
        try:
            df[col] = pd.to_numeric(df[col])
        except (ValueError, TypeError) as e:
            raise ValueError(f"Column '{col}' contains non-numeric values: {e}") from e
    return df


def parse_dates(df: pd.DataFrame, date_format: str = DEFAULT_DATE_FORMAT) -> pd.DataFrame:
    """
    Parse the date column strictly.

    Raises:
        ValueError: If any date does not match date_format
    """
    df = df.copy()
    if pd.api.types.is_datetime64_any_dtype(df[DATE_COL]):
        return df
    try:
        df[DATE_COL] = pd.to_datetime(df[DATE_COL], format=date_format, errors='raise')
    except (ValueError, TypeError) as e:
        raise ValueError(f"Malformed date in column '{DATE_COL}': {e}") from e
    return df


def add_calendar_features(df: pd.DataFrame) -> pd.DataFrame:
    """
    Append day_of_week and month as ordered categoricals derived from the date.

    Categories are fixed (all 7 days, all 12 months) so that a subset of the
    data never changes the level set.
    """
    df = df.copy()
    dates = df[DATE_COL]
    # pandas dayofweek is Monday=0; shift so Sunday comes first
    day_idx = (dates.dt.dayofweek + 1) % 7
    df['day_of_week'] = pd.Categorical.from_codes(
        day_idx.to_numpy(), categories=DAY_LABELS, ordered=True
    )
    df['month'] = pd.Categorical.from_codes(
        (dates.dt.month - 1).to_numpy(), categories=MONTH_LABELS, ordered=True
    )
    return df


def coerce_categoricals(df: pd.DataFrame) -> pd.DataFrame:
    """Convert every text column to pandas category dtype."""
    df = df.copy()
    for col in df.columns:
        if df[col].dtype == object or pd.api.types.is_string_dtype(df[col].dtype):
            df[col] = df[col].astype('category')
    return df


def filter_functional_days(df: pd.DataFrame, value: str = 'Yes') -> pd.DataFrame:
    """Keep only hours where the rental system was operational."""
    mask = df['functional_day'].astype(str) == value
    n_dropped = int((~mask).sum())
    if n_dropped:
        logger.info(f"Dropping {n_dropped:,} non-functional rows")
    return df.loc[mask].reset_index(drop=True)


def prepare_dataset(df: pd.DataFrame, config: Optional[dict] = None) -> pd.DataFrame:
    """
    Derive calendar features, coerce categoricals and filter functional days.

    Args:
        df: Raw frame from load_raw_data
        config: Optional data.yaml config (date format, filter value)

    Returns:
        Model-ready observation frame
    """
    config = config or {}
    date_format = config.get('csv', {}).get('date_format', DEFAULT_DATE_FORMAT)
    functional_value = config.get('filters', {}).get('functional_day', 'Yes')

    with timer("Prepare dataset"):
        out = parse_dates(df, date_format=date_format)
        out = add_calendar_features(out)
        out = coerce_categoricals(out)
        out = filter_functional_days(out, value=functional_value)
        logger.info(f"Prepared dataset: {len(out):,} rows, {out.shape[1]} columns")

    return out


def get_dataset(config: dict, path: Optional[Path] = None) -> pd.DataFrame:
    """
    Full ingestion chain: load, parse, derive and filter.

    Example:
        config = load_config('configs/data.yaml')
        seoul_bikes = get_dataset(config)
    """
    raw = load_raw_data(config, path=path)
    return prepare_dataset(raw, config)


def make_observation(record: dict, date_format: str = '%Y-%m-%d') -> pd.DataFrame:
    """
    Build a single-row observation frame for scoring.

    Calendar features are derived exactly as during ingestion. The outcome
    column may be omitted.

    Args:
        record: Column -> value mapping (must include 'date')
        date_format: Format of the date string in record

    Returns:
        One-row DataFrame
    """
    if DATE_COL not in record:
        raise KeyError(f"Observation is missing required column '{DATE_COL}'")

    frame = pd.DataFrame([record])
    frame = parse_dates(frame, date_format=date_format)
    frame = add_calendar_features(frame)
    frame = coerce_categoricals(frame)
    return frame
