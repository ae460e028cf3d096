"""
Pytest configuration for the Seoul bike sharing tests.

Configures warning filters and provides a small synthetic dataset in the
raw 14-column layout (dd/mm/YYYY dates, one header line to skip).
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from bikeshare.data import COLUMN_NAMES


def pytest_configure(config):
    """Configure pytest with warning filters."""
    # Filter known warnings from external libraries that we cannot fix
    config.addinivalue_line(
        "filterwarnings",
        "ignore:.*_ARRAY_API not found.*:UserWarning"
    )
    # xgboost / scipy deprecation chatter
    config.addinivalue_line(
        "filterwarnings",
        "ignore::DeprecationWarning"
    )
    config.addinivalue_line(
        "filterwarnings",
        "ignore::FutureWarning:xgboost.*"
    )


def _season(month: int) -> str:
    if month in (12, 1, 2):
        return 'Winter'
    if month in (3, 4, 5):
        return 'Spring'
    if month in (6, 7, 8):
        return 'Summer'
    return 'Autumn'


def make_raw_frame(n_days: int = 40, seed: int = 0) -> pd.DataFrame:
    """Hourly records on n_days dates spread over Dec 2017 - Nov 2018."""
    rng = np.random.default_rng(seed)
    days = pd.date_range('2017-12-01', periods=n_days, freq='9D')

    rows = []
    for d_i, day in enumerate(days):
        holiday = 'Holiday' if d_i % 7 == 3 else 'No Holiday'
        functional = 'No' if d_i in (5, 17) else 'Yes'
        base_temp = 15 - 15 * np.cos(2 * np.pi * (day.dayofyear - 15) / 365)
        for hour in range(24):
            temp = round(base_temp + 4 * np.sin(np.pi * hour / 24) + rng.normal(0, 1), 1)
            humidity = int(rng.integers(20, 95))
            rainfall = round(float(rng.choice([0.0, 0.0, 0.0, 0.5, 2.0])), 1)
            demand = 200 + 40 * max(temp, 0) + 500 * (hour in (8, 18)) - 300 * (rainfall > 0)
            count = 0 if functional == 'No' else max(int(demand + rng.normal(0, 50)), 0)
            rows.append([
                day.strftime('%d/%m/%Y'),
                count,
                hour,
                temp,
                humidity,
                round(float(rng.uniform(0, 4)), 1),
                int(rng.integers(300, 2000)),
                round(temp - 8 + rng.normal(0, 1), 1),
                round(max(0.0, np.sin(np.pi * (hour - 6) / 12)) * 2, 2) if 6 <= hour <= 18 else 0.0,
                rainfall,
                0.0 if temp > 0 else round(float(rng.choice([0.0, 0.4])), 1),
                _season(day.month),
                holiday,
                functional,
            ])
    return pd.DataFrame(rows, columns=COLUMN_NAMES)


def write_raw_csv(frame: pd.DataFrame, path: Path) -> Path:
    """Write in the raw layout: unit-symbol header line then untyped rows."""
    header = [
        'Date', 'Rented Bike Count', 'Hour', 'Temperature(°C)', 'Humidity(%)',
        'Wind speed (m/s)', 'Visibility (10m)', 'Dew point temperature(°C)',
        'Solar Radiation (MJ/m2)', 'Rainfall(mm)', 'Snowfall (cm)', 'Seasons',
        'Holiday', 'Functioning Day'
    ]
    with open(path, 'w', encoding='latin-1') as f:
        f.write(','.join(header) + '\n')
    frame.to_csv(path, mode='a', header=False, index=False, encoding='latin-1')
    return path


@pytest.fixture(scope='session')
def raw_frame():
    return make_raw_frame()


@pytest.fixture(scope='session')
def raw_csv(tmp_path_factory, raw_frame):
    path = tmp_path_factory.mktemp('raw') / 'SeoulBikeData.csv'
    return write_raw_csv(raw_frame, path)


@pytest.fixture
def data_config(raw_csv):
    return {
        'paths': {'raw_dir': str(raw_csv.parent)},
        'files': {'raw': raw_csv.name},
        'csv': {
            'skip_rows': 1,
            'encoding': 'latin-1',
            'date_format': '%d/%m/%Y',
            'expected_rows': None,
        },
        'filters': {'functional_day': 'Yes'},
    }


@pytest.fixture(scope='session')
def dataset(raw_csv):
    from bikeshare.data import get_dataset
    config = {
        'paths': {'raw_dir': str(raw_csv.parent)},
        'files': {'raw': raw_csv.name},
        'csv': {'skip_rows': 1, 'expected_rows': None},
    }
    return get_dataset(config)


@pytest.fixture(scope='session')
def recipes_config():
    from bikeshare.utils import load_config
    return load_config('configs/recipes.yaml')


@pytest.fixture
def small_model_configs():
    """Model configs with small budgets so tests stay fast."""
    return {
        'ranger': {
            'params': {'n_estimators': 25, 'n_jobs': 1},
            'search_space': {
                'max_features': {'range': [1, 10], 'integer': True},
                'min_samples_split': {'range': [2, 20], 'integer': True},
            },
            'round2': None,
        },
        'xgboost': {
            'params': {'nthread': 1},
            'search_space': {
                'num_boost_round': {'range': [5, 40], 'integer': True},
                'eta': {'range': [-2, -0.5], 'log10': True},
            },
            'round2': {
                'size': 3,
                'ranges': {
                    'num_boost_round': {'range': [20, 40], 'integer': True},
                },
            },
        },
        'cubist': {
            'search_space': {
                'n_committees': {'range': [1, 5], 'integer': True},
            },
            'round2': {
                'size': 3,
                'ranges': {
                    'n_committees': {'range': [2, 4], 'integer': True},
                    'neighbors': {'range': [2, 7], 'integer': True},
                },
            },
        },
    }
