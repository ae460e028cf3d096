"""
Tests for ingestion and calendar feature derivation.
"""

import pandas as pd
import pytest

from bikeshare.data import (
    COLUMN_NAMES, DAY_LABELS, MONTH_LABELS, TARGET_COL,
    add_calendar_features, coerce_categoricals, filter_functional_days,
    get_dataset, load_raw_data, make_observation, parse_dates
)
from conftest import write_raw_csv


# =============================================================================
# load_raw_data
# =============================================================================

class TestLoadRawData:

    def test_loads_with_semantic_names(self, data_config, raw_frame):
        df = load_raw_data(data_config)
        assert list(df.columns) == COLUMN_NAMES
        assert len(df) == len(raw_frame)
        assert pd.api.types.is_numeric_dtype(df[TARGET_COL])
        assert pd.api.types.is_numeric_dtype(df['temp'])

    def test_missing_file_raises(self, data_config, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_raw_data(data_config, path=tmp_path / 'nope.csv')

    def test_wrong_column_count_raises(self, data_config, raw_frame, tmp_path):
        path = write_raw_csv(raw_frame.drop(columns=['snowfall']), tmp_path / 'short.csv')
        with pytest.raises(ValueError):
            load_raw_data(data_config, path=path)

    def test_short_row_raises(self, data_config, raw_frame, tmp_path):
        path = write_raw_csv(raw_frame.head(10), tmp_path / 'ragged.csv')
        with open(path, 'a', encoding='latin-1') as f:
            f.write('01/01/2018,120,3,1.0,40\n')
        with pytest.raises(ValueError):
            load_raw_data(data_config, path=path)

    def test_non_numeric_value_raises(self, data_config, raw_frame, tmp_path):
        bad = raw_frame.head(10).copy()
        bad['humidity'] = bad['humidity'].astype(object)
        bad.loc[3, 'humidity'] = 'humid'
        path = write_raw_csv(bad, tmp_path / 'bad_numeric.csv')
        with pytest.raises(ValueError, match='humidity'):
            load_raw_data(data_config, path=path)

    def test_expected_rows_mismatch_raises(self, data_config):
        data_config['csv']['expected_rows'] = 8760
        with pytest.raises(ValueError, match='8760'):
            load_raw_data(data_config)


# =============================================================================
# Dates and calendar features
# =============================================================================

class TestCalendarFeatures:

    def test_malformed_date_raises(self):
        df = pd.DataFrame({'date': ['01/12/2017', '2017-12-02']})
        with pytest.raises(ValueError):
            parse_dates(df, '%d/%m/%Y')

    def test_day_and_month_labels(self):
        df = parse_dates(pd.DataFrame({'date': ['03/12/2017', '01/01/2018']}), '%d/%m/%Y')
        out = add_calendar_features(df)

        # 3 Dec 2017 was a Sunday
        assert out['day_of_week'].iloc[0] == 'Sun'
        assert out['month'].iloc[0] == 'Dec'
        assert out['day_of_week'].iloc[1] == 'Mon'
        assert list(out['day_of_week'].cat.categories) == DAY_LABELS
        assert list(out['month'].cat.categories) == MONTH_LABELS
        assert out['month'].cat.ordered

    def test_input_not_mutated(self):
        df = parse_dates(pd.DataFrame({'date': ['03/12/2017']}), '%d/%m/%Y')
        add_calendar_features(df)
        assert 'day_of_week' not in df.columns


class TestPrepareDataset:

    def test_filter_functional_days(self, data_config):
        raw = load_raw_data(data_config)
        out = filter_functional_days(coerce_categoricals(raw))
        assert (out['functional_day'].astype(str) == 'Yes').all()
        assert len(out) < len(raw)
        assert out.index.equals(pd.RangeIndex(len(out)))

    def test_get_dataset(self, data_config):
        df = get_dataset(data_config)
        assert pd.api.types.is_datetime64_any_dtype(df['date'])
        for col in ('season', 'holiday', 'functional_day', 'day_of_week', 'month'):
            assert isinstance(df[col].dtype, pd.CategoricalDtype)
        assert set(df['season'].cat.categories) == {'Winter', 'Spring', 'Summer', 'Autumn'}


def test_make_observation():
    obs = make_observation({
        'date': '2019-01-24', 'hour': 6, 'temp': 6.0, 'season': 'Autumn',
    })
    assert len(obs) == 1
    assert obs['day_of_week'].iloc[0] == 'Thu'
    assert obs['month'].iloc[0] == 'Jan'


def test_make_observation_requires_date():
    with pytest.raises(KeyError):
        make_observation({'hour': 6})
