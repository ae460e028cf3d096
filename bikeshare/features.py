"""
Feature recipes for the bike sharing models.

A Recipe is an ordered list of column transformations. It is fit once on a
reference frame, where each step learns what it needs (categorical levels,
zero-variance columns) and the input schema is recorded. The fitted recipe
then transforms any frame identically: held-out folds, the test split and
single production records.

Steps:
- am_pm: AM/PM flag from the hour of day
- date_signature: calendar signature of the date (numbers and labels)
- remove: drop unused columns
- novel: route unseen categorical levels to a "new" level
- dummy: one-hot (or reference) encoding of nominal predictors
- ordinal: integer codes for nominal predictors (unseen -> -1)
- zv: drop predictors with zero variance at fit time
"""

import copy
import logging
import re
from typing import Optional, List, Dict, Any, Tuple

import numpy as np
import pandas as pd

from .data import TARGET_COL, DATE_COL, DAY_LABELS, MONTH_LABELS

logger = logging.getLogger(__name__)

NOVEL_LEVEL = 'new'


def _is_nominal(series: pd.Series) -> bool:
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or series.dtype == object
        or pd.api.types.is_string_dtype(series.dtype)
    )


def _nominal_predictors(df: pd.DataFrame, outcome: Optional[str]) -> List[str]:
    return [c for c in df.columns if c != outcome and _is_nominal(df[c])]


def _levels(series: pd.Series) -> List[str]:
    """Levels in declared order for categoricals, sorted otherwise."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(c) for c in series.cat.categories]
    return sorted(series.dropna().astype(str).unique().tolist())


def _as_str(series: pd.Series) -> pd.Series:
    """String view of a column that keeps missing values missing."""
    return series.astype(object).where(series.notna(), None).map(
        lambda v: None if v is None else str(v)
    )


def _clean_name(value: str) -> str:
    return re.sub(r'[^0-9a-zA-Z_]+', '.', str(value))


class RecipeStep:
    """Base class: fit learns state from the reference frame, transform applies it."""

    name = 'step'

    def __init__(self):
        self.trained = False

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'RecipeStep':
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(trained={self.trained})"


class AmPmStep(RecipeStep):
    """Add a categorical am/pm column: hour < 12 is 'am'."""

    name = 'am_pm'

    def __init__(self, column: str = 'hour', new_column: str = 'am_pm'):
        super().__init__()
        self.column = column
        self.new_column = new_column

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        flag = np.where(df[self.column] < 12, 'am', 'pm')
        df[self.new_column] = pd.Categorical(flag, categories=['am', 'pm'])
        return df


class DateSignatureStep(RecipeStep):
    """
    Expand a date column into calendar features named <date>_<feature>.

    Label features (month_lbl, wday_lbl) are ordered categoricals and are
    encoded by later steps; every other feature is an integer.
    """

    name = 'date_signature'

    AVAILABLE = (
        'year', 'half', 'quarter', 'month_num', 'month_lbl', 'day', 'wday', 'wday_lbl',
        'mday', 'qday', 'yday', 'mweek', 'week', 'week2', 'week3', 'week4'
    )
    LABELS = {'month_lbl': MONTH_LABELS, 'wday_lbl': DAY_LABELS}

    def __init__(self, column: str = DATE_COL, features: Optional[List[str]] = None):
        super().__init__()
        self.column = column
        self.features = list(features) if features else ['year', 'quarter', 'day', 'yday', 'week']
        unknown = set(self.features) - set(self.AVAILABLE)
        if unknown:
            raise ValueError(f"Unknown date signature features: {sorted(unknown)}")

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        dates = pd.to_datetime(df[self.column]).dt.normalize()
        quarter = dates.dt.quarter
        quarter_start = dates.dt.to_period('Q').dt.start_time
        # Week of year counted in 7-day blocks from 1 January
        week = (dates.dt.dayofyear - 1) // 7 + 1
        # 0 = Sunday
        wday0 = (dates.dt.dayofweek + 1) % 7
        computed = {
            'year': dates.dt.year,
            'half': np.where(quarter > 2, 2, 1),
            'quarter': quarter,
            'month_num': dates.dt.month,
            'month_lbl': dates.dt.month - 1,
            'day': dates.dt.day,
            'wday': wday0 + 1,
            'wday_lbl': wday0,
            'mday': dates.dt.day,
            'qday': (dates - quarter_start).dt.days + 1,
            'yday': dates.dt.dayofyear,
            'mweek': (dates.dt.day - 1) // 7 + 1,
            'week': week,
            'week2': week % 2,
            'week3': week % 3,
            'week4': week % 4,
        }
        for feature in self.features:
            values = np.asarray(computed[feature], dtype=int)
            if feature in self.LABELS:
                df[f"{self.column}_{feature}"] = pd.Categorical.from_codes(
                    values, categories=self.LABELS[feature], ordered=True
                )
            else:
                df[f"{self.column}_{feature}"] = values
        return df


class RemoveStep(RecipeStep):
    """Drop columns that are not used for modeling."""

    name = 'remove'

    def __init__(self, columns: List[str]):
        super().__init__()
        self.columns = list(columns)
        self.removed_: List[str] = []

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'RemoveStep':
        self.removed_ = [c for c in self.columns if c in df.columns and c != outcome]
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        return df.drop(columns=[c for c in self.removed_ if c in df.columns])


class NovelStep(RecipeStep):
    """
    Learn the levels of every nominal predictor; at transform time any level
    not seen at fit time is replaced by the novel level.
    """

    name = 'novel'

    def __init__(self, new_level: str = NOVEL_LEVEL):
        super().__init__()
        self.new_level = new_level
        self.levels_: Dict[str, List[str]] = {}

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'NovelStep':
        self.levels_ = {}
        for col in _nominal_predictors(df, outcome):
            levels = _levels(df[col])
            if self.new_level in levels:
                raise ValueError(f"Column '{col}' already has a level named '{self.new_level}'")
            self.levels_[col] = levels
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        for col, levels in self.levels_.items():
            values = _as_str(df[col])
            unseen = values.notna() & ~values.isin(levels)
            if unseen.any():
                logger.debug(
                    f"{int(unseen.sum())} unseen level(s) in '{col}' mapped to '{self.new_level}'"
                )
            values = values.where(~unseen, self.new_level)
            df[col] = pd.Categorical(values, categories=levels + [self.new_level])
        return df


class DummyStep(RecipeStep):
    """
    Indicator encoding of nominal predictors with levels fixed at fit time.

    one_hot=True keeps a column per level; otherwise the first level is the
    reference and gets no column.
    """

    name = 'dummy'

    def __init__(self, one_hot: bool = True):
        super().__init__()
        self.one_hot = one_hot
        self.levels_: Dict[str, List[str]] = {}

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'DummyStep':
        self.levels_ = {col: _levels(df[col]) for col in _nominal_predictors(df, outcome)}
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        for col, levels in self.levels_.items():
            values = _as_str(df[col])
            kept = levels if self.one_hot else levels[1:]
            position = df.columns.get_loc(col)
            indicators = pd.DataFrame(
                {f"{col}_{_clean_name(level)}": (values == level).astype(float).to_numpy()
                 for level in kept},
                index=df.index
            )
            df = pd.concat(
                [df.iloc[:, :position], indicators, df.iloc[:, position + 1:]],
                axis=1
            )
        return df


class OrdinalStep(RecipeStep):
    """Integer-code nominal predictors; unseen or missing levels become -1."""

    name = 'ordinal'

    def __init__(self, unknown_value: int = -1):
        super().__init__()
        self.unknown_value = unknown_value
        self.levels_: Dict[str, List[str]] = {}

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'OrdinalStep':
        self.levels_ = {col: _levels(df[col]) for col in _nominal_predictors(df, outcome)}
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        for col, levels in self.levels_.items():
            codes = pd.Categorical(_as_str(df[col]), categories=levels).codes.astype(int)
            codes[codes < 0] = self.unknown_value
            df[col] = codes
        return df


class ZeroVarianceStep(RecipeStep):
    """Drop predictors that hold a single value in the reference frame."""

    name = 'zv'

    def __init__(self):
        super().__init__()
        self.removed_: List[str] = []

    def fit(self, df: pd.DataFrame, outcome: Optional[str] = None) -> 'ZeroVarianceStep':
        self.removed_ = [
            c for c in df.columns
            if c != outcome and df[c].nunique(dropna=False) <= 1
        ]
        if self.removed_:
            logger.debug(f"Zero-variance predictors removed: {self.removed_}")
        self.trained = True
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        return df.drop(columns=[c for c in self.removed_ if c in df.columns])


STEP_REGISTRY = {
    'am_pm': AmPmStep,
    'date_signature': DateSignatureStep,
    'remove': RemoveStep,
    'novel': NovelStep,
    'dummy': DummyStep,
    'ordinal': OrdinalStep,
    'zv': ZeroVarianceStep,
}


class Recipe:
    """
    Ordered fit/transform feature pipeline.

    Usage:
        recipe = build_recipe('xgboost', recipes_config)
        recipe.fit(train_df)
        X_test = recipe.transform(test_df)
    """

    def __init__(self, steps: List[RecipeStep], outcome: Optional[str] = TARGET_COL, name: str = 'recipe'):
        self.steps = steps
        self.outcome = outcome
        self.name = name
        self.input_columns_: List[str] = []
        self.output_columns_: List[str] = []
        self.fitted = False

    def clone(self) -> 'Recipe':
        """Unfitted copy with the same step definitions."""
        fresh = copy.deepcopy(self)
        fresh.input_columns_ = []
        fresh.output_columns_ = []
        fresh.fitted = False
        for step in fresh.steps:
            step.trained = False
        return fresh

    @property
    def predictors_in(self) -> List[str]:
        return [c for c in self.input_columns_ if c != self.outcome]

    @property
    def feature_names(self) -> List[str]:
        return [c for c in self.output_columns_ if c != self.outcome]

    def fit(self, reference: pd.DataFrame) -> 'Recipe':
        """
        Learn every step from the reference frame.

        Returns:
            self, fitted
        """
        if self.outcome is not None and self.outcome not in reference.columns:
            raise ValueError(f"Outcome '{self.outcome}' not found in reference data")

        self.input_columns_ = list(reference.columns)
        current = reference
        for step in self.steps:
            step.fit(current, self.outcome)
            current = step.transform(current)

        self.output_columns_ = list(current.columns)
        self.fitted = True
        logger.debug(f"Recipe '{self.name}' fit: {len(self.feature_names)} predictors")
        return self

    def _check_schema(self, df: pd.DataFrame) -> None:
        unknown = [c for c in df.columns if c not in self.input_columns_]
        if unknown:
            raise ValueError(f"Columns not in recipe '{self.name}' schema: {unknown}")
        missing = [c for c in self.predictors_in if c not in df.columns]
        if missing:
            raise ValueError(f"Columns required by recipe '{self.name}' are missing: {missing}")

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply the fitted steps to new data.

        The outcome column is optional; every other column must belong to the
        schema seen at fit time.
        """
        if not self.fitted:
            raise RuntimeError(f"Recipe '{self.name}' must be fit before transform")
        self._check_schema(df)

        current = df[[c for c in self.input_columns_ if c in df.columns]]
        for step in self.steps:
            current = step.transform(current)

        columns = [c for c in self.output_columns_ if c in current.columns]
        return current[columns]

    def fit_transform(self, reference: pd.DataFrame) -> pd.DataFrame:
        return self.fit(reference).transform(reference)

    def split_xy(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Optional[pd.Series]]:
        """Transform and separate predictors from the outcome (if present)."""
        baked = self.transform(df)
        if self.outcome is not None and self.outcome in baked.columns:
            return baked.drop(columns=[self.outcome]), baked[self.outcome]
        return baked, None

    def __repr__(self) -> str:
        steps = ', '.join(step.name for step in self.steps)
        return f"Recipe(name={self.name!r}, steps=[{steps}], fitted={self.fitted})"


def build_step(spec: Dict[str, Any]) -> RecipeStep:
    """Create a step from a config entry like {'step': 'remove', 'columns': [...]}."""
    spec = dict(spec)
    step_name = spec.pop('step', None)
    if step_name not in STEP_REGISTRY:
        raise ValueError(f"Unknown recipe step: {step_name}. Available: {sorted(STEP_REGISTRY)}")
    return STEP_REGISTRY[step_name](**spec)


def build_recipe(family: str, config: dict, outcome: Optional[str] = TARGET_COL) -> Recipe:
    """
    Build the (unfitted) recipe for a model family from recipes.yaml.

    Args:
        family: Model family key (e.g. 'xgboost')
        config: Loaded recipes.yaml config
        outcome: Outcome column name

    Returns:
        Unfitted Recipe
    """
    recipes = config.get('recipes', {})
    if family not in recipes:
        raise KeyError(f"No recipe configured for '{family}'. Available: {sorted(recipes)}")

    steps = [build_step(spec) for spec in recipes[family].get('steps', [])]
    return Recipe(steps, outcome=outcome, name=family)
