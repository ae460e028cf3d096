"""
Random forest regressor (scikit-learn) for bike rental counts.
"""

import logging
from typing import Dict, Any

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor

from .base import BaseModel

logger = logging.getLogger(__name__)


DEFAULT_CONFIG = {
    'params': {
        'n_estimators': 1000,
        'max_features': 1.0,
        'min_samples_split': 2,
        'n_jobs': 1,
        'random_state': 42,
    },
    'prediction': {
        'clip_min': 0.0,
    },
}

# mtry -> max_features, min_n -> min_samples_split; trees stay fixed
SEARCH_SPACE = {
    'max_features': {'range': [1, 30], 'integer': True},
    'min_samples_split': {'range': [2, 40], 'integer': True},
}


class RandomForestModel(BaseModel):
    """Random forest with a fixed number of trees and tunable mtry / min_n."""

    family = 'ranger'

    def __init__(self, config: dict):
        super().__init__(config)
        self.params = {**DEFAULT_CONFIG['params'], **config.get('params', {})}
        self.prediction_params = {**DEFAULT_CONFIG['prediction'], **config.get('prediction', {})}

    def get_params(self) -> Dict[str, Any]:
        return dict(self.params)

    def _resolve_params(self, n_features: int) -> Dict[str, Any]:
        params = dict(self.params)
        max_features = params.get('max_features')
        # An integer mtry cannot exceed the number of predictors
        if isinstance(max_features, (int, np.integer)) and not isinstance(max_features, bool):
            if max_features > n_features:
                logger.debug(f"max_features={max_features} capped at {n_features} predictors")
            params['max_features'] = int(min(max(max_features, 1), n_features))
        params['min_samples_split'] = int(max(params.get('min_samples_split', 2), 2))
        return params

    def fit(self, X_train: pd.DataFrame, y_train: pd.Series) -> 'RandomForestModel':
        self.feature_names = list(X_train.columns)
        params = self._resolve_params(X_train.shape[1])
        self.model = RandomForestRegressor(**params)
        self.model.fit(X_train, y_train)
        return self

    def _predict_raw(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict(X[self.feature_names])

    def get_feature_importance(self) -> pd.DataFrame:
        if self.model is None or len(self.feature_names) == 0:
            return pd.DataFrame(columns=['feature', 'importance'])

        return pd.DataFrame({
            'feature': self.feature_names,
            'importance': self.model.feature_importances_,
        }).sort_values('importance', ascending=False).reset_index(drop=True)
