"""
Cubist rule-based regression for bike rental counts.

Committees boost a sequence of rule-based models; neighbors adjusts each
prediction with the nearest training instances (0 turns that off).
"""

from typing import Dict, Any

import numpy as np
import pandas as pd
from cubist import Cubist

from .base import BaseModel


DEFAULT_CONFIG = {
    'params': {
        'n_committees': 1,
        'neighbors': 0,
        'n_rules': 500,
        'random_state': 42,
    },
    'prediction': {
        'clip_min': 0.0,
    },
}

SEARCH_SPACE = {
    'n_committees': {'range': [1, 100], 'integer': True},
    'neighbors': {'range': [0, 9], 'integer': True},
}


class CubistModel(BaseModel):
    """Cubist committees with optional nearest-neighbor correction."""

    family = 'cubist'

    def __init__(self, config: dict):
        super().__init__(config)
        self.params = {**DEFAULT_CONFIG['params'], **config.get('params', {})}
        self.prediction_params = {**DEFAULT_CONFIG['prediction'], **config.get('prediction', {})}

    def get_params(self) -> Dict[str, Any]:
        return dict(self.params)

    def _estimator_params(self) -> Dict[str, Any]:
        params = dict(self.params)
        params['n_committees'] = int(min(max(params['n_committees'], 1), 100))
        neighbors = int(params.get('neighbors') or 0)
        if not 0 <= neighbors <= 9:
            raise ValueError(f"neighbors must be in [0, 9], got {neighbors}")
        params['neighbors'] = neighbors if neighbors > 0 else None
        return params

    def fit(self, X_train: pd.DataFrame, y_train: pd.Series) -> 'CubistModel':
        self.feature_names = list(X_train.columns)
        self.model = Cubist(**self._estimator_params())
        self.model.fit(X_train, np.asarray(y_train, dtype=float))
        return self

    def _predict_raw(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict(X[self.feature_names])
