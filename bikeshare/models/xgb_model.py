"""
XGBoost model wrapper for bike rental counts.
"""

from typing import Dict, Any

import xgboost as xgb
import numpy as np
import pandas as pd

from .base import BaseModel


DEFAULT_CONFIG = {
    'params': {
        'objective': 'reg:squarederror',
        'eval_metric': 'rmse',
        'eta': 0.3,
        'max_depth': 6,
        'min_child_weight': 1,
        'gamma': 0.0,
        'subsample': 1.0,
        'tree_method': 'hist',
        'nthread': 1,
        'seed': 42
    },
    'training': {
        'num_boost_round': 15,
        'verbose_eval': False
    },
    'prediction': {
        'clip_min': 0.0
    }
}

# trees, min_n, tree_depth, learn_rate (log10), loss_reduction (log10), sample_size
SEARCH_SPACE = {
    'num_boost_round': {'range': [1, 2000], 'integer': True},
    'min_child_weight': {'range': [2, 40], 'integer': True},
    'max_depth': {'range': [1, 15], 'integer': True},
    'eta': {'range': [-10, -1], 'log10': True},
    'gamma': {'range': [-10, 1.5], 'log10': True},
    'subsample': {'range': [0.1, 1.0]},
}

# Keys that belong to the training loop rather than booster params
TRAINING_KEYS = ('num_boost_round', 'verbose_eval')


class XGBModel(BaseModel):
    """XGBoost booster trained through the native DMatrix API."""

    family = 'xgboost'
    seed_param = 'seed'

    def __init__(self, config: dict):
        """
        Initialize XGBoost model.

        Args:
            config: Configuration dict with 'params' and 'training' sections.
                Tuned values such as num_boost_round may arrive in 'params';
                they are moved to the training section.
        """
        super().__init__(config)

        params = {**DEFAULT_CONFIG['params'], **config.get('params', {})}
        training = {**DEFAULT_CONFIG['training'], **config.get('training', {})}
        for key in TRAINING_KEYS:
            if key in params:
                training[key] = params.pop(key)

        self.params = params
        self.training_params = training
        self.prediction_params = {**DEFAULT_CONFIG['prediction'], **config.get('prediction', {})}

    def get_params(self) -> Dict[str, Any]:
        return {**self.params, 'num_boost_round': self.training_params['num_boost_round']}

    @staticmethod
    def _to_numeric(X: pd.DataFrame) -> pd.DataFrame:
        # Categorical columns go in as integer codes
        X_proc = X.copy()
        for col in X_proc.columns:
            if X_proc[col].dtype.name == 'category':
                X_proc[col] = X_proc[col].cat.codes
        return X_proc

    def fit(self, X_train: pd.DataFrame, y_train: pd.Series) -> 'XGBModel':
        """
        Train the booster for the configured number of rounds.

        Returns:
            Self (for chaining)
        """
        self.feature_names = list(X_train.columns)

        params = dict(self.params)
        params['max_depth'] = int(params['max_depth'])
        dtrain = xgb.DMatrix(self._to_numeric(X_train), label=np.asarray(y_train, dtype=float))

        self.model = xgb.train(
            params,
            dtrain,
            num_boost_round=int(self.training_params['num_boost_round']),
            verbose_eval=self.training_params.get('verbose_eval', False)
        )
        return self

    def _predict_raw(self, X: pd.DataFrame) -> np.ndarray:
        return self.model.predict(xgb.DMatrix(self._to_numeric(X[self.feature_names])))

    def get_feature_importance(self) -> pd.DataFrame:
        """
        Get gain-based feature importance scores.

        Returns:
            DataFrame with columns ['feature', 'importance']
        """
        if self.model is None or len(self.feature_names) == 0:
            return pd.DataFrame(columns=['feature', 'importance'])

        importance_dict = self.model.get_score(importance_type='gain')

        importance_data = []
        for i, name in enumerate(self.feature_names):
            importance_data.append({
                'feature': name,
                'importance': importance_dict.get(name, importance_dict.get(f'f{i}', 0.0))
            })

        return (
            pd.DataFrame(importance_data)
            .sort_values('importance', ascending=False)
            .reset_index(drop=True)
        )
