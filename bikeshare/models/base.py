"""
Base model interface for the bike sharing regressors.

All model families implement this interface so that tuning, last fit and
finalization can treat them uniformly.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any

import pandas as pd
import numpy as np


class BaseModel(ABC):
    """Abstract base for all models ensuring consistent interface."""

    # Registry key of the model family
    family = 'base'

    # Name of the parameter carrying the random seed
    seed_param = 'random_state'

    def __init__(self, config: dict):
        """
        Initialize model with configuration.

        Args:
            config: Model configuration dictionary with 'params' and
                optional 'training' / 'prediction' sections
        """
        self.config = config
        self.model = None
        self.feature_names: List[str] = []
        self.prediction_params = dict(config.get('prediction', {}))

    @abstractmethod
    def fit(self, X_train: pd.DataFrame, y_train: pd.Series) -> 'BaseModel':
        """
        Train the model on baked predictors.

        Returns:
            self for method chaining
        """
        pass

    @abstractmethod
    def _predict_raw(self, X: pd.DataFrame) -> np.ndarray:
        pass

    @abstractmethod
    def get_params(self) -> Dict[str, Any]:
        """Hyperparameters the model was (or will be) trained with."""
        pass

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """
        Generate predictions for input features.

        Rental counts cannot be negative, so predictions are clipped at
        prediction.clip_min when configured.
        """
        if self.model is None:
            raise RuntimeError(f"{self.__class__.__name__} must be fit before predict")
        preds = np.asarray(self._predict_raw(X), dtype=float)
        clip_min = self.prediction_params.get('clip_min')
        if clip_min is not None:
            preds = np.maximum(preds, clip_min)
        return preds

    def get_feature_importance(self) -> pd.DataFrame:
        """
        Return feature importance if available.

        Returns:
            DataFrame with columns ['feature', 'importance']
        """
        return pd.DataFrame(columns=['feature', 'importance'])
