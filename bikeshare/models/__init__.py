"""
Model implementations for the bike sharing demand project.

All models follow the BaseModel interface:
- fit(X_train, y_train)
- predict(X)
- get_feature_importance()

Available families:
- ranger: RandomForestModel (scikit-learn random forest)
- xgboost: XGBModel (gradient-boosted trees)
- cubist: CubistModel (rule-based regression)
"""

from .base import BaseModel

# Lazy imports for models that require native libraries
_RandomForestModel = None
_XGBModel = None
_CubistModel = None


def _import_rf():
    global _RandomForestModel
    if _RandomForestModel is None:
        from .rf_model import RandomForestModel
        _RandomForestModel = RandomForestModel
    return _RandomForestModel


def _import_xgb():
    global _XGBModel
    if _XGBModel is None:
        from .xgb_model import XGBModel
        _XGBModel = XGBModel
    return _XGBModel


def _import_cubist():
    global _CubistModel
    if _CubistModel is None:
        from .cubist_model import CubistModel
        _CubistModel = CubistModel
    return _CubistModel


# Canonical family keys and their display names
FAMILY_LABELS = {
    'ranger': 'Random Forest',
    'xgboost': 'Xgboost',
    'cubist': 'Cubist',
}

_ALIASES = {
    'ranger': 'ranger',
    'rf': 'ranger',
    'random_forest': 'ranger',
    'xgboost': 'xgboost',
    'xgb': 'xgboost',
    'cubist': 'cubist',
    'cubist_rules': 'cubist',
}

_IMPORTERS = {
    'ranger': _import_rf,
    'xgboost': _import_xgb,
    'cubist': _import_cubist,
}


__all__ = [
    'BaseModel',
    'RandomForestModel',
    'XGBModel',
    'CubistModel',
    'FAMILY_LABELS',
    'normalize_family',
    'get_model_class',
    'get_default_search_space',
    'create_model',
]


def __getattr__(name: str):
    """Lazy import for models with heavy dependencies."""
    if name == 'RandomForestModel':
        return _import_rf()
    elif name == 'XGBModel':
        return _import_xgb()
    elif name == 'CubistModel':
        return _import_cubist()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def normalize_family(name: str) -> str:
    """
    Map a model name or alias to its canonical family key.

    Raises:
        ValueError: If model name is not recognized
    """
    key = name.lower()
    if key not in _ALIASES:
        raise ValueError(f"Unknown model: {name}. Available: {sorted(_ALIASES)}")
    return _ALIASES[key]


def get_model_class(name: str):
    """
    Get model class by name.

    Args:
        name: Model name (case-insensitive). Options:
            'ranger', 'rf', 'random_forest', 'xgboost', 'xgb', 'cubist', 'cubist_rules'

    Returns:
        Model class
    """
    return _IMPORTERS[normalize_family(name)]()


def get_default_search_space(name: str) -> dict:
    """Default hyperparameter ranges of a family (see each model module)."""
    family = normalize_family(name)
    if family == 'ranger':
        from .rf_model import SEARCH_SPACE
    elif family == 'xgboost':
        from .xgb_model import SEARCH_SPACE
    else:
        from .cubist_model import SEARCH_SPACE
    return dict(SEARCH_SPACE)


def create_model(name: str, model_config: dict = None, params: dict = None) -> BaseModel:
    """
    Instantiate a model with its config, overriding params with a tuned point.

    Args:
        name: Model family name
        model_config: Loaded model_<family>.yaml config
        params: Hyperparameters to apply on top of model_config['params']
    """
    model_config = dict(model_config or {})
    merged = {**model_config.get('params', {}), **(params or {})}
    config = {**model_config, 'params': merged}
    return get_model_class(name)(config)
