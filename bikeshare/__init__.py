"""Seoul bike sharing demand: ingestion, recipes, tuning and finalized models."""

# Core modules
from . import data
from . import features
from . import validation
from . import evaluate
from . import tuning

# Models
from . import models

__all__ = [
    "data",
    "features",
    "validation",
    "evaluate",
    "tuning",
    "models",
]
