"""
Shared helpers for the bike sharing pipeline.

Seeding, logging set-up, stage timing, YAML config access and the worker
count used when tuning folds in parallel.
"""

import os
import random
import logging
import time
import yaml
from pathlib import Path
from contextlib import contextmanager
from typing import Iterator, Optional, Union

import numpy as np
import psutil

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def set_seed(seed: int = 42) -> None:
    """Seed the global Python and NumPy generators used outside the seeded grids."""
    random.seed(seed)
    np.random.seed(seed)
    os.environ['PYTHONHASHSEED'] = str(seed)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Send pipeline logs to the console and, for a training run, to its log file.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: Optional path, parent directories are created

    Returns:
        The utils module logger
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers)
    return logger


@contextmanager
def timer(stage: str) -> Iterator[None]:
    """
    Log the wall time of a pipeline stage.

    Usage:
        with timer("Tune xgboost (round 1)"):
            results = tune_grid(...)
    """
    logger.info(f"[{stage}] starting...")
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(f"[{stage}] done in {time.perf_counter() - start:.3f}s")


def get_project_root() -> Path:
    """Directory holding configs/, data/ and the bikeshare package."""
    return PROJECT_ROOT


def load_config(path: Union[str, Path]) -> dict:
    """
    Read a YAML config such as configs/run_defaults.yaml.

    A relative path that does not exist from the working directory is looked
    up under the project root, so the CLIs work from any directory.

    Raises:
        FileNotFoundError: If neither location holds the file
    """
    candidates = [Path(path)]
    if not Path(path).is_absolute():
        candidates.append(PROJECT_ROOT / path)

    for candidate in candidates:
        if candidate.is_file():
            with open(candidate, 'r') as f:
                return yaml.safe_load(f) or {}
    raise FileNotFoundError(f"Config file not found: {path}")


def get_path(config: dict, key: str) -> Path:
    """
    Path stored under a dotted key, anchored at the project root when relative.

    Example:
        >>> run_config = load_config('configs/run_defaults.yaml')
        >>> artifacts = get_path(run_config, 'artifacts.dir')
    """
    value = config
    for part in key.split('.'):
        if not isinstance(value, dict) or part not in value:
            raise KeyError(f"Key '{key}' not found in config")
        value = value[part]

    path = Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _affordable_workers(memory_per_job_gb: float) -> int:
    # Each fold worker holds its own copy of the data and the fitted models
    available_gb = psutil.virtual_memory().available / 1024 ** 3
    by_memory = max(1, int(available_gb // memory_per_job_gb))
    return min(by_memory, os.cpu_count() or 1)


def resolve_n_jobs(n_jobs: Optional[int], memory_per_job_gb: float = 1.0) -> int:
    """
    Worker processes for fold evaluation.

    A positive n_jobs is used as given. None or a non-positive value means as
    many workers as there are cores, fewer when free memory cannot hold
    memory_per_job_gb for each of them.
    """
    if n_jobs is not None and n_jobs > 0:
        return int(n_jobs)
    return _affordable_workers(memory_per_job_gb)
