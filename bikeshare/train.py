"""
Model training pipeline for the Seoul bike sharing demand models.

Stages:
- Ingestion, stratified train/test split and 10-fold resampling
- Round-1 Latin hypercube search for every enabled family
- Round-2 search over narrowed ranges where a family configures them
- Best configuration per family, last fit on the split, test comparison
- Refit of the winning family on the full data and scoring of the sample record
"""

import argparse
import hashlib
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import yaml

from .utils import get_path, get_project_root, load_config, resolve_n_jobs, set_seed, setup_logging, timer
from .data import TARGET_COL, get_dataset
from .validation import create_train_test_split, create_vfold_cv, save_fold_indices
from .features import Recipe, build_recipe
from .models import FAMILY_LABELS, create_model, get_model_class, normalize_family
from .tuning import (
    CONFIG_COL, TuneResults, get_round2_size, get_round2_space, get_search_space,
    grid_latin_hypercube, tune_grid
)
from .evaluate import (
    METRIC_MAXIMIZE, METRIC_NAMES, compare_models, compute_metrics, get_best_metrics,
    make_metric_record, save_metric_records
)
from .inference import FinalizedModel, make_sample_record, predict_new

logger = logging.getLogger(__name__)


# ==============================================================================
# CONFIG SNAPSHOT
# ==============================================================================

def compute_config_hash(configs: Dict[str, Any]) -> str:
    """
    Compute a deterministic hash of configuration dictionaries.

    Returns:
        8-character hex hash string
    """
    config_str = json.dumps(configs, sort_keys=True, default=str)
    return hashlib.sha256(config_str.encode()).hexdigest()[:8]


def save_config_snapshot(artifacts_dir: Path, config_paths: Dict[str, Optional[str]]) -> str:
    """
    Copy every config file used by a run into artifacts_dir/configs.

    Args:
        artifacts_dir: Run artifacts directory
        config_paths: Name -> path of each config file

    Returns:
        Config hash string
    """
    config_dir = Path(artifacts_dir) / 'configs'
    config_dir.mkdir(parents=True, exist_ok=True)

    configs = {}
    for name, path in config_paths.items():
        if not path:
            continue
        src_path = Path(path)
        if not src_path.is_absolute():
            src_path = get_project_root() / src_path
        if not src_path.exists():
            logger.warning(f"Config {name} not found at {src_path}, not included in snapshot")
            continue
        shutil.copy2(src_path, config_dir / src_path.name)
        with open(src_path, 'r') as f:
            configs[name] = yaml.safe_load(f)

    config_hash = compute_config_hash(configs)
    with open(config_dir / 'config_hash.txt', 'w') as f:
        f.write(f"{config_hash}\n")
        f.write(f"Generated: {datetime.now().isoformat()}\n")

    logger.info(f"Config snapshot saved to {config_dir} (hash: {config_hash})")
    return config_hash


def load_model_configs(run_config: dict, families: List[str]) -> Dict[str, dict]:
    """Load model_<family>.yaml for each family named in run_config['model_configs']."""
    paths = run_config.get('model_configs', {})
    configs = {}
    for family in families:
        path = paths.get(family)
        configs[family] = load_config(path) if path else {}
    return configs


# ==============================================================================
# TUNING
# ==============================================================================

def finalize_params(family: str, best_row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn a selected grid row into model parameters.

    Drops the configuration id and casts integer parameters back to int
    (grid rows may carry numpy floats after aggregation).
    """
    params = {k: v for k, v in best_row.items() if k != CONFIG_COL}
    integer_params = {p.name for p in get_search_space(family) if p.integer}
    for name in integer_params & set(params):
        params[name] = int(round(float(params[name])))
    return params


def tune_family(
    family: str,
    recipe: Recipe,
    data: pd.DataFrame,
    folds: list,
    model_config: dict,
    run_config: dict,
    round_no: int = 1,
    n_jobs: int = 1
) -> Optional[TuneResults]:
    """
    Run one tuning round for a family.

    Round 1 samples grid_size candidates from the full search space with the
    family's configured seed. Round 2 samples the narrowed space, using the
    size the model config gives for it (returns None when the family has no
    round-2 ranges).
    """
    tuning = run_config.get('tuning', {})
    grid_size = int(tuning.get('grid_size', 15))
    metrics = tuning.get('metrics', list(METRIC_NAMES))
    save_pred = bool(tuning.get('save_pred', False))

    if round_no == 1:
        space = get_search_space(family, model_config)
        seed = tuning.get('round1', {}).get('seeds', {}).get(family, run_config['reproducibility']['seed'])
        grid_seed = seed
        show_metric = tuning.get('round1', {}).get('show_best_metric', {}).get(family, 'rmse')
    else:
        space = get_round2_space(family, model_config)
        if space is None:
            return None
        grid_size = get_round2_size(model_config, grid_size)
        round2 = tuning.get('round2', {})
        grid_seed = round2.get('grid_seed', run_config['reproducibility']['seed'])
        seed = round2.get('seed', grid_seed)
        show_metric = round2.get('show_best_metric', {}).get(family, 'rmse')

    grid = grid_latin_hypercube(space, size=grid_size, seed=grid_seed)

    with timer(f"Tune {family} (round {round_no})"):
        results = tune_grid(
            family, recipe, data, folds, grid,
            model_config=model_config,
            metrics=metrics,
            n_jobs=n_jobs,
            save_pred=save_pred,
            seed=seed,
        )

    top = results.show_best(show_metric, n=5)
    logger.info(f"{family} round {round_no}, top candidates by {show_metric}:\n{top.to_string(index=False)}")
    return results


# ==============================================================================
# LAST FIT / FINAL FIT
# ==============================================================================

def last_fit(
    family: str,
    recipe: Recipe,
    train: pd.DataFrame,
    test: pd.DataFrame,
    params: Dict[str, Any],
    model_config: Optional[dict] = None,
    metrics=METRIC_NAMES,
    seed: Optional[int] = None
) -> Dict[str, Any]:
    """
    Fit recipe and model on the training split and score the test split.

    Returns:
        Dict with 'recipe', 'model', 'metrics' and 'predictions'
    """
    fitted_recipe = recipe.clone().fit(train)
    X_train, y_train = fitted_recipe.split_xy(train)
    X_test, y_test = fitted_recipe.split_xy(test)

    model = create_model(family, model_config, _with_seed(family, params, seed))
    model.fit(X_train, y_train)
    y_pred = model.predict(X_test)

    test_metrics = compute_metrics(y_test.to_numpy(), y_pred, metrics)
    predictions = pd.DataFrame({
        '.row': test.index.to_numpy(),
        TARGET_COL: y_test.to_numpy(),
        '.pred': y_pred,
    })

    logger.info(
        f"Last fit {family}: " + ", ".join(f"{k}={v:.3f}" for k, v in test_metrics.items())
    )
    return {
        'recipe': fitted_recipe,
        'model': model,
        'metrics': test_metrics,
        'predictions': predictions,
    }


def fit_final_model(
    family: str,
    recipe: Recipe,
    data: pd.DataFrame,
    params: Dict[str, Any],
    model_config: Optional[dict] = None,
    seed: Optional[int] = None
) -> FinalizedModel:
    """Refit recipe and model of the chosen configuration on the entire dataset."""
    fitted_recipe = recipe.clone().fit(data)
    X, y = fitted_recipe.split_xy(data)

    model = create_model(family, model_config, _with_seed(family, params, seed))
    with timer(f"Final fit {family} on {len(data)} rows"):
        model.fit(X, y)

    return FinalizedModel(family=family, recipe=fitted_recipe, model=model, params=params)


def _with_seed(family: str, params: Dict[str, Any], seed: Optional[int]) -> Dict[str, Any]:
    params = dict(params)
    if seed is not None:
        params[get_model_class(family).seed_param] = seed
    return params


def select_winner(test_metrics: Dict[str, Dict[str, float]], metric: str = 'rmse') -> str:
    """
    Family with the best test metric; ties go to the first family in run order.
    """
    if not test_metrics:
        raise ValueError("No test metrics to compare")
    sign = -1.0 if METRIC_MAXIMIZE[metric] else 1.0
    families = list(test_metrics)
    return min(families, key=lambda f: (sign * test_metrics[f][metric], families.index(f)))


# ==============================================================================
# PIPELINE
# ==============================================================================

def run_pipeline(
    run_config: dict,
    data_config: dict,
    recipes_config: Optional[dict] = None,
    model_configs: Optional[Dict[str, dict]] = None,
    models: Optional[List[str]] = None,
    artifacts_dir: Optional[Path] = None,
    data_path: Optional[Path] = None,
    n_jobs: Optional[int] = None,
    run_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run the full tuning, selection and finalization pipeline.

    Args:
        run_config: Loaded run_defaults.yaml
        data_config: Loaded data.yaml
        recipes_config: Loaded recipes.yaml (default: run_config['recipes_config'])
        model_configs: Family -> model config (default: files in run_config['model_configs'])
        models: Families to tune (default: run_config['models'])
        artifacts_dir: Output directory (default: run_config['artifacts']['dir'] / run_id)
        data_path: Raw CSV override
        n_jobs: Worker processes for fold evaluation (default: tuning.n_jobs)
        run_id: Run identifier (default: timestamp)

    Returns:
        Dict with tuning results, test metrics, winner, finalized model and
        the sample prediction
    """
    set_seed(run_config['reproducibility']['seed'])
    run_id = run_id or datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    families = [normalize_family(m) for m in (models or run_config.get('models', list(FAMILY_LABELS)))]
    if recipes_config is None:
        recipes_config = load_config(run_config.get('recipes_config', 'configs/recipes.yaml'))
    if model_configs is None:
        model_configs = load_model_configs(run_config, families)

    if artifacts_dir is None:
        artifacts_dir = get_path(run_config, 'artifacts.dir') / run_id
    artifacts_dir = Path(artifacts_dir)
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    tuning = run_config.get('tuning', {})
    if n_jobs is None:
        n_jobs = resolve_n_jobs(tuning.get('n_jobs'), tuning.get('memory_per_job_gb', 1.0))
    metrics = tuning.get('metrics', list(METRIC_NAMES))
    selection_metric = run_config.get('selection', {}).get('metric', 'rmse')
    final_seed = run_config.get('selection', {}).get('final_seed', run_config['reproducibility']['seed'])

    logger.info(f"Run {run_id}: families={families}, n_jobs={n_jobs}, artifacts={artifacts_dir}")

    # Data, split, folds. Resampling covers the full dataset; the split only
    # feeds the last fit.
    with timer("Load dataset"):
        dataset = get_dataset(data_config, path=data_path)

    split_cfg = run_config.get('split', {})
    train_df, test_df = create_train_test_split(
        dataset,
        prop=split_cfg.get('prop', 0.8),
        strata=split_cfg.get('strata', TARGET_COL),
        n_bins=split_cfg.get('n_bins', 4),
        seed=split_cfg.get('seed', 100),
    )

    resample_cfg = run_config.get('resamples', {})
    folds = create_vfold_cv(dataset, v=resample_cfg.get('v', 10), seed=resample_cfg.get('seed', 101))
    save_fold_indices(folds, artifacts_dir / 'fold_indices.json', seed=resample_cfg.get('seed', 101))

    # Tuning
    records = []
    summaries = []
    tune_results: Dict[str, Dict[int, TuneResults]] = {}
    best_params: Dict[str, Dict[str, Any]] = {}
    save_tune = run_config.get('artifacts', {}).get('save_tune_results', True)

    for family in families:
        recipe = build_recipe(family, recipes_config)
        tune_results[family] = {}

        for round_no in (1, 2):
            results = tune_family(
                family, recipe, dataset, folds, model_configs.get(family, {}),
                run_config, round_no=round_no, n_jobs=n_jobs
            )
            if results is None:
                continue
            tune_results[family][round_no] = results

            label = f"{FAMILY_LABELS[family]} (round {round_no})"
            summaries.append(get_best_metrics(results, label))
            results.collect_metrics().to_csv(
                artifacts_dir / f"tune_metrics_{family}_round{round_no}.csv", index=False
            )
            if save_tune:
                results.save(artifacts_dir / f"tune_results_{family}_round{round_no}.joblib")

        # Latest round wins
        final_round = max(tune_results[family])
        chosen = tune_results[family][final_round]
        best = chosen.select_best(selection_metric)
        best_params[family] = finalize_params(family, best)
        logger.info(f"Best {family} ({best[CONFIG_COL]}, round {final_round}): {best_params[family]}")

        for row in chosen.show_best(selection_metric, n=1).itertuples(index=False):
            records.append(make_metric_record(
                phase='tune', split='cv_agg', model_name=family,
                metric_name=selection_metric, value=row.mean,
                run_id=run_id, config=best[CONFIG_COL],
                extra={'round': final_round, 'n': int(row.n), 'std_err': float(row.std_err)},
            ))

    cv_table = compare_models(summaries, sort_by=selection_metric)
    cv_table.to_csv(artifacts_dir / 'cv_best_metrics.csv', index=False)
    logger.info(f"Cross-validation summary:\n{cv_table.to_string(index=False)}")

    # Last fit on the split
    test_metrics = {}
    for family in families:
        fit = last_fit(
            family, build_recipe(family, recipes_config), train_df, test_df,
            best_params[family], model_configs.get(family, {}),
            metrics=metrics, seed=final_seed,
        )
        test_metrics[family] = fit['metrics']
        for metric_name, value in fit['metrics'].items():
            records.append(make_metric_record(
                phase='last_fit', split='test', model_name=family,
                metric_name=metric_name, value=value, run_id=run_id,
            ))

    test_table = compare_models(
        [pd.DataFrame([{'model': FAMILY_LABELS[f], **m}]) for f, m in test_metrics.items()],
        sort_by=selection_metric,
    )
    test_table.to_csv(artifacts_dir / 'test_metrics.csv', index=False)
    logger.info(f"Test set comparison:\n{test_table.to_string(index=False)}")

    winner = select_winner(test_metrics, selection_metric)
    logger.info(f"Winner by test {selection_metric}: {FAMILY_LABELS[winner]}")

    # Finalize on the full dataset
    finalized = fit_final_model(
        winner, build_recipe(winner, recipes_config), dataset,
        best_params[winner], model_configs.get(winner, {}), seed=final_seed,
    )
    finalized.save(artifacts_dir / f"finalized_model_{winner}.joblib")
    finalized.get_feature_importance().to_csv(artifacts_dir / 'feature_importance.csv', index=False)

    save_metric_records(records, artifacts_dir / 'metrics.csv', append=False)

    # Score the sample record
    scored = predict_new(finalized, make_sample_record(run_config))
    sample_prediction = float(scored['.pred'].iloc[0])
    logger.info(f"Sample record prediction ({FAMILY_LABELS[winner]}): {sample_prediction:.1f} bikes")

    with open(artifacts_dir / 'sample_prediction.json', 'w') as f:
        json.dump({
            'run_id': run_id,
            'model': winner,
            'params': best_params[winner],
            'prediction': sample_prediction,
        }, f, indent=2, default=str)

    return {
        'run_id': run_id,
        'artifacts_dir': artifacts_dir,
        'tune_results': tune_results,
        'best_params': best_params,
        'cv_metrics': cv_table,
        'test_metrics': test_metrics,
        'winner': winner,
        'finalized': finalized,
        'sample_prediction': sample_prediction,
    }


def main():
    """CLI entry point for the tuning and finalization pipeline.

    Examples:
        # Full run with the default configs
        python -m bikeshare.train

        # Tune only two families with 4 workers
        python -m bikeshare.train --models xgboost cubist --n-jobs 4

        # Smaller grids for a quick check
        python -m bikeshare.train --grid-size 5 --run-name quick
    """
    parser = argparse.ArgumentParser(
        description="Tune, compare and finalize Seoul bike sharing demand models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bikeshare.train
  python -m bikeshare.train --models xgboost cubist --n-jobs 4
  python -m bikeshare.train --grid-size 5 --run-name quick
        """
    )
    parser.add_argument('--run-config', type=str, default='configs/run_defaults.yaml',
                        help="Path to run config")
    parser.add_argument('--data-config', type=str, default='configs/data.yaml',
                        help="Path to data config")
    parser.add_argument('--recipes-config', type=str, default=None,
                        help="Path to recipes config (default: run_config recipes_config)")
    parser.add_argument('--models', type=str, nargs='+', default=None,
                        help="Model families to tune (default: run_config models)")
    parser.add_argument('--data-path', type=str, default=None,
                        help="Override path to the raw CSV")
    parser.add_argument('--grid-size', type=int, default=None,
                        help="Candidates per round-1 Latin hypercube grid")
    parser.add_argument('--n-jobs', type=int, default=None,
                        help="Worker processes for fold evaluation (-1 = all affordable cores)")
    parser.add_argument('--run-name', type=str, default=None,
                        help="Run identifier (default: timestamp)")

    args = parser.parse_args()

    run_config = load_config(args.run_config)
    data_config = load_config(args.data_config)

    recipes_path = args.recipes_config or run_config.get('recipes_config', 'configs/recipes.yaml')
    recipes_config = load_config(recipes_path)

    if args.grid_size is not None:
        run_config.setdefault('tuning', {})['grid_size'] = args.grid_size
    n_jobs = None
    if args.n_jobs is not None:
        n_jobs = resolve_n_jobs(args.n_jobs, run_config.get('tuning', {}).get('memory_per_job_gb', 1.0))

    run_id = args.run_name or datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    artifacts_dir = get_path(run_config, 'artifacts.dir') / run_id
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    log_config = run_config.get('logging', {})
    setup_logging(
        level=log_config.get('level', 'INFO'),
        log_file=log_config.get('file') or str(artifacts_dir / 'train.log')
    )

    families = [normalize_family(m) for m in (args.models or run_config.get('models', list(FAMILY_LABELS)))]
    config_paths = {
        'run_config': args.run_config,
        'data_config': args.data_config,
        'recipes_config': recipes_path,
    }
    for family in families:
        config_paths[f"model_{family}"] = run_config.get('model_configs', {}).get(family)
    save_config_snapshot(artifacts_dir, config_paths)

    results = run_pipeline(
        run_config,
        data_config,
        recipes_config=recipes_config,
        models=families,
        artifacts_dir=artifacts_dir,
        data_path=Path(args.data_path) if args.data_path else None,
        n_jobs=n_jobs,
        run_id=run_id,
    )
    logger.info(
        f"Pipeline complete: winner={results['winner']}, "
        f"sample prediction={results['sample_prediction']:.1f}"
    )


if __name__ == "__main__":
    main()
