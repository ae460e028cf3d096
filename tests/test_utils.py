"""
Tests for config access, logging set-up, stage timing and worker counts.
"""

import logging
import os
from collections import namedtuple
from pathlib import Path

import pytest

from bikeshare import utils
from bikeshare.utils import (
    get_path, get_project_root, load_config, resolve_n_jobs, setup_logging, timer
)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = set(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_project_root_holds_configs():
    assert (get_project_root() / 'configs' / 'run_defaults.yaml').is_file()
    assert (get_project_root() / 'bikeshare' / 'utils.py').is_file()


def test_load_config_from_other_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config('configs/run_defaults.yaml')
    assert config['resamples']['v'] == 10


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'absent.yaml')
    with pytest.raises(FileNotFoundError):
        load_config('configs/absent.yaml')


def test_load_config_empty_file(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('')
    assert load_config(path) == {}


def test_get_path_anchors_relative_paths(tmp_path):
    config = {'artifacts': {'dir': 'artifacts'}, 'paths': {'raw_dir': str(tmp_path)}}
    assert get_path(config, 'artifacts.dir') == get_project_root() / 'artifacts'
    assert get_path(config, 'paths.raw_dir') == Path(tmp_path)
    with pytest.raises(KeyError):
        get_path(config, 'artifacts.models')
    with pytest.raises(KeyError):
        get_path(config, 'artifacts.dir.sub')


def test_resolve_n_jobs_explicit():
    assert resolve_n_jobs(3) == 3
    assert resolve_n_jobs(1, memory_per_job_gb=1000.0) == 1


def test_resolve_n_jobs_capped_by_memory(monkeypatch):
    memory = namedtuple('memory', 'available')
    monkeypatch.setattr(utils.psutil, 'virtual_memory', lambda: memory(available=2.5 * 1024 ** 3))

    assert resolve_n_jobs(None, memory_per_job_gb=1.0) == min(2, os.cpu_count() or 1)
    # Not even one job's worth of memory still gives one worker
    assert resolve_n_jobs(-1, memory_per_job_gb=8.0) == 1


def test_timer_logs_stage(caplog):
    caplog.set_level(logging.INFO, logger='bikeshare.utils')
    with timer('Tune cubist (round 2)'):
        pass
    messages = [r.getMessage() for r in caplog.records]
    assert messages[0] == '[Tune cubist (round 2)] starting...'
    assert messages[-1].startswith('[Tune cubist (round 2)] done in ')


def test_timer_logs_when_stage_fails(caplog):
    caplog.set_level(logging.INFO, logger='bikeshare.utils')
    with pytest.raises(ValueError):
        with timer('Final fit'):
            raise ValueError('boom')
    assert caplog.records[-1].getMessage().startswith('[Final fit] done in ')


def test_setup_logging_writes_file(tmp_path, restore_root_logging):
    log_file = tmp_path / 'run' / 'train.log'
    setup_logging(level='debug', log_file=str(log_file))
    logging.getLogger('bikeshare.train').debug('fold written')

    assert logging.getLogger().level == logging.DEBUG
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert 'bikeshare.train - DEBUG - fold written' in log_file.read_text()


def test_setup_logging_unknown_level(restore_root_logging):
    setup_logging(level='chatty')
    assert logging.getLogger().level == logging.INFO
    assert len(logging.getLogger().handlers) == 1
