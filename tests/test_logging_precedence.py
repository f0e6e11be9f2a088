"""Tests for logging level precedence.

Tests verify deterministic log level resolution order:
1. Explicit parameter
2. APP_LOG_LEVEL environment variable
3. Config defaults
"""

import logging

import pytest

from utils.config import get_config
from utils.logging_setup import LOG_FILE_PREFIX, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root_logger = logging.getLogger()
    level = root_logger.level
    handlers = list(root_logger.handlers)
    yield
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def test_explicit_parameter_wins(tmp_path, monkeypatch):
    """Test that explicit log_level parameter has highest priority."""
    monkeypatch.setenv("APP_LOG_LEVEL", "INFO")

    resolved = setup_logging(log_level="DEBUG", user_data_dir=tmp_path)

    assert resolved == "DEBUG"
    assert logging.getLogger().level == logging.DEBUG


def test_environment_variable_beats_config(tmp_path, monkeypatch):
    """Test that APP_LOG_LEVEL is used when no level is passed."""
    monkeypatch.setenv("APP_LOG_LEVEL", "ERROR")

    setup_logging(user_data_dir=tmp_path)

    assert logging.getLogger().level == logging.ERROR


def test_config_default_is_the_fallback(tmp_path, monkeypatch):
    """Test that config defaults are used when no other source is available."""
    monkeypatch.delenv("APP_LOG_LEVEL", raising=False)

    setup_logging(user_data_dir=tmp_path, save_to_file=False)

    expected_level = getattr(logging, get_config().app.log_level.upper())
    assert logging.getLogger().level == expected_level


@pytest.mark.parametrize("level", ["debug", "DEBUG", "DeBuG"])
def test_level_is_case_insensitive(tmp_path, level):
    """Test that log level strings are case-insensitive."""
    assert setup_logging(log_level=level, user_data_dir=tmp_path) == "DEBUG"
    assert logging.getLogger().level == logging.DEBUG


def test_repeated_setup_does_not_duplicate_handlers(tmp_path):
    """Test that calling setup twice leaves one console and one file handler."""
    setup_logging(log_level="INFO", user_data_dir=tmp_path)
    setup_logging(log_level="INFO", user_data_dir=tmp_path)

    assert len(logging.getLogger().handlers) == 2


def test_old_log_files_are_pruned(tmp_path):
    """Test that only the newest retention_count log files are kept."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    for i in range(5):
        (log_dir / f"{LOG_FILE_PREFIX}2020010{i}_000000.log").write_text("old")

    setup_logging(log_level="INFO", user_data_dir=tmp_path, retention_count=2)

    assert len(list(log_dir.glob(f"{LOG_FILE_PREFIX}*.log"))) == 2
