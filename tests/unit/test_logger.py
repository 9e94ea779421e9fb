"""Tests for centralised logging setup."""

import logging
import os
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import colorlog
import pytest

from src.logger import setup_logging


@pytest.fixture
def bare_root():
    """Root logger without pytest's capture handlers, restored afterwards."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    quiet = {name: logging.getLogger(name).level for name in ('httpx', 'httpcore', 'google_genai')}
    root.handlers = []
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    for name, level in quiet.items():
        logging.getLogger(name).setLevel(level)


def test_console_handler_uses_colorlog(bare_root):
    with patch.dict(os.environ, {}, clear=True):
        setup_logging()

    assert bare_root.level == logging.INFO
    assert len(bare_root.handlers) == 1
    assert isinstance(bare_root.handlers[0].formatter, colorlog.ColoredFormatter)
    assert logging.getLogger('httpx').level == logging.WARNING


def test_rotating_file_handler(bare_root, tmp_path):
    env = {
        'TEMPO_LOG_FILE': str(tmp_path / 'tempo.log'),
        'LOG_FILE_MAX_BYTES': '2048',
        'LOG_FILE_BACKUP_COUNT': '2',
    }

    with patch.dict(os.environ, env, clear=True):
        setup_logging()

    file_handlers = [h for h in bare_root.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 2048
    assert file_handlers[0].backupCount == 2


def test_level_argument_overrides_environment(bare_root):
    with patch.dict(os.environ, {'TEMPO_LOG_LEVEL': 'warning'}, clear=True):
        setup_logging('debug')

    assert bare_root.level == logging.DEBUG


def test_existing_handlers_are_kept(bare_root):
    existing = logging.NullHandler()
    bare_root.addHandler(existing)

    with patch.dict(os.environ, {'TEMPO_LOG_LEVEL': 'ERROR'}, clear=True):
        setup_logging()

    assert bare_root.handlers == [existing]
    assert bare_root.level == logging.ERROR
