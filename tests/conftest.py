"""Shared fixtures for the File Mover Service tests"""
import logging
from unittest.mock import Mock

import pytest


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def dest_dir(tmp_path):
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def mock_logger():
    """A logger whose calls can be counted per level"""
    return Mock(spec=logging.Logger)
