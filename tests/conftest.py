"""Pytest configuration and fixtures for Healpack tests"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Ensure src directory is in Python path before any imports
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"

for path in (project_root, src_path):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from healpack.config import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep HEALPACK_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("HEALPACK_"):
            monkeypatch.delenv(key, raising=False)
    yield
    # configure_logging attaches file handlers inside tmp dirs; release them
    healpack_logger = logging.getLogger("healpack")
    for handler in list(healpack_logger.handlers):
        healpack_logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def project_dir(tmp_path):
    """Empty project root to heal."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def settings():
    """Settings without any env or .env influence."""
    return Settings(_env_file=None)
