"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_TOOL_PATH = FIXTURES_DIR / "fake_tool.py"


@pytest.fixture
def python_exe() -> str:
    """Interpreter used to run the fake tool."""
    return sys.executable


@pytest.fixture
def fake_tool() -> str:
    """Path to the fake tool script."""
    return str(FAKE_TOOL_PATH)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Reload configuration from an environment without PROCOUT_* overrides."""
    from process_output.config import reload_config

    for name in (
        "PROCOUT_ENCODING",
        "PROCOUT_READ_SIZE",
        "PROCOUT_DRAIN_TIMEOUT",
        "PROCOUT_CHUNK_LOCAL_LINES",
        "PROCOUT_LOG_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()
