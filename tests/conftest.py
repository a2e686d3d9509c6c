"""Pytest configuration for test discovery with pytest-xdist."""

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports with pytest-xdist
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from sandkit.config import reset_settings  # noqa: E402
from sandkit.trap import reset_trap_stack  # noqa: E402


@pytest.fixture(autouse=True)
def reset_global_state():
    """Drop cached settings and the process-wide trap stack around each test."""
    reset_settings()
    reset_trap_stack()
    yield
    reset_trap_stack()
    reset_settings()


@pytest.fixture
def relay_dir(tmp_path: Path) -> Path:
    """Relay directory with `in`/`out` FIFOs, plus a lock directory beside it."""
    directory = tmp_path / "relay"
    directory.mkdir()
    os.mkfifo(directory / "in")
    os.mkfifo(directory / "out")
    (tmp_path / "lock").mkdir()
    return directory


@pytest.fixture
def lock_path(tmp_path: Path, relay_dir: Path) -> Path:
    return tmp_path / "lock" / "relay"
