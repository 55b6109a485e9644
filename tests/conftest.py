"""Pytest configuration for terminal session tests.

Ensures the project root is in sys.path so imports work correctly, and
provides a zero-delay terminal config plus the in-memory tmux fake.
"""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

tests_root = Path(__file__).parent
if str(tests_root) not in sys.path:
    sys.path.insert(0, str(tests_root))

from fakes.tmux import FakeTmuxRunner  # noqa: E402
from terminal.config import TerminalConfig  # noqa: E402


@pytest.fixture
def fast_config():
    """TerminalConfig with every settle delay removed."""
    return TerminalConfig(
        create_settle_delay=0,
        keystroke_settle_delay=0,
        send_echo_delay=0,
        wait_initial_delay=0,
    )


@pytest.fixture
def fake_runner():
    return FakeTmuxRunner()


@pytest.fixture
def streaming_runner():
    return FakeTmuxRunner(streaming=True)
