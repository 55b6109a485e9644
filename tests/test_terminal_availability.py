"""Tests for the tmux probe / install sequence."""

import pytest

from fakes.tmux import FakeTmuxRunner
from terminal import availability
from terminal.availability import TmuxAvailability
from terminal.errors import TmuxNotAvailableError


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(availability, "RETRY_DELAY", 0)


def test_installed_tmux_verified_once():
    runner = FakeTmuxRunner()
    checker = TmuxAvailability(runner)

    checker.ensure()
    checker.ensure()

    assert checker.verified
    assert runner.probes == 1
    assert runner.installs == 0


def test_empty_first_probe_tries_direct_path():
    runner = FakeTmuxRunner(empty_first_probe=True)
    checker = TmuxAvailability(runner)

    checker.ensure()

    assert checker.verified
    assert runner.installs == 0
    assert runner.count("/usr/bin/tmux -V") == 1


def test_missing_tmux_is_installed():
    runner = FakeTmuxRunner(tmux_installed=False)
    checker = TmuxAvailability(runner)

    checker.ensure()

    assert checker.verified
    assert runner.installs == 1
    assert runner.tmux_installed


def test_install_failure_raises_with_guidance():
    runner = FakeTmuxRunner(tmux_installed=False, install_works=False)
    checker = TmuxAvailability(runner)

    with pytest.raises(TmuxNotAvailableError) as exc_info:
        checker.ensure()

    assert "brew install tmux" in str(exc_info.value)
    assert not checker.verified


def test_install_timeout_raises():
    runner = FakeTmuxRunner(tmux_installed=False)
    runner.fail_on["TMUX_INSTALL_FAILED"] = TimeoutError("slow mirror")
    checker = TmuxAvailability(runner)

    with pytest.raises(TmuxNotAvailableError):
        checker.ensure()
