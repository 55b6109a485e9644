"""tmux availability check and best-effort installation."""

from __future__ import annotations

import logging
import time

from sandbox.provider import CommandResult, CommandRunner
from terminal.config import TerminalConfig
from terminal.errors import TmuxNotAvailableError

logger = logging.getLogger(__name__)

PROBE_COMMAND = (
    "command -v tmux 2>/dev/null || test -x /usr/bin/tmux && echo /usr/bin/tmux || which tmux 2>/dev/null || true"
)
DIRECT_PATH = "/usr/bin/tmux"
INSTALL_FAILED_MARKER = "TMUX_INSTALL_FAILED"
INSTALL_COMMAND = (
    "("
    "command -v apt-get >/dev/null 2>&1 && apt-get update -qq && apt-get install -y -qq tmux || "
    "command -v apk >/dev/null 2>&1 && apk add --no-cache tmux || "
    "command -v yum >/dev/null 2>&1 && yum install -y -q tmux || "
    "command -v dnf >/dev/null 2>&1 && dnf install -y -q tmux || "
    "command -v brew >/dev/null 2>&1 && brew install tmux || "
    f"(echo {INSTALL_FAILED_MARKER}; "
    "echo 'tmux installation failed: no supported package manager found (apt-get, apk, yum, dnf, brew).' >&2; "
    "exit 1)"
    ")"
)
RETRY_DELAY = 0.5


class TmuxAvailability:
    """Memoized tmux probe for one runner.

    A sandbox resumed from pause may answer its first command with empty
    stdout, so an empty probe is retried once (after trying the usual absolute
    path directly) before falling back to installation.
    """

    def __init__(self, runner: CommandRunner, config: TerminalConfig | None = None):
        self.runner = runner
        self.config = config or TerminalConfig()
        self.verified = False

    def _run(self, command: str, timeout: float | None = None) -> CommandResult:
        timeout_ms = int((timeout or self.config.command_timeout) * 1000)
        return self.runner.run(command, timeout_ms=timeout_ms)

    def _probe(self) -> str:
        result = self._run(PROBE_COMMAND)
        lines = result.stdout.strip().splitlines()
        return lines[0].strip() if lines else ""

    def _runs(self, path: str) -> bool:
        return self._run(f"{path} -V 2>&1").exit_code == 0

    def ensure(self) -> None:
        if self.verified:
            return

        path = self._probe()
        if not path:
            if self._runs(DIRECT_PATH):
                self.verified = True
                return
            time.sleep(RETRY_DELAY)
            path = self._probe()

        if path and self._runs(path):
            self.verified = True
            return

        logger.info("tmux not found on %s, attempting install", self.runner.name)
        try:
            install = self._run(INSTALL_COMMAND, timeout=self.config.install_timeout)
        except TimeoutError as exc:
            logger.error("tmux install timed out after %ss", self.config.install_timeout)
            raise TmuxNotAvailableError() from exc
        if INSTALL_FAILED_MARKER in install.stdout:
            logger.error("tmux install failed: no supported package manager: %s", install.stderr.strip())
            raise TmuxNotAvailableError()

        path = self._probe()
        if not path:
            logger.error("tmux still missing after install (exit_code=%s)", install.exit_code)
            raise TmuxNotAvailableError()
        if not self._runs(path):
            logger.error("tmux -V failed after install at %s", path)
            raise TmuxNotAvailableError()
        self.verified = True
