"""
Sandbox command-runner interface.

A sandbox is consumed through exactly one primitive: run a shell command
string and get stdout/stderr/exit code back. Runners that can deliver
output incrementally advertise it through ``supports_streaming``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

StdoutCallback = Callable[[str], None]


@dataclass
class CommandResult:
    """Result of a single sandbox command."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout + stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner(ABC):
    """
    Abstract sandbox command runner.

    Implementations:
    - LocalCommandRunner: host subprocess (streaming)
    - DockerCommandRunner: docker exec into a running container (batch)
    - E2BCommandRunner: E2B cloud sandbox (streaming)
    """

    name: str = "runner"
    supports_streaming: bool = False

    @abstractmethod
    def run(
        self,
        command: str,
        *,
        timeout_ms: int,
        cwd: str | None = None,
        user: str | None = None,
        on_stdout: StdoutCallback | None = None,
    ) -> CommandResult:
        """Run ``command`` through a shell and block until it exits.

        ``on_stdout`` receives raw output chunks as they arrive; runners that
        cannot stream may ignore it. Exceeding ``timeout_ms`` raises
        ``TimeoutError``.
        """
        ...
