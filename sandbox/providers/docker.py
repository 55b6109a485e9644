"""
Docker command runner.

Runs commands inside an already running container via ``docker exec``.
"""

from __future__ import annotations

import subprocess

from sandbox.provider import CommandResult, CommandRunner, StdoutCallback


class DockerCommandRunner(CommandRunner):
    """
    Batch-mode runner for a local Docker container.

    Notes:
    - Requires Docker CLI available on host.
    - The container must already be running; lifecycle is managed elsewhere.
    - Output is returned only when the command exits (no streaming).
    """

    name = "docker"
    supports_streaming = False

    def __init__(
        self,
        container: str,
        default_cwd: str = "/workspace",
        default_user: str | None = None,
        provider_name: str | None = None,
    ):
        if provider_name:
            self.name = provider_name
        self.container = container
        self.default_cwd = default_cwd
        self.default_user = default_user

    def run(
        self,
        command: str,
        *,
        timeout_ms: int,
        cwd: str | None = None,
        user: str | None = None,
        on_stdout: StdoutCallback | None = None,
    ) -> CommandResult:
        cmd = ["docker", "exec", "-w", cwd or self.default_cwd]
        effective_user = user or self.default_user
        if effective_user:
            cmd.extend(["-u", effective_user])
        cmd.extend([self.container, "/bin/sh", "-c", command])

        result = self._run(cmd, timeout=timeout_ms / 1000)
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)

    def _run(self, cmd: list[str], *, timeout: float) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                cmd,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TimeoutError(f"Docker command timed out after {timeout}s: {' '.join(cmd[:4])}") from exc
