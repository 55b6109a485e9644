"""
E2B command runner.

Wraps a connected E2B sandbox as a streaming CommandRunner.
- Commands run as root from /home/user unless overridden
- on_stdout receives each chunk the SDK delivers
- Non-zero exits are returned as results, not raised
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

from sandbox.provider import CommandResult, CommandRunner, StdoutCallback

logger = logging.getLogger(__name__)

HEALTH_CHECK_RETRIES = 5
HEALTH_CHECK_BASE_DELAY = 1.0


class E2BCommandRunner(CommandRunner):
    """E2B cloud sandbox runner."""

    name = "e2b"
    supports_streaming = True

    def __init__(
        self,
        sandbox: Any,
        default_cwd: str = "/home/user",
        default_user: str = "root",
    ):
        self.sandbox = sandbox
        self.default_cwd = default_cwd
        self.default_user = default_user

    @classmethod
    def connect(
        cls,
        sandbox_id: str,
        api_key: str | None = None,
        timeout: int = 300,
        default_cwd: str = "/home/user",
    ) -> E2BCommandRunner:
        from e2b import Sandbox

        if api_key:
            # @@@ E2B SDK helpers read the key from env, not from the instance
            os.environ["E2B_API_KEY"] = api_key
        sandbox = Sandbox.connect(sandbox_id, timeout=timeout, api_key=api_key)
        return cls(sandbox, default_cwd=default_cwd)

    def run(
        self,
        command: str,
        *,
        timeout_ms: int,
        cwd: str | None = None,
        user: str | None = None,
        on_stdout: StdoutCallback | None = None,
    ) -> CommandResult:
        from e2b import CommandExitException, TimeoutException

        kwargs: dict[str, Any] = {
            "cwd": cwd or self.default_cwd,
            "user": user or self.default_user,
            "timeout": timeout_ms / 1000,
        }
        if on_stdout is not None:
            kwargs["on_stdout"] = lambda data: on_stdout(_chunk_text(data))

        try:
            result = self.sandbox.commands.run(command, **kwargs)
        except CommandExitException as exc:
            # non-zero exit is an ordinary result for our callers
            return CommandResult(stdout=exc.stdout or "", stderr=exc.stderr or "", exit_code=exc.exit_code)
        except TimeoutException as exc:
            raise TimeoutError(str(exc)) from exc

        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_code=result.exit_code,
        )

    def wait_until_ready(
        self,
        retries: int = HEALTH_CHECK_RETRIES,
        base_delay: float = HEALTH_CHECK_BASE_DELAY,
    ) -> bool:
        """Probe the sandbox with ``echo ready`` using exponential backoff.

        Freshly resumed sandboxes can reject the first commands; callers run
        this before handing the runner to a session manager.
        """
        for attempt in range(retries):
            try:
                result = self.run("echo ready", timeout_ms=5000)
                if "ready" in result.stdout:
                    return True
            except Exception as exc:
                logger.debug("E2B health check attempt %d failed: %s", attempt + 1, exc)
            if attempt < retries - 1:
                time.sleep(base_delay * (2**attempt))
        logger.warning("E2B sandbox did not become ready after %d attempts", retries)
        return False


def _chunk_text(data: Any) -> str:
    if isinstance(data, str):
        return data
    line = getattr(data, "line", None)
    if line is None and isinstance(data, dict):
        line = data.get("line")
    return line or ""
