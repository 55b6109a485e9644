"""Sandbox: the command-execution substrate terminal sessions run on.

Usage:
    from sandbox import create_runner, SandboxConfig

    config = SandboxConfig.load("e2b")
    runner = create_runner(config)

    TerminalSessionManager(runner, scope_id=thread_id)
"""

from __future__ import annotations

from pathlib import Path

from sandbox.config import SandboxConfig, resolve_sandbox_name
from sandbox.provider import CommandResult, CommandRunner
from sandbox.thread_context import get_current_thread_id, set_current_thread_id


def create_runner(config: SandboxConfig, workspace_root: str | None = None) -> CommandRunner:
    """Factory: create a CommandRunner from config.

    Args:
        config: SandboxConfig (from SandboxConfig.load() or inline)
        workspace_root: Fallback working dir for the local runner
    """
    provider = config.provider

    if provider == "local":
        from sandbox.local import LocalCommandRunner

        return LocalCommandRunner(
            shell=config.local.shell,
            default_cwd=config.local.cwd or workspace_root or str(Path.cwd()),
        )

    if provider == "docker":
        from sandbox.providers.docker import DockerCommandRunner

        if not config.docker.container:
            raise ValueError("Docker sandbox config requires 'container'")
        return DockerCommandRunner(
            container=config.docker.container,
            default_cwd=config.docker.cwd,
            default_user=config.docker.user,
            provider_name=config.name,
        )

    if provider == "e2b":
        from sandbox.providers.e2b import E2BCommandRunner

        if not config.e2b.sandbox_id:
            raise ValueError("E2B sandbox config requires 'sandbox_id'")
        runner = E2BCommandRunner.connect(
            config.e2b.sandbox_id,
            api_key=config.e2b.api_key,
            timeout=config.e2b.timeout,
            default_cwd=config.e2b.cwd,
        )
        runner.default_user = config.e2b.user
        if config.e2b.health_check:
            runner.wait_until_ready()
        return runner

    raise ValueError(f"Unknown sandbox provider: {provider}")


__all__ = [
    "CommandResult",
    "CommandRunner",
    "SandboxConfig",
    "create_runner",
    "resolve_sandbox_name",
    "set_current_thread_id",
    "get_current_thread_id",
]
