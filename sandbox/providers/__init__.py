"""Sandbox command-runner implementations."""

from sandbox.providers.docker import DockerCommandRunner
from sandbox.providers.e2b import E2BCommandRunner

__all__ = ["DockerCommandRunner", "E2BCommandRunner"]
