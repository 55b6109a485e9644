"""Middleware for terminal-driving agents."""

from core.shell import ShellMiddleware

__all__ = [
    "ShellMiddleware",
]
