"""Persistent tmux terminal sessions on top of a one-shot sandbox runner.

Usage:
    from terminal import TerminalSessionManager

    manager = TerminalSessionManager(runner, scope_id=thread_id)
    session_id = await manager.acquire("build")
    result = await manager.exec(session_id, "make", timeout=60)
    if result.timed_out:
        result = await manager.wait(session_id, timeout=600)
"""

from terminal.config import TerminalConfig
from terminal.errors import BackendUnavailableError, SessionCreateError, TerminalError, TmuxNotAvailableError
from terminal.manager import ExecResult, SendResult, TerminalSessionManager, ViewResult, WaitResult
from terminal.registry import SessionRegistry, TerminalSession, sanitize_session_name

__all__ = [
    "BackendUnavailableError",
    "ExecResult",
    "SendResult",
    "SessionCreateError",
    "SessionRegistry",
    "TerminalConfig",
    "TerminalError",
    "TerminalSession",
    "TerminalSessionManager",
    "TmuxNotAvailableError",
    "ViewResult",
    "WaitResult",
    "sanitize_session_name",
]
