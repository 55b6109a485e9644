"""Terminal session errors."""

from __future__ import annotations

TMUX_INSTALL_GUIDANCE = (
    "tmux is not installed and could not be auto-installed. "
    "Install it manually to enable full terminal features (wait, send, kill):\n"
    "  macOS:   brew install tmux\n"
    "  Linux:   sudo apt-get install tmux  (or: dnf, apk, yum)\n"
    "  Windows: available via WSL or Docker (tmux is not native to Windows)"
)


class TerminalError(Exception):
    """Base class for terminal session failures."""


class BackendUnavailableError(TerminalError):
    """The terminal multiplexer is missing from the sandbox."""


class TmuxNotAvailableError(BackendUnavailableError):
    def __init__(self, message: str = TMUX_INSTALL_GUIDANCE):
        super().__init__(message)


class SessionCreateError(TerminalError):
    """tmux refused to create a session."""

    def __init__(self, session_name: str, detail: str):
        self.session_name = session_name
        self.detail = detail
        super().__init__(f"Failed to create tmux session {session_name}: {detail}")
