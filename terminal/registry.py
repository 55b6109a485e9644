"""Session registry & pool.

Maps logical session ids ("s0", "build", "build_1") to tmux sessions named
``<prefix>_<scope>_<id>`` and tracks which of them are busy. The registry is
owned by one TerminalSessionManager; nothing here is process-global, so a new
manager starts empty and reattaches lazily via ``ensure_attached``.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass

from sandbox.provider import CommandResult, CommandRunner
from terminal.availability import TmuxAvailability
from terminal.config import TerminalConfig
from terminal.errors import SessionCreateError
from terminal.output import normalize_pane_capture
from terminal.state_store import PendingStateStore, TmuxEnvironmentStore

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 32
_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")

HUSHLOGIN_COMMAND = (
    "touch ~/.hushlogin 2>/dev/null; touch /root/.hushlogin 2>/dev/null; "
    "touch /home/user/.hushlogin 2>/dev/null || true"
)


def sanitize_session_name(value: str) -> str:
    """Strip everything but ``[A-Za-z0-9_-]`` and cap the length; safe to interpolate into shell."""
    return _UNSAFE_NAME_RE.sub("", value)[:MAX_NAME_LENGTH]


@dataclass
class TerminalSession:
    session_id: str
    tmux_name: str
    # longest capture seen so far; deltas are computed against its length
    last_captured_output: str = ""
    pending_sentinel: str | None = None

    @property
    def baseline(self) -> int:
        return len(self.last_captured_output)


class SessionRegistry:
    def __init__(
        self,
        runner: CommandRunner,
        scope_id: str,
        config: TerminalConfig | None = None,
        state_store: PendingStateStore | None = None,
        availability: TmuxAvailability | None = None,
    ):
        self.runner = runner
        self.scope_id = scope_id
        self.config = config or TerminalConfig()
        self.availability = availability or TmuxAvailability(runner, self.config)
        self.state_store = state_store or TmuxEnvironmentStore(self.tmux_run)

        self.sessions: dict[str, TerminalSession] = {}
        self.busy: set[str] = set()
        # LIFO: the most recently released session is reused first
        self.idle: list[str] = []
        self._next_id = 0
        self._motd_suppressed = False

    # ------------------------------------------------------------------
    # tmux plumbing
    # ------------------------------------------------------------------

    def tmux_run(self, command: str, timeout: float | None = None) -> CommandResult:
        timeout_ms = int((timeout or self.config.command_timeout) * 1000)
        return self.runner.run(command, timeout_ms=timeout_ms)

    def capture(self, tmux_name: str) -> str:
        result = self.tmux_run(f"tmux capture-pane -t {tmux_name} -e -p -S -")
        if result.exit_code != 0:
            return ""
        return normalize_pane_capture(result.stdout)

    def is_alive(self, tmux_name: str) -> bool:
        try:
            result = self.tmux_run(f"tmux has-session -t {tmux_name} 2>/dev/null && echo ALIVE")
        except Exception as exc:
            logger.debug("has-session failed for %s: %s", tmux_name, exc)
            return False
        return "ALIVE" in result.stdout

    def tmux_name_for(self, session_id: str) -> str:
        scope = sanitize_session_name(self.scope_id)
        return f"{self.config.session_prefix}_{scope}_{sanitize_session_name(session_id)}"

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> TerminalSession | None:
        return self.sessions.get(session_id)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    def is_busy(self, session_id: str) -> bool:
        return session_id in self.busy

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def _suppress_motd(self) -> None:
        if self._motd_suppressed:
            return
        try:
            self.runner.run(HUSHLOGIN_COMMAND, timeout_ms=5000)
        except Exception as exc:
            logger.debug("MOTD suppression skipped: %s", exc)
        self._motd_suppressed = True

    def create_session(self, session_id: str) -> TerminalSession:
        """Start a fresh detached tmux session for ``session_id``.

        Raises TmuxNotAvailableError when tmux cannot be found or installed,
        SessionCreateError when tmux refuses to start the session.
        """
        self.availability.ensure()
        self._suppress_motd()

        tmux_name = self.tmux_name_for(session_id)
        try:
            self.tmux_run(f"tmux kill-session -t {tmux_name} 2>/dev/null || true")
        except Exception as exc:
            logger.debug("Stale session cleanup for %s failed: %s", tmux_name, exc)

        cfg = self.config
        result = self.tmux_run(
            f"tmux new-session -d -s {tmux_name} -x {cfg.width} -y {cfg.height} \\; "
            f"set-option -t {tmux_name} history-limit {cfg.history_limit}"
        )
        if result.exit_code != 0:
            detail = (result.stderr or result.stdout).strip()
            if "duplicate session" in detail and self.is_alive(tmux_name):
                logger.info("Reusing live tmux session %s", tmux_name)
                session = TerminalSession(session_id=session_id, tmux_name=tmux_name)
                self.sessions[session_id] = session
                return session
            logger.error("tmux new-session failed for %s: %s", tmux_name, detail)
            raise SessionCreateError(tmux_name, detail)

        # let the first prompt render, then start from an empty scrollback
        time.sleep(cfg.create_settle_delay)
        self.tmux_run(f"tmux clear-history -t {tmux_name}")
        # "!" inside double quotes must not trigger history expansion
        self.tmux_run(f"tmux send-keys -t {tmux_name} 'set +H 2>/dev/null || true' Enter")
        time.sleep(cfg.keystroke_settle_delay)
        self.tmux_run(f"tmux send-keys -t {tmux_name} C-l")
        time.sleep(cfg.keystroke_settle_delay)
        self.tmux_run(f"tmux clear-history -t {tmux_name}")

        session = TerminalSession(session_id=session_id, tmux_name=tmux_name)
        self.sessions[session_id] = session
        logger.debug("Created tmux session %s for %s", tmux_name, session_id)
        return session

    def ensure_attached(self, session_id: str) -> bool:
        """Adopt a tmux session left behind by a previous manager instance.

        The baseline is rebuilt from the persisted length rather than the
        current capture, so output produced since the last timeout is still
        reported as new.
        """
        if session_id in self.sessions:
            return True
        if not sanitize_session_name(session_id):
            return False

        tmux_name = self.tmux_name_for(session_id)
        if not self.is_alive(tmux_name):
            return False

        try:
            state = self.state_store.load(tmux_name)
        except Exception as exc:
            logger.warning("Could not read pending state for %s: %s", tmux_name, exc)
            state = None

        session = TerminalSession(session_id=session_id, tmux_name=tmux_name)
        if state is not None and state.pending:
            session.pending_sentinel = state.sentinel
            self.busy.add(session_id)

        captured = self.capture(tmux_name)
        if state is not None and state.baseline is not None and captured:
            session.last_captured_output = captured[: min(state.baseline, len(captured))]
        else:
            session.last_captured_output = captured

        logger.info(
            "Attached session=%s tmux=%s sentinel=%s baseline=%s",
            session_id,
            tmux_name,
            "found" if session.pending_sentinel else "none",
            state.baseline if state is not None else None,
        )
        self.sessions[session_id] = session
        return True

    def _reset_for_reuse(self, session: TerminalSession) -> bool:
        try:
            result = self.tmux_run(f"tmux clear-history -t {session.tmux_name}")
        except Exception as exc:
            logger.debug("clear-history failed for %s: %s", session.tmux_name, exc)
            return False
        if result.exit_code != 0:
            return False
        session.last_captured_output = ""
        return True

    def _claim(self, session_id: str) -> bool:
        """Reserve ``session_id``, adopting a live tmux session before creating one.

        Returns False when the session is busy, including one adopted with a
        pending sentinel from an earlier manager.
        """
        if session_id not in self.sessions:
            self.ensure_attached(session_id)
        if session_id in self.busy:
            return False

        session = self.sessions.get(session_id)
        if session is None:
            self.create_session(session_id)
        else:
            self._remove_idle(session_id)
            if not self._reset_for_reuse(session):
                # died underneath us; recreate under the same name
                del self.sessions[session_id]
                self.create_session(session_id)
        self.busy.add(session_id)
        return True

    def acquire(self, preferred: str | None = None) -> str:
        """Return a session id reserved for one exec call; always marked busy."""
        name = sanitize_session_name(preferred) if preferred else ""

        if name:
            candidate, suffix = name, 0
            while not self._claim(candidate):
                suffix += 1
                candidate = f"{name}_{suffix}"
            return candidate

        while self.idle:
            session_id = self.idle.pop()
            session = self.sessions.get(session_id)
            if session is None:
                continue
            if not self._reset_for_reuse(session):
                del self.sessions[session_id]
                continue
            self.busy.add(session_id)
            return session_id

        while True:
            session_id = f"s{self._next_id}"
            self._next_id += 1
            if self._claim(session_id):
                return session_id

    def release(self, session_id: str) -> None:
        """Return a finished session to the idle pool (never for a timed-out one)."""
        self.busy.discard(session_id)
        if session_id in self.sessions and session_id not in self.idle:
            self.idle.append(session_id)

    def forget(self, session_id: str) -> TerminalSession | None:
        self.busy.discard(session_id)
        self._remove_idle(session_id)
        return self.sessions.pop(session_id, None)

    def _remove_idle(self, session_id: str) -> None:
        self.idle = [s for s in self.idle if s != session_id]

    # ------------------------------------------------------------------
    # pending sentinel
    # ------------------------------------------------------------------

    def mark_pending(self, session: TerminalSession, sentinel: str) -> None:
        session.pending_sentinel = sentinel
        self.busy.add(session.session_id)
        try:
            self.state_store.save(session.tmux_name, sentinel, session.baseline)
        except Exception as exc:
            logger.warning("Could not persist pending sentinel for %s: %s", session.tmux_name, exc)

    def clear_pending(self, session: TerminalSession) -> None:
        session.pending_sentinel = None
        try:
            self.state_store.clear(session.tmux_name)
        except Exception as exc:
            logger.debug("Could not clear pending state for %s: %s", session.tmux_name, exc)
