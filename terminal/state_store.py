"""Durable pending-command state.

A command that outlives its exec timeout leaves a sentinel behind. The manager
that started it may not exist by the time somebody calls ``wait``, so the
sentinel and the baseline length are written somewhere a fresh manager can
read them back:

- TmuxEnvironmentStore: on the tmux session itself (``set-environment``)
- SQLitePendingStateStore: an external sqlite registry keyed by tmux session name
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sandbox.provider import CommandResult

logger = logging.getLogger(__name__)

SENTINEL_VAR = "HAI_SENTINEL"
BASELINE_VAR = "HAI_BASELINE"

_SENTINEL_RE = re.compile(rf"^{SENTINEL_VAR}=(.*)$", re.MULTILINE)
_BASELINE_RE = re.compile(rf"^{BASELINE_VAR}=(\d+)$", re.MULTILINE)
_SAFE_SENTINEL_RE = re.compile(r"^[A-Za-z0-9_]+$")

# @@@env-at-import - evaluated at import time; export TERMINAL_STATE_DB_PATH before process start
DEFAULT_STATE_DB_PATH = Path(
    os.getenv("TERMINAL_STATE_DB_PATH") or (Path.home() / ".sandbox_terminal" / "terminal_state.db")
)

TmuxRun = Callable[[str], CommandResult]


@dataclass
class PendingState:
    sentinel: str | None = None
    baseline: int | None = None

    @property
    def pending(self) -> bool:
        return self.sentinel is not None


class PendingStateStore(ABC):
    @abstractmethod
    def load(self, tmux_name: str) -> PendingState: ...

    @abstractmethod
    def save(self, tmux_name: str, sentinel: str, baseline: int) -> None: ...

    @abstractmethod
    def clear(self, tmux_name: str) -> None: ...


class TmuxEnvironmentStore(PendingStateStore):
    """Keeps the pending state in the tmux session's own environment.

    It dies with the session, which is exactly the lifetime the state needs.
    """

    def __init__(self, tmux_run: TmuxRun):
        self._run = tmux_run

    def load(self, tmux_name: str) -> PendingState:
        result = self._run(
            f"tmux show-environment -t {tmux_name} {SENTINEL_VAR} 2>/dev/null || true; "
            f"tmux show-environment -t {tmux_name} {BASELINE_VAR} 2>/dev/null || true"
        )
        sentinel_match = _SENTINEL_RE.search(result.stdout)
        baseline_match = _BASELINE_RE.search(result.stdout)
        return PendingState(
            sentinel=sentinel_match.group(1).strip() if sentinel_match else None,
            baseline=int(baseline_match.group(1)) if baseline_match else None,
        )

    def save(self, tmux_name: str, sentinel: str, baseline: int) -> None:
        if not _SAFE_SENTINEL_RE.match(sentinel):
            raise ValueError(f"Refusing to persist malformed sentinel: {sentinel!r}")
        self._run(
            f"tmux set-environment -t {tmux_name} {SENTINEL_VAR} '{sentinel}' && "
            f"tmux set-environment -t {tmux_name} {BASELINE_VAR} '{int(baseline)}'"
        )

    def clear(self, tmux_name: str) -> None:
        self._run(
            f"tmux set-environment -t {tmux_name} -u {SENTINEL_VAR} 2>/dev/null; "
            f"tmux set-environment -t {tmux_name} -u {BASELINE_VAR} 2>/dev/null"
        )


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.execute("PRAGMA busy_timeout=30000")
    return conn


class SQLitePendingStateStore(PendingStateStore):
    """Explicit external registry of pending commands.

    Rows are keyed by tmux session name, which already embeds the scope id.
    A row whose tmux session has since died is harmless: attachment only
    consults the store after ``has-session`` succeeds.
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DEFAULT_STATE_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_commands (
                    tmux_name TEXT PRIMARY KEY,
                    sentinel TEXT NOT NULL,
                    baseline INTEGER NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    def load(self, tmux_name: str) -> PendingState:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT sentinel, baseline FROM pending_commands WHERE tmux_name = ?",
                (tmux_name,),
            ).fetchone()
        if row is None:
            return PendingState()
        return PendingState(sentinel=row[0], baseline=int(row[1]))

    def save(self, tmux_name: str, sentinel: str, baseline: int) -> None:
        now = datetime.now().isoformat()
        with _connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO pending_commands (tmux_name, sentinel, baseline, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(tmux_name) DO UPDATE SET
                    sentinel = excluded.sentinel,
                    baseline = excluded.baseline,
                    updated_at = excluded.updated_at
                """,
                (tmux_name, sentinel, int(baseline), now),
            )
            conn.commit()
        logger.debug("Persisted pending sentinel for %s (baseline=%d)", tmux_name, baseline)

    def clear(self, tmux_name: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM pending_commands WHERE tmux_name = ?", (tmux_name,))
            conn.commit()
