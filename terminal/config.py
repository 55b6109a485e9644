"""Terminal session configuration.

Loaded from ``~/.sandbox_terminal/terminal.json`` when present; any field can
be overridden with a ``TERMINAL_<FIELD>`` environment variable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

CONFIG_PATH = Path.home() / ".sandbox_terminal" / "terminal.json"
ENV_PREFIX = "TERMINAL_"


class TerminalConfig(BaseModel):
    session_prefix: str = "hai"
    width: int = 200
    height: int = 50
    history_limit: int = 50000

    # poll cadence inside the sandbox
    batch_poll_interval: float = 0.3
    stream_poll_interval: float = 0.5
    wait_initial_delay: float = 0.3

    # tmux housekeeping commands (seconds)
    command_timeout: float = 10.0
    install_timeout: float = 120.0
    create_settle_delay: float = 1.0
    keystroke_settle_delay: float = 0.3
    send_echo_delay: float = 0.5

    # tool-facing limits (seconds / characters)
    default_timeout: int = 60
    max_timeout: int = 600
    tool_max_chars: int = 16000
    stream_max_chars: int = 8000
    # conversations whose managers stay cached by ShellMiddleware
    max_cached_scopes: int = 64

    state_store: Literal["tmux", "sqlite"] = "tmux"
    state_db_path: Path | None = Field(default=None)

    @classmethod
    def load(cls, path: Path | None = None) -> TerminalConfig:
        config_path = path or CONFIG_PATH
        data: dict = {}
        if config_path.exists():
            data = json.loads(config_path.read_text())
        data.update(_env_overrides())
        return cls(**data)

    def clamp_timeout(self, timeout: float | None, default: float | None = None) -> float:
        if timeout is None or timeout <= 0:
            timeout = self.default_timeout if default is None else default
        return float(min(timeout, self.max_timeout))


def _env_overrides() -> dict[str, str]:
    overrides = {}
    for name in TerminalConfig.model_fields:
        value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    return overrides
