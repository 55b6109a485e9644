"""Sandbox configuration.

Priority: explicit name > TERMINAL_SANDBOX env > "local" (default)
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field

CONFIG_ROOT = Path.home() / ".sandbox_terminal"


class LocalConfig(BaseModel):
    shell: str = "/bin/bash"
    cwd: str | None = None


class DockerConfig(BaseModel):
    container: str | None = None
    cwd: str = "/workspace"
    user: str | None = None


class E2BConfig(BaseModel):
    api_key: str | None = None
    sandbox_id: str | None = None
    cwd: str = "/home/user"
    user: str = "root"
    timeout: int = 300
    health_check: bool = True


class SandboxConfig(BaseModel):
    provider: str = "local"
    # @@@ config-name-propagation - carries the config file stem through to the runner name
    name: str = "local"
    local: LocalConfig = Field(default_factory=LocalConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    e2b: E2BConfig = Field(default_factory=E2BConfig)

    @classmethod
    def load(cls, name: str) -> SandboxConfig:
        if name == "local":
            return cls()

        path = CONFIG_ROOT / "sandboxes" / f"{name}.json"
        if not path.exists():
            raise FileNotFoundError(f"Sandbox config not found: {path}")

        data = json.loads(path.read_text())
        config = cls(**data)
        config.name = name
        return config

    def save(self, name: str) -> Path:
        path = CONFIG_ROOT / "sandboxes" / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {"provider": self.provider}
        if self.provider in ("local", "docker", "e2b"):
            data[self.provider] = getattr(self, self.provider).model_dump(exclude_none=True)

        path.write_text(json.dumps(data, indent=2))
        return path


def resolve_sandbox_name(cli_arg: str | None) -> str:
    if cli_arg:
        return cli_arg
    return os.getenv("TERMINAL_SANDBOX", "local")
