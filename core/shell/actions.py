"""Shell tool actions.

The tool accepts ``{action, command?, input?, session?, timeout?}``; each
action value maps to exactly one model below, and each model to exactly one
dispatcher handler. Required-field checks live in the handlers so the agent
gets a plain-language error instead of a validation dump.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class ExecAction(BaseModel):
    action: Literal["exec"] = "exec"
    command: str | None = None
    session: str | None = None
    timeout: float | None = None


class WaitAction(BaseModel):
    action: Literal["wait"] = "wait"
    session: str | None = None
    timeout: float | None = None


class SendAction(BaseModel):
    action: Literal["send"] = "send"
    session: str | None = None
    input: str | None = None


class KillAction(BaseModel):
    action: Literal["kill"] = "kill"
    session: str | None = None


class ViewAction(BaseModel):
    action: Literal["view"] = "view"
    session: str | None = None


ShellAction = Annotated[
    ExecAction | WaitAction | SendAction | KillAction | ViewAction,
    Field(discriminator="action"),
]
ACTION_NAMES = ("exec", "wait", "send", "kill", "view")

_action_adapter: TypeAdapter[ShellAction] = TypeAdapter(ShellAction)


def parse_action(payload: dict[str, Any]) -> ShellAction:
    """Validate a raw tool payload; raises pydantic.ValidationError on unknown actions."""
    return _action_adapter.validate_python(payload)


class ShellResult(BaseModel):
    """Tool result. Only explicitly set fields are serialized."""

    output: str
    exit_code: int | None = Field(default=None, serialization_alias="exitCode")
    session: str | None = None
    timed_out: bool | None = Field(default=None, serialization_alias="timedOut")
    error: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)
