"""Shell tool: persistent terminal sessions exposed to the agent."""

from core.shell.actions import ExecAction, KillAction, SendAction, ShellAction, ShellResult, ViewAction, WaitAction, parse_action
from core.shell.dispatcher import ShellDispatcher
from core.shell.middleware import ShellMiddleware

__all__ = [
    "ExecAction",
    "KillAction",
    "SendAction",
    "ShellAction",
    "ShellDispatcher",
    "ShellMiddleware",
    "ShellResult",
    "ViewAction",
    "WaitAction",
    "parse_action",
]
