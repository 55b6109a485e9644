"""Shell Middleware - persistent terminal sessions for the agent.

Provides the ``shell`` tool (exec / wait / send / kill / view).
"""

from __future__ import annotations

import json
import logging
from collections import Counter, OrderedDict
from typing import Any, Literal

from langchain.agents.middleware import AgentMiddleware, AgentState
from langchain.tools import ToolRuntime, tool

from sandbox.provider import CommandRunner
from sandbox.thread_context import get_current_thread_id
from terminal.config import TerminalConfig
from terminal.manager import TerminalSessionManager
from terminal.state_store import PendingStateStore

from .dispatcher import ShellDispatcher, StreamSink

logger = logging.getLogger(__name__)

SHELL_TOOL_NAME = "shell"
DEFAULT_SCOPE = "default"


class ShellState(AgentState):
    """State for shell middleware."""

    pass


class ShellMiddleware(AgentMiddleware[ShellState]):
    """
    Terminal session middleware.

    Features:
    - One TerminalSessionManager per conversation (thread id from sandbox.thread_context)
    - Long commands time out into a resumable state instead of failing
    - Live output forwarded as ``terminal_output`` activity events when the
      agent runtime supports them
    """

    state_schema = ShellState

    def __init__(
        self,
        runner: CommandRunner,
        *,
        config: TerminalConfig | None = None,
        state_store: PendingStateStore | None = None,
        default_scope: str = DEFAULT_SCOPE,
    ) -> None:
        AgentMiddleware.__init__(self)
        self._agent: Any = None
        self.runner = runner
        self.config = config or TerminalConfig.load()
        self.state_store = state_store
        self.default_scope = default_scope
        # least recently used first; evicted scopes reattach to their tmux sessions on next use
        self._dispatchers: OrderedDict[str, ShellDispatcher] = OrderedDict()
        self._in_flight: Counter[str] = Counter()

        @tool(SHELL_TOOL_NAME)
        async def shell_tool(
            *,
            runtime: ToolRuntime[ShellState],
            action: Literal["exec", "wait", "send", "kill", "view"],
            command: str | None = None,
            input: str | None = None,
            session: str | None = None,
            timeout: int | None = None,
        ) -> str:
            """Run commands in persistent terminal sessions.

            Actions:
                exec: run `command` in `session` (created if omitted); returns the session name
                wait: keep watching a session whose command timed out or is still running
                send: type `input` into a session (text, or keys like C-c, Enter, Up, M-x)
                kill: terminate a session
                view: show output produced since the last read

            Args:
                action: One of exec, wait, send, kill, view
                command: Shell command (exec only)
                input: Text or key name to send (send only)
                session: Session name; required for every action except exec
                timeout: Seconds to wait (exec default 60, wait default 600, max 600)
            """
            payload = {"action": action, "command": command, "input": input, "session": session, "timeout": timeout}
            return await self._handle({k: v for k, v in payload.items() if v is not None})

        self._shell_tool = shell_tool
        self.tools = [self._shell_tool]

    def set_agent(self, agent: Any) -> None:
        """Set parent agent for runtime access."""
        self._agent = agent

    def _scope_id(self) -> str:
        return get_current_thread_id() or self.default_scope

    def dispatcher_for(self, scope_id: str) -> ShellDispatcher:
        dispatcher = self._dispatchers.get(scope_id)
        if dispatcher is None:
            manager = TerminalSessionManager(self.runner, scope_id, self.config, state_store=self.state_store)
            dispatcher = ShellDispatcher(manager)
            self._dispatchers[scope_id] = dispatcher
            logger.debug("Created terminal manager for scope %s", scope_id)
            self._evict_idle_scopes()
        else:
            self._dispatchers.move_to_end(scope_id)
        return dispatcher

    def release_scope(self, scope_id: str) -> bool:
        """Drop the cached manager for ``scope_id``; its tmux sessions keep running."""
        if self._in_flight[scope_id]:
            return False
        return self._dispatchers.pop(scope_id, None) is not None

    def _evict_idle_scopes(self) -> None:
        # a scope with a call in flight is skipped, never interrupted
        for scope_id in list(self._dispatchers):
            if len(self._dispatchers) <= self.config.max_cached_scopes:
                return
            if not self._in_flight[scope_id]:
                del self._dispatchers[scope_id]
                logger.debug("Evicted terminal manager for scope %s", scope_id)

    def _activity_sink(self) -> StreamSink | None:
        runtime = getattr(self._agent, "runtime", None) if self._agent else None
        if runtime is None or not hasattr(runtime, "emit_activity_event"):
            return None

        def sink(text: str) -> None:
            runtime.emit_activity_event({
                "event": "terminal_output",
                "data": json.dumps({"output": text}, ensure_ascii=False),
            })

        return sink

    async def _handle(self, payload: dict[str, Any]) -> str:
        scope_id = self._scope_id()
        self._in_flight[scope_id] += 1
        try:
            dispatcher = self.dispatcher_for(scope_id)
            result = await dispatcher.handle(payload, self._activity_sink())
        finally:
            self._in_flight[scope_id] -= 1
            if not self._in_flight[scope_id]:
                del self._in_flight[scope_id]
        return result.to_json()


__all__ = ["ShellMiddleware"]
