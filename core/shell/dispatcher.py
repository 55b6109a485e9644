"""Shell action dispatcher - one handler per action variant."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from terminal.errors import TmuxNotAvailableError
from terminal.manager import TerminalSessionManager
from terminal.output import NO_NEW_OUTPUT, StreamBudget, truncate_output

from .actions import (
    ACTION_NAMES,
    ExecAction,
    KillAction,
    SendAction,
    ShellAction,
    ShellResult,
    ViewAction,
    WaitAction,
    parse_action,
)

logger = logging.getLogger(__name__)

StreamSink = Callable[[str], None]

INPUT_SENT_NO_OUTPUT = "Input sent. No new output since last read."
INPUT_SENT = "[Input sent successfully]"


def session_not_found(session: str) -> str:
    return f'No shell session found with name "{session}". Use `exec` action to create one.'


def timeout_notice(timeout: float, session: str) -> str:
    return (
        f'\n\n[Command still running after {timeout:g}s in session "{session}". '
        f"Use `wait` with this session to keep watching it or `kill` to stop it.]"
    )


class ShellDispatcher:
    """Routes validated shell actions to a TerminalSessionManager.

    When tmux cannot be made available, ``exec`` degrades to a one-shot run on
    the sandbox runner and every other action reports that it needs tmux.
    """

    def __init__(self, manager: TerminalSessionManager):
        self.manager = manager
        self.runner = manager.runner
        self.config = manager.config
        self.tmux_unavailable = False
        self._handlers: dict[type, Callable[[Any, StreamSink | None], Awaitable[ShellResult]]] = {
            ExecAction: self._exec,
            WaitAction: self._wait,
            SendAction: self._send,
            KillAction: self._kill,
            ViewAction: self._view,
        }

    async def handle(self, payload: dict[str, Any], stream: StreamSink | None = None) -> ShellResult:
        try:
            action = parse_action(payload)
        except ValidationError as exc:
            name = payload.get("action")
            if name not in ACTION_NAMES:
                return ShellResult(output=f"Unknown action: {name}", error=True)
            return ShellResult(output=f"Invalid `{name}` arguments: {exc.errors()[0]['msg']}", error=True)
        return await self.dispatch(action, stream)

    async def dispatch(self, action: ShellAction, stream: StreamSink | None = None) -> ShellResult:
        if self.tmux_unavailable and not isinstance(action, ExecAction):
            return ShellResult(
                output=(
                    f'The "{action.action}" action requires tmux, which could not be installed in the sandbox. '
                    f'Only "exec" is available without tmux.'
                ),
                error=True,
            )
        handler = self._handlers[type(action)]
        try:
            return await handler(action, stream)
        except Exception as exc:
            logger.exception("shell %s failed", action.action)
            return ShellResult(output=str(exc) or "Unknown error occurred", error=True)

    def _budget(self, stream: StreamSink | None) -> StreamBudget | None:
        if stream is None:
            return None
        return StreamBudget(stream, self.config.stream_max_chars)

    def _truncate(self, text: str) -> str:
        return truncate_output(text, self.config.tool_max_chars)

    async def _attached(self, session: str) -> bool:
        return await self.manager.ensure_attached(session)

    # ------------------------------------------------------------------
    # exec
    # ------------------------------------------------------------------

    async def _exec(self, action: ExecAction, stream: StreamSink | None) -> ShellResult:
        if not action.command:
            return ShellResult(output="Error: `command` parameter is required for `exec` action.", error=True)
        timeout = self.config.clamp_timeout(action.timeout)

        if self.tmux_unavailable:
            return await self._exec_one_shot(action.command, timeout, stream)
        try:
            session_id = await self.manager.acquire(action.session)
        except TmuxNotAvailableError as exc:
            logger.warning("tmux unavailable on %s, falling back to one-shot exec: %s", self.runner.name, exc)
            self.tmux_unavailable = True
            return await self._exec_one_shot(action.command, timeout, stream)

        sink = self._budget(stream)
        if sink is not None:
            self.manager.set_stream_callback(session_id, sink)
        try:
            result = await self.manager.exec(session_id, action.command, timeout)
            suffix = timeout_notice(timeout, session_id) if result.timed_out else ""
            if suffix and sink is not None:
                sink(suffix)
            return ShellResult(
                output=self._truncate((result.output + suffix).strip()),
                exit_code=result.exit_code,
                session=session_id,
                timed_out=result.timed_out,
            )
        finally:
            self.manager.clear_stream_callback(session_id)
            session = self.manager.get_session(session_id)
            # a pending sentinel keeps the session reserved for wait/kill
            if session is not None and session.pending_sentinel is None:
                self.manager.release(session_id)

    async def _exec_one_shot(self, command: str, timeout: float, stream: StreamSink | None) -> ShellResult:
        sink = self._budget(stream)
        on_stdout = sink if self.runner.supports_streaming else None
        try:
            result = await asyncio.to_thread(
                self.runner.run, command, timeout_ms=int(timeout * 1000), on_stdout=on_stdout
            )
        except TimeoutError:
            return ShellResult(
                output=f"[Command timed out after {timeout:g}s. Without tmux it cannot be resumed with `wait`.]",
                exit_code=None,
                timed_out=True,
            )
        if sink is not None and on_stdout is None and result.output.strip():
            sink(result.output)
        return ShellResult(output=self._truncate(result.output.strip()), exit_code=result.exit_code)

    # ------------------------------------------------------------------
    # wait
    # ------------------------------------------------------------------

    async def _wait(self, action: WaitAction, stream: StreamSink | None) -> ShellResult:
        session = action.session
        if not session:
            return ShellResult(
                output="Error: `session` is required for `wait` action. Run `exec` first to create a session.",
                error=True,
            )
        if not await self._attached(session):
            return ShellResult(output=session_not_found(session))

        sink = self._budget(stream)
        # flush whatever accumulated between turns before blocking
        pending = await self.manager.view(session)
        pending_output = pending.output if pending.output != NO_NEW_OUTPUT else ""
        if pending_output and sink is not None:
            sink(pending_output)

        if sink is not None:
            self.manager.set_stream_callback(session, sink)
        try:
            result = await self.manager.wait(session, self.config.clamp_timeout(action.timeout, self.config.max_timeout))
        finally:
            self.manager.clear_stream_callback(session)

        if not result.timed_out:
            self.manager.release(session)

        wait_output = result.output if result.output != NO_NEW_OUTPUT else ""
        combined = "\n".join(part for part in (pending_output, wait_output) if part).strip() or NO_NEW_OUTPUT
        if result.timed_out:
            return ShellResult(output=self._truncate(combined), session=session, timed_out=True)
        return ShellResult(output=self._truncate(combined), session=session)

    # ------------------------------------------------------------------
    # send / kill / view
    # ------------------------------------------------------------------

    async def _send(self, action: SendAction, stream: StreamSink | None) -> ShellResult:
        if not action.input or not action.input.strip():
            return ShellResult(
                output="Error: `input` parameter is required for `send` action (cannot be empty or whitespace-only).",
                error=True,
            )
        session = action.session
        if not session:
            return ShellResult(
                output="Error: `session` is required for `send` action. Run `exec` first to create a session.",
                error=True,
            )
        if not await self._attached(session):
            return ShellResult(output=session_not_found(session))

        sent = await self.manager.send(session, action.input)
        if not sent.success:
            return ShellResult(output=f"Error: {sent.error}", error=True)

        # give the program a moment to echo a response
        await asyncio.sleep(self.config.send_echo_delay)
        view = await self.manager.view(session)
        output = view.output or INPUT_SENT
        if output == NO_NEW_OUTPUT:
            output = INPUT_SENT_NO_OUTPUT

        if stream is not None and output not in (INPUT_SENT, INPUT_SENT_NO_OUTPUT):
            stream(truncate_output(output, self.config.stream_max_chars))
        return ShellResult(output=self._truncate(output), session=session)

    async def _kill(self, action: KillAction, stream: StreamSink | None) -> ShellResult:
        session = action.session
        if not session:
            return ShellResult(output="Error: `session` is required for `kill` action.", error=True)
        await self._attached(session)
        if not await self.manager.kill(session):
            return ShellResult(output=f'Session "{session}" already terminated or not found.')
        return ShellResult(output=f'Shell session "{session}" terminated.')

    async def _view(self, action: ViewAction, stream: StreamSink | None) -> ShellResult:
        session = action.session
        if not session:
            return ShellResult(output="Error: `session` is required for `view` action.", error=True)
        if not await self._attached(session):
            return ShellResult(output=session_not_found(session))
        view = await self.manager.view(session)
        return ShellResult(output=self._truncate(view.output), session=session)
