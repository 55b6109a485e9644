"""
Terminal session manager.

Drives persistent tmux sessions inside a sandbox using nothing but the
runner's one-shot ``run`` primitive:

- exec: paste a marker-framed command, poll the pane for the sentinel
- wait: resume polling after a timeout (sentinel) or until the shell is idle
- send: keystrokes or literal text
- kill / view

Runners with ``supports_streaming`` get a snapshot-per-iteration poll script
whose stdout is parsed as it arrives, so stream callbacks see output while the
command is still running. Other runners get one batch capture at the end.

Blocking runner calls happen in worker threads (``asyncio.to_thread``).
Cancelling an awaiting coroutine only stops watching: the command keeps
running in the sandbox and ``wait`` can pick it up later.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sandbox.provider import CommandRunner
from terminal.config import TerminalConfig
from terminal.keys import is_tmux_key, resolve_key_alias
from terminal.output import (
    NO_NEW_OUTPUT,
    CommandFrame,
    delta_since,
    normalize_pane_capture,
    strip_sentinel_noise,
)
from terminal.registry import SessionRegistry, TerminalSession
from terminal.scripts import INPUT_BUFFER, exec_script, paste_parts, poll_iterations, split_after, wait_script
from terminal.snapshots import SnapshotReader
from terminal.state_store import PendingStateStore, SQLitePendingStateStore

logger = logging.getLogger(__name__)

StreamCallback = Callable[[str], None]

# the poll script gets this much longer than its own loop before the runner gives up
SCRIPT_GRACE_SECONDS = 10


@dataclass
class ExecResult:
    output: str
    exit_code: int | None
    timed_out: bool = False


@dataclass
class WaitResult:
    output: str
    timed_out: bool = False


@dataclass
class SendResult:
    success: bool
    error: str | None = None


@dataclass
class ViewResult:
    output: str
    exists: bool


class TerminalSessionManager:
    """Owns the tmux sessions of one scope (conversation) on one sandbox."""

    def __init__(
        self,
        runner: CommandRunner,
        scope_id: str,
        config: TerminalConfig | None = None,
        state_store: PendingStateStore | None = None,
    ):
        self.runner = runner
        self.scope_id = scope_id
        self.config = config or TerminalConfig()
        if state_store is None and self.config.state_store == "sqlite":
            state_store = SQLitePendingStateStore(self.config.state_db_path)
        self.registry = SessionRegistry(runner, scope_id, self.config, state_store=state_store)
        self._stream_callbacks: dict[str, StreamCallback] = {}

    @property
    def streaming(self) -> bool:
        return bool(self.runner.supports_streaming)

    # ------------------------------------------------------------------
    # stream subscriptions
    # ------------------------------------------------------------------

    def set_stream_callback(self, session_id: str, callback: StreamCallback) -> None:
        self._stream_callbacks[session_id] = callback

    def clear_stream_callback(self, session_id: str) -> None:
        self._stream_callbacks.pop(session_id, None)

    def _emitter(self, session_id: str, cancelled: threading.Event) -> StreamCallback:
        callback = self._stream_callbacks.get(session_id)

        def emit(text: str) -> None:
            if callback is None or cancelled.is_set():
                return
            try:
                callback(text)
            except Exception:
                # a lost live update is recovered by the final result
                logger.warning("Stream callback failed for session %s", session_id, exc_info=True)

        return emit

    # ------------------------------------------------------------------
    # registry passthrough
    # ------------------------------------------------------------------

    def has_session(self, session_id: str) -> bool:
        return session_id in self.registry

    def get_session(self, session_id: str) -> TerminalSession | None:
        return self.registry.get(session_id)

    async def ensure_tmux(self) -> None:
        await asyncio.to_thread(self.registry.availability.ensure)

    async def ensure_attached(self, session_id: str) -> bool:
        return await asyncio.to_thread(self.registry.ensure_attached, session_id)

    async def acquire(self, preferred: str | None = None) -> str:
        return await asyncio.to_thread(self.registry.acquire, preferred)

    def release(self, session_id: str) -> None:
        self.registry.release(session_id)

    # ------------------------------------------------------------------
    # exec
    # ------------------------------------------------------------------

    async def exec(self, session_id: str, command: str, timeout: float | None = None) -> ExecResult:
        timeout = self.config.clamp_timeout(timeout)
        frame = CommandFrame.for_command(command)
        cancelled = threading.Event()
        try:
            return await asyncio.to_thread(self._exec, session_id, frame, timeout, cancelled)
        except asyncio.CancelledError:
            cancelled.set()
            self._leave_pending(session_id, frame.sentinel)
            raise

    def _leave_pending(self, session_id: str, sentinel: str) -> None:
        session = self.registry.get(session_id)
        if session is None or session.pending_sentinel is not None:
            return
        logger.info("exec on %s cancelled; command left running", session_id)
        session.pending_sentinel = sentinel
        self.registry.busy.add(session_id)
        # persist off the event loop; the in-memory mark is what this manager uses
        threading.Thread(target=self.registry.mark_pending, args=(session, sentinel), daemon=True).start()

    def _exec(
        self,
        session_id: str,
        frame: CommandFrame,
        timeout: float,
        cancelled: threading.Event,
    ) -> ExecResult:
        session = self.registry.get(session_id)
        if session is None:
            return ExecResult(output="[Error: session not found]", exit_code=None)
        try:
            if self.streaming:
                return self._exec_streaming(session, frame, timeout, cancelled)
            return self._exec_batch(session, frame, timeout, cancelled)
        except Exception as exc:
            logger.error("exec failed session=%s tmux=%s: %s", session_id, session.tmux_name, exc)
            return ExecResult(output=f"[Shell execution error: {exc}]", exit_code=None)

    def _run_script(self, script: str, timeout: float, on_stdout: StreamCallback | None = None):
        timeout_ms = int((timeout + SCRIPT_GRACE_SECONDS) * 1000)
        return self.runner.run(script, timeout_ms=timeout_ms, on_stdout=on_stdout)

    def _exec_streaming(
        self,
        session: TerminalSession,
        frame: CommandFrame,
        timeout: float,
        cancelled: threading.Event,
    ) -> ExecResult:
        emit = self._emitter(session.session_id, cancelled)
        streamed = ""

        def on_snapshot(snapshot: str) -> None:
            nonlocal streamed
            frame.feed(snapshot)
            cleaned = frame.output()
            if len(cleaned) > len(streamed):
                delta = cleaned[len(streamed) :]
                if delta.strip():
                    emit(delta)
                streamed = cleaned

        reader = SnapshotReader(on_snapshot)
        timeout_marker = f"__TMUX_TIMEOUT_{uuid.uuid4().hex[:8]}__"
        interval = self.config.stream_poll_interval
        script = exec_script(
            session.tmux_name,
            frame.wrapped_command(),
            frame.sentinel,
            iterations=poll_iterations(timeout, interval),
            interval=interval,
            timeout_marker=timeout_marker,
            snapshot_markers=(reader.start_marker, reader.end_marker),
        )
        result = self._run_script(script, timeout, on_stdout=reader.feed)
        if reader.latest is None:
            # runner delivered nothing through the callback
            reader.feed(result.stdout)
        if cancelled.is_set():
            return ExecResult(output="", exit_code=None)

        timed_out = timeout_marker in result.stdout
        final = reader.latest if reader.latest is not None else normalize_pane_capture(result.stdout)
        frame.feed(final)
        session.last_captured_output = final
        return self._finish_exec(session, frame, timed_out)

    def _exec_batch(
        self,
        session: TerminalSession,
        frame: CommandFrame,
        timeout: float,
        cancelled: threading.Event,
    ) -> ExecResult:
        timeout_marker = f"__TMUX_TIMEOUT_{uuid.uuid4().hex[:8]}__"
        interval = self.config.batch_poll_interval
        script = exec_script(
            session.tmux_name,
            frame.wrapped_command(),
            frame.sentinel,
            iterations=poll_iterations(timeout, interval),
            interval=interval,
            timeout_marker=timeout_marker,
        )
        result = self._run_script(script, timeout)
        if cancelled.is_set():
            return ExecResult(output="", exit_code=None)

        after_timeout = split_after(result.stdout, timeout_marker)
        timed_out = after_timeout is not None
        captured = normalize_pane_capture(after_timeout if timed_out else result.stdout)
        frame.feed(captured)

        cleaned = frame.output()
        if cleaned.strip():
            self._emitter(session.session_id, cancelled)(cleaned)
        session.last_captured_output = captured
        return self._finish_exec(session, frame, timed_out)

    def _finish_exec(self, session: TerminalSession, frame: CommandFrame, timed_out: bool) -> ExecResult:
        if timed_out:
            logger.info(
                "exec timed out session=%s tmux=%s baseline=%d", session.session_id, session.tmux_name, session.baseline
            )
            self.registry.mark_pending(session, frame.sentinel)
            return ExecResult(output=frame.output(), exit_code=None, timed_out=True)
        return ExecResult(output=frame.output(), exit_code=frame.exit_code, timed_out=False)

    # ------------------------------------------------------------------
    # wait
    # ------------------------------------------------------------------

    async def wait(self, session_id: str, timeout: float | None = None) -> WaitResult:
        timeout = self.config.clamp_timeout(timeout, default=self.config.max_timeout)
        cancelled = threading.Event()
        try:
            return await asyncio.to_thread(self._wait, session_id, timeout, cancelled)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    def _wait(self, session_id: str, timeout: float, cancelled: threading.Event) -> WaitResult:
        session = self.registry.get(session_id)
        if session is None:
            return WaitResult(output="[Error: session not found]")

        sentinel = session.pending_sentinel
        baseline = session.baseline
        logger.info(
            "wait session=%s tmux=%s sentinel=%s baseline=%d streaming=%s",
            session_id,
            session.tmux_name,
            "yes" if sentinel else "no",
            baseline,
            self.streaming,
        )

        uid = uuid.uuid4().hex
        timeout_marker = f"__WAIT_TIMEOUT_{uid}__"
        completion_marker = f"__WAIT_COMPLETE_{uid}__"
        if self.streaming or not sentinel:
            interval = self.config.stream_poll_interval
        else:
            interval = self.config.batch_poll_interval
        emit = self._emitter(session_id, cancelled)

        try:
            if self.streaming:
                streamed_len = 0

                def on_snapshot(snapshot: str) -> None:
                    nonlocal streamed_len
                    cleaned = strip_sentinel_noise(delta_since(snapshot, baseline))
                    if len(cleaned) > streamed_len:
                        delta = cleaned[streamed_len:]
                        if delta.strip():
                            emit(delta)
                        streamed_len = len(cleaned)

                reader = SnapshotReader(on_snapshot)
                script = wait_script(
                    session.tmux_name,
                    sentinel,
                    iterations=poll_iterations(timeout, interval),
                    interval=interval,
                    timeout_marker=timeout_marker,
                    completion_marker=completion_marker,
                    initial_delay=self.config.wait_initial_delay,
                    snapshot_markers=(reader.start_marker, reader.end_marker),
                )
                result = self._run_script(script, timeout, on_stdout=reader.feed)
                if reader.latest is None:
                    reader.feed(result.stdout)
                timed_out = timeout_marker in result.stdout
                captured = reader.latest if reader.latest is not None else session.last_captured_output
            else:
                script = wait_script(
                    session.tmux_name,
                    sentinel,
                    iterations=poll_iterations(timeout, interval),
                    interval=interval,
                    timeout_marker=timeout_marker,
                    completion_marker=completion_marker,
                    initial_delay=self.config.wait_initial_delay,
                )
                result = self._run_script(script, timeout)
                after = split_after(result.stdout, timeout_marker)
                timed_out = after is not None
                if after is None:
                    after = split_after(result.stdout, completion_marker)
                captured = normalize_pane_capture(after if after is not None else result.stdout)
                new_content = strip_sentinel_noise(delta_since(captured, baseline))
                if new_content.strip():
                    emit(new_content)
        except Exception as exc:
            logger.error("wait failed session=%s tmux=%s: %s", session_id, session.tmux_name, exc)
            return WaitResult(output=f"[Shell wait error: {exc}]")

        if cancelled.is_set():
            return WaitResult(output="", timed_out=True)

        session.last_captured_output = captured
        if sentinel:
            if timed_out:
                # keep the persisted baseline in step with what has now been reported
                self.registry.mark_pending(session, sentinel)
            else:
                self.registry.clear_pending(session)

        cleaned = strip_sentinel_noise(delta_since(captured, baseline)).strip()
        return WaitResult(output=cleaned or NO_NEW_OUTPUT, timed_out=timed_out)

    # ------------------------------------------------------------------
    # send / kill / view
    # ------------------------------------------------------------------

    async def send(self, session_id: str, text: str) -> SendResult:
        return await asyncio.to_thread(self._send, session_id, text)

    def _send(self, session_id: str, text: str) -> SendResult:
        session = self.registry.get(session_id)
        if session is None:
            return SendResult(success=False, error="Session not found")

        key = resolve_key_alias(text)
        if key is not None and is_tmux_key(key):
            command = f"tmux send-keys -t {session.tmux_name} {key}"
        else:
            # literal text never touches the command line, only the paste buffer
            parts = paste_parts(session.tmux_name, text, INPUT_BUFFER, press_enter=not text.endswith("\n"))
            command = " && ".join(parts)

        result = self.registry.tmux_run(command)
        if result.exit_code != 0:
            error = (result.stderr or result.stdout).strip() or f"tmux exited with {result.exit_code}"
            return SendResult(success=False, error=error)
        return SendResult(success=True)

    async def kill(self, session_id: str) -> bool:
        return await asyncio.to_thread(self._kill, session_id)

    def _kill(self, session_id: str) -> bool:
        session = self.registry.get(session_id)
        if session is None:
            return False

        self.registry.clear_pending(session)
        try:
            self.registry.tmux_run(f"tmux kill-session -t {session.tmux_name}")
        except Exception as exc:
            logger.debug("kill-session failed for %s (treated as gone): %s", session.tmux_name, exc)

        self.registry.forget(session_id)
        self._stream_callbacks.pop(session_id, None)
        return True

    async def view(self, session_id: str) -> ViewResult:
        return await asyncio.to_thread(self._view, session_id)

    def _view(self, session_id: str) -> ViewResult:
        session = self.registry.get(session_id)
        if session is None:
            return ViewResult(output="", exists=False)

        captured = self.registry.capture(session.tmux_name)
        if not captured:
            return ViewResult(output=NO_NEW_OUTPUT, exists=True)

        new_content = delta_since(captured, session.baseline)
        session.last_captured_output = captured
        cleaned = strip_sentinel_noise(new_content).strip()
        return ViewResult(output=cleaned or NO_NEW_OUTPUT, exists=True)
