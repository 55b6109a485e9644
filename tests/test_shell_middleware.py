"""Tests for ShellMiddleware wiring."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from core.shell.middleware import ShellMiddleware
from fakes.tmux import FakeTmuxRunner
from sandbox.thread_context import thread_scope


@pytest.fixture
def middleware(fast_config):
    return ShellMiddleware(FakeTmuxRunner(), config=fast_config)


def test_registers_single_shell_tool(middleware):
    assert [t.name for t in middleware.tools] == ["shell"]


@pytest.mark.asyncio
async def test_scopes_follow_thread_context(middleware):
    with thread_scope("conv-1"):
        first = json.loads(await middleware._handle({"action": "exec", "command": "echo a"}))
    with thread_scope("conv-2"):
        second = json.loads(await middleware._handle({"action": "exec", "command": "echo b"}))

    assert first["session"] == second["session"] == "s0"
    assert set(middleware.runner.panes) == {"hai_conv-1_s0", "hai_conv-2_s0"}


@pytest.mark.asyncio
async def test_default_scope_without_thread(middleware):
    await middleware._handle({"action": "exec", "command": "echo a"})
    assert "hai_default_s0" in middleware.runner.panes


@pytest.mark.asyncio
async def test_streams_activity_events(fast_config):
    middleware = ShellMiddleware(FakeTmuxRunner(streaming=True), config=fast_config)
    runtime = MagicMock()
    middleware.set_agent(SimpleNamespace(runtime=runtime))

    await middleware._handle({"action": "exec", "command": "echo streamed"})

    events = [call.args[0] for call in runtime.emit_activity_event.call_args_list]
    assert events
    assert all(event["event"] == "terminal_output" for event in events)
    assert "streamed" in "".join(json.loads(event["data"])["output"] for event in events)


@pytest.mark.asyncio
async def test_no_agent_means_no_stream(middleware):
    assert middleware._activity_sink() is None
    result = json.loads(await middleware._handle({"action": "exec", "command": "echo quiet"}))
    assert "quiet" in result["output"]


@pytest.mark.asyncio
async def test_least_recently_used_scope_evicted(fast_config):
    config = fast_config.model_copy(update={"max_cached_scopes": 2})
    middleware = ShellMiddleware(FakeTmuxRunner(), config=config)

    for scope in ("conv-1", "conv-2", "conv-1", "conv-3"):
        with thread_scope(scope):
            await middleware._handle({"action": "exec", "command": f"echo {scope}"})

    assert list(middleware._dispatchers) == ["conv-1", "conv-3"]

    with thread_scope("conv-2"):
        result = json.loads(await middleware._handle({"action": "exec", "command": "echo back"}))

    assert result["session"] == "s0"
    assert "back" in result["output"]
    assert set(middleware.runner.panes) == {"hai_conv-1_s0", "hai_conv-2_s0", "hai_conv-3_s0"}


@pytest.mark.asyncio
async def test_release_scope_keeps_tmux_sessions(middleware):
    with thread_scope("conv-1"):
        await middleware._handle({"action": "exec", "command": "echo a"})

    assert middleware.release_scope("conv-1")
    assert not middleware.release_scope("conv-1")
    assert "hai_conv-1_s0" in middleware.runner.panes
