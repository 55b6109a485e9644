"""Pending-command state survives the manager that created it."""

import pytest

from core.shell.dispatcher import ShellDispatcher
from fakes.tmux import FakeProgram
from terminal.manager import TerminalSessionManager
from terminal.state_store import (
    BASELINE_VAR,
    SENTINEL_VAR,
    PendingState,
    SQLitePendingStateStore,
    TmuxEnvironmentStore,
)


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLitePendingStateStore(tmp_path / "terminal_state.db")


class TestSQLiteStore:
    def test_missing_row_is_not_pending(self, sqlite_store):
        state = sqlite_store.load("hai_t_s0")
        assert state == PendingState()
        assert not state.pending

    def test_save_load_clear(self, sqlite_store):
        sqlite_store.save("hai_t_s0", "__DONE_abc__", 120)
        assert sqlite_store.load("hai_t_s0") == PendingState("__DONE_abc__", 120)

        sqlite_store.save("hai_t_s0", "__DONE_def__", 240)
        assert sqlite_store.load("hai_t_s0") == PendingState("__DONE_def__", 240)

        sqlite_store.clear("hai_t_s0")
        assert not sqlite_store.load("hai_t_s0").pending

    def test_rows_are_isolated_per_session(self, sqlite_store):
        sqlite_store.save("hai_a_s0", "__DONE_a__", 1)
        sqlite_store.save("hai_b_s0", "__DONE_b__", 2)
        assert sqlite_store.load("hai_a_s0").sentinel == "__DONE_a__"
        assert sqlite_store.load("hai_b_s0").sentinel == "__DONE_b__"


class TestTmuxEnvironmentStore:
    def test_round_trip_through_session_environment(self, fake_runner):
        pane = fake_runner.add_pane("hai_t_s0")
        store = TmuxEnvironmentStore(lambda cmd: fake_runner.run(cmd, timeout_ms=1000))

        store.save("hai_t_s0", "__DONE_abc__", 57)
        assert pane.env == {SENTINEL_VAR: "__DONE_abc__", BASELINE_VAR: "57"}
        assert store.load("hai_t_s0") == PendingState("__DONE_abc__", 57)

        store.clear("hai_t_s0")
        assert store.load("hai_t_s0") == PendingState()

    def test_rejects_unsafe_sentinel(self, fake_runner):
        store = TmuxEnvironmentStore(lambda cmd: fake_runner.run(cmd, timeout_ms=1000))
        with pytest.raises(ValueError):
            store.save("hai_t_s0", "x'; rm -rf ~; '", 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("use_sqlite", [False, True])
async def test_new_manager_resumes_pending_command(fake_runner, fast_config, tmp_path, use_sqlite):
    fake_runner.programs["./migrate.sh"] = FakeProgram(
        output_before=["migrating 1/3"], output_after=["migrating 3/3", "finished"], ticks=5
    )

    def make_manager():
        store = SQLitePendingStateStore(tmp_path / "state.db") if use_sqlite else None
        return TerminalSessionManager(fake_runner, "conv-7", fast_config, state_store=store)

    first = make_manager()
    session_id = await first.acquire()
    result = await first.exec(session_id, "./migrate.sh", timeout=0.3)
    assert result.timed_out
    tmux_name = first.get_session(session_id).tmux_name
    baseline = first.get_session(session_id).baseline

    # output produced while nobody is watching
    fake_runner.pane(tmux_name).write("migrating 2/3")

    second = make_manager()
    assert not second.has_session(session_id)
    assert await second.ensure_attached(session_id)

    attached = second.get_session(session_id)
    assert attached.pending_sentinel == first.get_session(session_id).pending_sentinel
    assert attached.baseline == baseline

    waited = await second.wait(session_id, timeout=3)

    assert not waited.timed_out
    assert "finished" in waited.output
    assert "migrating 2/3" in waited.output
    assert "migrating 1/3" not in waited.output
    assert fake_runner.pane(tmux_name).started == ["./migrate.sh"]


@pytest.mark.asyncio
async def test_other_scope_cannot_attach(fake_runner, fast_config):
    owner = TerminalSessionManager(fake_runner, "conv-a", fast_config)
    session_id = await owner.acquire()

    stranger = TerminalSessionManager(fake_runner, "conv-b", fast_config)

    assert not await stranger.ensure_attached(session_id)


@pytest.mark.asyncio
async def test_named_exec_after_restart_keeps_running_command(fake_runner, fast_config):
    fake_runner.programs["./deploy.sh"] = FakeProgram(
        output_before=["deploying"], output_after=["finished-late"], ticks=5
    )

    async def fresh_call(**payload):
        dispatcher = ShellDispatcher(TerminalSessionManager(fake_runner, "conv-9", fast_config))
        return (await dispatcher.handle(payload)).to_payload()

    started = await fresh_call(action="exec", command="./deploy.sh", session="build", timeout=0.3)
    other = await fresh_call(action="exec", command="echo other", session="build")
    waited = await fresh_call(action="wait", session="build", timeout=3)

    assert started["timedOut"] is True
    assert other["session"] == "build_1"
    assert other["exitCode"] == 0
    assert "finished-late" in waited["output"]
    assert fake_runner.pane("hai_conv-9_build").started == ["./deploy.sh"]


@pytest.mark.asyncio
async def test_auto_session_after_restart_skips_pending_one(fake_runner, fast_config):
    fake_runner.programs["./migrate.sh"] = FakeProgram(output_before=["migrating"], ticks=None)

    first = TerminalSessionManager(fake_runner, "conv-3", fast_config)
    session_id = await first.acquire()
    assert (await first.exec(session_id, "./migrate.sh", timeout=0.3)).timed_out

    second = TerminalSessionManager(fake_runner, "conv-3", fast_config)
    fresh = await second.acquire()

    assert fresh == "s1"
    assert second.registry.is_busy(session_id)
    assert fake_runner.pane("hai_conv-3_s0").program is not None
    assert fake_runner.pane("hai_conv-3_s0").started == ["./migrate.sh"]
