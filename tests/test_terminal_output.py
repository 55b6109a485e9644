"""Tests for pane-capture cleaning, truncation and snapshot reassembly."""

from terminal.output import (
    NO_NEW_OUTPUT,
    TRUNCATION_NOTICE,
    CommandFrame,
    FrameState,
    StreamBudget,
    clean_output,
    delta_since,
    normalize_pane_capture,
    strip_sentinel_noise,
    truncate_output,
)
from terminal.snapshots import SnapshotReader

START = "__START_abc123__"
DONE = "__DONE_abc123__"


def _pane(*body: str, exit_code: int | None = 0) -> str:
    lines = [
        f"user@box:~$ echo {START}",
        START,
        *body,
        f"user@box:~$ echo {DONE}$?",
    ]
    if exit_code is not None:
        lines += [f"{DONE}{exit_code}", "user@box:~$"]
    return "\n".join(lines)


class TestCleanOutput:
    def test_returns_only_command_output(self):
        content = _pane("user@box:~$ ls", "a.txt", "b.txt")
        assert clean_output(content, START, DONE, "ls") == "user@box:~$ ls\na.txt\nb.txt"

    def test_drops_bare_command_echo_when_prompt_form_exists(self):
        content = _pane("ls", "$ ls", "user@box:~$ ls", "a.txt")
        assert clean_output(content, START, DONE, "ls") == "user@box:~$ ls\na.txt"

    def test_keeps_echo_lines_without_canonical_form(self):
        content = _pane("$ ls", "a.txt")
        assert clean_output(content, START, DONE, "ls") == "$ ls\na.txt"

    def test_prompt_only_lines_removed(self):
        content = _pane("out", "root@host:/#", "more")
        assert clean_output(content, START, DONE) == "out\nmore"

    def test_collapses_blank_runs(self):
        content = _pane("a", "", "", "", "b")
        assert clean_output(content, START, DONE) == "a\n\nb"

    def test_without_markers_returns_everything(self):
        assert clean_output("hello\nworld", START, DONE) == "hello\nworld"

    def test_previous_command_output_ignored(self):
        earlier = "\n".join([f"user@box:~$ echo {START}", START, "old", f"{DONE}0"])
        uid = "ffff0000"
        later = "\n".join([f"__START_{uid}__", "new", f"__DONE_{uid}__0"])
        assert clean_output(f"{earlier}\n{later}", f"__START_{uid}__", f"__DONE_{uid}__") == "new"


class TestCommandFrame:
    def test_state_progresses_with_captures(self):
        frame = CommandFrame(START, DONE, "make")
        assert frame.feed("user@box:~$") is FrameState.AWAITING_START
        assert frame.feed(f"user@box:~$ echo {START}\n{START}\nbuilding") is FrameState.COLLECTING
        assert frame.output() == "building"
        assert frame.feed(_pane("building", "built", exit_code=2)) is FrameState.DONE
        assert frame.done
        assert frame.exit_code == 2
        assert frame.output() == "building\nbuilt"

    def test_sentinel_echo_is_not_completion(self):
        frame = CommandFrame(START, DONE, "sleep 5")
        frame.feed(_pane("waiting", exit_code=None))
        assert not frame.done
        assert frame.exit_code is None

    def test_shrunk_capture_rescans(self):
        frame = CommandFrame(START, DONE)
        frame.feed(_pane("a", "b", "c"))
        assert frame.done
        frame.feed("user@box:~$")
        assert frame.state is FrameState.AWAITING_START

    def test_wrapped_command_puts_markers_on_own_lines(self):
        frame = CommandFrame.for_command("ls -la")
        assert frame.wrapped_command().split("\n") == [
            f"echo {frame.start_marker}",
            "ls -la",
            f"echo {frame.sentinel}$?",
        ]
        assert frame.start_marker.startswith("__START_")
        assert frame.sentinel.startswith("__DONE_")


class TestNoiseAndDelta:
    def test_strip_sentinel_noise(self):
        raw = "\n".join(
            [
                f"user@box:~$ echo {DONE}$?",
                "real output",
                f"{DONE}0",
                "user@box:~$",
                "",
                "$",
            ]
        )
        assert strip_sentinel_noise(raw) == "real output"

    def test_delta_since_accepts_length_or_text(self):
        assert delta_since("abcdef", 3) == "def"
        assert delta_since("abcdef", "abc") == "def"
        assert delta_since("abc", 10) == ""

    def test_normalize_strips_padding(self):
        assert normalize_pane_capture("a   \nb  \n\n") == "a\nb"


class TestTruncation:
    def test_short_text_untouched(self):
        assert truncate_output("hello", 100) == "hello"

    def test_keeps_head_and_tail(self):
        text = "H" * 500 + "T" * 500
        result = truncate_output(text, 200)
        assert TRUNCATION_NOTICE in result
        assert len(result) <= 200
        head, tail = result.split(TRUNCATION_NOTICE)
        assert set(head) == {"H"}
        assert set(tail) == {"T"}
        assert len(head) > len(tail)

    def test_stream_budget_emits_notice_once(self):
        received = []
        budget = StreamBudget(received.append, max_chars=10)
        budget("12345")
        budget("67890")
        budget("overflow")
        budget("more")
        assert received == ["12345", "67890", TRUNCATION_NOTICE]
        assert budget.truncated


class TestSnapshotReader:
    def test_reassembles_split_chunks(self):
        snapshots = []
        reader = SnapshotReader(snapshots.append)
        payload = f"{reader.start_marker}\nline one   \nline two\n{reader.end_marker}\n"
        for i in range(0, len(payload), 7):
            reader.feed(payload[i : i + 7])
        assert snapshots == ["line one\nline two"]
        assert reader.latest == "line one\nline two"

    def test_multiple_snapshots_and_noise(self):
        reader = SnapshotReader()
        s, e = reader.start_marker, reader.end_marker
        reader(f"junk\n{s}\nfirst\n{e}\n__TMUX_TIMEOUT_1234abcd__\n{s}\nsecond\n{e}\n")
        assert reader.count == 2
        assert reader.latest == "second"

    def test_orphan_end_marker_skipped(self):
        reader = SnapshotReader()
        s, e = reader.start_marker, reader.end_marker
        reader(f"tail\n{e}\n{s}\nwhole\n{e}\n")
        assert reader.latest == "whole"
        assert reader.count == 1


def test_no_new_output_text():
    assert NO_NEW_OUTPUT == "[No new output]"
