"""Output cleaning for tmux pane captures.

A command is framed by two echoes injected around it::

    echo __START_<uid>__
    <command>
    echo __DONE_<uid>__$?

``CommandFrame`` tracks those markers across successive captures of the same
pane; the helpers below strip the marker echoes and bare prompts so only the
command's own output is returned.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from enum import Enum

ANSI_COLOR_RE = re.compile(r"\x1b\[[0-9;]*m")
PROMPT_LINE_RE = re.compile(r"^.*?[#$]\s*$")
PROMPT_ONLY_RE = re.compile(r"^[^$#]*[#$]\s*$")
EXCESS_BLANK_RE = re.compile(r"\n{3,}")

SENTINEL_NOISE_RES = (
    re.compile(r"^.*__DONE_[a-f0-9]+__\d*.*$", re.MULTILINE),
    re.compile(r"^.*echo\s+__DONE_[a-f0-9]+__.*$", re.MULTILINE),
    re.compile(r"^.*echo\s+__START_[a-f0-9]+__.*$", re.MULTILINE),
    re.compile(r"^.*__START_[a-f0-9]+__.*$", re.MULTILINE),
)

NO_NEW_OUTPUT = "[No new output]"
TRUNCATION_NOTICE = "...\n\n[Output truncated because too long]"


def normalize_pane_capture(raw: str) -> str:
    """tmux pads lines to the pane width; strip that so lengths are stable."""
    return "\n".join(line.rstrip() for line in raw.split("\n")).rstrip()


def _visible(line: str) -> str:
    return ANSI_COLOR_RE.sub("", line).strip()


def _dedupe_command_lines(lines: list[str], command: str) -> list[str]:
    # A pasted command can echo several times ("cmd", "$ cmd", "user@host:~$ cmd").
    # Keep only the full prompt form when one exists.
    cmd = command.strip()
    if not cmd:
        return lines

    escaped = re.escape(cmd)
    bare_re = re.compile(rf"^\s*{escaped}\s*$")
    prefixed_re = re.compile(rf"^\s*[$#]\s*{escaped}\s*$")

    def is_echo(line: str) -> bool:
        visible = _visible(line)
        return bool(bare_re.match(visible) or prefixed_re.match(visible))

    has_canonical = any(cmd in _visible(line) and not is_echo(line) for line in lines)
    if not has_canonical:
        return lines
    return [line for line in lines if not is_echo(line)]


def _extract(lines: list[str], start_index: int | None, end_index: int | None) -> list[str]:
    if start_index is not None and end_index is not None and end_index > start_index:
        return lines[start_index + 1 : end_index]
    if start_index is not None:
        return lines[start_index + 1 :]
    if end_index is not None:
        return lines[:end_index]
    return lines


def _render(
    lines: list[str],
    start_marker: str,
    sentinel: str,
    command: str | None,
) -> str:
    sentinel_echo_re = re.compile(rf"echo\s+{re.escape(sentinel)}")
    start_echo_re = re.compile(rf"echo\s+{re.escape(start_marker)}")

    kept = []
    for line in lines:
        visible = _visible(line)
        if sentinel_echo_re.search(visible) or start_echo_re.search(visible):
            continue
        if visible and PROMPT_LINE_RE.match(visible):
            continue
        kept.append(line)

    if command:
        kept = _dedupe_command_lines(kept, command)
    return EXCESS_BLANK_RE.sub("\n\n", "\n".join(kept)).strip()


class FrameState(Enum):
    AWAITING_START = "awaiting_start"
    COLLECTING = "collecting"
    DONE = "done"


class CommandFrame:
    """Incremental marker scanner for one injected command.

    Feed it successive captures of the pane; only lines not yet scanned are
    inspected (plus the last line, which may still be growing). The latest
    line containing the start marker and the latest line containing the
    sentinel followed by a digit delimit the output.
    """

    def __init__(self, start_marker: str, sentinel: str, command: str | None = None):
        self.start_marker = start_marker
        self.sentinel = sentinel
        self.command = command
        self.start_index: int | None = None
        self.end_index: int | None = None
        self.exit_code: int | None = None
        self._sentinel_re = re.compile(rf"{re.escape(sentinel)}(\d+)")
        self._lines: list[str] = []
        self._scanned = 0

    @classmethod
    def for_command(cls, command: str) -> CommandFrame:
        uid = uuid.uuid4().hex
        return cls(f"__START_{uid}__", f"__DONE_{uid}__", command)

    @property
    def state(self) -> FrameState:
        if self.end_index is not None:
            return FrameState.DONE
        if self.start_index is not None:
            return FrameState.COLLECTING
        return FrameState.AWAITING_START

    @property
    def done(self) -> bool:
        return self.state is FrameState.DONE

    def wrapped_command(self) -> str:
        # markers sit on their own lines, never joined to the command with ";"
        return f"echo {self.start_marker}\n{self.command or ''}\necho {self.sentinel}$?"

    def feed(self, capture: str) -> FrameState:
        lines = capture.split("\n")
        if len(lines) < self._scanned:
            # pane was cleared underneath us; rescan from scratch
            self.start_index = self.end_index = self.exit_code = None
            self._scanned = 0

        for index in range(max(0, self._scanned - 1), len(lines)):
            line = lines[index]
            if self.start_marker in line:
                self.start_index = index
            match = self._sentinel_re.search(line)
            if match:
                self.end_index = index
                self.exit_code = int(match.group(1))

        self._lines = lines
        self._scanned = len(lines)
        return self.state

    def output(self) -> str:
        lines = _extract(self._lines, self.start_index, self.end_index)
        return _render(lines, self.start_marker, self.sentinel, self.command)


def clean_output(content: str, start_marker: str, sentinel: str, command: str | None = None) -> str:
    """Command output between the markers with echoes, prompts and duplicate command lines removed."""
    frame = CommandFrame(start_marker, sentinel, command)
    frame.feed(content)
    return frame.output()


def _is_content_line(line: str) -> bool:
    visible = _visible(line)
    return bool(visible) and not PROMPT_ONLY_RE.match(visible)


def strip_sentinel_noise(text: str) -> str:
    """Drop marker lines, their echoes, blank lines and bare prompts from a raw delta."""
    for pattern in SENTINEL_NOISE_RES:
        text = pattern.sub("", text)
    lines = [line for line in text.split("\n") if _is_content_line(line)]
    return EXCESS_BLANK_RE.sub("\n\n", "\n".join(lines))


def delta_since(captured: str, baseline: str | int) -> str:
    length = baseline if isinstance(baseline, int) else len(baseline)
    return captured[length:] if len(captured) > length else ""


def truncate_output(text: str, max_chars: int) -> str:
    """Keep the head (60%) and tail (40%) of oversized output."""
    if len(text) <= max_chars:
        return text
    available = max(0, max_chars - len(TRUNCATION_NOTICE))
    head = int(available * 0.6)
    tail = available - head
    return text[:head] + TRUNCATION_NOTICE + (text[-tail:] if tail else "")


class StreamBudget:
    """Forward stream chunks until ``max_chars`` is spent, then emit one truncation notice."""

    def __init__(self, sink: Callable[[str], None], max_chars: int):
        self.sink = sink
        self.max_chars = max_chars
        self.used = 0
        self.truncated = False

    def __call__(self, text: str) -> None:
        if self.truncated:
            return
        if self.used + len(text) > self.max_chars:
            self.truncated = True
            self.sink(TRUNCATION_NOTICE)
            return
        self.used += len(text)
        self.sink(text)
