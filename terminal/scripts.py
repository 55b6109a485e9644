"""Shell scripts executed inside the sandbox to drive a tmux session.

Each exec/wait call is a single remote command: inject, then loop
``sleep; capture; check`` up to N times. Streaming scripts additionally print
every capture between snapshot delimiters so the runner's stdout callback can
forward progress while the loop is still running.
"""

from __future__ import annotations

import base64
import math

SHELL_NAMES = "bash|zsh|sh|fish|dash|ksh|csh|tcsh"
COMMAND_BUFFER = "hai_cmd"
INPUT_BUFFER = "hai_input"


def encode_payload(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def poll_iterations(timeout: float, interval: float) -> int:
    return max(1, math.ceil(timeout / interval))


def capture_pane(tmux_name: str) -> str:
    return f"tmux capture-pane -t {tmux_name} -e -p -S -"


def paste_parts(tmux_name: str, text: str, buffer: str, press_enter: bool = True) -> list[str]:
    parts = [
        f"printf '%s' '{encode_payload(text)}' | base64 -d | tmux load-buffer -b {buffer} -",
        f"tmux paste-buffer -t {tmux_name} -b {buffer} -d",
    ]
    if press_enter:
        parts.append(f"tmux send-keys -t {tmux_name} Enter")
    return parts


def _snapshot(tmux_name: str, snapshot_markers: tuple[str, str]) -> str:
    start, end = snapshot_markers
    return f"echo '{start}'; {capture_pane(tmux_name)}; echo '{end}'; "


def _when_sentinel(tmux_name: str, sentinel: str, then: str) -> str:
    return (
        f"if tmux capture-pane -t {tmux_name} -p -S - 2>/dev/null | grep -q '{sentinel}[0-9]'; then "
        f"{then}exit 0; "
        f"fi; "
    )


def _when_idle(tmux_name: str, then: str) -> str:
    # idle: the pane's foreground process is a shell with no children
    return (
        f'PCMD=$(tmux display-message -t {tmux_name} -p "#{{pane_current_command}}" 2>/dev/null); '
        f'if echo "$PCMD" | grep -qE "^({SHELL_NAMES})$"; then '
        f'PANE_PID=$(tmux display-message -t {tmux_name} -p "#{{pane_pid}}" 2>/dev/null); '
        f'if ! pgrep -P "$PANE_PID" >/dev/null 2>&1; then '
        f"{then}exit 0; "
        f"fi; "
        f"fi; "
    )


def _loop(iterations: int, interval: float, body: str) -> list[str]:
    return [
        "i=0",
        f'while [ "$i" -lt {iterations} ]; do sleep {interval}; {body}i=$((i + 1)); done',
    ]


def exec_script(
    tmux_name: str,
    wrapped_command: str,
    sentinel: str,
    *,
    iterations: int,
    interval: float,
    timeout_marker: str,
    snapshot_markers: tuple[str, str] | None = None,
) -> str:
    """Paste ``wrapped_command`` and poll until ``sentinel`` plus a digit shows up.

    Batch: prints one capture on completion, or the timeout marker and a capture.
    Streaming: prints a delimited snapshot per iteration, plus a final one on
    completion or timeout.
    """
    parts = paste_parts(tmux_name, wrapped_command, COMMAND_BUFFER)
    if snapshot_markers:
        final = _snapshot(tmux_name, snapshot_markers)
        body = final + _when_sentinel(tmux_name, sentinel, final)
        tail = [f"echo '{timeout_marker}'", final.rstrip("; ")]
    else:
        body = _when_sentinel(tmux_name, sentinel, f"{capture_pane(tmux_name)}; ")
        tail = [f"echo '{timeout_marker}'", capture_pane(tmux_name)]
    return " && ".join(parts + _loop(iterations, interval, body) + tail)


def wait_script(
    tmux_name: str,
    sentinel: str | None,
    *,
    iterations: int,
    interval: float,
    timeout_marker: str,
    completion_marker: str,
    initial_delay: float = 0.0,
    snapshot_markers: tuple[str, str] | None = None,
) -> str:
    """Poll an already running session until the sentinel appears or the shell goes idle."""
    done = f"echo '{completion_marker}'; "
    if snapshot_markers:
        done += _snapshot(tmux_name, snapshot_markers)
    else:
        done += f"{capture_pane(tmux_name)}; "

    if sentinel:
        check = _when_sentinel(tmux_name, sentinel, done)
    else:
        check = _when_idle(tmux_name, done)

    prefix = [f"sleep {initial_delay}"] if initial_delay and not sentinel else []
    if snapshot_markers:
        body = _snapshot(tmux_name, snapshot_markers) + check
        tail = [f"echo '{timeout_marker}'"]
    else:
        body = check
        tail = [f"echo '{timeout_marker}'", capture_pane(tmux_name)]
    return " && ".join(prefix + _loop(iterations, interval, body) + tail)


def split_after(stdout: str, marker: str) -> str | None:
    """Text after the last ``marker`` line, or None when the marker is absent."""
    if marker not in stdout:
        return None
    return stdout.rsplit(marker, 1)[1].removeprefix("\n")
