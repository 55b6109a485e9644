"""Local command runner.

Runs commands on the host through ``/bin/bash -c``. Output is read with
``select`` so stdout chunks can be forwarded as they arrive.
"""

from __future__ import annotations

import codecs
import os
import select
import subprocess
import time

from sandbox.provider import CommandResult, CommandRunner, StdoutCallback


class LocalCommandRunner(CommandRunner):
    """Host subprocess runner with incremental stdout delivery."""

    name = "local"
    supports_streaming = True

    def __init__(self, shell: str = "/bin/bash", default_cwd: str | None = None):
        self.shell = shell
        self.default_cwd = default_cwd

    def run(
        self,
        command: str,
        *,
        timeout_ms: int,
        cwd: str | None = None,
        user: str | None = None,
        on_stdout: StdoutCallback | None = None,
    ) -> CommandResult:
        # user switching is not supported for host processes
        proc = subprocess.Popen(
            [self.shell, "-c", command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd or self.default_cwd,
            close_fds=True,
        )
        decoders = {
            proc.stdout.fileno(): codecs.getincrementaldecoder("utf-8")(errors="replace"),
            proc.stderr.fileno(): codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }
        stdout_fd = proc.stdout.fileno()
        stderr_fd = proc.stderr.fileno()
        chunks: dict[int, list[str]] = {fd: [] for fd in decoders}
        open_fds = set(decoders)
        deadline = time.monotonic() + timeout_ms / 1000

        try:
            while open_fds:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    proc.kill()
                    proc.wait()
                    raise TimeoutError(f"Command timed out after {timeout_ms}ms")
                readable, _, _ = select.select(list(open_fds), [], [], min(0.1, remaining))
                for fd in readable:
                    data = os.read(fd, 4096)
                    if not data:
                        open_fds.discard(fd)
                        text = decoders[fd].decode(b"", final=True)
                    else:
                        text = decoders[fd].decode(data)
                    if not text:
                        continue
                    chunks[fd].append(text)
                    if fd == stdout_fd and on_stdout is not None:
                        on_stdout(text)
            exit_code = proc.wait(timeout=max(0.1, deadline - time.monotonic()))
        except subprocess.TimeoutExpired as exc:
            proc.kill()
            proc.wait()
            raise TimeoutError(f"Command timed out after {timeout_ms}ms") from exc
        finally:
            proc.stdout.close()
            proc.stderr.close()

        return CommandResult(
            stdout="".join(chunks[stdout_fd]),
            stderr="".join(chunks[stderr_fd]),
            exit_code=exit_code,
        )
