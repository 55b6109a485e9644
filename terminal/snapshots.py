"""Reassembles pane snapshots from a streamed poll script.

In streaming mode the remote poll loop prints every capture between a pair of
random delimiters. Runner callbacks deliver stdout in arbitrary chunks, so a
snapshot may be split across several calls.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable

from terminal.output import normalize_pane_capture


class SnapshotReader:
    def __init__(self, on_snapshot: Callable[[str], None] | None = None):
        uid = uuid.uuid4().hex
        self.start_marker = f"__SNAP_S_{uid}__"
        self.end_marker = f"__SNAP_E_{uid}__"
        self.on_snapshot = on_snapshot
        self.latest: str | None = None
        self.count = 0
        self._pending = ""

    def feed(self, chunk: str) -> None:
        self._pending += chunk
        while True:
            start = self._pending.find(self.start_marker)
            end = self._pending.find(self.end_marker)
            if start == -1 or end == -1:
                return
            if end < start:
                # tail of a snapshot whose start we never saw
                self._pending = self._pending[start:]
                continue
            body = self._pending[start + len(self.start_marker) : end]
            # drop the newline echo printed after the start delimiter
            snapshot = normalize_pane_capture(body.removeprefix("\n"))
            self._pending = self._pending[end + len(self.end_marker) :]
            self.latest = snapshot
            self.count += 1
            if self.on_snapshot is not None:
                self.on_snapshot(snapshot)

    __call__ = feed
